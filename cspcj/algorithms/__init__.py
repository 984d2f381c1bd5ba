"""Solving strategies.

Importing this package registers every built-in strategy in
:data:`cspcj.registry.REGISTRY`.
"""

from cspcj.algorithms import (  # noqa: F401
    constructive,
    exact,
    genetic,
    local_search,
    matching,
    multistart,
    vns,
)
from cspcj.algorithms.base import RunStatus, SolveResult, Strategy

__all__ = ["RunStatus", "SolveResult", "Strategy"]

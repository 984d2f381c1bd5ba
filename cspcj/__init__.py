"""Capacitated scheduling with a conflict graph (CSPCJ) solver.

Exports the data model, the solution state and the strategy entry points.
"""

from cspcj.config import OrderingPolicy, SlotRule, StrategyConfig  # noqa: F401
from cspcj.errors import (  # noqa: F401
    CspcjError,
    FeatureUnavailable,
    Infeasible,
    InvalidInstance,
    UnknownStrategy,
    Violation,
)
from cspcj.models import ConflictGraphModel, Job, Slot, SlotPolicy  # noqa: F401
from cspcj.parser import dump_instance, load_instance, parse_instance  # noqa: F401
from cspcj.registry import available_strategies, create_strategy, register  # noqa: F401
from cspcj.solution import SolutionState  # noqa: F401

__version__ = "0.1.0"

__all__ = [
    "ConflictGraphModel",
    "CspcjError",
    "FeatureUnavailable",
    "Infeasible",
    "InvalidInstance",
    "Job",
    "OrderingPolicy",
    "Slot",
    "SlotPolicy",
    "SlotRule",
    "SolutionState",
    "StrategyConfig",
    "UnknownStrategy",
    "Violation",
    "available_strategies",
    "create_strategy",
    "dump_instance",
    "load_instance",
    "parse_instance",
    "register",
]

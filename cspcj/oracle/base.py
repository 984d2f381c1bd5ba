"""Oracle result types and backend lookup.

Backends are loaded lazily by name so that the solver library is imported
only when the exact oracle is actually used. The oracle can be switched off
with the ``CSPCJ_DISABLE_ORACLE=1`` environment toggle or with
``enable_oracle: false`` in the strategy config.
"""

from __future__ import annotations

import importlib
import importlib.util
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from cspcj.config import StrategyConfig
from cspcj.errors import FeatureUnavailable
from cspcj.models import JobId, SlotId
from cspcj.oracle.formulation import MipFormulation

DISABLE_ENV = "CSPCJ_DISABLE_ORACLE"


class OracleStatus(str, Enum):
    OPTIMAL = "optimal"
    FEASIBLE = "feasible"
    INFEASIBLE = "infeasible"
    TIMED_OUT = "timed_out"


@dataclass
class OracleResult:
    """Answer of an oracle backend.

    Attributes:
        status: Terminal status of the solve.
        assignment: ``job -> slot`` for placed jobs, or None without a
            solution.
        objective: Objective value of ``assignment`` (None without one).
        bound: Proven lower bound on the optimum, if the backend has one.
        backend: Name of the backend that produced the result.
        elapsed_s: Wall time spent in the backend.
    """

    status: OracleStatus
    assignment: Optional[dict[JobId, SlotId]] = None
    objective: Optional[float] = None
    bound: Optional[float] = None
    backend: str = ""
    elapsed_s: float = 0.0

    @property
    def has_solution(self) -> bool:
        return self.assignment is not None


class OracleBackend(ABC):
    """Exact (or sampling) solver working on a :class:`MipFormulation`."""

    name: str = ""

    @abstractmethod
    def solve(
        self,
        formulation: MipFormulation,
        time_limit: Optional[float] = None,
        hint: Optional[Mapping[JobId, SlotId]] = None,
        seed: Optional[int] = None,
    ) -> OracleResult:
        """Solve ``formulation`` within ``time_limit`` seconds (None: no limit)."""


# name -> (module, class, distribution module that must be importable)
_BACKENDS: dict[str, tuple[str, str, str]] = {
    "cpsat": ("cspcj.oracle.cpsat", "CpSatBackend", "ortools"),
    "qubo": ("cspcj.oracle.qubo", "QuboBackend", "dimod"),
}


def backend_names() -> tuple[str, ...]:
    return tuple(sorted(_BACKENDS))


def oracle_enabled(config: Optional[StrategyConfig] = None) -> bool:
    """False when the environment toggle or the config switches the oracle off."""
    if os.environ.get(DISABLE_ENV, "").strip().lower() in ("1", "true", "yes", "on"):
        return False
    return config is None or config.enable_oracle


def backend_available(name: str) -> bool:
    """Whether the library behind backend ``name`` is installed."""
    if name not in _BACKENDS:
        return False
    return importlib.util.find_spec(_BACKENDS[name][2]) is not None


def get_backend(name: str = "cpsat", config: Optional[StrategyConfig] = None) -> OracleBackend:
    """Instantiate the oracle backend ``name``.

    Raises:
        ValueError: If ``name`` is not a known backend.
        FeatureUnavailable: If the oracle is disabled or the backend library
            is not installed.
    """
    if name not in _BACKENDS:
        raise ValueError(f"Unknown oracle backend {name!r}; expected one of {backend_names()}")
    if not oracle_enabled(config):
        raise FeatureUnavailable(
            f"exact oracle is disabled ({DISABLE_ENV} or enable_oracle=false)"
        )
    module_name, class_name, requirement = _BACKENDS[name]
    if not backend_available(name):
        raise FeatureUnavailable(
            f"oracle backend {name!r} needs the {requirement!r} package, which is not installed"
        )
    module = importlib.import_module(module_name)
    return getattr(module, class_name)()

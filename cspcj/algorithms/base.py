"""Common structures and helpers for solving strategies."""

from __future__ import annotations

import logging
import random
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional

from cspcj.config import OrderingPolicy, StrategyConfig
from cspcj.errors import Infeasible
from cspcj.models import ConflictGraphModel
from cspcj.solution import SolutionState

logger = logging.getLogger("cspcj.search")


class RunStatus(str, Enum):
    """Lifecycle / terminal state of a strategy run."""

    INITIALIZED = "initialized"
    IMPROVING = "improving"
    CONVERGED = "converged"
    BUDGET_EXHAUSTED = "budget_exhausted"
    CONSTRUCTED = "constructed"
    INFEASIBLE = "infeasible"
    OPTIMAL = "optimal"
    FEASIBLE = "feasible"
    TIMED_OUT = "timed_out"


@dataclass
class SolveResult:
    """Outcome of one strategy run plus provenance."""

    strategy: str
    status: RunStatus
    solution: Optional[SolutionState]
    seed: Optional[int]
    iterations: int = 0
    elapsed_s: float = 0.0
    cost_history: list[float] = field(default_factory=list)
    bound: Optional[float] = None
    message: str = ""

    @property
    def feasible(self) -> bool:
        return self.solution is not None and self.solution.is_feasible()

    @property
    def cost(self) -> Optional[float]:
        return self.solution.cost() if self.solution is not None else None

    def rank_key(self) -> tuple:
        """Sort key used to reduce candidates: feasible first, then solution rank."""
        if not self.feasible:
            return (1, float("inf"), 0, 0, self.strategy, self.seed if self.seed is not None else -1)
        assert self.solution is not None
        return (0, *self.solution.rank_key(), self.strategy, self.seed if self.seed is not None else -1)


class Budget:
    """Iteration and wall-clock budget of a run (either may be ``None``)."""

    def __init__(self, iterations: Optional[int] = None, seconds: Optional[float] = None) -> None:
        self.iterations = iterations
        self.seconds = seconds
        self.t0 = time.perf_counter()

    @classmethod
    def from_config(cls, config: StrategyConfig) -> "Budget":
        return cls(config.iteration_budget, config.time_budget)

    def elapsed(self) -> float:
        return time.perf_counter() - self.t0

    def exhausted(self, iteration: int) -> bool:
        if self.iterations is not None and iteration >= self.iterations:
            return True
        return self.seconds is not None and self.elapsed() >= self.seconds


def make_rng(seed: Optional[int]) -> tuple[random.Random, int]:
    """Return a private generator and the seed it was created from.

    When ``seed`` is None a fresh seed is drawn so the run can still be
    reported and replayed.
    """
    if seed is None:
        seed = random.SystemRandom().randrange(2**32)
    return random.Random(seed), seed


@contextmanager
def open_trace(path: Optional[str], header: str) -> Iterator[Any]:
    """Context manager yielding an open trace file (or None when disabled)."""
    if not path:
        yield None
        return
    with open(path, "w", encoding="utf-8") as trace:
        trace.write(header + "\n")
        yield trace


class Strategy(ABC):
    """A named, configurable algorithm producing a Solution State.

    Subclasses implement :meth:`solve`; callers normally use :meth:`run`,
    which turns ``Infeasible`` into a terminal result instead of an error.
    """

    name: str = ""
    default_ordering: OrderingPolicy = OrderingPolicy.DEMAND_DESC

    def __init__(self, config: Optional[StrategyConfig] = None) -> None:
        self.config = config if config is not None else StrategyConfig()

    @property
    def ordering(self) -> OrderingPolicy:
        return self.config.ordering_policy or self.default_ordering

    @abstractmethod
    def solve(self, model: ConflictGraphModel) -> SolveResult:
        """Run the algorithm on ``model``.

        Raises:
            Infeasible: If the instance cannot admit some job.
        """

    def run(self, model: ConflictGraphModel) -> SolveResult:
        """Solve ``model``; an unseeded config gets one seed drawn for the run."""
        t0 = time.perf_counter()
        configured = self.config
        _, seed = make_rng(configured.seed)
        self.config = configured.replace(seed=seed)
        try:
            result = self.solve(model)
        except Infeasible as exc:
            logger.info("[%s] infeasible (seed=%d): %s", self.name, seed, exc)
            return SolveResult(
                strategy=self.name,
                status=RunStatus.INFEASIBLE,
                solution=None,
                seed=seed,
                elapsed_s=time.perf_counter() - t0,
                message=str(exc),
            )
        finally:
            self.config = configured
        logger.info(
            "[%s] status=%s cost=%s iterations=%d elapsed=%.4fs",
            self.name,
            result.status.value,
            result.cost,
            result.iterations,
            result.elapsed_s,
        )
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

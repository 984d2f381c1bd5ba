"""Solution report: the JSON-friendly outcome of a strategy run."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from cspcj.algorithms.base import SolveResult
from cspcj.models import ConflictGraphModel, JobId, SlotId


@dataclass
class SolutionReport:
    """Assignment, quality metrics and provenance of one run."""

    instance: str
    strategy: str
    status: str
    seed: Optional[int]
    feasible: bool
    cost: Optional[float]
    cost_name: str
    slots_used: int
    assignment: dict[JobId, SlotId] = field(default_factory=dict)
    unplaced: list[JobId] = field(default_factory=list)
    loads: dict[SlotId, float] = field(default_factory=dict)
    iterations: int = 0
    elapsed_s: float = 0.0
    lower_bound: Optional[float] = None
    oracle_bound: Optional[float] = None
    cost_history: list[float] = field(default_factory=list)
    message: str = ""

    @classmethod
    def from_result(cls, model: ConflictGraphModel, result: SolveResult) -> "SolutionReport":
        state = result.solution
        if state is None:
            return cls(
                instance=model.name,
                strategy=result.strategy,
                status=result.status.value,
                seed=result.seed,
                feasible=False,
                cost=None,
                cost_name="",
                slots_used=0,
                iterations=result.iterations,
                elapsed_s=result.elapsed_s,
                lower_bound=model.lower_bound(),
                oracle_bound=result.bound,
                message=result.message,
            )
        return cls(
            instance=model.name,
            strategy=result.strategy,
            status=result.status.value,
            seed=result.seed,
            feasible=state.is_feasible(),
            cost=state.cost(),
            cost_name=state.cost_name,
            slots_used=len(state.used_slots()),
            assignment=state.assignment(),
            unplaced=list(state.unplaced_jobs()),
            loads={s: state.load(s) for s in state.used_slots()},
            iterations=result.iterations,
            elapsed_s=result.elapsed_s,
            lower_bound=model.lower_bound(),
            oracle_bound=result.bound,
            cost_history=list(result.cost_history),
            message=result.message,
        )

    def to_dict(self) -> dict[str, Any]:
        """Plain dict with string keys (JSON objects cannot have int keys)."""
        bound = self.oracle_bound
        if bound is not None and math.isinf(bound):
            bound = None
        return {
            "instance": self.instance,
            "strategy": self.strategy,
            "status": self.status,
            "seed": self.seed,
            "feasible": self.feasible,
            "cost": self.cost,
            "cost_name": self.cost_name,
            "slots_used": self.slots_used,
            "assignment": {str(j): s for j, s in self.assignment.items()},
            "unplaced": list(self.unplaced),
            "loads": {str(s): load for s, load in self.loads.items()},
            "iterations": self.iterations,
            "elapsed_s": round(self.elapsed_s, 6),
            "lower_bound": self.lower_bound,
            "oracle_bound": bound,
            "cost_history": list(self.cost_history),
            "message": self.message,
        }

    def save(self, path: Union[str, Path]) -> None:
        Path(path).write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

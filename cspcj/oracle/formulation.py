"""Solver-agnostic MIP formulation of a CSPCJ instance.

Variables (all binary unless noted):
    x[j, s]  job ``j`` placed in slot ``s``
    y[s]     slot ``s`` used
    u[j]     job ``j`` left unplaced (only for ``allow_partial`` instances)
    z        largest (weighted) slot load, continuous (makespan objectives)

Constraints:
    assign     sum_s x[j, s] (+ u[j]) == 1
    capacity   sum_j d_j x[j, s] - c_s y[s] <= 0
    conflict   x[a, s] + x[b, s] - y[s] <= 0        per conflicting pair
    link       x[j, s] - y[s] <= 0
    symmetry   y[s + 1] - y[s] <= 0                 among openable slots
    max_load   w_s sum_j d_j x[j, s] - z <= 0       (makespan objectives)

Backends consume :meth:`MipFormulation.constraints` and
:meth:`MipFormulation.objective_terms`; nothing here depends on a solver.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, Optional

from cspcj.cost import COST_FUNCTIONS
from cspcj.models import Conflict, ConflictGraphModel, JobId, SlotId

VarKey = tuple  # ("x", j, s) | ("y", s) | ("u", j) | ("z",)

Z_VAR: VarKey = ("z",)

MAX_LOAD_OBJECTIVES = ("makespan", "weighted_makespan")


def is_integral(value: float) -> bool:
    return abs(value - round(value)) < 1e-9 * max(1.0, abs(value))


def scale_is_exact(values, scale: int) -> bool:
    """Whether ``scale`` turns every value into an integer."""
    return all(is_integral(float(v) * scale) for v in values)


def integer_scale(values, max_decimals: int = 6) -> int:
    """Smallest power of ten that turns every value into an integer.

    Falls back to ``10 ** max_decimals`` when no such power exists; callers
    check :func:`scale_is_exact` and round conservatively in that case.
    """
    values = [float(v) for v in values]
    for decimals in range(max_decimals + 1):
        scale = 10**decimals
        if scale_is_exact(values, scale):
            return scale
    return 10**max_decimals


def x_var(job_id: JobId, slot_id: SlotId) -> VarKey:
    return ("x", job_id, slot_id)


def y_var(slot_id: SlotId) -> VarKey:
    return ("y", slot_id)


def u_var(job_id: JobId) -> VarKey:
    return ("u", job_id)


@dataclass(frozen=True)
class LinearConstraint:
    """``sum(coef * var) <sense> rhs`` with ``sense`` in ``{"<=", "=="}``."""

    name: str
    terms: tuple[tuple[VarKey, float], ...]
    sense: str
    rhs: float


@dataclass(frozen=True)
class MipFormulation:
    """Plain-data MIP model built by :func:`build_formulation`.

    Attributes:
        jobs: Job ids, ascending.
        slots: Candidate slot ids (fixed first, then openable).
        openable: The openable subset of ``slots``, ascending.
        demand: Job demands.
        capacity: Capacity of every slot in ``slots``.
        conflicts: Conflicting job pairs ``(a, b)`` with ``a < b``.
        objective: Cost function name the objective mirrors.
        slot_weight: Objective coefficient of ``y[s]`` (sum objectives).
        load_weight: Per-slot load factor (max-load objectives).
        unplaced_penalty: Objective coefficient of ``u[j]``, or None when
            every job must be placed.
    """

    jobs: tuple[JobId, ...]
    slots: tuple[SlotId, ...]
    openable: tuple[SlotId, ...]
    demand: dict[JobId, float]
    capacity: dict[SlotId, float]
    conflicts: tuple[Conflict, ...]
    objective: str
    slot_weight: dict[SlotId, float]
    load_weight: dict[SlotId, float]
    unplaced_penalty: Optional[float]

    @property
    def minimizes_max_load(self) -> bool:
        return self.objective in MAX_LOAD_OBJECTIVES

    def binary_variables(self) -> list[VarKey]:
        keys: list[VarKey] = [x_var(j, s) for j in self.jobs for s in self.slots]
        keys.extend(y_var(s) for s in self.slots)
        if self.unplaced_penalty is not None:
            keys.extend(u_var(j) for j in self.jobs)
        return keys

    def max_load_bound(self) -> float:
        """Upper bound of ``z``."""
        total = math.fsum(self.demand.values())
        return max((w * total for w in self.load_weight.values()), default=0.0)

    def constraints(self) -> Iterator[LinearConstraint]:
        for j in self.jobs:
            terms = [(x_var(j, s), 1.0) for s in self.slots]
            if self.unplaced_penalty is not None:
                terms.append((u_var(j), 1.0))
            yield LinearConstraint(f"assign_{j}", tuple(terms), "==", 1.0)
        for s in self.slots:
            terms = [(x_var(j, s), float(self.demand[j])) for j in self.jobs if self.demand[j]]
            terms.append((y_var(s), -float(self.capacity[s])))
            yield LinearConstraint(f"capacity_{s}", tuple(terms), "<=", 0.0)
            for j in self.jobs:
                yield LinearConstraint(
                    f"link_{j}_{s}", ((x_var(j, s), 1.0), (y_var(s), -1.0)), "<=", 0.0
                )
            for a, b in self.conflicts:
                yield LinearConstraint(
                    f"conflict_{a}_{b}_{s}",
                    ((x_var(a, s), 1.0), (x_var(b, s), 1.0), (y_var(s), -1.0)),
                    "<=",
                    0.0,
                )
            if self.minimizes_max_load:
                w = self.load_weight[s]
                terms = [(x_var(j, s), w * self.demand[j]) for j in self.jobs if self.demand[j]]
                if terms:
                    terms.append((Z_VAR, -1.0))
                    yield LinearConstraint(f"max_load_{s}", tuple(terms), "<=", 0.0)
        for first, second in zip(self.openable, self.openable[1:]):
            yield LinearConstraint(
                f"symmetry_{second}", ((y_var(second), 1.0), (y_var(first), -1.0)), "<=", 0.0
            )

    def objective_terms(self) -> list[tuple[VarKey, float]]:
        """Linear objective to minimize."""
        if self.minimizes_max_load:
            terms: list[tuple[VarKey, float]] = [(Z_VAR, 1.0)]
        else:
            terms = [(y_var(s), self.slot_weight[s]) for s in self.slots]
        if self.unplaced_penalty is not None:
            terms.extend((u_var(j), self.unplaced_penalty) for j in self.jobs)
        return terms

    def size(self) -> tuple[int, int]:
        """``(variables, constraints)``."""
        n_vars = len(self.binary_variables()) + (1 if self.minimizes_max_load else 0)
        return n_vars, sum(1 for _ in self.constraints())


def build_formulation(
    model: ConflictGraphModel,
    cost: str = "slot_count",
    max_openable: Optional[int] = None,
) -> MipFormulation:
    """Translate ``model`` into a :class:`MipFormulation`.

    Args:
        model: Instance to formulate.
        cost: Name of the cost function the objective mirrors.
        max_openable: Keep only the first ``max_openable`` openable slots
            (an upper bound taken from a known solution shrinks the model).

    Raises:
        ValueError: If ``cost`` is not a built-in cost function.
    """
    if cost not in COST_FUNCTIONS:
        raise ValueError(
            f"Unknown cost function {cost!r}; expected one of {sorted(COST_FUNCTIONS)}"
        )
    openable = model.openable_slot_ids()
    if max_openable is not None:
        openable = openable[: max(0, max_openable)]
    slots = model.slot_ids() + openable
    capacity = {s: model.capacity(s) for s in slots}

    if cost == "capacity_used":
        slot_weight = dict(capacity)
    else:
        slot_weight = {s: 1.0 for s in slots}
    if cost == "weighted_makespan":
        load_weight = {s: (1.0 / capacity[s] if capacity[s] > 0 else 0.0) for s in slots}
    else:
        load_weight = {s: 1.0 for s in slots}

    unplaced_penalty: Optional[float] = None
    if model.allow_partial:
        # Same penalty the cost functions charge per missing job.
        unit = {
            "slot_count": 1.0,
            "capacity_used": model.max_capacity() or 1.0,
            "makespan": model.total_demand() or 1.0,
            "weighted_makespan": 1.0,
        }[cost]
        unplaced_penalty = unit * (model.n_jobs + 1)

    return MipFormulation(
        jobs=model.job_ids(),
        slots=slots,
        openable=openable,
        demand={j: model.demand(j) for j in model.job_ids()},
        capacity=capacity,
        conflicts=model.conflicts,
        objective=cost,
        slot_weight=slot_weight,
        load_weight=load_weight,
        unplaced_penalty=unplaced_penalty,
    )

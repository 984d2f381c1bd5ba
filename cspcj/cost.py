"""Objective functions for solution states.

Every cost function takes a :class:`~cspcj.solution.SolutionState` and
returns a number (lower is better). Jobs that are not placed in any slot add
a penalty large enough that a complete solution always beats a partial one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Union

if TYPE_CHECKING:  # pragma: no cover
    from cspcj.solution import SolutionState

CostFunction = Callable[["SolutionState"], float]


def _missing_penalty(state: "SolutionState", unit: float) -> float:
    missing = state.model.n_jobs - state.assigned_count()
    if not missing:
        return 0
    return missing * unit * (state.model.n_jobs + 1)


def slot_count(state: "SolutionState") -> float:
    """Number of slots holding at least one job (generalized bin count)."""
    return len(state.used_slots()) + _missing_penalty(state, 1)


def capacity_used(state: "SolutionState") -> float:
    """Summed capacity of used slots (weighted bin count)."""
    model = state.model
    total = sum(model.capacity(slot) for slot in state.used_slots())
    return total + _missing_penalty(state, model.max_capacity() or 1.0)


def makespan(state: "SolutionState") -> float:
    """Largest slot load (parallel machine view)."""
    loads = [state.load(slot) for slot in state.used_slots()]
    return max(loads, default=0.0) + _missing_penalty(state, state.model.total_demand() or 1.0)


def weighted_makespan(state: "SolutionState") -> float:
    """Largest load / capacity ratio over used slots."""
    model = state.model
    ratios = []
    for slot in state.used_slots():
        cap = model.capacity(slot)
        load = state.load(slot)
        ratios.append(load / cap if cap > 0 else (0.0 if load == 0 else float(len(model.jobs))))
    return max(ratios, default=0.0) + _missing_penalty(state, 1.0)


COST_FUNCTIONS: dict[str, CostFunction] = {
    "slot_count": slot_count,
    "capacity_used": capacity_used,
    "makespan": makespan,
    "weighted_makespan": weighted_makespan,
}


def get_cost_function(cost: Union[str, CostFunction]) -> CostFunction:
    """Resolve a cost function by name (callables pass through).

    Raises:
        ValueError: If the name is not one of :data:`COST_FUNCTIONS`.
    """
    if callable(cost):
        return cost
    try:
        return COST_FUNCTIONS[cost]
    except KeyError:
        raise ValueError(
            f"Unknown cost function {cost!r}; expected one of {sorted(COST_FUNCTIONS)}"
        ) from None

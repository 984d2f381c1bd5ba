"""Glue between the oracle backends and Solution States."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Mapping, Optional

from cspcj.config import StrategyConfig
from cspcj.models import ConflictGraphModel, JobId, SlotId
from cspcj.oracle.base import OracleResult, OracleStatus, get_backend
from cspcj.oracle.formulation import build_formulation
from cspcj.solution import SolutionState

logger = logging.getLogger("cspcj.oracle")

BOUND_EPS = 1e-6


def to_solution(
    model: ConflictGraphModel, result: OracleResult, cost: str = "slot_count"
) -> SolutionState:
    """Translate an oracle assignment back into a Solution State.

    Jobs missing from the assignment are marked unplaced (the formulation
    only allows that for ``allow_partial`` instances).

    Raises:
        ValueError: If ``result`` carries no assignment.
        Violation: If the assignment breaks a capacity or conflict constraint
            of ``model``.
    """
    if result.assignment is None:
        raise ValueError(f"oracle result ({result.status.value}) carries no assignment")
    state = SolutionState.from_assignment(model, result.assignment, cost=cost)
    for job_id in model.job_ids():
        if not state.is_assigned(job_id):
            state.mark_unplaced(job_id)
    violations = state.violations()
    if violations:
        logger.error(
            "[%s] returned an assignment with %d violation(s): %s",
            result.backend or "oracle",
            len(violations),
            violations[0],
        )
        raise violations[0]
    state.reset_touched()
    return state


def solve_exact(
    model: ConflictGraphModel,
    config: Optional[StrategyConfig] = None,
    time_limit: Optional[float] = None,
    hint: Optional[Mapping[JobId, SlotId]] = None,
    max_openable: Optional[int] = None,
) -> OracleResult:
    """Formulate ``model`` and solve it with the configured backend.

    Raises:
        FeatureUnavailable: If the oracle is disabled or not installed.
    """
    config = config if config is not None else StrategyConfig()
    backend = get_backend(config.oracle_backend, config)
    if not model.jobs:
        return OracleResult(
            status=OracleStatus.OPTIMAL,
            assignment={},
            objective=0.0,
            bound=0.0,
            backend=backend.name,
        )
    formulation = build_formulation(model, config.cost, max_openable=max_openable)
    n_vars, n_cons = formulation.size()
    logger.info(
        "[%s] formulation: %d variables, %d constraints, objective=%s",
        backend.name,
        n_vars,
        n_cons,
        formulation.objective,
    )
    return backend.solve(formulation, time_limit=time_limit, hint=hint, seed=config.seed)


@dataclass
class OracleCheck:
    """Heuristic cost compared with the oracle.

    ``consistent`` holds when the heuristic never beats a proven bound
    (``cost >= bound``) nor a proven optimum.
    """

    heuristic_cost: float
    status: OracleStatus
    objective: Optional[float]
    bound: Optional[float]
    consistent: bool

    @property
    def gap(self) -> Optional[float]:
        """Relative distance of the heuristic cost to the oracle bound."""
        if self.bound is None or math.isinf(self.bound):
            return None
        if self.bound == 0:
            return 0.0 if self.heuristic_cost == 0 else math.inf
        return (self.heuristic_cost - self.bound) / self.bound


def verify_with_oracle(
    model: ConflictGraphModel,
    solution: SolutionState,
    config: Optional[StrategyConfig] = None,
    time_limit: Optional[float] = None,
) -> OracleCheck:
    """Check a heuristic solution against the oracle's bound.

    Raises:
        FeatureUnavailable: If the oracle is disabled or not installed.
    """
    config = config if config is not None else StrategyConfig(cost=solution.cost_name)
    cost = solution.cost()
    result = solve_exact(model, config, time_limit=time_limit, hint=solution.assignment())
    consistent = True
    if result.bound is not None and not math.isinf(result.bound):
        consistent = cost >= result.bound - BOUND_EPS
    if result.status is OracleStatus.OPTIMAL and result.objective is not None:
        consistent = consistent and cost >= result.objective - BOUND_EPS
    if result.status is OracleStatus.INFEASIBLE and solution.is_feasible():
        consistent = False
    if not consistent:
        logger.warning(
            "heuristic cost %s is below the oracle bound %s (%s)",
            cost,
            result.bound,
            result.status.value,
        )
    return OracleCheck(
        heuristic_cost=cost,
        status=result.status,
        objective=result.objective,
        bound=result.bound,
        consistent=consistent,
    )

"""Exact strategy backed by the MIP oracle.

A greedy pass first provides an upper bound (it caps the number of openable
slots in the formulation) and a solution hint. If the oracle runs out of
time without a solution the greedy solution is returned with status
``TIMED_OUT``.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Optional

from cspcj.algorithms.base import RunStatus, SolveResult, Strategy, make_rng
from cspcj.algorithms.constructive import construct
from cspcj.config import OrderingPolicy, StrategyConfig
from cspcj.errors import FeatureUnavailable, Infeasible
from cspcj.models import ConflictGraphModel
from cspcj.oracle import OracleStatus, get_backend, oracle_enabled, solve_exact, to_solution
from cspcj.registry import register
from cspcj.solution import SolutionState

logger = logging.getLogger("cspcj.oracle")

_STATUS = {
    OracleStatus.OPTIMAL: RunStatus.OPTIMAL,
    OracleStatus.FEASIBLE: RunStatus.FEASIBLE,
    OracleStatus.TIMED_OUT: RunStatus.TIMED_OUT,
}


def _openable_cap(model: ConflictGraphModel, greedy: SolutionState, cost: str) -> Optional[int]:
    """Openable slots an optimal solution can need, given the greedy one."""
    if cost == "slot_count":
        return len(greedy.used_slots())
    if cost == "capacity_used":
        openable = model.openable_slot_ids()
        if not openable:
            return 0
        unit = model.capacity(openable[0])
        if unit > 0:
            return math.floor(greedy.cost() / unit + 1e-9)
    return None


class ExactStrategy(Strategy):
    """Optimal (or best found within ``time_budget``) assignment from the oracle."""

    name = "exact"
    default_ordering = OrderingPolicy.DEMAND_DESC

    def solve(self, model: ConflictGraphModel) -> SolveResult:
        cfg = self.config
        if not oracle_enabled(cfg):
            raise FeatureUnavailable("exact strategy needs the oracle, which is disabled")
        get_backend(cfg.oracle_backend, cfg)
        t0 = time.perf_counter()
        _, seed = make_rng(cfg.seed)

        greedy: Optional[SolutionState]
        try:
            greedy = construct(
                model, policy=self.ordering, cost=cfg.cost, slot_rule=cfg.slot_rule
            )
        except Infeasible:
            # A slot bound can defeat greedy while the MIP still finds a packing.
            greedy = None
        cap = _openable_cap(model, greedy, cfg.cost) if greedy is not None else None
        hint = greedy.assignment() if greedy is not None else None
        result = solve_exact(model, cfg, time_limit=cfg.time_budget, hint=hint, max_openable=cap)

        if result.status is OracleStatus.INFEASIBLE:
            raise Infeasible(f"oracle proved the instance infeasible ({result.backend})")
        if result.has_solution:
            solution = to_solution(model, result, cfg.cost)
            status = _STATUS[result.status]
        else:
            solution = greedy
            status = RunStatus.TIMED_OUT
        return SolveResult(
            strategy=self.name,
            status=status,
            solution=solution,
            seed=seed,
            iterations=1,
            elapsed_s=time.perf_counter() - t0,
            cost_history=[solution.cost()] if solution is not None else [],
            bound=result.bound,
            message=f"backend={result.backend}",
        )


@register("exact")
def _exact(config: StrategyConfig) -> Strategy:
    return ExactStrategy(config)

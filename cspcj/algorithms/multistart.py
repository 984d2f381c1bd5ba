"""Randomized multi-start greedy with slot compaction.

Each start builds a solution with seeded tie-breaking, then compacts it by
emptying slots whose jobs fit elsewhere. The best start (by rank key) wins.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from cspcj.algorithms.base import Budget, RunStatus, SolveResult, Strategy, make_rng
from cspcj.algorithms.constructive import construct
from cspcj.config import OrderingPolicy, StrategyConfig
from cspcj.errors import Infeasible
from cspcj.models import ConflictGraphModel
from cspcj.neighborhoods.moves import apply_move, iter_merge_moves, undo_move
from cspcj.registry import register
from cspcj.solution import SolutionState

logger = logging.getLogger("cspcj.search")


def compact(state: SolutionState) -> int:
    """Empty slots one at a time while the cost does not get worse.

    Lightest slots are tried first. Returns the number of slots emptied.
    """
    emptied = 0
    progress = True
    while progress:
        progress = False
        cost = state.cost()
        for move in iter_merge_moves(state):
            applied = apply_move(state, move)
            if state.is_feasible() and state.cost() <= cost:
                emptied += 1
                progress = True
                break
            undo_move(state, applied)
    return emptied


class MultiStartGreedy(Strategy):
    """``starts`` randomized constructions, each followed by compaction."""

    name = "multistart"
    default_ordering = OrderingPolicy.DEMAND_DESC_RANDOM_TIES

    def solve(self, model: ConflictGraphModel) -> SolveResult:
        cfg = self.config
        t0 = time.perf_counter()
        rng, seed = make_rng(cfg.seed)
        budget = Budget.from_config(cfg)
        best: Optional[SolutionState] = None
        history: list[float] = []
        failure: Optional[Infeasible] = None
        status = RunStatus.CONVERGED
        done = 0
        for start in range(max(1, cfg.starts)):
            if start > 0 and budget.exhausted(start):
                status = RunStatus.BUDGET_EXHAUSTED
                break
            # Start 0 is the plain first-fit decreasing pass.
            policy = OrderingPolicy.DEMAND_DESC if start == 0 else self.ordering
            try:
                state = construct(
                    model,
                    policy=policy,
                    rng=rng,
                    slot_rule=cfg.slot_rule,
                    shuffle_slots=cfg.shuffle_slots and start > 0,
                    cost=cfg.cost,
                    allow_reassign=cfg.allow_reassign,
                )
            except Infeasible as exc:
                # Under a slot bound another order may still fit.
                failure = exc
                done += 1
                continue
            emptied = compact(state)
            state.reset_touched()
            done += 1
            logger.debug(
                "[multistart] start %d cost=%s (compaction emptied %d)",
                start,
                state.cost(),
                emptied,
            )
            if best is None or state.rank_key() < best.rank_key():
                if best is None or state.cost() < best.cost():
                    history.append(state.cost())
                best = state
        if best is None:
            assert failure is not None
            raise failure
        return SolveResult(
            strategy=self.name,
            status=status,
            solution=best,
            seed=seed,
            iterations=done,
            elapsed_s=time.perf_counter() - t0,
            cost_history=history,
        )


@register("multistart")
def _multistart(config: StrategyConfig) -> Strategy:
    return MultiStartGreedy(config)

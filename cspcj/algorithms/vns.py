"""Variable Neighborhood Search.

Neighborhoods are visited in the order ``reassign -> swap -> merge ->
eject``. Each iteration shakes a copy of the best state with a strength
growing with the neighborhood index ``k``, descends with first-improvement
over all neighborhoods and either accepts the result (``k`` goes back to
0) or moves on to the next neighborhood.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, Optional

from cspcj.algorithms.base import (
    Budget,
    RunStatus,
    SolveResult,
    Strategy,
    make_rng,
    open_trace,
)
from cspcj.algorithms.constructive import construct
from cspcj.config import OrderingPolicy, StrategyConfig
from cspcj.models import ConflictGraphModel
from cspcj.neighborhoods.moves import (
    Move,
    apply_move,
    concentration,
    iter_eject_moves,
    iter_merge_moves,
    iter_reassign_moves,
    iter_swap_moves,
    shake,
    undo_move,
)
from cspcj.registry import register
from cspcj.solution import SolutionState

logger = logging.getLogger("cspcj.search")

Neighborhood = Callable[[SolutionState], Iterator[Move]]

NEIGHBORHOODS: tuple[tuple[str, Neighborhood], ...] = (
    ("reassign", iter_reassign_moves),
    ("swap", iter_swap_moves),
    ("merge", iter_merge_moves),
    ("eject", iter_eject_moves),
)


def _improves(state: SolutionState, cost: float, conc: float) -> bool:
    new_cost = state.cost()
    if new_cost < cost:
        return True
    return new_cost == cost and concentration(state) > conc + 1e-12


def first_improvement(
    state: SolutionState,
    neighborhood: Neighborhood,
    budget: Optional[Budget] = None,
    iteration: int = 0,
) -> Optional[Move]:
    """Apply the first move of ``neighborhood`` that improves ``state``.

    A move improves when it lowers the cost or keeps it and packs jobs
    tighter (higher concentration). Returns the applied move or None, in
    which case ``state`` is unchanged. The scan stops early once ``budget``
    is exhausted.
    """
    cost = state.cost()
    conc = concentration(state)
    for move in neighborhood(state):
        if budget is not None and budget.exhausted(iteration):
            return None
        applied = apply_move(state, move)
        if state.is_feasible() and _improves(state, cost, conc):
            return move
        undo_move(state, applied)
    return None


def descend(
    state: SolutionState,
    budget: Optional[Budget] = None,
    iteration: int = 0,
    neighborhoods: tuple[tuple[str, Neighborhood], ...] = NEIGHBORHOODS,
) -> int:
    """Variable neighborhood descent; returns the number of applied moves.

    Goes back to the first neighborhood after each improvement and stops at
    a local optimum of all of them (or when ``budget`` runs out).
    """
    applied = 0
    k = 0
    while k < len(neighborhoods):
        if budget is not None and budget.exhausted(iteration):
            break
        name, neighborhood = neighborhoods[k]
        move = first_improvement(state, neighborhood, budget, iteration)
        if move is None:
            k += 1
            continue
        applied += 1
        logger.debug("[vnd] %s improved to %s", name, state.cost())
        k = 0
    return applied


class VariableNeighborhoodSearch(Strategy):
    """Shake / descend / move-or-advance loop started from the greedy solution."""

    name = "vns"
    default_ordering = OrderingPolicy.DEMAND_DESC

    def _shake_size(self, model: ConflictGraphModel, k: int) -> int:
        base = self.config.shake_strength or max(1, model.n_jobs // 20)
        return base * (k + 1)

    def solve(self, model: ConflictGraphModel) -> SolveResult:
        cfg = self.config
        t0 = time.perf_counter()
        rng, seed = make_rng(cfg.seed)
        budget = Budget.from_config(cfg)
        best = construct(
            model,
            policy=self.ordering,
            rng=rng,
            slot_rule=cfg.slot_rule,
            shuffle_slots=cfg.shuffle_slots,
            cost=cfg.cost,
            allow_reassign=cfg.allow_reassign,
        )
        descend(best, budget)
        best.reset_touched()
        history = [best.cost()]
        iteration = 0
        no_improve = 0
        k = 0
        status = RunStatus.CONVERGED

        with open_trace(cfg.trace_file, "iter;k;candidate;best") as trace:
            while True:
                if budget.exhausted(iteration):
                    status = RunStatus.BUDGET_EXHAUSTED
                    break
                if no_improve >= cfg.max_no_improve or model.n_jobs == 0:
                    status = RunStatus.CONVERGED
                    break
                iteration += 1
                candidate = best.clone()
                candidate.reset_touched()
                shake(candidate, rng, self._shake_size(model, k))
                descend(candidate, budget, iteration)
                if candidate.is_feasible() and candidate.cost() < best.cost():
                    best = candidate
                    history.append(best.cost())
                    no_improve = 0
                    k = 0
                else:
                    no_improve += 1
                    k = (k + 1) % len(NEIGHBORHOODS)
                if trace is not None:
                    trace.write(f"{iteration};{k};{candidate.cost()};{best.cost()}\n")
                logger.debug(
                    "[vns] iter %d k=%d candidate=%s best=%s",
                    iteration,
                    k,
                    candidate.cost(),
                    best.cost(),
                )

        return SolveResult(
            strategy=self.name,
            status=status,
            solution=best,
            seed=seed,
            iterations=iteration,
            elapsed_s=time.perf_counter() - t0,
            cost_history=history,
        )


@register("vns")
def _vns(config: StrategyConfig) -> Strategy:
    return VariableNeighborhoodSearch(config)

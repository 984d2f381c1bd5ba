"""Randomized local search over reassign / swap / slot-merge moves.

Run states: ``INITIALIZED -> IMPROVING -> (CONVERGED | BUDGET_EXHAUSTED)``.

The improver keeps two states: the current one, which may drift sideways or
(with ``accept_non_improving``) uphill, and the best-known snapshot, which
is replaced only by a feasible state with a strictly smaller rank key.

Acceptance rule for a feasible neighbour:
    - lower cost: always accepted;
    - equal cost: accepted if slot concentration (sum of squared fill
      ratios) does not drop, otherwise treated as non-improving;
    - non-improving: accepted with probability ``accept_non_improving`` and
      at most ``max_non_improving`` times in a row.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional

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
    random_merge,
    random_reassign,
    random_swap,
    shake,
    undo_move,
)
from cspcj.registry import register
from cspcj.solution import SolutionState

logger = logging.getLogger("cspcj.search")

MoveGenerator = Callable[[SolutionState, random.Random], Optional[Move]]

MOVE_GENERATORS: dict[str, MoveGenerator] = {
    "reassign": random_reassign,
    "swap": random_swap,
    "merge": random_merge,
}


class LocalSearch:
    """Local-search improver bound to one run (own generator, own states).

    Args:
        config: Budgets, acceptance and move weights.
        rng: Private random generator of the run.
    """

    def __init__(self, config: StrategyConfig, rng: random.Random) -> None:
        self.config = config
        self.rng = rng
        self.status = RunStatus.INITIALIZED
        self.iterations = 0
        self.accepted = 0
        self.restarts_used = 0
        self.cost_history: list[float] = []
        kinds = [k for k, w in config.move_weights.items() if w > 0]
        self._kinds = kinds
        self._weights = [config.move_weights[k] for k in kinds]

    def _better(self, candidate: SolutionState, best: SolutionState) -> bool:
        return candidate.is_feasible() and candidate.rank_key() < best.rank_key()

    def improve(self, start: SolutionState, budget: Optional[Budget] = None) -> SolutionState:
        """Improve ``start`` (not mutated) and return the best-known state.

        Raises:
            ValueError: If ``start`` is not feasible.
        """
        if not start.is_feasible():
            raise ValueError("local search needs a feasible starting state")
        cfg = self.config
        budget = budget or Budget.from_config(cfg)
        current = start.clone()
        current.reset_touched()
        best = current.clone()
        self.cost_history = [best.cost()]
        self.status = RunStatus.IMPROVING
        no_improve = 0
        uphill_streak = 0
        restarts_left = cfg.restarts

        with open_trace(cfg.trace_file, "iter;current;best;move;accepted") as trace:
            while True:
                if budget.exhausted(self.iterations):
                    self.status = RunStatus.BUDGET_EXHAUSTED
                    break
                if no_improve >= cfg.max_no_improve:
                    if restarts_left > 0:
                        restarts_left -= 1
                        self.restarts_used += 1
                        current = best.clone()
                        strength = cfg.shake_strength or max(1, current.model.n_jobs // 20)
                        shake(current, self.rng, strength)
                        no_improve = 0
                        uphill_streak = 0
                        logger.debug(
                            "[ls] restart %d from best=%s", self.restarts_used, best.cost()
                        )
                        continue
                    self.status = RunStatus.CONVERGED
                    break
                self.iterations += 1
                kind = self.rng.choices(self._kinds, weights=self._weights, k=1)[0]
                move = MOVE_GENERATORS[kind](current, self.rng)
                if move is None:
                    no_improve += 1
                    continue

                slots = sorted(move.slots)
                before_cost = current.cost()
                before_conc = concentration(current, slots)
                applied = apply_move(current, move)
                if not current.is_feasible():
                    undo_move(current, applied)
                    no_improve += 1
                    continue
                after_cost = current.cost()
                after_conc = concentration(current, [s for s in slots if current.members(s)])

                improving = after_cost < before_cost
                sideways = after_cost == before_cost and after_conc >= before_conc - 1e-12
                if improving or sideways:
                    accept = True
                    uphill_streak = 0
                elif (
                    uphill_streak < cfg.max_non_improving
                    and self.rng.random() < cfg.accept_non_improving
                ):
                    accept = True
                    uphill_streak += 1
                else:
                    accept = False

                if not accept:
                    undo_move(current, applied)
                    no_improve += 1
                else:
                    self.accepted += 1
                    if self._better(current, best):
                        improved_cost = current.cost() < best.cost()
                        best = current.clone()
                        if improved_cost:
                            self.cost_history.append(best.cost())
                            no_improve = 0
                        else:
                            no_improve += 1
                    else:
                        no_improve += 1
                if trace is not None:
                    trace.write(
                        f"{self.iterations};{current.cost()};{best.cost()};{move};{int(accept)}\n"
                    )
                logger.debug(
                    "[ls] iter %d move=%s current=%s best=%s acc=%d",
                    self.iterations,
                    move,
                    current.cost(),
                    best.cost(),
                    1 if accept else 0,
                )
        return best


class LocalSearchStrategy(Strategy):
    """Constructive start followed by the local-search improver."""

    name = "local_search"
    default_ordering = OrderingPolicy.DEMAND_DESC

    def solve(self, model: ConflictGraphModel) -> SolveResult:
        t0 = time.perf_counter()
        rng, seed = make_rng(self.config.seed)
        budget = Budget.from_config(self.config)
        start = construct(
            model,
            policy=self.ordering,
            rng=rng,
            slot_rule=self.config.slot_rule,
            shuffle_slots=self.config.shuffle_slots,
            cost=self.config.cost,
            allow_reassign=self.config.allow_reassign,
        )
        improver = LocalSearch(self.config, rng)
        best = improver.improve(start, budget)
        return SolveResult(
            strategy=self.name,
            status=improver.status,
            solution=best,
            seed=seed,
            iterations=improver.iterations,
            elapsed_s=time.perf_counter() - t0,
            cost_history=improver.cost_history,
        )


@register("local_search")
def _local_search(config: StrategyConfig) -> Strategy:
    return LocalSearchStrategy(config)

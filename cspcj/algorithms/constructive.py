"""Constructive heuristics: greedy slot assignment.

Jobs are taken in the order given by an :class:`OrderingPolicy` and each one
goes into the first (or best fitting) slot that passes both the capacity
and the conflict check. When no existing slot admits the job and the
instance allows it, a new slot is opened. A job that cannot be placed at
all makes the run fail with ``Infeasible`` (or, for instances that allow
partial solutions, is marked unplaced).
"""

from __future__ import annotations

import logging
import random
import time
from typing import Iterable, Optional, Sequence

from cspcj.algorithms.base import RunStatus, SolveResult, Strategy, make_rng
from cspcj.config import OrderingPolicy, SlotRule, StrategyConfig
from cspcj.errors import Infeasible
from cspcj.models import ConflictGraphModel, JobId, SlotId
from cspcj.registry import register
from cspcj.solution import SolutionState

logger = logging.getLogger("cspcj.constructive")


def order_jobs(
    model: ConflictGraphModel,
    policy: OrderingPolicy,
    rng: Optional[random.Random] = None,
) -> list[JobId]:
    """Static job order for ``policy`` (DSATUR is dynamic and handled in :func:`construct`).

    Random policies require ``rng``; the result is a pure function of the
    model, the policy and the generator state.
    """
    policy = OrderingPolicy(policy)
    ids = list(model.job_ids())
    if policy in (OrderingPolicy.RANDOM, OrderingPolicy.DEMAND_DESC_RANDOM_TIES) and rng is None:
        raise ValueError(f"ordering policy {policy.value!r} needs a random generator")
    if policy is OrderingPolicy.INPUT:
        return ids
    if policy is OrderingPolicy.DEMAND_DESC:
        return sorted(ids, key=lambda j: (-model.demand(j), j))
    if policy is OrderingPolicy.DEMAND_DESC_RANDOM_TIES:
        assert rng is not None
        tie = {j: rng.random() for j in ids}
        return sorted(ids, key=lambda j: (-model.demand(j), tie[j]))
    if policy is OrderingPolicy.DEGREE_DESC or policy is OrderingPolicy.DSATUR:
        return sorted(ids, key=lambda j: (-model.degree(j), -model.demand(j), j))
    assert rng is not None
    rng.shuffle(ids)
    return ids


def _existing_slots(state: SolutionState) -> list[SlotId]:
    """Fixed slots plus every opened (non-empty) on-demand slot."""
    model = state.model
    opened = [s for s in state.used_slots() if not model.is_fixed_slot(s)]
    return list(model.slot_ids()) + opened


def _choose_slot(
    state: SolutionState,
    job_id: JobId,
    candidates: Sequence[SlotId],
    slot_rule: SlotRule,
) -> Optional[SlotId]:
    if slot_rule is SlotRule.FIRST_FIT:
        for slot_id in candidates:
            if state.admits(job_id, slot_id):
                return slot_id
        return None
    best: Optional[SlotId] = None
    best_residual = 0.0
    demand = state.model.demand(job_id)
    for slot_id in candidates:
        if state.admits(job_id, slot_id):
            residual = state.residual(slot_id) - demand
            if best is None or residual < best_residual:
                best, best_residual = slot_id, residual
    return best


def _try_eject(
    state: SolutionState,
    job_id: JobId,
    candidates: Sequence[SlotId],
    slot_rule: SlotRule,
) -> Optional[SlotId]:
    """Make room for ``job_id`` by moving one blocking job to another existing slot.

    Only a slot blocked by a single conflicting job whose removal also fixes
    capacity is considered.
    """
    model = state.model
    demand = model.demand(job_id)
    for slot_id in candidates:
        blockers = model.conflicts_of(job_id) & state.members(slot_id)
        if len(blockers) != 1:
            continue
        (blocker,) = blockers
        if state.load(slot_id) - model.demand(blocker) + demand > model.capacity(slot_id) + 1e-9:
            continue
        others = [s for s in candidates if s != slot_id]
        target = _choose_slot(state, blocker, others, slot_rule)
        if target is None:
            continue
        state.assign(blocker, target, strict=False)
        state.assign(job_id, slot_id)
        logger.debug("ejected job %d from slot %d to %d for job %d", blocker, slot_id, target, job_id)
        return slot_id
    return None


def place_job(
    state: SolutionState,
    job_id: JobId,
    slot_rule: SlotRule = SlotRule.FIRST_FIT,
    rng: Optional[random.Random] = None,
    shuffle_slots: bool = False,
    allow_reassign: bool = False,
) -> Optional[SlotId]:
    """Place one job greedily; return the slot used or None if impossible."""
    candidates = _existing_slots(state)
    if shuffle_slots and rng is not None:
        rng.shuffle(candidates)
    slot_id = _choose_slot(state, job_id, candidates, slot_rule)
    if slot_id is None and allow_reassign:
        slot_id = _try_eject(state, job_id, candidates, slot_rule)
        if slot_id is not None:
            return slot_id
    if slot_id is None:
        fresh = next(
            (s for s in state.model.openable_slot_ids() if not state.members(s)), None
        )
        if fresh is not None and state.admits(job_id, fresh):
            slot_id = fresh
    if slot_id is not None:
        state.assign(job_id, slot_id)
    return slot_id


def _unplaceable(state: SolutionState, job_id: JobId) -> Infeasible:
    model = state.model
    demand = model.demand(job_id)
    if demand > model.max_capacity() + 1e-9:
        reason = f"demand {demand} exceeds every slot capacity (max {model.max_capacity()})"
    elif not model.candidate_slot_ids():
        reason = "the instance has no slots"
    else:
        reason = (
            f"no slot admits it and no new slot can be opened "
            f"({len(state.used_slots())}/{model.max_slots()} slots in use)"
        )
    return Infeasible(f"job {job_id} cannot be placed: {reason}", job_id=job_id)


def _saturation(state: SolutionState, job_id: JobId) -> int:
    slots = {state.slot_of(other) for other in state.model.conflicts_of(job_id)}
    slots.discard(None)
    return len(slots)


def construct(
    model: ConflictGraphModel,
    policy: OrderingPolicy = OrderingPolicy.DEMAND_DESC,
    rng: Optional[random.Random] = None,
    slot_rule: SlotRule = SlotRule.FIRST_FIT,
    shuffle_slots: bool = False,
    cost: str = "slot_count",
    allow_reassign: bool = False,
    order: Optional[Iterable[JobId]] = None,
) -> SolutionState:
    """Build a complete Solution State greedily.

    Args:
        model: Instance to solve.
        policy: Job ordering policy (ignored when ``order`` is given).
        rng: Generator for randomized policies and slot shuffling.
        slot_rule: ``first_fit`` or ``best_fit``.
        shuffle_slots: Scan existing slots in random order.
        cost: Cost function name stored on the state.
        allow_reassign: Allow moving one already placed job to make room.
        order: Explicit job order (used by the genetic decoder).

    Returns:
        A feasible state (jobs may be unplaced only if the instance allows).

    Raises:
        Infeasible: If a job cannot be placed and partial solutions are not
            allowed.
    """
    policy = OrderingPolicy(policy)
    slot_rule = SlotRule(slot_rule)
    state = SolutionState(model, cost=cost, allow_reassign=allow_reassign)

    def _place(job_id: JobId) -> None:
        if place_job(state, job_id, slot_rule, rng, shuffle_slots, allow_reassign) is None:
            if not model.allow_partial:
                raise _unplaceable(state, job_id)
            logger.debug("job %d left unplaced", job_id)
            state.mark_unplaced(job_id)

    if order is None and policy is OrderingPolicy.DSATUR:
        pending = set(model.job_ids())
        while pending:
            job_id = max(
                pending,
                key=lambda j: (_saturation(state, j), model.degree(j), model.demand(j), -j),
            )
            pending.discard(job_id)
            _place(job_id)
    else:
        for job_id in order if order is not None else order_jobs(model, policy, rng):
            _place(job_id)
    state.reset_touched()
    return state


class GreedyStrategy(Strategy):
    """Single constructive pass (first-fit decreasing by default)."""

    name = "greedy"
    default_ordering = OrderingPolicy.DEMAND_DESC

    def solve(self, model: ConflictGraphModel) -> SolveResult:
        t0 = time.perf_counter()
        rng, seed = make_rng(self.config.seed)
        state = construct(
            model,
            policy=self.ordering,
            rng=rng,
            slot_rule=self.config.slot_rule,
            shuffle_slots=self.config.shuffle_slots,
            cost=self.config.cost,
            allow_reassign=self.config.allow_reassign,
        )
        cost = state.cost()
        return SolveResult(
            strategy=self.name,
            status=RunStatus.CONSTRUCTED,
            solution=state,
            seed=seed,
            iterations=1,
            elapsed_s=time.perf_counter() - t0,
            cost_history=[cost],
        )


class RandomizedGreedyStrategy(GreedyStrategy):
    """Constructive pass with seeded tie-breaking among equal demands."""

    name = "randomized_greedy"
    default_ordering = OrderingPolicy.DEMAND_DESC_RANDOM_TIES


@register("greedy")
def _greedy(config: StrategyConfig) -> Strategy:
    return GreedyStrategy(config)


@register("randomized_greedy")
def _randomized_greedy(config: StrategyConfig) -> Strategy:
    return RandomizedGreedyStrategy(config)

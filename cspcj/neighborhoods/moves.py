"""Neighborhood moves over a Solution State.

A :class:`Move` is a list of ``(job, from_slot, to_slot)`` changes. Moves
are generated so that they keep the state feasible, applied in permissive
mode and can always be undone exactly with :func:`undo_move`.

Contains:
- reassign: one job to another slot
- swap: two jobs exchange slots
- merge: empty one slot by redistributing its jobs
- eject: reassign a job and push the single blocking job elsewhere
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

from cspcj.models import JobId, SlotId
from cspcj.solution import CAPACITY_EPS, SolutionState

Change = tuple[JobId, Optional[SlotId], SlotId]


@dataclass(frozen=True)
class Move:
    kind: str
    changes: tuple[Change, ...]

    @property
    def slots(self) -> frozenset[SlotId]:
        touched: set[SlotId] = set()
        for _, src, dst in self.changes:
            if src is not None:
                touched.add(src)
            touched.add(dst)
        return frozenset(touched)

    @property
    def last_job(self) -> JobId:
        return self.changes[-1][0]

    def __str__(self) -> str:
        body = ",".join(f"{j}:{s}->{d}" for j, s, d in self.changes)
        return f"{self.kind}[{body}]"


@dataclass(frozen=True)
class AppliedMove:
    """Undo information recorded by :func:`apply_move`."""

    move: Move
    new_touched: frozenset[SlotId]
    last_moved: Optional[JobId]


def apply_move(state: SolutionState, move: Move) -> AppliedMove:
    new_touched = move.slots - state.touched_slots()
    last = state.last_moved
    for job_id, _, dst in move.changes:
        state.assign(job_id, dst, strict=False)
    return AppliedMove(move, frozenset(new_touched), last)


def undo_move(state: SolutionState, applied: AppliedMove) -> None:
    for job_id, src, _ in reversed(applied.move.changes):
        if src is None:
            state.unassign(job_id)
        else:
            state.assign(job_id, src, strict=False)
    state.restore_marks(applied.new_touched, applied.last_moved)


def concentration(state: SolutionState, slots: Optional[Sequence[SlotId]] = None) -> float:
    """Sum of squared fill ratios; higher means jobs are packed into fewer slots."""
    model = state.model
    total = 0.0
    for slot_id in state.used_slots() if slots is None else slots:
        cap = model.capacity(slot_id)
        if cap > 0:
            total += (state.load(slot_id) / cap) ** 2
    return total


def _weighted_choice(rng: random.Random, items: Sequence, weights: Sequence[float]):
    return rng.choices(items, weights=weights, k=1)[0]


def pick_source_slot(state: SolutionState, rng: random.Random) -> Optional[SlotId]:
    """Random used slot, light slots (and violating slots, if any) favoured."""
    bad = state.violating_slots()
    if bad:
        return rng.choice(bad)
    used = state.used_slots()
    if not used:
        return None
    weights = [1.0 / (1.0 + state.load(s)) for s in used]
    return _weighted_choice(rng, used, weights)


def random_reassign(
    state: SolutionState, rng: random.Random, allow_open: bool = True
) -> Optional[Move]:
    """Move a job out of a light slot into an admissible slot (fuller ones favoured).

    With ``allow_open`` the first free slot is a candidate as well.
    """
    source = pick_source_slot(state, rng)
    if source is None:
        return None
    job_id = rng.choice(sorted(state.members(source)))
    targets = [s for s in state.used_slots() if s != source and state.admits(job_id, s)]
    if allow_open:
        fresh = state.first_free_slot()
        if fresh is not None and state.admits(job_id, fresh):
            targets.append(fresh)
    if not targets:
        return None
    weights = [1.0 + state.load(s) for s in targets]
    target = _weighted_choice(rng, targets, weights)
    return Move("reassign", ((job_id, source, target),))


def swap_admissible(state: SolutionState, first: JobId, second: JobId) -> bool:
    """Whether exchanging the slots of two assigned jobs keeps both slots feasible."""
    model = state.model
    slot_a = state.slot_of(first)
    slot_b = state.slot_of(second)
    if slot_a is None or slot_b is None or slot_a == slot_b:
        return False
    d_a = model.demand(first)
    d_b = model.demand(second)
    if state.load(slot_a) - d_a + d_b > model.capacity(slot_a) + CAPACITY_EPS:
        return False
    if state.load(slot_b) - d_b + d_a > model.capacity(slot_b) + CAPACITY_EPS:
        return False
    if model.conflicts_of(second) & (state.members(slot_a) - {first}):
        return False
    if model.conflicts_of(first) & (state.members(slot_b) - {second}):
        return False
    return True


def random_swap(state: SolutionState, rng: random.Random, attempts: int = 8) -> Optional[Move]:
    """Swap a job from a light slot with a job of another slot."""
    used = state.used_slots()
    if len(used) < 2:
        return None
    for _ in range(attempts):
        source = pick_source_slot(state, rng)
        if source is None:
            return None
        other = rng.choice([s for s in used if s != source])
        first = rng.choice(sorted(state.members(source)))
        second = rng.choice(sorted(state.members(other)))
        if swap_admissible(state, first, second):
            return Move("swap", ((first, source, other), (second, other, source)))
    return None


def merge_slot(state: SolutionState, slot_id: Optional[SlotId] = None) -> Optional[Move]:
    """Try to empty ``slot_id`` (default: least-loaded used slot).

    Its jobs are redistributed, largest first, best-fit into the other used
    slots. Returns None unless every job finds a place.
    """
    model = state.model
    used = state.used_slots()
    if len(used) < 2:
        return None
    if slot_id is None:
        slot_id = min(used, key=lambda s: (state.load(s), len(state.members(s)), s))
    targets = [s for s in used if s != slot_id]
    extra_load: dict[SlotId, float] = {s: 0.0 for s in targets}
    extra_members: dict[SlotId, set[JobId]] = {s: set() for s in targets}
    changes: list[Change] = []
    for job_id in sorted(state.members(slot_id), key=lambda j: (-model.demand(j), j)):
        demand = model.demand(job_id)
        conflicts = model.conflicts_of(job_id)
        best: Optional[SlotId] = None
        best_residual = 0.0
        for target in targets:
            residual = model.capacity(target) - state.load(target) - extra_load[target] - demand
            if residual < -CAPACITY_EPS:
                continue
            if conflicts & state.members(target) or conflicts & extra_members[target]:
                continue
            if best is None or residual < best_residual:
                best, best_residual = target, residual
        if best is None:
            return None
        extra_load[best] += demand
        extra_members[best].add(job_id)
        changes.append((job_id, slot_id, best))
    if not changes:
        return None
    return Move("merge", tuple(changes))


def random_merge(state: SolutionState, rng: random.Random) -> Optional[Move]:
    """Merge the least-loaded slot half of the time, otherwise a random light slot."""
    if rng.random() < 0.5:
        return merge_slot(state)
    return merge_slot(state, pick_source_slot(state, rng))


def eject_move(state: SolutionState, job_id: JobId, target: SlotId) -> Optional[Move]:
    """Move ``job_id`` to ``target`` pushing out the single job that blocks it."""
    model = state.model
    source = state.slot_of(job_id)
    if source is None or source == target:
        return None
    blockers = model.conflicts_of(job_id) & state.members(target)
    if len(blockers) != 1:
        return None
    (blocker,) = blockers
    new_load = state.load(target) - model.demand(blocker) + model.demand(job_id)
    if new_load > model.capacity(target) + CAPACITY_EPS:
        return None
    for dest in state.used_slots():
        if dest in (target, source):
            continue
        if state.admits(blocker, dest):
            return Move("eject", ((job_id, source, target), (blocker, target, dest)))
    return None


def iter_reassign_moves(state: SolutionState) -> Iterator[Move]:
    """All feasible single-job moves between used slots (deterministic order)."""
    used = state.used_slots()
    for source in used:
        for job_id in sorted(state.members(source)):
            for target in used:
                if target != source and state.admits(job_id, target):
                    yield Move("reassign", ((job_id, source, target),))


def iter_swap_moves(state: SolutionState) -> Iterator[Move]:
    used = state.used_slots()
    for i, slot_a in enumerate(used):
        for slot_b in used[i + 1 :]:
            for first in sorted(state.members(slot_a)):
                for second in sorted(state.members(slot_b)):
                    if swap_admissible(state, first, second):
                        yield Move("swap", ((first, slot_a, slot_b), (second, slot_b, slot_a)))


def iter_merge_moves(state: SolutionState) -> Iterator[Move]:
    for slot_id in sorted(state.used_slots(), key=lambda s: (state.load(s), s)):
        move = merge_slot(state, slot_id)
        if move is not None:
            yield move


def iter_eject_moves(state: SolutionState) -> Iterator[Move]:
    used = state.used_slots()
    for source in used:
        for job_id in sorted(state.members(source)):
            for target in used:
                move = eject_move(state, job_id, target)
                if move is not None:
                    yield move


def shake(state: SolutionState, rng: random.Random, strength: int) -> int:
    """Apply ``strength`` random feasible reassignments (new slots allowed).

    Returns the number of moves actually applied.
    """
    applied = 0
    jobs = [j for j in state.model.job_ids() if state.is_assigned(j)]
    if not jobs:
        return 0
    for _ in range(strength):
        job_id = rng.choice(jobs)
        source = state.slot_of(job_id)
        targets = [
            s
            for s in list(state.used_slots()) + [state.first_free_slot()]
            if s is not None and s != source and state.admits(job_id, s)
        ]
        if not targets:
            continue
        state.assign(job_id, rng.choice(targets), strict=False)
        applied += 1
    return applied

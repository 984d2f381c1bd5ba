"""Core data structures for CSPCJ instances.

This module defines:
    Job                -- a unit of work with a resource demand.
    Slot               -- a resource container (bin / machine / period) with capacity.
    SlotPolicy         -- whether and how many slots may be opened on demand.
    ConflictGraphModel -- immutable container with jobs, slots and conflicts.

The model is validated once at construction and never mutated afterwards,
so one instance can be shared by any number of concurrently running
strategies.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from cspcj.errors import InvalidInstance

JobId = int
SlotId = int
Conflict = tuple[JobId, JobId]  # always stored as (smaller_id, larger_id)


@dataclass(frozen=True, order=True)
class Job:
    """Single job.

    Attributes:
        id: Identifier, unique within an instance.
        demand: Non-negative amount of slot capacity the job consumes.
    """

    id: JobId
    demand: float


@dataclass(frozen=True, order=True)
class Slot:
    """Single slot.

    Attributes:
        id: Identifier, unique within an instance.
        capacity: Non-negative bound on the summed demand of its jobs.
    """

    id: SlotId
    capacity: float


@dataclass(frozen=True)
class SlotPolicy:
    """On-demand slot creation rules (bin-packing style instances).

    Attributes:
        open_new_slots: When True, slots beyond the fixed list may be opened.
        new_slot_capacity: Capacity of every opened slot. Defaults to the
            largest fixed capacity when omitted.
        max_slots: Upper bound on the total number of slots (fixed plus
            opened). ``None`` means unbounded, which in practice is capped
            at ``fixed + jobs`` because no solution needs more.
    """

    open_new_slots: bool = False
    new_slot_capacity: Optional[float] = None
    max_slots: Optional[int] = None


JobLike = Union[Job, tuple[JobId, float]]
SlotLike = Union[Slot, tuple[SlotId, float]]


def _is_id(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _valid_amount(value: float) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and (
        math.isfinite(value) and value >= 0
    )


@dataclass(frozen=True)
class ConflictGraphModel:
    """Immutable CSPCJ instance.

    Use :meth:`build` to construct from plain tuples; the constructor itself
    expects already-normalized tuples and validates them in
    ``__post_init__``.

    Attributes:
        jobs: Jobs sorted by id.
        slots: Fixed slots sorted by id.
        conflicts: Normalized conflict pairs ``(a, b)`` with ``a < b``.
        slot_policy: On-demand slot rules.
        allow_partial: When True a terminal solution may leave jobs
            explicitly unplaced instead of failing with ``Infeasible``.
        name: Free-form label used in reports.
    """

    jobs: tuple[Job, ...]
    slots: tuple[Slot, ...]
    conflicts: tuple[Conflict, ...] = ()
    slot_policy: SlotPolicy = SlotPolicy()
    allow_partial: bool = False
    name: str = ""

    _demand: dict[JobId, float] = field(init=False, repr=False, compare=False)
    _capacity: dict[SlotId, float] = field(init=False, repr=False, compare=False)
    _adjacency: dict[JobId, frozenset[JobId]] = field(init=False, repr=False, compare=False)
    _new_slot_capacity: float = field(init=False, repr=False, compare=False)
    _first_new_slot_id: SlotId = field(init=False, repr=False, compare=False)
    _max_slots: int = field(init=False, repr=False, compare=False)

    @classmethod
    def build(
        cls,
        jobs: Iterable[JobLike],
        slots: Iterable[SlotLike] = (),
        conflicts: Iterable[tuple[JobId, JobId]] = (),
        slot_policy: Optional[SlotPolicy] = None,
        allow_partial: bool = False,
        name: str = "",
    ) -> "ConflictGraphModel":
        """Create a model from loosely typed input.

        Args:
            jobs: ``Job`` objects or ``(id, demand)`` pairs.
            slots: ``Slot`` objects or ``(id, capacity)`` pairs.
            conflicts: Job id pairs, in any order; duplicates are merged.
            slot_policy: On-demand slot rules (fixed slots only if omitted).
            allow_partial: Permit explicitly unplaced jobs in results.
            name: Label for reports.

        Raises:
            InvalidInstance: If any structural invariant is violated.
        """
        job_list = [j if isinstance(j, Job) else Job(*j) for j in jobs]
        slot_list = [s if isinstance(s, Slot) else Slot(*s) for s in slots]
        pairs = []
        for pair in conflicts:
            if isinstance(pair, (str, bytes)) or not isinstance(pair, Sequence) or len(pair) != 2:
                raise InvalidInstance(f"conflict must be a pair of job ids, got {pair!r}")
            a, b = pair
            pairs.append((a, b))
        return cls(
            jobs=tuple(job_list),
            slots=tuple(slot_list),
            conflicts=tuple(pairs),
            slot_policy=slot_policy or SlotPolicy(),
            allow_partial=allow_partial,
            name=name,
        )

    def __post_init__(self) -> None:
        demand: dict[JobId, float] = {}
        for job in self.jobs:
            if not _is_id(job.id):
                raise InvalidInstance(f"job id must be an integer, got {job.id!r}")
            if job.id in demand:
                raise InvalidInstance(f"duplicate job id {job.id}", job_ids=(job.id,))
            if not _valid_amount(job.demand):
                raise InvalidInstance(
                    f"job {job.id} has invalid demand {job.demand!r}", job_ids=(job.id,)
                )
            demand[job.id] = job.demand

        capacity: dict[SlotId, float] = {}
        for slot in self.slots:
            if not _is_id(slot.id):
                raise InvalidInstance(f"slot id must be an integer, got {slot.id!r}")
            if slot.id in capacity:
                raise InvalidInstance(f"duplicate slot id {slot.id}", slot_ids=(slot.id,))
            if not _valid_amount(slot.capacity):
                raise InvalidInstance(
                    f"slot {slot.id} has invalid capacity {slot.capacity!r}",
                    slot_ids=(slot.id,),
                )
            capacity[slot.id] = slot.capacity

        neighbours: dict[JobId, set[JobId]] = {job_id: set() for job_id in demand}
        normalized: set[Conflict] = set()
        for a, b in self.conflicts:
            if not (_is_id(a) and _is_id(b)):
                raise InvalidInstance(f"conflict ({a!r}, {b!r}) must name integer job ids")
            missing = tuple(j for j in (a, b) if j not in demand)
            if missing:
                raise InvalidInstance(
                    f"conflict ({a}, {b}) references unknown job(s) {list(missing)}",
                    job_ids=missing,
                )
            if a == b:
                raise InvalidInstance(f"job {a} conflicts with itself", job_ids=(a,))
            neighbours[a].add(b)
            neighbours[b].add(a)
            normalized.add((min(a, b), max(a, b)))

        policy = self.slot_policy
        new_capacity = policy.new_slot_capacity
        if new_capacity is not None and not _valid_amount(new_capacity):
            raise InvalidInstance(f"invalid new slot capacity {new_capacity!r}")
        if policy.max_slots is not None and (not _is_id(policy.max_slots) or policy.max_slots < 0):
            raise InvalidInstance(
                f"max_slots must be a non-negative integer, got {policy.max_slots!r}"
            )
        if policy.open_new_slots:
            if new_capacity is None:
                if not capacity:
                    raise InvalidInstance(
                        "slot policy opens new slots but gives no capacity and there "
                        "are no fixed slots to copy it from"
                    )
                new_capacity = max(capacity.values())
        if policy.max_slots is not None and policy.max_slots < len(capacity):
            raise InvalidInstance(
                f"max_slots={policy.max_slots} is smaller than the {len(capacity)} fixed slots"
            )

        if not policy.open_new_slots:
            max_slots = len(capacity)
        elif policy.max_slots is not None:
            max_slots = policy.max_slots
        else:
            max_slots = len(capacity) + len(demand)

        object.__setattr__(self, "jobs", tuple(sorted(self.jobs)))
        object.__setattr__(self, "slots", tuple(sorted(self.slots)))
        object.__setattr__(self, "conflicts", tuple(sorted(normalized)))
        object.__setattr__(self, "_demand", demand)
        object.__setattr__(self, "_capacity", capacity)
        object.__setattr__(
            self, "_adjacency", {j: frozenset(n) for j, n in neighbours.items()}
        )
        object.__setattr__(self, "_new_slot_capacity", float(new_capacity or 0.0))
        object.__setattr__(self, "_first_new_slot_id", max(capacity, default=-1) + 1)
        object.__setattr__(self, "_max_slots", max_slots)

    # ------------------------------------------------------------------
    # read-only queries

    @property
    def n_jobs(self) -> int:
        return len(self.jobs)

    def job_ids(self) -> tuple[JobId, ...]:
        """Job ids in ascending (stable) order."""
        return tuple(job.id for job in self.jobs)

    def slot_ids(self) -> tuple[SlotId, ...]:
        """Fixed slot ids in ascending order."""
        return tuple(slot.id for slot in self.slots)

    def openable_slot_ids(self) -> tuple[SlotId, ...]:
        """Ids reserved for slots that may be opened on demand."""
        extra = self._max_slots - len(self.slots)
        return tuple(range(self._first_new_slot_id, self._first_new_slot_id + extra))

    def candidate_slot_ids(self) -> tuple[SlotId, ...]:
        """Every slot id a solution may use: fixed first, then openable."""
        return self.slot_ids() + self.openable_slot_ids()

    def max_slots(self) -> int:
        return self._max_slots

    def is_fixed_slot(self, slot_id: SlotId) -> bool:
        return slot_id in self._capacity

    def has_job(self, job_id: JobId) -> bool:
        return job_id in self._demand

    def has_slot(self, slot_id: SlotId) -> bool:
        if slot_id in self._capacity:
            return True
        first = self._first_new_slot_id
        return first <= slot_id < first + self._max_slots - len(self.slots)

    def demand(self, job_id: JobId) -> float:
        return self._demand[job_id]

    def capacity(self, slot_id: SlotId) -> float:
        """Capacity of a fixed or openable slot.

        Raises:
            KeyError: If ``slot_id`` is neither fixed nor openable.
        """
        if slot_id in self._capacity:
            return self._capacity[slot_id]
        if self.has_slot(slot_id):
            return self._new_slot_capacity
        raise KeyError(f"unknown slot {slot_id}")

    def conflicts_of(self, job_id: JobId) -> frozenset[JobId]:
        """Jobs that may never share a slot with ``job_id``."""
        return self._adjacency[job_id]

    def are_conflicted(self, first: JobId, second: JobId) -> bool:
        return second in self._adjacency.get(first, frozenset())

    def degree(self, job_id: JobId) -> int:
        return len(self._adjacency[job_id])

    def total_demand(self) -> float:
        return sum(self._demand.values())

    def max_capacity(self) -> float:
        capacities = list(self._capacity.values())
        if self.openable_slot_ids():
            capacities.append(self._new_slot_capacity)
        return max(capacities, default=0.0)

    def greedy_clique(self) -> list[JobId]:
        """Large clique found greedily by descending degree (pairwise conflicting jobs)."""
        clique: list[JobId] = []
        for job_id in sorted(self._demand, key=lambda j: (-self.degree(j), j)):
            if all(job_id in self._adjacency[member] for member in clique):
                clique.append(job_id)
        return clique

    def lower_bound(self) -> int:
        """Simple lower bound on the number of used slots.

        ``max(ceil(total_demand / max_capacity), |greedy clique|)``.
        """
        if not self.jobs:
            return 0
        cap = self.max_capacity()
        total = self.total_demand()
        if cap > 0:
            by_volume = math.ceil(total / cap - 1e-9)
        else:
            by_volume = 0
        return max(by_volume, len(self.greedy_clique()), 1)

"""Mutable assignment of jobs to slots with incrementally kept aggregates.

``SolutionState`` is the object every strategy reads and mutates. Loads and
member sets are updated on each ``assign`` / ``unassign``; feasibility is
re-validated only for slots touched since the previous check (dirty set),
so local search pays for what it changes, not for the whole instance.

Invariants held at all times (feasible or not):
    - ``load(s) == fsum(demand(j) for j in members(s))``
    - ``slot_of(j) == s``  <=>  ``j in members(s)``
"""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Optional, Union

from cspcj.cost import CostFunction, get_cost_function
from cspcj.errors import Infeasible, Violation
from cspcj.models import ConflictGraphModel, JobId, SlotId

# Loads above capacity by less than this are rounding noise, not a breach.
CAPACITY_EPS = 1e-9


class SolutionState:
    """Assignment plus derived per-slot aggregates.

    Args:
        model: Instance the solution belongs to (shared, read-only).
        cost: Cost function name from :data:`cspcj.cost.COST_FUNCTIONS` or a
            callable.
        allow_reassign: Whether strict ``assign`` may move an already
            placed job.
    """

    def __init__(
        self,
        model: ConflictGraphModel,
        cost: Union[str, CostFunction] = "slot_count",
        allow_reassign: bool = False,
    ) -> None:
        self.model = model
        self.cost_name = cost if isinstance(cost, str) else getattr(cost, "__name__", "custom")
        self._cost_fn = get_cost_function(cost)
        self.allow_reassign = allow_reassign
        self._slot_of: dict[JobId, SlotId] = {}
        self._load: dict[SlotId, float] = {}
        self._members: dict[SlotId, set[JobId]] = {}
        self._unplaced: set[JobId] = set()
        self._dirty: set[SlotId] = set()
        self._bad: dict[SlotId, list[Violation]] = {}
        self._touched: set[SlotId] = set()
        self.last_moved: Optional[JobId] = None

    @classmethod
    def from_assignment(
        cls,
        model: ConflictGraphModel,
        assignment: Mapping[JobId, SlotId],
        cost: Union[str, CostFunction] = "slot_count",
        strict: bool = False,
    ) -> "SolutionState":
        """Build a state from a plain ``job -> slot`` mapping."""
        state = cls(model, cost=cost)
        for job_id in sorted(assignment):
            state.assign(job_id, assignment[job_id], strict=strict)
        return state

    # ------------------------------------------------------------------
    # mutation

    def check(self, job_id: JobId, slot_id: SlotId) -> Optional[Violation]:
        """Return the violation placing ``job_id`` into ``slot_id`` would cause.

        The job's current slot (if any) is ignored, so the check also answers
        "can the job move there".
        """
        members = self._members.get(slot_id, ())
        if job_id in members:
            return None
        load = self._load.get(slot_id, 0.0) + self.model.demand(job_id)
        capacity = self.model.capacity(slot_id)
        if load > capacity + CAPACITY_EPS:
            return Violation(
                Violation.CAPACITY, job_id, slot_id, load=load, capacity=capacity
            )
        conflicts = self.model.conflicts_of(job_id)
        if members and conflicts:
            if len(members) < len(conflicts):
                clash = [other for other in members if other in conflicts]
            else:
                clash = [other for other in conflicts if other in members]
            if clash:
                return Violation(Violation.CONFLICT, job_id, slot_id, other_job_id=min(clash))
        return None

    def admits(self, job_id: JobId, slot_id: SlotId) -> bool:
        return self.check(job_id, slot_id) is None

    def assign(self, job_id: JobId, slot_id: SlotId, strict: bool = True) -> None:
        """Place ``job_id`` into ``slot_id``.

        Args:
            job_id: Job to place.
            slot_id: Fixed or openable slot.
            strict: When True, refuse (raise) instead of breaking capacity,
                a conflict, or the reassignment policy; the state is left
                untouched. When False the move is applied regardless.

        Raises:
            Violation: In strict mode, if the move breaks an invariant.
            KeyError: If the job or slot does not belong to the instance.
        """
        if not self.model.has_job(job_id):
            raise KeyError(f"unknown job {job_id}")
        if not self.model.has_slot(slot_id):
            raise KeyError(f"unknown slot {slot_id}")
        current = self._slot_of.get(job_id)
        if current == slot_id:
            return
        if strict:
            if current is not None and not self.allow_reassign:
                raise Violation(Violation.REASSIGNMENT, job_id, slot_id)
            violation = self.check(job_id, slot_id)
            if violation is not None:
                raise violation
        if current is not None:
            self._detach(job_id, current)
        self._unplaced.discard(job_id)
        self._slot_of[job_id] = slot_id
        self._members.setdefault(slot_id, set()).add(job_id)
        self._refresh(slot_id)
        self.last_moved = job_id

    def unassign(self, job_id: JobId) -> SlotId:
        """Remove ``job_id`` from its slot and return that slot.

        Raises:
            KeyError: If the job is not assigned.
        """
        slot_id = self._slot_of.get(job_id)
        if slot_id is None:
            raise KeyError(f"job {job_id} is not assigned")
        self._detach(job_id, slot_id)
        self.last_moved = job_id
        return slot_id

    def mark_unplaced(self, job_id: JobId) -> None:
        """Declare a job intentionally left out of every slot.

        Raises:
            Infeasible: If the instance requires a full assignment.
        """
        if not self.model.allow_partial:
            raise Infeasible(
                f"job {job_id} cannot be left unplaced: instance requires full assignment",
                job_id=job_id,
            )
        if job_id in self._slot_of:
            self.unassign(job_id)
        self._unplaced.add(job_id)

    def _detach(self, job_id: JobId, slot_id: SlotId) -> None:
        del self._slot_of[job_id]
        members = self._members[slot_id]
        members.discard(job_id)
        if not members:
            del self._members[slot_id]
        self._refresh(slot_id)

    def _refresh(self, slot_id: SlotId) -> None:
        members = self._members.get(slot_id)
        if members:
            demand = self.model.demand
            self._load[slot_id] = math.fsum(demand(j) for j in members)
        else:
            self._load.pop(slot_id, None)
        self._dirty.add(slot_id)
        self._touched.add(slot_id)

    # ------------------------------------------------------------------
    # feasibility

    def _slot_violations(self, slot_id: SlotId) -> list[Violation]:
        members = self._members.get(slot_id)
        if not members:
            return []
        found: list[Violation] = []
        load = self._load[slot_id]
        capacity = self.model.capacity(slot_id)
        if load > capacity + CAPACITY_EPS:
            found.append(
                Violation(
                    Violation.CAPACITY, max(members), slot_id, load=load, capacity=capacity
                )
            )
        for job_id in sorted(members):
            for other in sorted(self.model.conflicts_of(job_id) & members):
                if job_id < other:
                    found.append(
                        Violation(Violation.CONFLICT, job_id, slot_id, other_job_id=other)
                    )
        return found

    def _flush(self) -> None:
        for slot_id in self._dirty:
            found = self._slot_violations(slot_id)
            if found:
                self._bad[slot_id] = found
            else:
                self._bad.pop(slot_id, None)
        self._dirty.clear()

    def is_complete(self) -> bool:
        """Every job is assigned or explicitly unplaced."""
        return len(self._slot_of) + len(self._unplaced) == self.model.n_jobs

    def is_feasible(self) -> bool:
        """Capacity and conflict invariants hold and the state is complete.

        Only slots touched since the previous call are re-validated.
        """
        self._flush()
        return not self._bad and self.is_complete()

    def violations(self) -> list[Violation]:
        """Current capacity / conflict violations ordered by slot."""
        self._flush()
        return [v for slot_id in sorted(self._bad) for v in self._bad[slot_id]]

    def violating_slots(self) -> tuple[SlotId, ...]:
        self._flush()
        return tuple(sorted(self._bad))

    # ------------------------------------------------------------------
    # queries

    def cost(self) -> float:
        return self._cost_fn(self)

    def rank_key(self) -> tuple[float, int, int]:
        """Total order used to compare solutions.

        ``(cost, touched slots, last moved job id)``: among equal-cost
        solutions prefer fewer touched slots, then the lower job id.
        """
        last = self.last_moved if self.last_moved is not None else -1
        return (self.cost(), len(self._touched), last)

    def load(self, slot_id: SlotId) -> float:
        return self._load.get(slot_id, 0.0)

    def residual(self, slot_id: SlotId) -> float:
        return self.model.capacity(slot_id) - self.load(slot_id)

    def members(self, slot_id: SlotId) -> frozenset[JobId]:
        return frozenset(self._members.get(slot_id, ()))

    def slot_of(self, job_id: JobId) -> Optional[SlotId]:
        return self._slot_of.get(job_id)

    def is_assigned(self, job_id: JobId) -> bool:
        return job_id in self._slot_of

    def assigned_count(self) -> int:
        return len(self._slot_of)

    def used_slots(self) -> tuple[SlotId, ...]:
        """Slots holding at least one job, ascending."""
        return tuple(sorted(self._members))

    def unassigned_jobs(self) -> tuple[JobId, ...]:
        """Jobs neither assigned nor explicitly unplaced."""
        return tuple(
            j for j in self.model.job_ids() if j not in self._slot_of and j not in self._unplaced
        )

    def unplaced_jobs(self) -> tuple[JobId, ...]:
        return tuple(sorted(self._unplaced))

    def touched_slots(self) -> frozenset[SlotId]:
        return frozenset(self._touched)

    def assignment(self) -> dict[JobId, SlotId]:
        """Copy of the ``job -> slot`` mapping, ordered by job id."""
        return {j: self._slot_of[j] for j in sorted(self._slot_of)}

    def free_slots(self) -> tuple[SlotId, ...]:
        """Candidate slots that currently hold no job."""
        return tuple(s for s in self.model.candidate_slot_ids() if s not in self._members)

    def first_free_slot(self) -> Optional[SlotId]:
        for slot_id in self.model.candidate_slot_ids():
            if slot_id not in self._members:
                return slot_id
        return None

    def clone(self) -> "SolutionState":
        """Deep copy of the assignment and every aggregate (model is shared)."""
        other = SolutionState.__new__(SolutionState)
        other.model = self.model
        other.cost_name = self.cost_name
        other._cost_fn = self._cost_fn
        other.allow_reassign = self.allow_reassign
        other._slot_of = dict(self._slot_of)
        other._load = dict(self._load)
        other._members = {s: set(m) for s, m in self._members.items()}
        other._unplaced = set(self._unplaced)
        other._dirty = set(self._dirty)
        other._bad = {s: list(v) for s, v in self._bad.items()}
        other._touched = set(self._touched)
        other.last_moved = self.last_moved
        return other

    def reset_touched(self) -> None:
        """Forget which slots were touched (start of a new comparison window)."""
        self._touched.clear()
        self.last_moved = None

    def restore_marks(self, added: Iterable[SlotId], last_moved: Optional[JobId]) -> None:
        """Undo the touch bookkeeping of a reverted move."""
        self._touched.difference_update(added)
        self.last_moved = last_moved

    def same_assignment(self, other: "SolutionState") -> bool:
        return self._slot_of == other._slot_of and self._unplaced == other._unplaced

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SolutionState):
            return NotImplemented
        return self.model is other.model and self.same_assignment(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"SolutionState(assigned={len(self._slot_of)}/{self.model.n_jobs}, "
            f"slots={len(self._members)}, cost={self.cost()})"
        )


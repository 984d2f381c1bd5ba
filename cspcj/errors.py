"""Error taxonomy of the solver.

All errors raised by the package derive from :class:`CspcjError` so a driver
can catch them in one place. Search dead ends are never errors: strategies
report them through their terminal status instead.
"""

from __future__ import annotations

from typing import Optional


class CspcjError(Exception):
    """Base class for every error raised by the package."""


class InvalidInstance(CspcjError, ValueError):
    """Malformed or inconsistent instance data (fatal, raised before solving).

    Attributes:
        job_ids: Jobs involved in the problem (may be empty).
        slot_ids: Slots involved in the problem (may be empty).
    """

    def __init__(
        self,
        message: str,
        job_ids: tuple[int, ...] = (),
        slot_ids: tuple[int, ...] = (),
    ) -> None:
        super().__init__(message)
        self.job_ids = tuple(job_ids)
        self.slot_ids = tuple(slot_ids)


class Infeasible(CspcjError):
    """The instance cannot admit a job under its constraints."""

    def __init__(self, message: str, job_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class Violation(CspcjError):
    """A strict assignment would break a capacity or conflict invariant.

    ``kind`` is one of ``"capacity"``, ``"conflict"`` or ``"reassignment"``.
    For conflicts ``other_job_id`` names a job already in the slot.
    """

    CAPACITY = "capacity"
    CONFLICT = "conflict"
    REASSIGNMENT = "reassignment"

    def __init__(
        self,
        kind: str,
        job_id: Optional[int],
        slot_id: int,
        other_job_id: Optional[int] = None,
        load: Optional[float] = None,
        capacity: Optional[float] = None,
    ) -> None:
        self.kind = kind
        self.job_id = job_id
        self.slot_id = slot_id
        self.other_job_id = other_job_id
        self.load = load
        self.capacity = capacity
        super().__init__(self._describe())

    def _describe(self) -> str:
        if self.kind == self.CAPACITY:
            return (
                f"capacity breach in slot {self.slot_id}: job {self.job_id} "
                f"-> load {self.load} > capacity {self.capacity}"
            )
        if self.kind == self.CONFLICT:
            return (
                f"conflict in slot {self.slot_id}: job {self.job_id} "
                f"conflicts with job {self.other_job_id}"
            )
        return f"job {self.job_id} is already assigned (target slot {self.slot_id})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Violation):
            return NotImplemented
        return (self.kind, self.job_id, self.slot_id, self.other_job_id) == (
            other.kind,
            other.job_id,
            other.slot_id,
            other.other_job_id,
        )

    def __hash__(self) -> int:
        return hash((self.kind, self.job_id, self.slot_id, self.other_job_id))


class UnknownStrategy(CspcjError, KeyError):
    """Requested strategy name is not registered."""

    def __init__(self, name: str, known: tuple[str, ...] = ()) -> None:
        self.name = name
        self.known = tuple(known)
        super().__init__(name)

    def __str__(self) -> str:
        return f"unknown strategy {self.name!r} (known: {', '.join(self.known) or '-'})"


class FeatureUnavailable(CspcjError):
    """An optional capability (the exact oracle) is disabled or not installed."""

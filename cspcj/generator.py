"""Seeded random instance generator."""

from __future__ import annotations

import random
from typing import Optional

from cspcj.models import ConflictGraphModel, SlotPolicy


def generate_instance(
    jobs: int,
    slots: int = 0,
    max_demand: int = 10,
    capacity: int = 20,
    conflict_ratio: float = 0.1,
    seed: int = 0,
    open_new_slots: bool = True,
    max_slots: Optional[int] = None,
    name: Optional[str] = None,
) -> ConflictGraphModel:
    """Generate a random CSPCJ instance.

    Demands are uniform integers in ``[1, min(max_demand, capacity)]`` so
    every job fits an empty slot. Each pair of jobs conflicts with
    probability ``conflict_ratio`` (1.0 gives a complete conflict graph).

    Args:
        jobs: Number of jobs.
        slots: Number of fixed slots (ids ``0 .. slots-1``).
        max_demand: Largest job demand.
        capacity: Capacity of every fixed and opened slot.
        conflict_ratio: Edge probability of the conflict graph.
        seed: Generator seed; equal arguments give equal instances.
        open_new_slots: Allow slots to be opened on demand.
        max_slots: Total slot bound when opening is allowed.
        name: Instance name (derived from the arguments by default).

    Raises:
        ValueError: On negative sizes or a ratio outside ``[0, 1]``.
    """
    if jobs < 0 or slots < 0:
        raise ValueError("jobs and slots must be >= 0")
    if not 0.0 <= conflict_ratio <= 1.0:
        raise ValueError(f"conflict_ratio must be in [0, 1], got {conflict_ratio}")
    if capacity < 1 or max_demand < 1:
        raise ValueError("capacity and max_demand must be >= 1")
    rng = random.Random(seed)
    top = min(max_demand, capacity)
    job_list = [(j, rng.randint(1, top)) for j in range(jobs)]
    conflicts = [
        (a, b)
        for a in range(jobs)
        for b in range(a + 1, jobs)
        if conflict_ratio >= 1.0 or rng.random() < conflict_ratio
    ]
    policy = SlotPolicy(
        open_new_slots=open_new_slots,
        new_slot_capacity=capacity if open_new_slots else None,
        max_slots=max_slots if open_new_slots else None,
    )
    return ConflictGraphModel.build(
        job_list,
        [(s, capacity) for s in range(slots)],
        conflicts,
        slot_policy=policy,
        name=name or f"gen_n{jobs}_m{slots}_c{conflict_ratio}_s{seed}",
    )

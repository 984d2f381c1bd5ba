"""Polynomial-time special case: at most two jobs per slot.

When every slot has the same capacity ``C`` and every job demands more than
``C / 3``, no slot can hold three jobs. A slot then holds one job or a
compatible pair (no conflict, combined demand within ``C``), so a packing is
a matching in the graph of compatible pairs and the minimum number of slots
is ``n - |maximum matching|``. The matching is found with Edmonds' blossom
algorithm in ``O(n^3)``.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Iterable

from cspcj.algorithms.base import RunStatus, SolveResult, Strategy
from cspcj.config import StrategyConfig
from cspcj.errors import FeatureUnavailable, Infeasible
from cspcj.models import ConflictGraphModel, JobId
from cspcj.registry import register
from cspcj.solution import CAPACITY_EPS, SolutionState

logger = logging.getLogger("cspcj.matching")


def maximum_matching(n: int, edges: Iterable[tuple[int, int]]) -> list[int]:
    """Maximum cardinality matching in a general graph (Edmonds' blossom algorithm).

    Args:
        n: Number of vertices, numbered ``0 .. n-1``.
        edges: Undirected edges; loops are ignored.

    Returns:
        ``mate`` where ``mate[v]`` is the vertex matched with ``v`` or -1.
    """
    adjacency: list[list[int]] = [[] for _ in range(n)]
    for a, b in edges:
        if a != b:
            adjacency[a].append(b)
            adjacency[b].append(a)
    mate = [-1] * n

    # greedy start, augmenting paths do the rest
    for v in range(n):
        if mate[v] == -1:
            for w in adjacency[v]:
                if mate[w] == -1:
                    mate[v], mate[w] = w, v
                    break

    def augmenting_path(root: int) -> tuple[int, list[int]]:
        parent = [-1] * n
        base = list(range(n))
        outer = [False] * n
        outer[root] = True
        queue = deque([root])

        def common_base(a: int, b: int) -> int:
            seen = [False] * n
            while True:
                a = base[a]
                seen[a] = True
                if mate[a] == -1:
                    break
                a = parent[mate[a]]
            while True:
                b = base[b]
                if seen[b]:
                    return b
                b = parent[mate[b]]

        def mark_path(v: int, stop: int, child: int, in_blossom: list[bool]) -> None:
            while base[v] != stop:
                in_blossom[base[v]] = in_blossom[base[mate[v]]] = True
                parent[v] = child
                child = mate[v]
                v = parent[mate[v]]

        while queue:
            v = queue.popleft()
            for w in adjacency[v]:
                if base[v] == base[w] or mate[v] == w:
                    continue
                if w == root or (mate[w] != -1 and parent[mate[w]] != -1):
                    # odd cycle: contract it into its base
                    stop = common_base(v, w)
                    in_blossom = [False] * n
                    mark_path(v, stop, w, in_blossom)
                    mark_path(w, stop, v, in_blossom)
                    for u in range(n):
                        if in_blossom[base[u]]:
                            base[u] = stop
                            if not outer[u]:
                                outer[u] = True
                                queue.append(u)
                elif parent[w] == -1:
                    parent[w] = v
                    if mate[w] == -1:
                        return w, parent
                    outer[mate[w]] = True
                    queue.append(mate[w])
        return -1, parent

    for root in range(n):
        if mate[root] != -1:
            continue
        end, parent = augmenting_path(root)
        while end != -1:
            previous = parent[end]
            next_end = mate[previous]
            mate[end], mate[previous] = previous, end
            end = next_end
    return mate


def compatible_pairs(model: ConflictGraphModel, capacity: float) -> list[tuple[JobId, JobId]]:
    """Job pairs that may share a slot of ``capacity``."""
    ids = model.job_ids()
    pairs = []
    for i, a in enumerate(ids):
        for b in ids[i + 1 :]:
            if model.are_conflicted(a, b):
                continue
            if model.demand(a) + model.demand(b) <= capacity + CAPACITY_EPS:
                pairs.append((a, b))
    return pairs


def _uniform_capacity(model: ConflictGraphModel) -> float:
    capacities = {model.capacity(slot) for slot in model.candidate_slot_ids()}
    if len(capacities) > 1:
        raise FeatureUnavailable(
            f"matching strategy needs slots of one capacity, got {sorted(capacities)}"
        )
    return capacities.pop() if capacities else 0.0


class MatchingStrategy(Strategy):
    """Optimal slot count when no slot can hold three jobs.

    Raises ``FeatureUnavailable`` (from :meth:`solve`) when the instance is
    outside the special case: another cost function, mixed slot capacities,
    or a job small enough that three could share a slot.
    """

    name = "matching"

    def solve(self, model: ConflictGraphModel) -> SolveResult:
        cfg = self.config
        t0 = time.perf_counter()
        if cfg.cost != "slot_count":
            raise FeatureUnavailable(
                f"matching strategy minimizes the slot count, not {cfg.cost!r}"
            )
        capacity = _uniform_capacity(model)
        slots = model.candidate_slot_ids()

        state = SolutionState(model, cost=cfg.cost)
        jobs: list[JobId] = []
        for job in model.jobs:
            if not slots or job.demand > capacity + CAPACITY_EPS:
                # fits nowhere
                if not model.allow_partial:
                    raise Infeasible(
                        f"job {job.id} cannot be placed: demand {job.demand} exceeds "
                        f"slot capacity {capacity}",
                        job_id=job.id,
                    )
                state.mark_unplaced(job.id)
                continue
            if 3 * job.demand <= capacity + CAPACITY_EPS:
                raise FeatureUnavailable(
                    f"job {job.id} demands at most a third of capacity {capacity}; "
                    "slots could hold three jobs"
                )
            jobs.append(job.id)

        index = {job_id: i for i, job_id in enumerate(jobs)}
        edges = [
            (index[a], index[b])
            for a, b in compatible_pairs(model, capacity)
            if a in index and b in index
        ]
        mate = maximum_matching(len(jobs), edges)

        groups: list[tuple[JobId, ...]] = []
        for i, job_id in enumerate(jobs):
            if mate[i] > i:
                groups.append((job_id, jobs[mate[i]]))
        matched = len(groups)
        groups.extend((job_id,) for i, job_id in enumerate(jobs) if mate[i] == -1)
        logger.debug(
            "matching: %d jobs, %d compatible pairs, %d matched", len(jobs), len(edges), matched
        )

        if len(groups) > len(slots) and not model.allow_partial:
            raise Infeasible(
                f"instance needs {len(groups)} slots but at most {len(slots)} are available"
            )
        # pairs come first, so a short slot list still places the most jobs
        for slot_id, group in zip(slots, groups):
            for job_id in group:
                state.assign(job_id, slot_id)
        for group in groups[len(slots) :]:
            for job_id in group:
                state.mark_unplaced(job_id)

        cost = state.cost()
        return SolveResult(
            strategy=self.name,
            status=RunStatus.OPTIMAL,
            solution=state,
            seed=cfg.seed,
            iterations=1,
            elapsed_s=time.perf_counter() - t0,
            cost_history=[cost],
            bound=cost,
            message=f"matching={matched}",
        )


@register("matching")
def _matching(config: StrategyConfig) -> Strategy:
    return MatchingStrategy(config)

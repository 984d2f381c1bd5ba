"""Penalty QUBO backend sampled with dimod's simulated annealing.

The formulation is turned into one quadratic penalty function:

    H = sum_s w_s y_s + P * [ sum_j (sum_s x_js + u_j - 1)^2
                            + sum_{j,s} x_js (1 - y_s)
                            + sum_{a~b,s} x_as x_bs
                            + sum_s (sum_j D_j x_js + slack_s - C_s y_s)^2
                            + sum_s y_{s+1} (1 - y_s) ]

with integer-scaled demands ``D`` and capacities ``C`` and binary slack
bits per slot. ``P`` exceeds the whole objective range, so the lowest
energy states are feasible. Sampling gives no optimality proof: results are
either ``FEASIBLE`` or ``TIMED_OUT``.
"""

from __future__ import annotations

import logging
import random
import time
from collections import defaultdict
from typing import Mapping, Optional

from dimod import BinaryQuadraticModel, SimulatedAnnealingSampler

from cspcj.errors import FeatureUnavailable
from cspcj.models import JobId, SlotId
from cspcj.oracle.base import OracleBackend, OracleResult, OracleStatus
from cspcj.oracle.formulation import MipFormulation, integer_scale, u_var, x_var, y_var

logger = logging.getLogger("cspcj.oracle")

QuboDict = dict[tuple[str, str], float]


def _label(key: tuple) -> str:
    return "_".join(str(part) for part in key)


def _add_squared(Q: QuboDict, terms: list[tuple[str, float]], constant: float, weight: float) -> None:
    """Add ``weight * (sum c_i v_i + constant)^2`` for binary ``v_i`` (constant^2 dropped)."""
    for i, (first, c1) in enumerate(terms):
        Q[(first, first)] += weight * (c1 * c1 + 2.0 * constant * c1)
        for second, c2 in terms[i + 1 :]:
            Q[(first, second)] += weight * 2.0 * c1 * c2


def build_qubo(formulation: MipFormulation) -> tuple[QuboDict, float]:
    """Return the QUBO dict and the penalty weight used.

    Raises:
        FeatureUnavailable: For max-load objectives, which have no compact
            QUBO form here.
    """
    if formulation.minimizes_max_load:
        raise FeatureUnavailable(
            f"qubo backend supports slot_count and capacity_used, not {formulation.objective!r}"
        )
    Q: QuboDict = defaultdict(float)
    objective = formulation.objective_terms()
    penalty = sum(abs(c) for _, c in objective) + 1.0
    for key, coef in objective:
        label = _label(key)
        Q[(label, label)] += coef

    for j in formulation.jobs:
        terms = [(_label(x_var(j, s)), 1.0) for s in formulation.slots]
        if formulation.unplaced_penalty is not None:
            terms.append((_label(u_var(j)), 1.0))
        _add_squared(Q, terms, -1.0, penalty)

    scale = integer_scale(list(formulation.demand.values()) + list(formulation.capacity.values()))
    for s in formulation.slots:
        y = _label(y_var(s))
        for j in formulation.jobs:
            x = _label(x_var(j, s))
            Q[(x, x)] += penalty
            Q[(x, y)] -= penalty
        for a, b in formulation.conflicts:
            Q[(_label(x_var(a, s)), _label(x_var(b, s)))] += penalty
        cap = int(round(formulation.capacity[s] * scale))
        terms = [
            (_label(x_var(j, s)), float(round(formulation.demand[j] * scale)))
            for j in formulation.jobs
            if formulation.demand[j]
        ]
        if not terms:
            continue
        terms.extend((f"slack_{s}_{k}", float(2**k)) for k in range(cap.bit_length()))
        terms.append((y, -float(cap)))
        _add_squared(Q, terms, 0.0, penalty)

    for first, second in zip(formulation.openable, formulation.openable[1:]):
        y1, y2 = _label(y_var(first)), _label(y_var(second))
        Q[(y2, y2)] += penalty
        Q[(y1, y2)] -= penalty
    return dict(Q), penalty


def decode_sample(
    formulation: MipFormulation, sample: Mapping[str, int]
) -> Optional[tuple[dict[JobId, SlotId], float]]:
    """Assignment and objective of a sample, or None if it breaks a constraint."""
    assignment: dict[JobId, SlotId] = {}
    unplaced = 0
    for j in formulation.jobs:
        chosen = [s for s in formulation.slots if sample.get(_label(x_var(j, s)), 0)]
        skipped = formulation.unplaced_penalty is not None and sample.get(_label(u_var(j)), 0)
        if len(chosen) + (1 if skipped else 0) != 1:
            return None
        if chosen:
            assignment[j] = chosen[0]
        else:
            unplaced += 1
    members: dict[SlotId, list[JobId]] = defaultdict(list)
    for j, s in assignment.items():
        members[s].append(j)
    conflicts = set(formulation.conflicts)
    for s, jobs in members.items():
        load = sum(formulation.demand[j] for j in jobs)
        if load > formulation.capacity[s] + 1e-9:
            return None
        for i, a in enumerate(jobs):
            for b in jobs[i + 1 :]:
                if (min(a, b), max(a, b)) in conflicts:
                    return None
    objective = sum(formulation.slot_weight[s] for s in members)
    if unplaced:
        objective += unplaced * (formulation.unplaced_penalty or 0.0)
    return assignment, objective


class QuboBackend(OracleBackend):
    """Simulated-annealing sampler over the penalty QUBO.

    Args:
        num_reads: Samples per batch; batches repeat until ``time_limit``.
    """

    name = "qubo"

    def __init__(self, num_reads: int = 50) -> None:
        self.num_reads = num_reads

    def solve(
        self,
        formulation: MipFormulation,
        time_limit: Optional[float] = None,
        hint: Optional[Mapping[JobId, SlotId]] = None,
        seed: Optional[int] = None,
    ) -> OracleResult:
        t0 = time.perf_counter()
        Q, penalty = build_qubo(formulation)
        best: Optional[tuple[dict[JobId, SlotId], float]] = None
        batches = 0
        if Q:
            bqm = BinaryQuadraticModel.from_qubo(Q)
            sampler = SimulatedAnnealingSampler()
            seeds = random.Random(seed) if seed is not None else None
            while True:
                kwargs = {"num_reads": self.num_reads}
                if seeds is not None and "seed" in sampler.parameters:
                    # one seed per batch, derived from the run seed
                    kwargs["seed"] = seeds.randrange(2**32)
                result = sampler.sample(bqm, **kwargs)
                batches += 1
                for sample in result.samples():
                    decoded = decode_sample(formulation, sample)
                    if decoded is not None and (best is None or decoded[1] < best[1]):
                        best = decoded
                if time_limit is None or time.perf_counter() - t0 >= time_limit:
                    break
        elif not formulation.jobs:
            best = ({}, 0.0)
        logger.info(
            "[qubo] variables=%d penalty=%s batches=%d best=%s",
            len({v for pair in Q for v in pair}),
            penalty,
            batches,
            None if best is None else best[1],
        )
        if best is None:
            return OracleResult(
                status=OracleStatus.TIMED_OUT,
                backend=self.name,
                elapsed_s=time.perf_counter() - t0,
            )
        return OracleResult(
            status=OracleStatus.FEASIBLE,
            assignment=best[0],
            objective=best[1],
            backend=self.name,
            elapsed_s=time.perf_counter() - t0,
        )

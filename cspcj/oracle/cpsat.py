"""OR-Tools CP-SAT backend.

CP-SAT only takes integer coefficients, so every constraint and the
objective are scaled by one power of ten (see ``integer_scale``). The
continuous max-load variable ``z`` is modelled as an integer holding
``scale * z``.

When the scale is not exact, ``<=`` rows are rounded towards the feasible
side (coefficients up, right-hand sides down). Every packing CP-SAT returns
is then feasible for the real data, but its optimum and bound are only those
of the tightened model, so the result is reported as ``FEASIBLE`` without a
bound.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Mapping, Optional

from ortools.sat.python import cp_model

from cspcj.models import JobId, SlotId
from cspcj.oracle.base import OracleBackend, OracleResult, OracleStatus
from cspcj.oracle.formulation import (
    Z_VAR,
    MipFormulation,
    integer_scale,
    is_integral,
    scale_is_exact,
    x_var,
)

logger = logging.getLogger("cspcj.oracle")

_STATUS = {
    cp_model.OPTIMAL: OracleStatus.OPTIMAL,
    cp_model.FEASIBLE: OracleStatus.FEASIBLE,
    cp_model.INFEASIBLE: OracleStatus.INFEASIBLE,
    cp_model.UNKNOWN: OracleStatus.TIMED_OUT,
}


def _coefficients(formulation: MipFormulation) -> list[float]:
    values = list(formulation.demand.values()) + list(formulation.capacity.values())
    values.extend(formulation.slot_weight.values())
    if formulation.minimizes_max_load:
        demands = list(formulation.demand.values())
        values.extend(w * d for w in formulation.load_weight.values() for d in demands)
    if formulation.unplaced_penalty is not None:
        values.append(formulation.unplaced_penalty)
    return values


class CpSatBackend(OracleBackend):
    """Exact backend; proves optimality when given enough time.

    Args:
        workers: Number of CP-SAT search workers (1 keeps runs repeatable).
    """

    name = "cpsat"

    def __init__(self, workers: int = 1) -> None:
        self.workers = workers

    def solve(
        self,
        formulation: MipFormulation,
        time_limit: Optional[float] = None,
        hint: Optional[Mapping[JobId, SlotId]] = None,
        seed: Optional[int] = None,
    ) -> OracleResult:
        t0 = time.perf_counter()
        coefficients = _coefficients(formulation)
        scale = integer_scale(coefficients)
        exact = scale_is_exact(coefficients, scale)
        if not exact:
            logger.warning(
                "[cpsat] coefficients need more than %d decimals; rows rounded conservatively",
                len(str(scale)) - 1,
            )
        model = cp_model.CpModel()
        variables = {
            key: model.NewBoolVar("_".join(str(k) for k in key))
            for key in formulation.binary_variables()
        }
        if formulation.minimizes_max_load:
            upper = math.ceil(formulation.max_load_bound() * scale) + len(formulation.jobs) + 1
            variables[Z_VAR] = model.NewIntVar(0, upper, "z")

        def _scaled(coef: float, rounding) -> int:
            value = coef * scale
            return int(round(value)) if is_integral(value) else int(rounding(value))

        def _expr(terms, rounding=round):
            # z already holds scale * z, so its coefficient is not rescaled.
            return sum(
                (int(coef) if key == Z_VAR else _scaled(coef, rounding)) * variables[key]
                for key, coef in terms
            )

        for constraint in formulation.constraints():
            if constraint.sense == "==":
                # assignment rows: unit coefficients, no scaling needed
                model.AddExactlyOne([variables[key] for key, _ in constraint.terms])
            else:
                model.Add(
                    _expr(constraint.terms, math.ceil) <= _scaled(constraint.rhs, math.floor)
                )
        model.Minimize(_expr(formulation.objective_terms()))

        if hint:
            for job_id, slot_id in hint.items():
                for s in formulation.slots:
                    model.AddHint(variables[x_var(job_id, s)], 1 if s == slot_id else 0)

        solver = cp_model.CpSolver()
        if time_limit is not None:
            solver.parameters.max_time_in_seconds = float(time_limit)
        if seed is not None:
            solver.parameters.random_seed = int(seed) % (2**31)
        solver.parameters.num_search_workers = self.workers
        solver.parameters.log_search_progress = False
        raw_status = solver.Solve(model)
        if raw_status == cp_model.MODEL_INVALID:
            raise RuntimeError(f"CP-SAT rejected the model: {model.Validate()}")
        status = _STATUS[raw_status]
        if not exact:
            if status is OracleStatus.OPTIMAL:
                status = OracleStatus.FEASIBLE
            elif status is OracleStatus.INFEASIBLE:
                # the tightened model proves nothing about the real one
                status = OracleStatus.TIMED_OUT

        assignment = None
        objective = None
        bound = None
        if status in (OracleStatus.OPTIMAL, OracleStatus.FEASIBLE):
            assignment = {
                j: s
                for j in formulation.jobs
                for s in formulation.slots
                if solver.Value(variables[x_var(j, s)])
            }
            objective = solver.ObjectiveValue() / scale
            if exact:
                bound = solver.BestObjectiveBound() / scale
        elif status is OracleStatus.INFEASIBLE:
            bound = math.inf
        elapsed = time.perf_counter() - t0
        logger.info(
            "[cpsat] status=%s objective=%s bound=%s wall=%.3fs",
            status.value,
            objective,
            bound,
            solver.WallTime(),
        )
        return OracleResult(
            status=status,
            assignment=assignment,
            objective=objective,
            bound=bound,
            backend=self.name,
            elapsed_s=elapsed,
        )

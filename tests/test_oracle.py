"""Tests for the exact oracle: formulation, toggles, CP-SAT and QUBO backends.

Backend tests are skipped when the solver library is not installed.
"""

from __future__ import annotations

import math
import random

import pytest

from cspcj.algorithms.base import RunStatus
from cspcj.algorithms.constructive import construct
from cspcj.config import OrderingPolicy, StrategyConfig
from cspcj.errors import FeatureUnavailable, Violation
from cspcj.generator import generate_instance
from cspcj.models import ConflictGraphModel
from cspcj.oracle import base as oracle_base
from cspcj.oracle import (
    DISABLE_ENV,
    OracleBackend,
    OracleResult,
    OracleStatus,
    backend_available,
    backend_names,
    build_formulation,
    get_backend,
    oracle_enabled,
    solve_exact,
    to_solution,
    verify_with_oracle,
)
from cspcj.oracle.formulation import integer_scale, scale_is_exact, u_var, x_var, y_var
from cspcj.registry import create_strategy


# ---------------------------------------------------------------------------
# formulation


def test_formulation_size(two_slot_model) -> None:
    formulation = build_formulation(two_slot_model)
    # 4 x 2 placement vars + 2 slot vars; 4 assign + 2 * (capacity + 4 link + 1 conflict)
    assert formulation.size() == (10, 16)
    names = [c.name for c in formulation.constraints()]
    assert "conflict_1_2_0" in names and "conflict_1_2_1" in names
    assert formulation.objective_terms() == [(y_var(0), 1.0), (y_var(1), 1.0)]


def test_symmetry_rows_only_for_openable_slots(k5_model) -> None:
    formulation = build_formulation(k5_model)
    symmetry = [c for c in formulation.constraints() if c.name.startswith("symmetry_")]
    assert len(symmetry) == 4
    capped = build_formulation(k5_model, max_openable=2)
    assert capped.slots == (0, 1)


def test_capacity_used_weights_and_partial_penalty() -> None:
    model = ConflictGraphModel.build([(0, 1), (1, 9)], [(0, 5), (1, 8)], allow_partial=True)
    formulation = build_formulation(model, cost="capacity_used")
    assert formulation.slot_weight == {0: 5, 1: 8}
    # max capacity * (n_jobs + 1)
    assert formulation.unplaced_penalty == 24
    assert u_var(1) in formulation.binary_variables()


def test_max_load_objective_adds_rows(two_slot_model) -> None:
    formulation = build_formulation(two_slot_model, cost="makespan")
    assert formulation.minimizes_max_load
    rows = [c for c in formulation.constraints() if c.name.startswith("max_load_")]
    assert len(rows) == 2
    assert formulation.max_load_bound() == 10


def test_unknown_cost_rejected(two_slot_model) -> None:
    with pytest.raises(ValueError):
        build_formulation(two_slot_model, cost="tardiness")


def test_integer_scale() -> None:
    assert integer_scale([1, 2, 30]) == 1
    assert integer_scale([0.5, 2]) == 10
    assert integer_scale([0.25, 1.125]) == 1000


def test_scale_exactness() -> None:
    assert scale_is_exact([0.5, 2], 10)
    values = [0.3333334, 1.0]
    assert integer_scale(values) == 10**6
    assert not scale_is_exact(values, integer_scale(values))


def _seven_decimal_model() -> ConflictGraphModel:
    """Three jobs whose demands sum to just over one slot's capacity."""
    return ConflictGraphModel.build(
        [(j, 0.3333334) for j in range(3)], [(s, 1.0) for s in range(3)]
    )


# ---------------------------------------------------------------------------
# toggles and lookup


def test_environment_toggle_disables_oracle(monkeypatch, two_slot_model) -> None:
    monkeypatch.setenv(DISABLE_ENV, "1")
    assert not oracle_enabled()
    with pytest.raises(FeatureUnavailable):
        get_backend("cpsat")
    with pytest.raises(FeatureUnavailable):
        create_strategy("exact", StrategyConfig(seed=0)).run(two_slot_model)


def test_config_toggle_disables_oracle(two_slot_model) -> None:
    cfg = StrategyConfig(enable_oracle=False)
    assert not oracle_enabled(cfg)
    assert oracle_enabled(StrategyConfig())
    with pytest.raises(FeatureUnavailable):
        create_strategy("exact", cfg).run(two_slot_model)
    with pytest.raises(FeatureUnavailable):
        solve_exact(two_slot_model, cfg)


def test_backend_lookup() -> None:
    assert backend_names() == ("cpsat", "qubo")
    assert not backend_available("gurobi")
    with pytest.raises(ValueError):
        get_backend("gurobi")


def test_to_solution_needs_assignment(two_slot_model) -> None:
    with pytest.raises(ValueError):
        to_solution(two_slot_model, OracleResult(status=OracleStatus.TIMED_OUT))
    state = to_solution(
        two_slot_model,
        OracleResult(status=OracleStatus.OPTIMAL, assignment={0: 0, 1: 1, 2: 0, 3: 1}),
    )
    assert state.is_feasible()
    assert state.touched_slots() == frozenset()


def test_to_solution_rejects_infeasible_assignment() -> None:
    model = _seven_decimal_model()
    packed = OracleResult(
        status=OracleStatus.OPTIMAL, assignment={0: 0, 1: 0, 2: 0}, backend="cpsat"
    )
    with pytest.raises(Violation) as exc:
        to_solution(model, packed)
    assert exc.value.kind == Violation.CAPACITY
    assert exc.value.slot_id == 0


class TimedOutBackend(OracleBackend):
    name = "stub"

    def solve(self, formulation, time_limit=None, hint=None, seed=None) -> OracleResult:
        return OracleResult(status=OracleStatus.TIMED_OUT, backend=self.name)


def test_exact_falls_back_to_greedy_on_timeout(monkeypatch, two_slot_model) -> None:
    monkeypatch.setitem(oracle_base._BACKENDS, "stub", (__name__, "TimedOutBackend", "pytest"))
    result = create_strategy("exact", StrategyConfig(seed=0, oracle_backend="stub")).run(
        two_slot_model
    )
    assert result.status is RunStatus.TIMED_OUT
    assert result.feasible
    assert result.bound is None
    assert result.message == "backend=stub"
    greedy = construct(two_slot_model, OrderingPolicy.DEMAND_DESC)
    assert result.solution.assignment() == greedy.assignment()


# ---------------------------------------------------------------------------
# CP-SAT


def test_cpsat_two_slot_optimum(two_slot_model) -> None:
    pytest.importorskip("ortools")
    result = solve_exact(two_slot_model, StrategyConfig(seed=0), time_limit=30)
    assert result.status is OracleStatus.OPTIMAL
    assert result.objective == pytest.approx(2.0)
    assert result.bound == pytest.approx(2.0)
    state = to_solution(two_slot_model, result)
    assert state.is_feasible()
    assert state.slot_of(1) != state.slot_of(2)


def test_exact_strategy_complete_graph(k5_model) -> None:
    pytest.importorskip("ortools")
    result = create_strategy("exact", StrategyConfig(seed=0, time_budget=30)).run(k5_model)
    assert result.status is RunStatus.OPTIMAL
    assert result.cost == 5
    assert result.bound == pytest.approx(5.0)
    assert result.message == "backend=cpsat"


def test_exact_strategy_oversized_is_infeasible(oversized_model) -> None:
    pytest.importorskip("ortools")
    result = create_strategy("exact", StrategyConfig(seed=0, time_budget=30)).run(oversized_model)
    assert result.status is RunStatus.INFEASIBLE
    assert result.solution is None


def test_exact_capacity_used_beats_first_fit() -> None:
    pytest.importorskip("ortools")
    model = ConflictGraphModel.build([(0, 3), (1, 1)], [(0, 10), (1, 4)])
    assert construct(model, cost="capacity_used").cost() == 10
    cfg = StrategyConfig(seed=0, cost="capacity_used", time_budget=30)
    result = create_strategy("exact", cfg).run(model)
    assert result.status is RunStatus.OPTIMAL
    assert result.cost == 4
    assert result.solution.used_slots() == (1,)


def test_exact_makespan() -> None:
    pytest.importorskip("ortools")
    model = ConflictGraphModel.build([(0, 3), (1, 3), (2, 2), (3, 2)], [(0, 10), (1, 10)])
    cfg = StrategyConfig(seed=0, cost="makespan", time_budget=30)
    result = create_strategy("exact", cfg).run(model)
    assert result.status is RunStatus.OPTIMAL
    assert result.cost == 5


def test_heuristics_respect_oracle_bound() -> None:
    pytest.importorskip("ortools")
    model = generate_instance(jobs=12, capacity=20, conflict_ratio=0.2, seed=5)
    heuristic = construct(model, rng=random.Random(0))
    check = verify_with_oracle(model, heuristic, time_limit=60)
    assert check.status is OracleStatus.OPTIMAL
    assert check.consistent
    assert check.heuristic_cost >= check.bound - 1e-6
    assert check.gap is not None and check.gap >= -1e-9
    improved = create_strategy("local_search", StrategyConfig(seed=0, iteration_budget=500)).run(
        model
    )
    assert improved.cost >= check.objective - 1e-6


def test_cpsat_rounds_inexact_rows_towards_feasibility() -> None:
    pytest.importorskip("ortools")
    model = _seven_decimal_model()
    result = create_strategy("exact", StrategyConfig(seed=0, time_budget=10)).run(model)
    assert result.feasible
    assert result.cost == 2
    # optimality is only proven for the tightened model
    assert result.status is RunStatus.FEASIBLE
    assert result.bound is None


def test_empty_instance_is_trivially_optimal() -> None:
    pytest.importorskip("ortools")
    model = ConflictGraphModel.build([], [(0, 5)])
    result = solve_exact(model)
    assert result.status is OracleStatus.OPTIMAL
    assert result.assignment == {}


# ---------------------------------------------------------------------------
# QUBO


def _tiny_conflict_model() -> ConflictGraphModel:
    return ConflictGraphModel.build([(0, 1), (1, 1)], [(0, 2), (1, 2)], [(0, 1)])


def test_qubo_rejects_max_load_objectives(two_slot_model) -> None:
    pytest.importorskip("dimod")
    from cspcj.oracle.qubo import build_qubo

    with pytest.raises(FeatureUnavailable):
        build_qubo(build_formulation(two_slot_model, cost="makespan"))


def test_qubo_decode_sample(two_slot_model) -> None:
    pytest.importorskip("dimod")
    from cspcj.oracle.qubo import _label, decode_sample

    formulation = build_formulation(two_slot_model)
    assignment = {0: 0, 1: 1, 2: 0, 3: 1}
    sample = {_label(x_var(j, s)): int(assignment[j] == s) for j in range(4) for s in (0, 1)}
    assert decode_sample(formulation, sample) == (assignment, 2.0)
    clash = dict(sample)
    clash[_label(x_var(2, 0))] = 0
    clash[_label(x_var(2, 1))] = 1
    assert decode_sample(formulation, clash) is None
    doubled = dict(sample)
    doubled[_label(x_var(3, 0))] = 1
    assert decode_sample(formulation, doubled) is None


def test_qubo_backend_finds_feasible_assignment() -> None:
    pytest.importorskip("dimod")
    model = _tiny_conflict_model()
    cfg = StrategyConfig(seed=0, oracle_backend="qubo")
    result = solve_exact(model, cfg)
    assert result.backend == "qubo"
    assert result.status is OracleStatus.FEASIBLE
    assert result.bound is None
    assert result.assignment[0] != result.assignment[1]
    assert not math.isnan(result.objective)
    assert to_solution(model, result).is_feasible()


def test_qubo_without_feasible_sample_times_out(monkeypatch) -> None:
    dimod = pytest.importorskip("dimod")
    from cspcj.oracle import qubo

    seeds = []

    class AllZeroSampler:
        parameters = {"num_reads": [], "seed": []}

        def sample(self, bqm, num_reads=1, seed=None):
            seeds.append(seed)
            return dimod.SampleSet.from_samples_bqm([{v: 0 for v in bqm.variables}], bqm)

    monkeypatch.setattr(qubo, "SimulatedAnnealingSampler", AllZeroSampler)
    model = _tiny_conflict_model()
    cfg = StrategyConfig(seed=5, oracle_backend="qubo")
    first = solve_exact(model, cfg)
    assert first.status is OracleStatus.TIMED_OUT
    assert first.assignment is None
    solve_exact(model, cfg)
    assert len(seeds) == 2
    assert seeds[0] is not None and seeds[0] == seeds[1]

    result = create_strategy("exact", cfg).run(model)
    assert result.status is RunStatus.TIMED_OUT
    assert result.feasible
    assert result.solution.slot_of(0) != result.solution.slot_of(1)

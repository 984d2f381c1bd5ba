"""Tests for the local-search improver and its strategy wrapper."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from cspcj.algorithms.base import Budget, RunStatus
from cspcj.algorithms.constructive import construct
from cspcj.algorithms.local_search import LocalSearch
from cspcj.config import OrderingPolicy, StrategyConfig
from cspcj.generator import generate_instance
from cspcj.models import ConflictGraphModel, SlotPolicy
from cspcj.registry import create_strategy
from cspcj.solution import SolutionState


def _one_job_per_slot() -> SolutionState:
    model = ConflictGraphModel.build(
        [(j, 2) for j in range(6)],
        [],
        slot_policy=SlotPolicy(open_new_slots=True, new_slot_capacity=10),
    )
    return SolutionState.from_assignment(model, {j: j for j in range(6)})


def test_improver_packs_spread_solution() -> None:
    start = _one_job_per_slot()
    cfg = StrategyConfig(seed=0, iteration_budget=2000, max_no_improve=200)
    improver = LocalSearch(cfg, random.Random(0))
    best = improver.improve(start)
    assert best.is_feasible()
    assert best.cost() == 2
    # start is not mutated
    assert start.cost() == 6
    assert improver.cost_history[0] == 6
    assert improver.cost_history[-1] == 2
    assert improver.status is RunStatus.CONVERGED


def test_cost_history_never_increases() -> None:
    model = generate_instance(jobs=40, slots=0, capacity=20, conflict_ratio=0.1, seed=8)
    start = construct(model, OrderingPolicy.RANDOM, rng=random.Random(1))
    cfg = StrategyConfig(seed=1, iteration_budget=1500, accept_non_improving=0.2)
    improver = LocalSearch(cfg, random.Random(1))
    best = improver.improve(start)
    history = improver.cost_history
    assert all(b < a for a, b in zip(history, history[1:]))
    assert best.is_feasible()
    assert best.cost() <= start.cost()


def test_budget_exhaustion_status() -> None:
    model = generate_instance(jobs=30, capacity=20, conflict_ratio=0.1, seed=2)
    cfg = StrategyConfig(seed=0, iteration_budget=5, max_no_improve=10_000)
    result = create_strategy("local_search", cfg).run(model)
    assert result.status is RunStatus.BUDGET_EXHAUSTED
    assert result.iterations == 5
    assert result.feasible


def test_restarts_are_used_before_converging() -> None:
    start = _one_job_per_slot()
    cfg = StrategyConfig(iteration_budget=100_000, max_no_improve=5, restarts=2)
    improver = LocalSearch(cfg, random.Random(4))
    improver.improve(start, Budget(iterations=100_000))
    assert improver.restarts_used == 2
    assert improver.status is RunStatus.CONVERGED


def test_same_seed_same_result() -> None:
    model = generate_instance(jobs=30, slots=2, capacity=15, conflict_ratio=0.2, seed=6)
    cfg = StrategyConfig(seed=21, iteration_budget=800, accept_non_improving=0.1)
    first = create_strategy("local_search", cfg).run(model)
    second = create_strategy("local_search", cfg).run(model)
    assert first.solution.assignment() == second.solution.assignment()
    assert first.cost_history == second.cost_history


def test_infeasible_start_rejected(two_slot_model) -> None:
    state = SolutionState.from_assignment(two_slot_model, {0: 0, 1: 0, 2: 0, 3: 1})
    with pytest.raises(ValueError):
        LocalSearch(StrategyConfig(), random.Random(0)).improve(state)


def test_trace_file_written(tmp_path: Path, two_slot_model) -> None:
    trace = tmp_path / "trace.csv"
    cfg = StrategyConfig(seed=0, iteration_budget=50, trace_file=str(trace))
    create_strategy("local_search", cfg).run(two_slot_model)
    lines = trace.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "iter;current;best;move;accepted"

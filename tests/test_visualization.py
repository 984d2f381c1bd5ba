"""Smoke tests for chart helpers; files go to pytest's tmp_path."""

from __future__ import annotations

from pathlib import Path

from cspcj.algorithms.constructive import construct
from cspcj.visualization import next_unique_path, plot_convergence, plot_slot_loads


def test_slot_load_chart(tmp_path: Path, two_slot_model) -> None:
    state = construct(two_slot_model)
    out = plot_slot_loads(state, tmp_path / "charts" / "slots.png")
    assert Path(out).exists()
    assert Path(out).stat().st_size > 0


def test_convergence_chart_and_unique_names(tmp_path: Path) -> None:
    target = tmp_path / "conv.png"
    first = plot_convergence({"ls/0": [9, 7, 6], "vns/0": [9, 6], "empty": []}, target, lower_bound=5)
    assert Path(first) == target
    second = next_unique_path(target)
    assert Path(second).name == "conv_1.png"
    plot_convergence({"ls/1": [4]}, second)
    assert Path(second).exists()

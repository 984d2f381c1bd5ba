"""Smoke tests for the command-line driver (`main.main`).

Every run writes into pytest's tmp_path.
"""

from __future__ import annotations

import json
from pathlib import Path

import main as cli


def test_generate_then_solve(tmp_path: Path) -> None:
    instance = tmp_path / "gen.yaml"
    assert cli.main(["generate", str(instance), "--jobs", "12", "--conflict-ratio", "0.2"]) == 0
    assert instance.exists()

    report_path = tmp_path / "out" / "report.json"
    charts = tmp_path / "charts"
    code = cli.main(
        [
            "--log-level",
            "WARNING",
            "solve",
            str(instance),
            "-s",
            "greedy",
            "-s",
            "local_search",
            "--seed",
            "3",
            "--iterations",
            "200",
            "-o",
            str(report_path),
            "--charts-dir",
            str(charts),
        ]
    )
    assert code == 0
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["feasible"] is True
    assert report["seed"] == 3
    assert report["strategy"] in {"greedy", "local_search"}
    assert len(list(charts.glob("*.png"))) == 2


def test_solve_prints_report_and_flags_infeasible(fixtures_dir: Path, capsys) -> None:
    code = cli.main(["solve", str(fixtures_dir / "oversized.json"), "-s", "greedy", "--seed", "0"])
    assert code == 2
    printed = json.loads(capsys.readouterr().out)
    assert printed["status"] == "infeasible"


def test_config_file_and_bad_keys(tmp_path: Path, fixtures_dir: Path) -> None:
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text(
        "strategies: [multistart]\nseeds: [1]\noptions: {starts: 3}\n"
        f"output: {tmp_path / 'r.json'}\n",
        encoding="utf-8",
    )
    assert cli.main(["--config", str(cfg), "solve", str(fixtures_dir / "two_slots.json")]) == 0
    data = json.loads((tmp_path / "r.json").read_text(encoding="utf-8"))
    assert data["strategy"] == "multistart"
    assert data["cost"] == 2

    bad = tmp_path / "bad.yaml"
    bad.write_text("colour: blue\n", encoding="utf-8")
    assert cli.main(["--config", str(bad), "strategies"]) == 1


def test_invalid_instance_and_unknown_strategy(fixtures_dir: Path, tmp_path: Path) -> None:
    assert cli.main(["solve", str(fixtures_dir / "dangling_conflict.json")]) == 1
    flat = tmp_path / "flat.json"
    flat.write_text('{"jobs": [[0, 1], [1, 1]], "conflicts": [0, 1]}', encoding="utf-8")
    assert cli.main(["solve", str(flat)]) == 1
    assert cli.main(["solve", str(fixtures_dir / "two_slots.json"), "-s", "nope"]) == 1


def test_strategies_and_bench(tmp_path: Path, fixtures_dir: Path, capsys) -> None:
    assert cli.main(["strategies"]) == 0
    names = capsys.readouterr().out.split()
    assert "vns" in names and "exact" in names

    code = cli.main(
        [
            "bench",
            str(fixtures_dir / "two_slots.json"),
            str(fixtures_dir / "k5.yaml"),
            "--strategies",
            "greedy",
            "vns",
            "--repeats",
            "1",
            "--iterations",
            "50",
            "--results-dir",
            str(tmp_path / "bench"),
        ]
    )
    assert code == 0
    summary = Path(capsys.readouterr().out.strip().splitlines()[-1])
    assert summary.name == "summary.csv"
    assert len(summary.read_text(encoding="utf-8").splitlines()) == 1 + 4

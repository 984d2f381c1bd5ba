"""Pytest configuration, shared instances & custom summary hook.

Also ensures the project root is on sys.path so ``main`` is importable.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path so 'import main' works
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from cspcj.models import ConflictGraphModel, SlotPolicy  # noqa: E402
from cspcj.oracle.base import DISABLE_ENV  # noqa: E402

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture(autouse=True)
def _oracle_toggle_cleared(monkeypatch: pytest.MonkeyPatch) -> None:
    # A toggle exported in the developer's shell must not leak into tests.
    monkeypatch.delenv(DISABLE_ENV, raising=False)


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def two_slot_model() -> ConflictGraphModel:
    """Demands [3, 3, 2, 2], jobs 1 and 2 conflict, two slots of capacity 5."""
    return ConflictGraphModel.build(
        [(0, 3), (1, 3), (2, 2), (3, 2)],
        [(0, 5), (1, 5)],
        [(1, 2)],
        name="two_slots",
    )


@pytest.fixture
def oversized_model() -> ConflictGraphModel:
    """Job 1 needs more than any slot holds and no slot may be opened."""
    return ConflictGraphModel.build([(0, 2), (1, 10)], [(0, 5), (1, 5)], name="oversized")


@pytest.fixture
def k5_model() -> ConflictGraphModel:
    """Complete conflict graph over 5 unit jobs, slots opened on demand."""
    ids = range(5)
    return ConflictGraphModel.build(
        [(j, 1) for j in ids],
        [],
        [(a, b) for a in ids for b in ids if a < b],
        slot_policy=SlotPolicy(open_new_slots=True, new_slot_capacity=10),
        name="k5",
    )


def pytest_terminal_summary(
    terminalreporter: pytest.TerminalReporter,
    exitstatus: int,
    config: pytest.Config,
) -> None:  # noqa: D401
    """Append a compact custom summary at the end of test session."""
    stats = terminalreporter.stats
    collected = terminalreporter._numcollected  # type: ignore[attr-defined]
    passed = len(stats.get("passed", []))
    failed = len(stats.get("failed", []))
    errors = len(stats.get("error", []))
    skipped = len(stats.get("skipped", []))
    xfailed = len(stats.get("xfailed", []))
    xpassed = len(stats.get("xpassed", []))

    terminalreporter.section("Custom summary", sep="=")
    terminalreporter.write_line(
        "Collected: "
        f"{collected} | Passed: {passed} | Failed: {failed} | "
        f"Errors: {errors} | Skipped: {skipped} | "
        f"xfailed: {xfailed} | xpassed: {xpassed}"
    )
    if failed:
        terminalreporter.write_line("Failed tests:")
        for rep in stats["failed"]:
            terminalreporter.write_line(f"  - {rep.nodeid}")

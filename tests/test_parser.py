"""Pytest tests for instance files (`load_instance`, `parse_instance`, `save_instance`).

Fixtures under tests/fixtures cover JSON and YAML records; malformed records
are built inline and must raise `InvalidInstance`.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from cspcj.errors import InvalidInstance
from cspcj.parser import dump_instance, load_instance, parse_instance, save_instance


def test_load_json_fixture(fixtures_dir: Path, two_slot_model) -> None:
    model = load_instance(fixtures_dir / "two_slots.json")
    assert model == two_slot_model
    assert model.name == "two_slots"
    assert model.openable_slot_ids() == ()


def test_load_yaml_fixture(fixtures_dir: Path) -> None:
    model = load_instance(fixtures_dir / "k5.yaml")
    assert model.n_jobs == 5
    assert len(model.conflicts) == 10
    assert model.slot_policy.open_new_slots
    assert model.max_slots() == 5
    assert model.capacity(0) == 10


def test_name_defaults_to_file_stem(tmp_path: Path) -> None:
    path = tmp_path / "tiny.yaml"
    path.write_text("jobs: [[0, 1]]\nslots: [[0, 2]]\n", encoding="utf-8")
    model = load_instance(path)
    assert model.name == "tiny"
    assert model.demand(0) == 1


def test_dangling_conflict_fixture(fixtures_dir: Path) -> None:
    with pytest.raises(InvalidInstance) as exc:
        load_instance(fixtures_dir / "dangling_conflict.json")
    assert exc.value.job_ids == (7,)


@pytest.mark.parametrize(
    "record",
    [
        {"slots": []},
        {"jobs": [], "deadline": 3},
        {"jobs": [{"id": 0}]},
        {"jobs": [[0, 1, 2]]},
        {"jobs": [[0, 1]], "slot_policy": {"open_new_slots": True, "growth": 2}},
        {"jobs": [[0, 1]], "slot_policy": [1]},
        ["not", "a", "mapping"],
        {"jobs": [[0, 1], [1, 1]], "conflicts": [0, 1]},
        {"jobs": [[0, 1], [1, 1]], "conflicts": [[0, 1, 1]]},
        {"jobs": [[0, 1], [1, 1]], "conflicts": [["a", 1]]},
        {"jobs": [[0, 1], [1, 1]], "conflicts": {"0": 1}},
        {"jobs": 3},
        {"jobs": [[0, 1]], "slots": [[0, 2]], "slot_policy": {"max_slots": "3"}},
        {
            "jobs": [[0, 1]],
            "slot_policy": {"open_new_slots": True, "max_slots": 2.5, "new_slot_capacity": 2},
        },
        {
            "jobs": [[0, 1]],
            "slot_policy": {"open_new_slots": True, "max_slots": -1, "new_slot_capacity": 2},
        },
        {"jobs": [[0, 1]], "slot_policy": {"new_slot_capacity": "big"}},
    ],
)
def test_malformed_records(record) -> None:
    with pytest.raises(InvalidInstance):
        parse_instance(record)


def test_syntax_errors_become_invalid_instance(tmp_path: Path) -> None:
    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{jobs: ", encoding="utf-8")
    with pytest.raises(InvalidInstance):
        load_instance(bad_json)
    bad_yaml = tmp_path / "bad.yaml"
    bad_yaml.write_text("jobs: [1, 2\n", encoding="utf-8")
    with pytest.raises(InvalidInstance):
        load_instance(bad_yaml)


def test_save_and_reload(tmp_path: Path, k5_model) -> None:
    for suffix in (".json", ".yaml"):
        path = tmp_path / f"k5{suffix}"
        save_instance(k5_model, path)
        assert load_instance(path) == k5_model
    assert dump_instance(k5_model)["slot_policy"]["new_slot_capacity"] == 10

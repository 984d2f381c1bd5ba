"""Instance files: JSON or YAML records with jobs, slots and conflicts.

Record layout::

    name: example            # optional
    jobs: [{id: 0, demand: 3}, ...]
    slots: [{id: 0, capacity: 5}, ...]
    conflicts: [[0, 1], ...]
    slot_policy: {open_new_slots: true, new_slot_capacity: 5, max_slots: null}
    allow_partial: false
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from cspcj.errors import InvalidInstance
from cspcj.models import ConflictGraphModel, Job, Slot, SlotPolicy

_TOP_LEVEL_KEYS = {"name", "jobs", "slots", "conflicts", "slot_policy", "allow_partial"}
_POLICY_KEYS = {"open_new_slots", "new_slot_capacity", "max_slots"}


def _entry(raw: Any, kind: str, amount: str) -> tuple[Any, Any]:
    if isinstance(raw, Mapping):
        if "id" not in raw or amount not in raw:
            raise InvalidInstance(f"{kind} entry {dict(raw)!r} needs 'id' and {amount!r}")
        return raw["id"], raw[amount]
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return raw[0], raw[1]
    raise InvalidInstance(f"invalid {kind} entry {raw!r}")


def _records(data: Mapping[str, Any], key: str) -> list[Any]:
    raw = data.get(key) or []
    if not isinstance(raw, (list, tuple)):
        raise InvalidInstance(f"{key!r} must be a list, got {type(raw).__name__}")
    return list(raw)


def parse_instance(data: Mapping[str, Any], name: str = "") -> ConflictGraphModel:
    """Build a validated model from a decoded instance record.

    Raises:
        InvalidInstance: On unknown keys, malformed entries or any model
            invariant violation.
    """
    if not isinstance(data, Mapping):
        raise InvalidInstance("instance record must be a mapping")
    unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
    if unknown:
        raise InvalidInstance(f"unknown instance key(s): {unknown}")
    if "jobs" not in data:
        raise InvalidInstance("instance record has no 'jobs'")

    jobs = [Job(*_entry(raw, "job", "demand")) for raw in _records(data, "jobs")]
    slots = [Slot(*_entry(raw, "slot", "capacity")) for raw in _records(data, "slots")]
    conflicts = _records(data, "conflicts")

    policy_raw = data.get("slot_policy") or {}
    if not isinstance(policy_raw, Mapping):
        raise InvalidInstance("slot_policy must be a mapping")
    bad_policy = sorted(set(policy_raw) - _POLICY_KEYS)
    if bad_policy:
        raise InvalidInstance(f"unknown slot_policy key(s): {bad_policy}")
    policy = SlotPolicy(
        open_new_slots=bool(policy_raw.get("open_new_slots", False)),
        new_slot_capacity=policy_raw.get("new_slot_capacity"),
        max_slots=policy_raw.get("max_slots"),
    )
    return ConflictGraphModel.build(
        jobs,
        slots,
        conflicts,
        slot_policy=policy,
        allow_partial=bool(data.get("allow_partial", False)),
        name=str(data.get("name") or name),
    )


def load_instance(path: Union[str, Path]) -> ConflictGraphModel:
    """Read an instance from a ``.json``, ``.yaml`` or ``.yml`` file.

    The file stem is used as the instance name unless the record has one.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise InvalidInstance(f"{path}: not valid YAML ({exc})") from exc
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidInstance(f"{path}: not valid JSON ({exc})") from exc
    return parse_instance(data, name=path.stem)


def dump_instance(model: ConflictGraphModel) -> dict[str, Any]:
    """Inverse of :func:`parse_instance`."""
    policy = model.slot_policy
    return {
        "name": model.name,
        "jobs": [{"id": job.id, "demand": job.demand} for job in model.jobs],
        "slots": [{"id": slot.id, "capacity": slot.capacity} for slot in model.slots],
        "conflicts": [[a, b] for a, b in model.conflicts],
        "slot_policy": {
            "open_new_slots": policy.open_new_slots,
            "new_slot_capacity": policy.new_slot_capacity,
            "max_slots": policy.max_slots,
        },
        "allow_partial": model.allow_partial,
    }


def save_instance(model: ConflictGraphModel, path: Union[str, Path]) -> None:
    path = Path(path)
    data = dump_instance(model)
    if path.suffix.lower() in (".yaml", ".yml"):
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    else:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")

"""Strategy configuration record.

``StrategyConfig`` bundles every recognized option so configuration can be
passed uniformly to any registered strategy (each strategy reads only the
subset it needs) and persisted next to results for reproducibility.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml


class OrderingPolicy(str, Enum):
    """Order in which the constructive heuristic considers jobs."""

    INPUT = "input"
    DEMAND_DESC = "demand_desc"
    DEMAND_DESC_RANDOM_TIES = "demand_desc_random_ties"
    DEGREE_DESC = "degree_desc"
    DSATUR = "dsatur"
    RANDOM = "random"


class SlotRule(str, Enum):
    FIRST_FIT = "first_fit"
    BEST_FIT = "best_fit"


DEFAULT_MOVE_WEIGHTS = {"reassign": 0.5, "swap": 0.3, "merge": 0.2}


@dataclass(slots=True)
class StrategyConfig:
    """Options recognized by the strategies.

    Core options: ``seed``, ``iteration_budget``, ``time_budget`` (seconds or
    ``timedelta``), ``ordering_policy`` and ``accept_non_improving``
    (probability of accepting a worse feasible move). ``ordering_policy=None``
    lets each strategy use its own default.
    """

    seed: Optional[int] = None
    iteration_budget: Optional[int] = 10_000
    time_budget: Optional[float] = None
    ordering_policy: Optional[OrderingPolicy] = None
    accept_non_improving: float = 0.0
    max_no_improve: int = 500
    max_non_improving: int = 20
    restarts: int = 0
    starts: int = 10
    slot_rule: SlotRule = SlotRule.FIRST_FIT
    shuffle_slots: bool = False
    cost: str = "slot_count"
    allow_reassign: bool = False
    move_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_MOVE_WEIGHTS))
    oracle_backend: str = "cpsat"
    enable_oracle: bool = True
    population_size: int = 30
    generations: int = 100
    mutation_rate: float = 0.2
    shake_strength: int = 0
    trace_file: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.time_budget, timedelta):
            self.time_budget = self.time_budget.total_seconds()
        if self.ordering_policy is not None:
            self.ordering_policy = OrderingPolicy(self.ordering_policy)
        self.slot_rule = SlotRule(self.slot_rule)
        if self.seed is not None and (not isinstance(self.seed, int) or isinstance(self.seed, bool)):
            raise ValueError(f"seed must be an integer, got {self.seed!r}")
        if not 0.0 <= float(self.accept_non_improving) <= 1.0:
            raise ValueError(
                f"accept_non_improving must be a probability, got {self.accept_non_improving}"
            )
        if self.iteration_budget is not None and self.iteration_budget < 0:
            raise ValueError("iteration_budget must be >= 0")
        if self.time_budget is not None and self.time_budget < 0:
            raise ValueError("time_budget must be >= 0")
        if self.max_no_improve < 1:
            raise ValueError("max_no_improve must be >= 1")
        if not 0.0 <= self.mutation_rate <= 1.0:
            raise ValueError(f"mutation_rate must be a probability, got {self.mutation_rate}")
        unknown_moves = set(self.move_weights) - set(DEFAULT_MOVE_WEIGHTS)
        if unknown_moves:
            raise ValueError(f"Unknown move kinds in move_weights: {sorted(unknown_moves)}")
        if any(w < 0 for w in self.move_weights.values()) or not any(
            w > 0 for w in self.move_weights.values()
        ):
            raise ValueError("move_weights must be non-negative with at least one positive")

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "StrategyConfig":
        """Build a config from a plain mapping (e.g. a YAML section).

        Raises:
            ValueError: On unrecognized keys or invalid values.
        """
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown strategy option(s): {unknown}")
        return cls(**dict(data))

    def replace(self, **changes: Any) -> "StrategyConfig":
        values = self.to_dict()
        values.update(changes)
        return StrategyConfig.from_mapping(values)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if self.ordering_policy is not None:
            d["ordering_policy"] = self.ordering_policy.value
        d["slot_rule"] = self.slot_rule.value
        return d


def load_config(path: Union[str, Path]) -> dict[str, Any]:
    """Load a YAML or JSON configuration file into a dict."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        cfg = yaml.safe_load(text) or {}
    else:
        cfg = json.loads(text)
    if not isinstance(cfg, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return cfg

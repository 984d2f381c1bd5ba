"""Charts: per-slot load bars and convergence curves."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

import matplotlib

matplotlib.use("Agg")  # Must be set before importing pyplot
import matplotlib.pyplot as plt  # noqa: E402

from cspcj.solution import SolutionState  # noqa: E402

logger = logging.getLogger("cspcj.charts")

PathLike = Union[str, Path]


def _ensure_dir(path: PathLike) -> None:
    parent = os.path.dirname(str(path))
    if parent:
        os.makedirs(parent, exist_ok=True)


def next_unique_path(path: PathLike) -> str:
    """``path`` itself, or ``stem_1.ext``, ``stem_2.ext``... if it exists."""
    p = Path(path)
    if not p.exists():
        return str(p)
    i = 1
    while True:
        candidate = p.with_name(f"{p.stem}_{i}{p.suffix}")
        if not candidate.exists():
            return str(candidate)
        i += 1


def plot_slot_loads(state: SolutionState, filepath: PathLike, title: Optional[str] = None) -> str:
    """Bar chart of used slots: load against capacity, with job ids as labels."""
    model = state.model
    slots = state.used_slots()
    loads = [state.load(s) for s in slots]
    caps = [model.capacity(s) for s in slots]
    width = max(6.0, 0.6 * len(slots) + 2)
    fig, ax = plt.subplots(figsize=(width, 5), constrained_layout=True)
    positions = list(range(len(slots)))
    ax.bar(positions, caps, color="#dddddd", edgecolor="#888888", label="capacity")
    ax.bar(positions, loads, color="#1f77b4", alpha=0.85, label="load")
    for x, slot_id, load in zip(positions, slots, loads):
        members = ",".join(str(j) for j in sorted(state.members(slot_id)))
        ax.annotate(
            members,
            xy=(x, load),
            xytext=(0, 3),
            textcoords="offset points",
            ha="center",
            fontsize=7,
        )
    ax.set_xticks(positions)
    ax.set_xticklabels([str(s) for s in slots])
    ax.set_xlabel("Slot", fontsize=12)
    ax.set_ylabel("Load", fontsize=12)
    ax.set_title(
        title or f"{model.name or 'instance'}: {len(slots)} slots, cost {state.cost()}",
        fontsize=13,
        fontweight="bold",
    )
    ax.grid(True, axis="y", alpha=0.25, linestyle="--", linewidth=0.7)
    ax.legend(frameon=False, fontsize=9)
    _ensure_dir(filepath)
    fig.savefig(filepath, dpi=150)
    plt.close(fig)
    logger.info("Slot load chart saved as: %s", filepath)
    return str(filepath)


def plot_convergence(
    histories: Mapping[str, Sequence[float]],
    filepath: PathLike,
    title: str = "Convergence comparison",
    lower_bound: Optional[float] = None,
) -> str:
    """Best-cost histories (one curve per label) against improvement index."""
    fig, ax = plt.subplots(figsize=(10, 6), constrained_layout=True)
    for label, values in histories.items():
        values = list(values)
        if not values:
            continue
        ax.step(
            range(len(values)),
            values,
            where="post",
            label=label,
            linewidth=2,
            marker="o",
            markersize=4,
            markerfacecolor="white",
            markeredgewidth=1.0,
        )
        ax.annotate(
            f"{values[-1]:g}",
            xy=(len(values) - 1, values[-1]),
            xytext=(6, -10),
            textcoords="offset points",
            fontsize=9,
            bbox=dict(boxstyle="round,pad=0.2", facecolor="white", alpha=0.55),
        )
    if lower_bound is not None:
        ax.axhline(y=lower_bound, color="red", linestyle="--", linewidth=1.2, label="lower bound")
    ax.set_xlabel("Improvement", fontsize=12)
    ax.set_ylabel("Cost", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.grid(True, alpha=0.25, linestyle="--", linewidth=0.7)
    ax.legend(loc="center left", bbox_to_anchor=(1.02, 0.5), frameon=False, fontsize=9)
    _ensure_dir(filepath)
    fig.savefig(filepath, dpi=180)
    plt.close(fig)
    logger.info("Convergence plot saved as: %s", filepath)
    return str(filepath)

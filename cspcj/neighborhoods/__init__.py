"""Neighborhood moves used by the improvement strategies."""

from cspcj.neighborhoods.moves import (
    AppliedMove,
    Move,
    apply_move,
    concentration,
    eject_move,
    merge_slot,
    random_merge,
    random_reassign,
    random_swap,
    shake,
    undo_move,
)

__all__ = [
    "AppliedMove",
    "Move",
    "apply_move",
    "concentration",
    "eject_move",
    "merge_slot",
    "random_merge",
    "random_reassign",
    "random_swap",
    "shake",
    "undo_move",
]

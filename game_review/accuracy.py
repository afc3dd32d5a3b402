"""Per-side accuracy and classification counts for an analysed game."""

from __future__ import annotations

import math
from collections.abc import Iterable

from game_review.models import (
    BEST,
    BLUNDER,
    BOOK,
    BRILLIANT,
    FORCED,
    GOOD,
    GREAT,
    INACCURACY,
    MISTAKE,
    MoveRecord,
    MoveStats,
)

ACCURACY_SCORES: dict[str, int] = {
    BRILLIANT: 100,
    GREAT: 95,
    BEST: 100,
    GOOD: 90,
    BOOK: 100,
    FORCED: 100,
    INACCURACY: 75,
    MISTAKE: 50,
    BLUNDER: 25,
}

# Score for a move that was never classified (e.g. skipped as illegal)
_UNCLASSIFIED_SCORE = 100
_UNKNOWN_SCORE = 80


def _side_moves(moves: Iterable[MoveRecord], color: str) -> list[MoveRecord]:
    return [m for m in moves if m.color == color]


def accuracy_for(moves: Iterable[MoveRecord], color: str) -> int:
    """Average accuracy of one side, as an integer percentage.

    Args:
        moves: Annotated moves of a game.
        color: "w" or "b".

    Returns:
        Mean of the per-move scores rounded half up, or 0 if the side has no moves.
    """
    side = _side_moves(moves, color)
    if not side:
        return 0

    total = 0
    for move in side:
        if move.classification is None:
            total += _UNCLASSIFIED_SCORE
        else:
            total += ACCURACY_SCORES.get(move.classification, _UNKNOWN_SCORE)

    # Halves round up
    return math.floor(total / len(side) + 0.5)


def stats_for(moves: Iterable[MoveRecord], color: str) -> MoveStats:
    """Count each classification among one side's moves."""
    stats = MoveStats()
    for move in _side_moves(moves, color):
        if move.classification is not None:
            stats.increment(move.classification)
    return stats

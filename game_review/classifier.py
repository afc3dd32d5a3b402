"""Move quality classification.

Turns a pair of engine evaluations (before and after a move) into one of
the nine classification labels. Evaluations are in pawns from White's
point of view and capped at +/-100 for forced mates.
"""

from __future__ import annotations

import logging

import chess

from game_review.models import (
    BEST,
    BLACK,
    BLUNDER,
    BOOK,
    BRILLIANT,
    FORCED,
    GOOD,
    GREAT,
    INACCURACY,
    MATE_EVAL,
    MISTAKE,
    WHITE,
)

logger = logging.getLogger(__name__)

# Loss thresholds for moves that were not the engine's choice
# (lower bound inclusive, label), checked from the largest down.
_LOSS_THRESHOLDS = [
    (3.0, BLUNDER),
    (1.0, MISTAKE),
    (0.3, INACCURACY),
]

# A best move that gains this much while leaving a decisive position
_BRILLIANT_GAIN = -0.5
_BRILLIANT_MIN_EVAL = 2.0

_GREAT_MIN_EVAL = 1.5
_GREAT_GAIN = -0.2


def eval_loss(eval_before: float, eval_after: float, player_color: str) -> float:
    """Evaluation lost by the side that moved, in pawns.

    Positive when the position moved against the mover, negative when the
    move improved it.

    Args:
        eval_before: White-relative evaluation before the move.
        eval_after: White-relative evaluation after the move.
        player_color: "w" or "b".

    Returns:
        Side-relative loss.
    """
    if player_color == BLACK:
        return eval_after - eval_before
    return eval_before - eval_after


def _got_mated(eval_after: float, player_color: str) -> bool:
    if player_color == WHITE:
        return eval_after <= -MATE_EVAL
    return eval_after >= MATE_EVAL


def classify_move(
    eval_before: float,
    eval_after: float,
    move_was_best: bool,
    is_book_move: bool,
    legal_moves_count: int,
    player_color: str = WHITE,
) -> str:
    """Classify a move.

    Rules are applied in order and the first match wins: book horizon,
    only legal move, position already lost or won by force, allowing mate,
    engine's own choice (brilliant/great/best), then eval loss buckets.

    Args:
        eval_before: White-relative evaluation before the move.
        eval_after: White-relative evaluation after the move.
        move_was_best: Whether the move matched the engine suggestion.
        is_book_move: Whether the move lies inside the opening horizon.
        legal_moves_count: Legal moves available to the mover.
        player_color: "w" or "b".

    Returns:
        One of the labels in game_review.models.CLASSIFICATIONS.
    """
    if is_book_move:
        return BOOK
    if legal_moves_count == 1:
        return FORCED
    if abs(eval_before) >= MATE_EVAL:
        return FORCED

    loss = eval_loss(eval_before, eval_after, player_color)

    if (
        abs(eval_after) >= MATE_EVAL
        and not move_was_best
        and _got_mated(eval_after, player_color)
    ):
        return BLUNDER

    if move_was_best:
        if loss < _BRILLIANT_GAIN and abs(eval_after) > _BRILLIANT_MIN_EVAL:
            return BRILLIANT
        if abs(eval_after) > _GREAT_MIN_EVAL or loss < _GREAT_GAIN:
            return GREAT
        return BEST

    for threshold, label in _LOSS_THRESHOLDS:
        if loss >= threshold:
            return label
    return GOOD


def move_matches_best(board: chess.Board, move_uci: str, move_san: str, best_move: str) -> bool:
    """Check whether a played move is the engine's suggested move.

    Compares UCI strings first. Failing that, replays the suggestion on
    the pre-move board and compares SAN, so two spellings of the same
    move still count as a match. A suggestion that cannot be parsed or
    is illegal here is treated as a non-match.

    Args:
        board: Position before the move (left unchanged).
        move_uci: Played move in UCI notation.
        move_san: Played move in SAN.
        best_move: Engine suggestion in UCI notation, may be empty.

    Returns:
        True if the played move is the suggestion.
    """
    if not best_move:
        return False
    if move_uci == best_move:
        return True

    try:
        suggestion = chess.Move.from_uci(best_move)
    except chess.InvalidMoveError:
        logger.debug("Ignoring unparsable engine move %r", best_move)
        return False

    if suggestion not in board.legal_moves:
        logger.debug("Engine move %s is not legal in %s", best_move, board.fen())
        return False

    return board.san(suggestion) == move_san

"""PGN loading: turns a game record into ply-ordered MoveRecords."""

from __future__ import annotations

import io
import logging

import chess
import chess.pgn

from game_review.models import BLACK, WHITE, MoveRecord

logger = logging.getLogger(__name__)


def _read_game(pgn: str) -> chess.pgn.Game | None:
    """Read the first game of a PGN string, None if it is unusable."""
    if not pgn or not pgn.strip():
        return None

    game = chess.pgn.read_game(io.StringIO(pgn))
    if game is None:
        return None
    if game.errors:
        logger.warning("Failed to parse PGN: %s", game.errors[0])
        return None
    return game


def read_headers(pgn: str) -> dict[str, str]:
    """Return the tag pairs of the first game, or {} if unreadable."""
    game = _read_game(pgn)
    if game is None:
        return {}
    return dict(game.headers)


def _captured_piece(board: chess.Board, move: chess.Move) -> str | None:
    if board.is_en_passant(move):
        return "p"
    piece_type = board.piece_type_at(move.to_square)
    if piece_type is None:
        return None
    return chess.piece_symbol(piece_type)


def parse_pgn(pgn: str) -> list[MoveRecord]:
    """Parse a PGN string into one MoveRecord per ply.

    Honours SetUp/FEN headers. A record that cannot be read (or holds an
    illegal move) yields an empty list.

    Args:
        pgn: Raw PGN text.

    Returns:
        Moves of the main line in play order.
    """
    game = _read_game(pgn)
    if game is None:
        return []

    board = game.board()
    moves: list[MoveRecord] = []
    for ply, move in enumerate(game.mainline_moves()):
        fen_before = board.fen()
        san = board.san(move)
        piece_type = board.piece_type_at(move.from_square)
        color = WHITE if board.turn == chess.WHITE else BLACK
        move_number = board.fullmove_number
        captured = _captured_piece(board, move)

        board.push(move)

        moves.append(
            MoveRecord(
                ply=ply,
                move_number=move_number,
                san=san,
                uci=move.uci(),
                from_square=chess.square_name(move.from_square),
                to_square=chess.square_name(move.to_square),
                piece=chess.piece_symbol(piece_type) if piece_type else "",
                color=color,
                fen_before=fen_before,
                fen=board.fen(),
                captured=captured,
                promotion=chess.piece_symbol(move.promotion) if move.promotion else None,
            )
        )

    return moves

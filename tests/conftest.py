"""Shared test fixtures with dual-mode support (fake vs real Stockfish).

Usage:
    pytest tests/                  # Fast, fake engine (no Stockfish)
    pytest tests/ --e2e            # Also run tests against real Stockfish

Fixtures:
    fake_protocol   - Stand-in for python-chess's UCI protocol, scripted
                      per FEN, patched into chess.engine.popen_uci.
    fake_oracle     - Stand-in for EvaluationOracle returning canned
                      EvaluationResults without any engine.

Helpers:
    played_move_oracle(moves) - FakeOracle whose evaluation is always 0.0
                                and whose best move is the move played.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import chess
import chess.engine
import pytest

from game_review.models import EvaluationResult

SCHOLARS_MATE_FEN = "r1bqkb1r/pppp1Qpp/2n2n2/4p3/2B1P3/8/PPPP1PPP/RNB1K1NR b KQkq - 0 4"
FOOLS_MATE_FEN = "rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 1 3"
STALEMATE_FEN = "7k/5Q2/6K1/8/8/8/8/8 b - - 0 1"


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no fakes).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e is given."""
    if config.getoption("--e2e"):
        return
    skip = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def cp_info(cp: int, depth: int, pv: list[str], turn: chess.Color = chess.WHITE) -> dict:
    """Build an info dict the way python-chess reports a cp score."""
    return {
        "depth": depth,
        "score": chess.engine.PovScore(chess.engine.Cp(cp), turn),
        "pv": [chess.Move.from_uci(m) for m in pv],
    }


def mate_info(mate: int, depth: int, pv: list[str], turn: chess.Color = chess.WHITE) -> dict:
    """Build an info dict the way python-chess reports a mate score."""
    return {
        "depth": depth,
        "score": chess.engine.PovScore(chess.engine.Mate(mate), turn),
        "pv": [chess.Move.from_uci(m) for m in pv],
    }


class FakeAnalysis:
    """Scripted replacement for chess.engine.AnalysisResult.

    Yields the given info dicts, then finishes with best_move. With
    hang=True it blocks after the infos until stop() is called.
    """

    def __init__(self, infos: list[dict], best_move: str | None = None, hang: bool = False):
        self._infos = list(infos)
        self._best_move = best_move
        self._hang = hang
        self._stopped = asyncio.Event()
        self.stopped = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        if self._infos and not self.stopped:
            await asyncio.sleep(0)
            return self._infos.pop(0)
        if self._hang and not self.stopped:
            await self._stopped.wait()
        raise StopAsyncIteration

    def stop(self) -> None:
        self.stopped = True
        self._stopped.set()

    async def wait(self) -> chess.engine.BestMove:
        move = chess.Move.from_uci(self._best_move) if self._best_move else None
        return chess.engine.BestMove(move, None)


class FakeProtocol:
    """Scripted replacement for chess.engine.UciProtocol.

    script maps a FEN to (infos, best_move) or (infos, best_move, hang).
    Unknown FENs get a flat 0.0 evaluation at depth 1 with no move.
    """

    def __init__(self, script: dict | None = None):
        self.script = script or {}
        self.requests: list[str] = []
        self.games: list[object] = []
        self.analyses: list[FakeAnalysis] = []
        self.configure = AsyncMock()
        self.quit = AsyncMock()

    async def analysis(self, board, limit=None, *, game=None, **kwargs):
        fen = board.fen()
        self.requests.append(fen)
        self.games.append(game)
        entry = self.script.get(fen, ([cp_info(0, 1, [])], None))
        analysis = FakeAnalysis(*entry)
        self.analyses.append(analysis)
        return analysis


@pytest.fixture()
def fake_protocol():
    """Patch popen_uci so EvaluationOracle talks to a FakeProtocol."""
    protocol = FakeProtocol()
    with patch(
        "chess.engine.popen_uci",
        new=AsyncMock(return_value=(MagicMock(), protocol)),
    ), patch("game_review.engine._find_stockfish", return_value="/usr/bin/stockfish"):
        yield protocol


class FakeOracle:
    """EvaluationOracle stand-in keyed by FEN, counting every call."""

    def __init__(self, results: dict[str, EvaluationResult] | None = None, default=None):
        self.results = results or {}
        self.default = default
        self.calls: list[str] = []
        self.new_games = 0

    def new_game(self) -> None:
        self.new_games += 1

    async def evaluate(self, fen: str, depth: int) -> EvaluationResult:
        self.calls.append(fen)
        await asyncio.sleep(0)
        if fen in self.results:
            return self.results[fen]
        if self.default is not None:
            return self.default(fen)
        return EvaluationResult(fen=fen)


@pytest.fixture()
def fake_oracle():
    return FakeOracle()


def played_move_oracle(moves) -> FakeOracle:
    """Oracle whose best move at each pre-move position is the move played."""
    results = {
        m.fen_before: EvaluationResult(fen=m.fen_before, evaluation=0.0, best_move=m.uci, depth=15)
        for m in moves
    }
    return FakeOracle(results, default=lambda fen: EvaluationResult(fen=fen, depth=15))

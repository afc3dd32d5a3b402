"""Asynchronous Stockfish client for game review.

Wraps one long-lived UCI engine process via python-chess's asyncio API.
Provides:
- One-position-at-a-time evaluation with preemption of the previous search
- Timeout with fallback to the partial result seen so far
- Synthetic results for finished games (no engine round trip)
- Neutral results when the engine is unavailable
- CLI for quick position analysis
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import shutil
import sys
from pathlib import Path

import chess
import chess.engine

from game_review.models import MATE_EVAL, EvaluationResult

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
]

STOCKFISH_ENV_VAR = "GAME_REVIEW_STOCKFISH"

DEFAULT_DEPTH = 15
DEFAULT_TIMEOUT = 30.0
DEFAULT_HASH_MB = 128
DEFAULT_THREADS = 1

# Moves kept from the principal variation
PV_LENGTH = 5


def _find_stockfish() -> str:
    """Auto-detect Stockfish binary path.

    Checks the GAME_REVIEW_STOCKFISH environment variable, known install
    paths, then falls back to PATH lookup.

    Returns:
        Path to Stockfish binary.

    Raises:
        FileNotFoundError: If Stockfish is not found anywhere.
    """
    env_path = os.environ.get(STOCKFISH_ENV_VAR)
    if env_path:
        if Path(env_path).is_file():
            return env_path
        raise FileNotFoundError(f"{STOCKFISH_ENV_VAR} points to a missing file: {env_path}")

    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise FileNotFoundError(
        f"Stockfish not found. Install it or set {STOCKFISH_ENV_VAR}."
    )


def _clamp(evaluation: float) -> float:
    return max(-MATE_EVAL, min(MATE_EVAL, evaluation))


def terminal_evaluation(board: chess.Board, fen: str | None = None) -> EvaluationResult | None:
    """Evaluate a finished game without asking the engine.

    Args:
        board: Position to check.
        fen: Key to report in the result, defaults to board.fen().

    Returns:
        +/-100 with mate 0 for checkmate (sign = winner), 0 for any draw,
        or None if the game is not over.
    """
    outcome = board.outcome()
    if outcome is None:
        return None

    key = fen if fen is not None else board.fen()
    if outcome.winner is None:
        return EvaluationResult(fen=key, evaluation=0.0)

    evaluation = MATE_EVAL if outcome.winner == chess.WHITE else -MATE_EVAL
    return EvaluationResult(fen=key, evaluation=evaluation, mate=0)


class _PartialResult:
    """Search state accumulated from engine info updates.

    Each info update overwrites the fields it carries. Updates reporting
    depth 0 or mate 0 describe a finished game rather than a search and
    are dropped.
    """

    def __init__(self, fen: str) -> None:
        self.fen = fen
        self.evaluation = 0.0
        self.best_move = ""
        self.pv: list[str] = []
        self.depth = 0
        self.mate: int | None = None

    def update(self, info: dict) -> bool:
        depth = info.get("depth")
        if depth == 0:
            return False

        score = info.get("score")
        white = score.white() if score is not None else None
        if white is not None and white.mate() == 0:
            return False

        if depth is not None:
            self.depth = depth

        if white is not None:
            mate = white.mate()
            if mate is not None:
                self.mate = mate
                self.evaluation = MATE_EVAL if mate > 0 else -MATE_EVAL
            else:
                self.mate = None
                self.evaluation = _clamp(white.score() / 100.0)

        pv = info.get("pv")
        if pv:
            self.pv = [move.uci() for move in pv[:PV_LENGTH]]
            self.best_move = self.pv[0]

        return True

    def finish(self, best: chess.engine.BestMove | None) -> None:
        if best is not None and best.move is not None:
            self.best_move = best.move.uci()

    def result(self) -> EvaluationResult:
        return EvaluationResult(
            fen=self.fen,
            evaluation=self.evaluation,
            best_move=self.best_move,
            pv_line=tuple(self.pv),
            depth=self.depth,
            mate=self.mate,
        )


class EvaluationOracle:
    """Single Stockfish process serving one position at a time."""

    def __init__(
        self,
        stockfish_path: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        hash_mb: int = DEFAULT_HASH_MB,
        threads: int = DEFAULT_THREADS,
    ) -> None:
        """Configure the client. The engine is launched by start().

        Args:
            stockfish_path: Explicit path to Stockfish binary.
                If None, auto-detects on start().
            timeout: Seconds to wait for one search before falling back
                to the partial result.
            hash_mb: Engine hash table size in MB.
            threads: Engine search threads.
        """
        self._stockfish_path = stockfish_path
        self._timeout = timeout
        self._options = {"Hash": hash_mb, "Threads": threads}
        self._protocol: chess.engine.UciProtocol | None = None
        self._lock = asyncio.Lock()
        self._current: chess.engine.AnalysisResult | None = None
        self._game = object()

    @property
    def is_ready(self) -> bool:
        return self._protocol is not None

    @property
    def timeout(self) -> float:
        return self._timeout

    async def _open_engine(self) -> chess.engine.UciProtocol:
        """Launch a fresh Stockfish process.

        Returns:
            Configured UCI protocol.
        """
        if self._stockfish_path is None:
            self._stockfish_path = _find_stockfish()
        _, protocol = await chess.engine.popen_uci(self._stockfish_path)
        await protocol.configure(self._options)
        return protocol

    async def start(self) -> bool:
        """Start the engine process.

        Returns:
            True if the engine is up. On failure evaluations degrade to
            neutral results instead of raising.
        """
        if self._protocol is not None:
            return True
        try:
            self._protocol = await self._open_engine()
        except (FileNotFoundError, OSError, chess.engine.EngineError) as e:
            logger.warning("Engine unavailable: %s", e)
            self._protocol = None
            return False
        return True

    async def _restart(self) -> bool:
        self._protocol = None
        return await self.start()

    def new_game(self) -> None:
        """Make the next request start a new game (engine gets ucinewgame)."""
        self._game = object()

    def stop(self) -> None:
        """Stop the search currently running, if any."""
        if self._current is not None:
            self._current.stop()

    async def evaluate(self, fen: str, depth: int = DEFAULT_DEPTH) -> EvaluationResult:
        """Evaluate one position.

        Preempts the search in progress, then waits for this position's
        search to finish or time out.

        Args:
            fen: Position to evaluate.
            depth: Search depth.

        Returns:
            EvaluationResult from White's point of view. Never raises for
            engine problems; a neutral result is returned instead.
        """
        board = chess.Board(fen)
        terminal = terminal_evaluation(board, fen)
        if terminal is not None:
            return terminal

        self.stop()
        async with self._lock:
            if self._protocol is None:
                logger.warning("Engine not running, neutral evaluation for %s", fen)
                return EvaluationResult(fen=fen)

            try:
                return await self._evaluate_inner(board, fen, depth)
            except chess.engine.EngineTerminatedError:
                logger.warning("Engine terminated, restarting")
                if not await self._restart():
                    return EvaluationResult(fen=fen)
            except chess.engine.EngineError as e:
                logger.warning("Engine error on %s: %s", fen, e)
                return EvaluationResult(fen=fen)

            try:
                return await self._evaluate_inner(board, fen, depth)
            except chess.engine.EngineError as e:
                logger.warning("Engine failed again on %s: %s", fen, e)
                return EvaluationResult(fen=fen)

    async def _evaluate_inner(self, board: chess.Board, fen: str, depth: int) -> EvaluationResult:
        """Internal evaluation without crash recovery."""
        partial = _PartialResult(fen)
        try:
            await asyncio.wait_for(self._search(board, depth, partial), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Search of %s timed out after %.1fs at depth %d",
                fen, self._timeout, partial.depth,
            )
            # None if the engine never acknowledged the request
            if self._current is not None:
                self._current.stop()
        finally:
            self._current = None

        return partial.result()

    async def _search(self, board: chess.Board, depth: int, partial: _PartialResult) -> None:
        """Start the search and collect its updates into partial."""
        analysis = await self._protocol.analysis(
            board,
            chess.engine.Limit(depth=depth),
            game=self._game,
        )
        self._current = analysis
        await self._consume(analysis, partial)

    @staticmethod
    async def _consume(analysis: chess.engine.AnalysisResult, partial: _PartialResult) -> None:
        async for info in analysis:
            partial.update(info)
        # Shielded so a timeout does not cancel python-chess's own future
        best = await asyncio.shield(analysis.wait())
        partial.finish(best)

    async def close(self) -> None:
        """Clean up Stockfish process."""
        if self._protocol is None:
            return
        try:
            await self._protocol.quit()
        except chess.engine.EngineTerminatedError:
            pass
        finally:
            self._protocol = None

    async def __aenter__(self) -> EvaluationOracle:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


async def _cli_analyze(fen: str, depth: int, timeout: float) -> int:
    """Analyze a FEN position and print the engine's verdict.

    Args:
        fen: FEN string of the position to analyze.
        depth: Search depth.
        timeout: Seconds before falling back to a partial result.

    Returns:
        Process exit code.
    """
    async with EvaluationOracle(timeout=timeout) as oracle:
        if not oracle.is_ready:
            print("Error: Stockfish could not be started.", file=sys.stderr)
            return 1
        result = await oracle.evaluate(fen, depth)

    board = chess.Board(fen)
    print(f"Position: {fen}")
    print(f"Side to move: {'White' if board.turn else 'Black'}")
    print()
    if result.mate is not None:
        print(f"  Score: Mate in {abs(result.mate)} ({'White' if result.evaluation > 0 else 'Black'})")
    else:
        print(f"  Score: {result.evaluation:+.2f}")
    print(f"  Depth: {result.depth}")
    if result.best_move:
        print(f"  Best move: {result.best_move}")
    if result.pv_line:
        print(f"  Line: {' '.join(result.pv_line)}")
    return 0


def main() -> None:
    """CLI entry point for engine.py."""
    parser = argparse.ArgumentParser(
        description="Evaluate a single position with Stockfish"
    )
    parser.add_argument("fen", type=str, help="FEN string to analyze")
    parser.add_argument(
        "--depth", type=int, default=DEFAULT_DEPTH, help="Search depth"
    )
    parser.add_argument(
        "--timeout", type=float, default=DEFAULT_TIMEOUT,
        help="Seconds before using the partial result",
    )
    args = parser.parse_args()

    try:
        chess.Board(args.fen)
    except ValueError as e:
        print(f"Error: invalid FEN: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(_cli_analyze(args.fen, args.depth, args.timeout)))


if __name__ == "__main__":
    main()

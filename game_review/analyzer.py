"""Whole-game analysis: walks the moves in order, evaluates every
position once, classifies each move and totals accuracy per side.

Each call to GameAnalyzer.analyze() owns a fresh _Run holding its cache
and its annotated move list. Starting another run bumps the generation;
a superseded run notices after its next engine call returns and drops
everything it computed, so it can never write into the newer run.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from types import MappingProxyType

import chess

from game_review.accuracy import accuracy_for, stats_for
from game_review.cache import PositionCache
from game_review.classifier import classify_move, eval_loss, move_matches_best
from game_review.engine import DEFAULT_DEPTH
from game_review.models import BLACK, WHITE, GameAnalysis, MoveRecord

logger = logging.getLogger(__name__)

# Plies treated as opening theory
BOOK_PLIES = 10

IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"


@dataclass
class _Run:
    generation: int
    source: list[MoveRecord]
    cache: PositionCache
    moves: list[MoveRecord] = field(default_factory=list)


def _percent(done: int, total: int) -> int:
    return math.floor(done / total * 100 + 0.5)


class GameAnalyzer:
    """Drives one analysis run at a time over an EvaluationOracle."""

    def __init__(
        self,
        oracle,
        depth: int = DEFAULT_DEPTH,
        book_plies: int = BOOK_PLIES,
        on_progress: Callable[[int], None] | None = None,
    ) -> None:
        """Set up the analyzer.

        Args:
            oracle: Object with async evaluate(fen, depth) and new_game().
            depth: Search depth for every position.
            book_plies: Leading plies classified as book moves.
            on_progress: Called with the percentage after each move.
        """
        self._oracle = oracle
        self.depth = depth
        self.book_plies = book_plies
        self._on_progress = on_progress
        self._generation = 0
        self._run: _Run | None = None
        self.state = IDLE
        self.progress = 0
        self.result: GameAnalysis | None = None

    def _is_current(self, run: _Run) -> bool:
        return run.generation == self._generation

    def _set_progress(self, run: _Run, percent: int) -> None:
        if not self._is_current(run) or percent <= self.progress:
            return
        self.progress = percent
        if self._on_progress is not None:
            self._on_progress(percent)

    async def analyze(self, moves: list[MoveRecord]) -> GameAnalysis | None:
        """Analyse a game.

        Args:
            moves: Parsed moves in play order. The list is not modified.

        Returns:
            The completed GameAnalysis, or None if a newer run superseded
            this one before it finished.

        Raises:
            RuntimeError: If this same move list is already being analysed.
        """
        if self.state == RUNNING and self._run is not None and self._run.source is moves:
            raise RuntimeError("Analysis already running for this game")

        self._generation += 1
        run = _Run(self._generation, moves, PositionCache(self._oracle))
        self._run = run
        self.state = RUNNING
        self.progress = 0
        self.result = None
        self._oracle.new_game()

        total = len(moves)
        if total == 0:
            return self._complete(run)

        logger.info("Analysing %d plies at depth %d", total, self.depth)
        board = chess.Board(moves[0].fen_before)
        for index, move in enumerate(moves):
            annotated = await self._analyze_move(run, board, index, move)
            if not self._is_current(run):
                logger.info("Analysis run %d superseded, discarding", run.generation)
                return None
            run.moves.append(annotated)
            self._set_progress(run, _percent(index + 1, total))

        return self._complete(run)

    async def _analyze_move(
        self,
        run: _Run,
        board: chess.Board,
        index: int,
        move: MoveRecord,
    ) -> MoveRecord:
        """Evaluate and classify one move, advancing the board.

        Returns a copy of the move; the copy is left unannotated if the
        move cannot be played on the current board, and the board then
        continues from the move's recorded position.
        """
        annotated = dataclasses.replace(move, pv_line=[])

        before = await run.cache.resolve(board.fen(), self.depth)
        if not self._is_current(run):
            return annotated

        try:
            played = board.parse_san(move.san)
        except ValueError as e:
            logger.warning("Skipping unplayable move %s at ply %d: %s", move.san, move.ply, e)
            self._resync(board, move)
            return annotated

        legal_moves_count = board.legal_moves.count()
        move_was_best = move_matches_best(board, move.uci, move.san, before.best_move)

        board.push(played)
        after = await run.cache.resolve(board.fen(), self.depth)
        if not self._is_current(run):
            return annotated

        annotated.classification = classify_move(
            before.evaluation,
            after.evaluation,
            move_was_best,
            index < self.book_plies,
            legal_moves_count,
            move.color,
        )
        annotated.evaluation = after.evaluation
        annotated.eval_before = before.evaluation
        annotated.eval_loss = eval_loss(before.evaluation, after.evaluation, move.color)
        annotated.mate = after.mate
        annotated.best_move = before.best_move
        annotated.analysis_depth = after.depth
        annotated.pv_line = list(after.pv_line)
        return annotated

    @staticmethod
    def _resync(board: chess.Board, move: MoveRecord) -> None:
        """Jump the board to the recorded position after a skipped move."""
        try:
            board.set_fen(move.fen)
        except ValueError as e:
            logger.warning("No usable position after ply %d, board unchanged: %s", move.ply, e)

    def _complete(self, run: _Run) -> GameAnalysis:
        moves = tuple(run.moves)
        self.result = GameAnalysis(
            moves=moves,
            positions=MappingProxyType(run.cache.snapshot()),
            white_accuracy=accuracy_for(moves, WHITE),
            black_accuracy=accuracy_for(moves, BLACK),
            white_stats=stats_for(moves, WHITE),
            black_stats=stats_for(moves, BLACK),
        )
        self.state = COMPLETED
        self._set_progress(run, 100)
        logger.info(
            "Analysis complete: white %d%%, black %d%% (%d positions)",
            self.result.white_accuracy, self.result.black_accuracy, len(run.cache),
        )
        return self.result

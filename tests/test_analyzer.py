"""Tests for GameAnalyzer, the whole-game analysis loop.

Covers: the four-ply book scenario, derived move fields, one engine call
per distinct position, progress reporting, empty games, unplayable moves,
the duplicate-run guard, isolation between runs, and a finished game
analysed through the real client with a fake engine.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging

import pytest

from conftest import FakeOracle, played_move_oracle
from game_review.analyzer import COMPLETED, IDLE, RUNNING, GameAnalyzer
from game_review.engine import EvaluationOracle
from game_review.models import EvaluationResult, GameAnalysis, MoveStats
from game_review.pgn import parse_pgn

FOUR_PLIES = "1. e4 e5 2. Nf3 Nc6 *"
FOOLS_MATE = "1. f3 e5 2. g4 Qh4# 0-1"


class _GatedOracle(FakeOracle):
    """FakeOracle that holds requests until release() is called.

    With held=N only the first N requests wait on the gate and answer
    -9.0; later ones answer a flat 0.0 right away. held=None holds all.
    """

    def __init__(self, held: int | None = None):
        super().__init__()
        self._gate = asyncio.Event()
        self._held = held

    def release(self) -> None:
        self._gate.set()

    async def evaluate(self, fen, depth):
        self.calls.append(fen)
        if self._held is None or len(self.calls) <= self._held:
            await self._gate.wait()
            return EvaluationResult(fen=fen, evaluation=-9.0, best_move="a2a3", depth=1)
        await asyncio.sleep(0)
        return EvaluationResult(fen=fen, depth=15)


# ---------------------------------------------------------------------------
# Full runs
# ---------------------------------------------------------------------------


class TestFourPlyBookGame:

    def test_all_book_and_full_accuracy(self):
        moves = parse_pgn(FOUR_PLIES)
        analyzer = GameAnalyzer(played_move_oracle(moves))
        analysis = asyncio.run(analyzer.analyze(moves))

        assert [m.classification for m in analysis.moves] == ["book"] * 4
        assert analysis.white_accuracy == 100
        assert analysis.black_accuracy == 100
        assert analysis.white_stats == MoveStats(book=2)
        assert analysis.black_stats == MoveStats(book=2)
        assert analyzer.state == COMPLETED
        assert analyzer.result is analysis

    def test_each_position_evaluated_once(self):
        moves = parse_pgn(FOUR_PLIES)
        oracle = played_move_oracle(moves)
        analysis = asyncio.run(GameAnalyzer(oracle).analyze(moves))

        # Start position plus one position per ply
        assert len(oracle.calls) == 5
        assert len(set(oracle.calls)) == 5
        assert set(analysis.positions) == set(oracle.calls)

    def test_input_moves_untouched(self):
        moves = parse_pgn(FOUR_PLIES)
        asyncio.run(GameAnalyzer(played_move_oracle(moves)).analyze(moves))
        assert all(m.classification is None for m in moves)

    def test_progress_is_monotonic(self):
        moves = parse_pgn(FOUR_PLIES)
        seen: list[int] = []
        analyzer = GameAnalyzer(played_move_oracle(moves), on_progress=seen.append)
        asyncio.run(analyzer.analyze(moves))
        assert seen == [25, 50, 75, 100]
        assert analyzer.progress == 100

    def test_oracle_told_about_new_game(self):
        moves = parse_pgn(FOUR_PLIES)
        oracle = played_move_oracle(moves)
        asyncio.run(GameAnalyzer(oracle).analyze(moves))
        assert oracle.new_games == 1


class TestClassificationFlow:

    def _oracle(self, moves):
        e4, e5 = moves[0], moves[1]
        return FakeOracle({
            e4.fen_before: EvaluationResult(fen=e4.fen_before, evaluation=0.3, best_move="e2e4", depth=15),
            e5.fen_before: EvaluationResult(
                fen=e5.fen_before, evaluation=0.3, best_move="c7c5",
                pv_line=("c7c5", "g1f3"), depth=15,
            ),
            e5.fen: EvaluationResult(
                fen=e5.fen, evaluation=1.0, best_move="g1f3",
                pv_line=("g1f3", "b8c6"), depth=14,
            ),
        })

    def test_labels_after_book(self):
        moves = parse_pgn("1. e4 e5 *")
        analysis = asyncio.run(GameAnalyzer(self._oracle(moves), book_plies=0).analyze(moves))
        e4, e5 = analysis.moves
        assert e4.classification == "best"
        # Black let the eval climb from 0.3 to 1.0
        assert e5.classification == "inaccuracy"
        assert analysis.black_accuracy == 75

    def test_derived_fields(self):
        moves = parse_pgn("1. e4 e5 *")
        analysis = asyncio.run(GameAnalyzer(self._oracle(moves), book_plies=0).analyze(moves))
        e5 = analysis.moves[1]
        assert e5.evaluation == 1.0
        assert e5.eval_before == 0.3
        assert e5.eval_loss == pytest.approx(0.7)
        assert e5.best_move == "c7c5"
        assert e5.analysis_depth == 14
        assert e5.pv_line == ["g1f3", "b8c6"]
        assert e5.mate is None

    def test_book_horizon_is_configurable(self):
        moves = parse_pgn("1. e4 e5 *")
        analysis = asyncio.run(GameAnalyzer(self._oracle(moves), book_plies=1).analyze(moves))
        assert [m.classification for m in analysis.moves] == ["book", "inaccuracy"]


class TestEdgeCases:

    def test_empty_game(self, fake_oracle):
        analyzer = GameAnalyzer(fake_oracle)
        analysis = asyncio.run(analyzer.analyze([]))
        assert analysis == GameAnalysis()
        assert analysis.white_accuracy == 0
        assert analysis.black_accuracy == 0
        assert analysis.white_stats.total == 0
        assert fake_oracle.calls == []
        assert analyzer.state == COMPLETED

    def test_unplayable_move_is_skipped(self, fake_oracle, caplog):
        moves = parse_pgn(FOUR_PLIES)
        moves[3] = dataclasses.replace(moves[3], san="Ke2")
        seen: list[int] = []
        analyzer = GameAnalyzer(fake_oracle, on_progress=seen.append)
        with caplog.at_level(logging.WARNING, logger="game_review.analyzer"):
            analysis = asyncio.run(analyzer.analyze(moves))

        assert len(analysis.moves) == 4
        assert analysis.moves[3].classification is None
        assert all(m.classification == "book" for m in analysis.moves[:3])
        assert analysis.black_accuracy == 100
        assert analysis.black_stats.total == 1
        assert seen[-1] == 100
        assert "Skipping unplayable move" in caplog.text

    def test_unplayable_early_move_does_not_derail_the_rest(self, caplog):
        moves = parse_pgn("1. e4 e5 2. Nf3 Nc6 3. Bb5 a6 *")
        real_positions = {m.fen_before for m in moves} | {m.fen for m in moves}
        oracle = played_move_oracle(moves)
        broken = list(moves)
        broken[1] = dataclasses.replace(moves[1], san="Ke7")

        analyzer = GameAnalyzer(oracle, book_plies=0)
        with caplog.at_level(logging.WARNING, logger="game_review.analyzer"):
            analysis = asyncio.run(analyzer.analyze(broken))

        labels = [m.classification for m in analysis.moves]
        assert labels == ["best", None, "best", "best", "best", "best"]
        assert caplog.text.count("Skipping unplayable move") == 1
        assert set(oracle.calls) <= real_positions
        assert analysis.moves[2].best_move == "g1f3"

    def test_published_positions_are_read_only(self):
        moves = parse_pgn(FOUR_PLIES)
        analysis = asyncio.run(GameAnalyzer(played_move_oracle(moves)).analyze(moves))
        with pytest.raises(TypeError):
            analysis.positions[moves[0].fen_before] = EvaluationResult(fen="x")

    def test_initial_state(self, fake_oracle):
        analyzer = GameAnalyzer(fake_oracle)
        assert analyzer.state == IDLE
        assert analyzer.progress == 0
        assert analyzer.result is None


class TestFinishedGame:

    def test_mating_position_not_sent_to_engine(self, fake_protocol):
        moves = parse_pgn(FOOLS_MATE)

        async def _run():
            async with EvaluationOracle() as oracle:
                return await GameAnalyzer(oracle, book_plies=0).analyze(moves)

        analysis = asyncio.run(_run())
        mate = analysis.moves[-1]
        assert mate.evaluation == -100.0
        assert mate.mate == 0
        assert moves[-1].fen not in fake_protocol.requests
        assert len(fake_protocol.requests) == 4


# ---------------------------------------------------------------------------
# Run management
# ---------------------------------------------------------------------------


class TestRunManagement:

    def test_same_game_cannot_run_twice(self):
        moves = parse_pgn(FOUR_PLIES)
        oracle = _GatedOracle()
        analyzer = GameAnalyzer(oracle)

        async def _run():
            first = asyncio.create_task(analyzer.analyze(moves))
            await asyncio.sleep(0)
            assert analyzer.state == RUNNING
            with pytest.raises(RuntimeError, match="already running"):
                await analyzer.analyze(moves)
            oracle.release()
            return await first

        analysis = asyncio.run(_run())
        assert len(analysis.moves) == 4

    def _superseded_runs(self, stale_pgn: str):
        """Start a stale run, start a fresh one on the same oracle, then
        answer the stale request while the fresh run is in flight."""
        stale_moves = parse_pgn(stale_pgn)
        fresh_moves = parse_pgn(FOUR_PLIES)
        oracle = _GatedOracle(held=1)
        seen: list[int] = []
        analyzer = GameAnalyzer(oracle, on_progress=seen.append)

        async def _run():
            stale = asyncio.create_task(analyzer.analyze(stale_moves))
            await asyncio.sleep(0)
            assert oracle.calls == [stale_moves[0].fen_before]

            fresh = asyncio.create_task(analyzer.analyze(fresh_moves))
            await asyncio.sleep(0)
            assert analyzer.state == RUNNING
            assert not fresh.done()

            oracle.release()
            return await stale, await fresh

        stale_result, fresh_result = asyncio.run(_run())
        return analyzer, oracle, seen, stale_result, fresh_result

    def test_new_game_supersedes_running_one(self):
        analyzer, oracle, _, stale_result, fresh_result = self._superseded_runs(
            "1. d4 d5 2. c4 e6 *"
        )
        assert stale_result is None
        assert analyzer.result is fresh_result
        assert analyzer.state == COMPLETED
        assert [m.san for m in fresh_result.moves] == ["e4", "e5", "Nf3", "Nc6"]
        assert all(m.classification == "book" for m in fresh_result.moves)
        # The stale -9.0 answer never reaches the fresh run, even for the
        # shared starting position
        assert all(m.evaluation == 0.0 for m in fresh_result.moves)
        assert all(r.evaluation == 0.0 for r in fresh_result.positions.values())
        # One stale request, then the fresh run's five positions
        assert len(oracle.calls) == 6
        assert oracle.new_games == 2

    def test_stale_run_does_not_touch_progress(self):
        analyzer, _, seen, stale_result, _ = self._superseded_runs("1. d4 d5 *")
        assert stale_result is None
        assert seen == [25, 50, 75, 100]
        assert analyzer.progress == 100

    def test_rerun_after_completion(self):
        moves = parse_pgn(FOUR_PLIES)
        oracle = played_move_oracle(moves)
        analyzer = GameAnalyzer(oracle)

        async def _run():
            first = await analyzer.analyze(moves)
            second = await analyzer.analyze(moves)
            return first, second

        first, second = asyncio.run(_run())
        assert first is not second
        # Fresh cache per run
        assert len(oracle.calls) == 10

"""Review a chess game from the command line.

Loads a game from a PGN file or from a Chess.com player's archive,
analyses every move with Stockfish and prints the review.

Usage:
    game-review game.pgn
    game-review --user hikaru --month 2024/05 --game 0
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from game_review import chesscom
from game_review.analyzer import BOOK_PLIES, GameAnalyzer
from game_review.engine import (
    DEFAULT_DEPTH,
    DEFAULT_HASH_MB,
    DEFAULT_THREADS,
    DEFAULT_TIMEOUT,
    EvaluationOracle,
)
from game_review.models import GameAnalysis
from game_review.pgn import parse_pgn, read_headers
from game_review.report import render_review


def _parse_month(value: str) -> tuple[int, int]:
    """Parse "YYYY/MM" (or "YYYY-MM") into (year, month)."""
    parts = value.replace("-", "/").split("/")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise argparse.ArgumentTypeError(f"expected YYYY/MM, got {value!r}")
    year, month = int(parts[0]), int(parts[1])
    if not 1 <= month <= 12:
        raise argparse.ArgumentTypeError(f"invalid month in {value!r}")
    return year, month


def _fetch_chesscom_pgn(username: str, month: tuple[int, int] | None, index: int) -> str | None:
    """Download one game of a Chess.com player.

    Args:
        username: Chess.com username.
        month: (year, month) to look in, or None for the latest archive.
        index: Position of the game in that month's list (negative counts
            from the end).

    Returns:
        The game's PGN, or None after printing an error.
    """
    try:
        if month is not None:
            games = chesscom.get_monthly_games(username, *month)
        else:
            archives = chesscom.get_archives(username)
            if not archives:
                print(f"Error: {username} has no archived games.", file=sys.stderr)
                return None
            games = chesscom.get_archive_games(archives[-1])
    except chesscom.ChessComError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None

    if not games:
        print(f"Error: no games found for {username}.", file=sys.stderr)
        return None

    try:
        game = games[index]
    except IndexError:
        print(f"Error: game {index} not found ({len(games)} games).", file=sys.stderr)
        return None

    return game.get("pgn") or None


def _load_pgn(args: argparse.Namespace) -> str | None:
    if args.pgn_file is not None:
        try:
            return Path(args.pgn_file).read_text(encoding="utf-8")
        except OSError as e:
            print(f"Error: could not read {args.pgn_file}: {e}", file=sys.stderr)
            return None
    return _fetch_chesscom_pgn(args.user, args.month, args.game)


async def _analyze(pgn: str, args: argparse.Namespace, console: Console) -> GameAnalysis | None:
    """Run the analysis with a progress bar."""
    moves = parse_pgn(pgn)
    if not moves:
        print("Warning: no moves could be read from the game.", file=sys.stderr)

    oracle = EvaluationOracle(
        stockfish_path=args.engine,
        timeout=args.timeout,
        hash_mb=args.hash,
        threads=args.threads,
    )
    async with oracle:
        if not oracle.is_ready:
            print(
                "Warning: Stockfish is not available, evaluations will be neutral.",
                file=sys.stderr,
            )

        with Progress(
            TextColumn("[bold]Analysing"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("analysis", total=100)
            analyzer = GameAnalyzer(
                oracle,
                depth=args.depth,
                book_plies=args.book_plies,
                on_progress=lambda pct: progress.update(task, completed=pct),
            )
            return await analyzer.analyze(moves)


def main() -> None:
    """CLI entry point for review.py."""
    parser = argparse.ArgumentParser(
        description="Move-by-move computer review of a chess game"
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("pgn_file", nargs="?", help="PGN file to review")
    source.add_argument("--user", help="Chess.com username to fetch a game from")
    parser.add_argument(
        "--month", type=_parse_month, default=None,
        help="Archive month as YYYY/MM (default: latest)",
    )
    parser.add_argument(
        "--game", type=int, default=-1,
        help="Index of the game in the month (default: last played)",
    )
    parser.add_argument("--depth", type=int, default=DEFAULT_DEPTH, help="Search depth")
    parser.add_argument(
        "--timeout", type=float, default=DEFAULT_TIMEOUT,
        help="Seconds per position before using the partial result",
    )
    parser.add_argument(
        "--book-plies", type=int, default=BOOK_PLIES,
        help="Leading plies counted as book moves",
    )
    parser.add_argument("--engine", default=None, help="Path to the Stockfish binary")
    parser.add_argument("--hash", type=int, default=DEFAULT_HASH_MB, help="Engine hash in MB")
    parser.add_argument("--threads", type=int, default=DEFAULT_THREADS, help="Engine threads")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    pgn = _load_pgn(args)
    if pgn is None:
        sys.exit(1)

    console = Console()
    analysis = asyncio.run(_analyze(pgn, args, console))
    if analysis is None:
        print("Error: analysis did not complete.", file=sys.stderr)
        sys.exit(1)

    console.print(render_review(analysis, read_headers(pgn)))


if __name__ == "__main__":
    main()

"""Rich rendering of a finished game review.

Builds the header, move list, key-moment notes and per-side statistics
for a GameAnalysis. Nothing here talks to the engine.
"""

from __future__ import annotations

import chess
from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from game_review.models import (
    BEST,
    BLACK,
    BLUNDER,
    BOOK,
    BRILLIANT,
    CLASSIFICATIONS,
    FORCED,
    GOOD,
    GREAT,
    INACCURACY,
    MISTAKE,
    WHITE,
    GameAnalysis,
    MoveRecord,
)

_SYMBOLS = {
    BRILLIANT: "!!",
    GREAT: "!",
    BEST: "✓",
    GOOD: "",
    BOOK: "□",
    INACCURACY: "?!",
    MISTAKE: "?",
    BLUNDER: "??",
    FORCED: "→",
}

_NAMES = {
    BRILLIANT: "Brilliant",
    GREAT: "Great Move",
    BEST: "Best Move",
    GOOD: "Good",
    BOOK: "Book",
    INACCURACY: "Inaccuracy",
    MISTAKE: "Mistake",
    BLUNDER: "Blunder",
    FORCED: "Forced",
}

_STYLES = {
    BRILLIANT: "bold cyan",
    GREAT: "green",
    BEST: "bright_green",
    GOOD: "grey62",
    BOOK: "blue",
    INACCURACY: "yellow",
    MISTAKE: "dark_orange",
    BLUNDER: "bold red",
    FORCED: "magenta",
}

# Labels worth a written note under the move list
_NOTED = (BRILLIANT, INACCURACY, MISTAKE, BLUNDER)

_BAR_LEN = 20


def classification_symbol(classification: str | None) -> str:
    return _SYMBOLS.get(classification, "")


def classification_name(classification: str | None) -> str:
    return _NAMES.get(classification, "")


def classification_style(classification: str | None) -> str:
    return _STYLES.get(classification, "grey62")


def classification_explanation(classification: str, loss: float, best_move: str) -> str:
    """One-sentence explanation of a label.

    Args:
        classification: Move label.
        loss: Pawns lost by the mover.
        best_move: Engine suggestion to mention for bad moves.

    Returns:
        Explanation text, "" for unknown labels.
    """
    if classification == BRILLIANT:
        return "An exceptional, creative move that beats the other good options!"
    if classification == GREAT:
        return "A very strong move that keeps or increases your advantage."
    if classification == BEST:
        return "The best move in this position according to the engine."
    if classification == GOOD:
        return "A solid move that keeps the position."
    if classification == BOOK:
        return "A well-known opening theory move."
    if classification == FORCED:
        return "The only reasonable move in this position."
    if classification == INACCURACY:
        return f"This move loses {loss:.1f} pawns. Consider {best_move} instead."
    if classification == MISTAKE:
        return (
            f"This move loses {loss:.1f} pawns, giving your opponent a better "
            f"position. {best_move} was stronger."
        )
    if classification == BLUNDER:
        return f"A critical error that loses {loss:.1f} pawns! {best_move} was much better."
    return ""


def format_evaluation(evaluation: float, mate: int | None = None) -> str:
    """Format an evaluation as "+1.3", "-0.4" or "M3"."""
    if mate is not None:
        return f"M{abs(mate)}"
    # Adding 0.0 turns -0.0 into 0.0
    return f"{round(evaluation, 1) + 0.0:+.1f}"


def evaluation_to_percentage(evaluation: float, mate: int | None = None) -> float:
    """Share of an evaluation bar belonging to White, 0-100.

    Evaluations are clamped to +/-10 pawns and mapped linearly so that
    0 gives 50 and +/-10 give 95/5. Mates fill the bar completely.
    """
    if mate is not None:
        if mate == 0:
            return 100.0 if evaluation > 0 else 0.0
        return 100.0 if mate > 0 else 0.0

    normalized = max(-10.0, min(10.0, evaluation))
    percentage = 50.0 + (normalized / 10.0) * 45.0
    return max(0.0, min(100.0, percentage))


def eval_bar(evaluation: float, mate: int | None = None, width: int = _BAR_LEN) -> str:
    filled = round(evaluation_to_percentage(evaluation, mate) / 100.0 * width)
    return "\u2588" * filled + "\u2591" * (width - filled)


def best_move_san(move: MoveRecord) -> str:
    """Engine suggestion for a move in SAN, falling back to UCI."""
    if not move.best_move:
        return ""
    try:
        board = chess.Board(move.fen_before)
        suggestion = chess.Move.from_uci(move.best_move)
        if suggestion in board.legal_moves:
            return board.san(suggestion)
    except ValueError:
        pass
    return move.best_move


def _move_cell(move: MoveRecord | None) -> Text:
    if move is None:
        return Text("")
    cell = Text(move.san)
    symbol = classification_symbol(move.classification)
    if symbol:
        cell.append(f" {symbol}", style=classification_style(move.classification))
    return cell


def _eval_cell(move: MoveRecord | None) -> Text:
    if move is None or move.evaluation is None:
        return Text("")
    return Text(format_evaluation(move.evaluation, move.mate), style="dim")


def render_header(headers: dict[str, str]) -> Panel:
    """Render players, ratings, result and time control."""
    white = headers.get("White", "?")
    black = headers.get("Black", "?")
    white_elo = headers.get("WhiteElo")
    black_elo = headers.get("BlackElo")

    parts: list[str] = []
    parts.append(f"[bold]□ {white}[/bold]" + (f" ({white_elo})" if white_elo else ""))
    parts.append(f"[bold]■ {black}[/bold]" + (f" ({black_elo})" if black_elo else ""))
    parts.append("")
    parts.append(f"Result: {headers.get('Result', '*')}")
    if headers.get("TimeControl"):
        parts.append(f"Time control: {headers['TimeControl']}")
    if headers.get("Date"):
        parts.append(f"Date: {headers['Date']}")
    if headers.get("Termination"):
        parts.append(f"[italic]{headers['Termination']}[/italic]")

    return Panel("\n".join(parts), title="Game", border_style="blue")


def render_moves(analysis: GameAnalysis) -> Table:
    """Render the move list, two plies per row."""
    table = Table(title="Moves", box=None, padding=(0, 1))
    table.add_column("#", justify="right", style="bold")
    table.add_column("White")
    table.add_column("", justify="right")
    table.add_column("Black")
    table.add_column("", justify="right")

    rows: dict[int, list[MoveRecord | None]] = {}
    for move in analysis.moves:
        row = rows.setdefault(move.move_number, [None, None])
        row[0 if move.color == WHITE else 1] = move

    for number, (white_move, black_move) in rows.items():
        table.add_row(
            f"{number}.",
            _move_cell(white_move) if white_move else Text("..."),
            _eval_cell(white_move),
            _move_cell(black_move),
            _eval_cell(black_move),
        )

    return table


def render_key_moments(analysis: GameAnalysis) -> Panel | None:
    """Notes for brilliant moves and errors, or None if there are none."""
    lines: list[Text] = []
    for move in analysis.moves:
        if move.classification not in _NOTED:
            continue
        prefix = f"{move.move_number}{'.' if move.color == WHITE else '...'} {move.san}"
        line = Text(f"{prefix} ", style="bold")
        line.append(
            classification_name(move.classification),
            style=classification_style(move.classification),
        )
        line.append(": ")
        line.append(
            classification_explanation(
                move.classification,
                move.eval_loss or 0.0,
                best_move_san(move),
            )
        )
        lines.append(line)

    if not lines:
        return None
    return Panel(Group(*lines), title="Key moments", border_style="yellow")


def render_stats(analysis: GameAnalysis) -> Panel:
    """Accuracy and classification counts side by side."""
    table = Table(box=None, padding=(0, 2))
    table.add_column("")
    table.add_column("□", justify="center")
    table.add_column("■", justify="center")

    table.add_row(
        Text("Accuracy", style="bold"),
        Text(f"{analysis.white_accuracy}%", style="bold"),
        Text(f"{analysis.black_accuracy}%", style="bold"),
    )

    white = analysis.stats(WHITE).as_dict()
    black = analysis.stats(BLACK).as_dict()
    for label in CLASSIFICATIONS:
        if white[label] == 0 and black[label] == 0:
            continue
        symbol = classification_symbol(label)
        name = Text(f"{symbol} " if symbol else "", style=classification_style(label))
        name.append(classification_name(label), style="default")
        table.add_row(name, str(white[label]), str(black[label]))

    return Panel(table, title="Statistics", border_style="green")


def render_review(analysis: GameAnalysis, headers: dict[str, str] | None = None) -> Group:
    """Full review: header, moves, key moments and statistics."""
    parts = []
    if headers:
        parts.append(render_header(headers))
    parts.append(render_moves(analysis))
    key_moments = render_key_moments(analysis)
    if key_moments is not None:
        parts.append(key_moments)
    parts.append(render_stats(analysis))
    return Group(*parts)

"""Shared data models for the game review engine.

EvaluationResult, MoveRecord and GameAnalysis are the shared contract
between the engine client, the analyzer and the report renderer.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from types import MappingProxyType

# Move classification labels
BRILLIANT = "brilliant"
GREAT = "great"
BEST = "best"
BOOK = "book"
GOOD = "good"
INACCURACY = "inaccuracy"
MISTAKE = "mistake"
BLUNDER = "blunder"
FORCED = "forced"

CLASSIFICATIONS = (
    BRILLIANT,
    GREAT,
    BEST,
    BOOK,
    GOOD,
    INACCURACY,
    MISTAKE,
    BLUNDER,
    FORCED,
)

WHITE = "w"
BLACK = "b"

# Evaluations are clamped to this magnitude; a mate is reported at the cap.
MATE_EVAL = 100.0


@dataclass(frozen=True)
class EvaluationResult:
    """Engine verdict for one position, always from White's point of view."""

    fen: str
    evaluation: float = 0.0
    best_move: str = ""
    pv_line: tuple[str, ...] = ()
    depth: int = 0
    mate: int | None = None

    @property
    def is_mate(self) -> bool:
        return self.mate is not None


@dataclass
class MoveRecord:
    """A single ply of a game plus the fields filled in by analysis."""

    ply: int
    move_number: int
    san: str
    uci: str
    from_square: str
    to_square: str
    piece: str
    color: str
    fen_before: str
    fen: str
    captured: str | None = None
    promotion: str | None = None
    # Filled in by GameAnalyzer
    evaluation: float | None = None
    eval_before: float | None = None
    eval_loss: float | None = None
    mate: int | None = None
    best_move: str | None = None
    classification: str | None = None
    analysis_depth: int | None = None
    pv_line: list[str] = field(default_factory=list)


@dataclass
class MoveStats:
    """Per-side tally of move classifications."""

    brilliant: int = 0
    great: int = 0
    best: int = 0
    book: int = 0
    good: int = 0
    inaccuracy: int = 0
    mistake: int = 0
    blunder: int = 0
    forced: int = 0

    def increment(self, classification: str) -> None:
        if classification not in CLASSIFICATIONS:
            raise ValueError(f"Unknown classification: {classification}")
        setattr(self, classification, getattr(self, classification) + 1)

    def as_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @property
    def total(self) -> int:
        return sum(self.as_dict().values())


@dataclass(frozen=True)
class GameAnalysis:
    """Immutable result of one completed analysis run."""

    moves: tuple[MoveRecord, ...] = ()
    positions: Mapping[str, EvaluationResult] = field(default_factory=lambda: MappingProxyType({}))
    white_accuracy: int = 0
    black_accuracy: int = 0
    white_stats: MoveStats = field(default_factory=MoveStats)
    black_stats: MoveStats = field(default_factory=MoveStats)

    def accuracy(self, color: str) -> int:
        return self.white_accuracy if color == WHITE else self.black_accuracy

    def stats(self, color: str) -> MoveStats:
        return self.white_stats if color == WHITE else self.black_stats

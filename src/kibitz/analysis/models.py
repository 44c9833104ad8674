"""Data models produced by game review."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from kibitz.engine.models import Score


class MoveJudgment(StrEnum):
    """Human-friendly move quality buckets."""

    BEST = "Best"
    EXCELLENT = "Excellent"
    GOOD = "Good"
    INACCURACY = "Inaccuracy"
    MISTAKE = "Mistake"
    BLUNDER = "Blunder"

    @property
    def nag(self) -> str:
        """Chess NAG annotation symbol."""
        return _JUDGMENT_NAG[self]


_JUDGMENT_NAG: dict[MoveJudgment, str] = {
    MoveJudgment.BEST: "",
    MoveJudgment.EXCELLENT: "",
    MoveJudgment.GOOD: "",
    MoveJudgment.INACCURACY: "?!",
    MoveJudgment.MISTAKE: "?",
    MoveJudgment.BLUNDER: "??",
}


@dataclass(slots=True, frozen=True)
class ReviewProgress:
    """Progress of a running review; ``done`` is set on the last event."""

    processed: int
    total: int
    done: bool = False


@dataclass(slots=True, frozen=True)
class ReviewedMove:
    """Engine-backed verdict on a single played move."""

    ply: int
    color: str  # "w" or "b"
    move_number: int
    played_uci: str
    played_san: str
    fen_before: str
    fen_after: str
    best_move: str | None
    evaluation: Score  # position after the move, side-to-move's view
    eval_before_white_cp: int
    eval_after_white_cp: int
    cp_loss: int
    judgment: MoveJudgment


@dataclass(slots=True, frozen=True)
class SideReviewSummary:
    """Aggregate quality metrics for one side."""

    moves: int
    avg_cp_loss: float
    best: int = 0
    excellent: int = 0
    good: int = 0
    inaccuracies: int = 0
    mistakes: int = 0
    blunders: int = 0
    accuracy: float = 100.0
    rating: int = 0

    def count(self, judgment: MoveJudgment) -> int:
        return {
            MoveJudgment.BEST: self.best,
            MoveJudgment.EXCELLENT: self.excellent,
            MoveJudgment.GOOD: self.good,
            MoveJudgment.INACCURACY: self.inaccuracies,
            MoveJudgment.MISTAKE: self.mistakes,
            MoveJudgment.BLUNDER: self.blunders,
        }[judgment]


@dataclass(slots=True, frozen=True)
class GameReviewReport:
    """Full move-by-move review with side summaries."""

    start_fen: str
    total_plies: int
    moves: tuple[ReviewedMove, ...]
    white: SideReviewSummary
    black: SideReviewSummary
    critical_plies: tuple[int, ...]

    @property
    def performance_ratings(self) -> tuple[int, int]:
        """``(white, black)`` performance ratings."""
        return (self.white.rating, self.black.rating)

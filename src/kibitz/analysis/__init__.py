"""Game review APIs."""

from kibitz.analysis.models import (
    GameReviewReport,
    MoveJudgment,
    ReviewedMove,
    ReviewProgress,
    SideReviewSummary,
)
from kibitz.analysis.service import (
    GameReviewer,
    IAnalysisClient,
    ReviewCancelled,
    accuracy_from_avg_cp_loss,
    moves_on_path,
    performance_rating,
    replay_moves,
)

__all__ = [
    "GameReviewReport",
    "GameReviewer",
    "IAnalysisClient",
    "MoveJudgment",
    "ReviewCancelled",
    "ReviewProgress",
    "ReviewedMove",
    "SideReviewSummary",
    "accuracy_from_avg_cp_loss",
    "moves_on_path",
    "performance_rating",
    "replay_moves",
]

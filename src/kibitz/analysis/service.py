"""Game review pipeline built on the engine client."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Protocol

from kibitz.analysis.models import (
    GameReviewReport,
    MoveJudgment,
    ReviewedMove,
    ReviewProgress,
    SideReviewSummary,
)
from kibitz.config import RatingScale, ReviewThresholds
from kibitz.engine.models import AnalysisResult, Score
from kibitz.tree.game_tree import PositionNode
from kibitz.tree.validation import (
    STARTING_FEN,
    ChessMoveValidator,
    MoveInput,
    MoveOutcome,
    MoveValidator,
)

_LOGGER = logging.getLogger(__name__)

_CRITICAL_MOVE_COUNT = 3

ProgressCallback = Callable[[ReviewProgress], None]


class ReviewCancelled(Exception):
    """Raised when a running game review was cancelled."""


class IAnalysisClient(Protocol):
    """The part of :class:`EngineClient` the reviewer needs."""

    def find_best_move(self, fen: str, depth: int) -> Future[AnalysisResult]: ...

    def cancel(self, search: Future[AnalysisResult] | None = None) -> None: ...


@dataclass(slots=True)
class _SideAcc:
    moves: int = 0
    cp_loss_sum: int = 0
    best: int = 0
    excellent: int = 0
    good: int = 0
    inaccuracies: int = 0
    mistakes: int = 0
    blunders: int = 0


class GameReviewer:
    """Reviews a played move list with per-position engine evaluations."""

    __slots__ = ("_client", "_thresholds", "_rating_scale", "_validator", "_active")

    def __init__(
        self,
        client: IAnalysisClient,
        *,
        thresholds: ReviewThresholds | None = None,
        rating_scale: RatingScale | None = None,
        validator: MoveValidator | None = None,
    ) -> None:
        self._client = client
        self._thresholds = thresholds or ReviewThresholds()
        self._rating_scale = rating_scale or RatingScale()
        self._validator: MoveValidator = validator or ChessMoveValidator()
        self._active: _ReviewRun | None = None

    def review_game(
        self,
        moves: Iterable[MoveInput],
        depth: int,
        *,
        start_fen: str = STARTING_FEN,
        on_progress: ProgressCallback | None = None,
    ) -> Future[GameReviewReport]:
        """Start reviewing *moves* played from *start_fen*.

        Searches run strictly one after another.  ``on_progress`` receives
        one event per reviewed move and a final event with ``done=True``.

        Raises:
            ValueError: *depth* is not positive or a move is illegal.
        """
        if depth < 1:
            raise ValueError("Review depth must be >= 1")
        played = replay_moves(self._validator, start_fen, moves)

        future: Future[GameReviewReport] = Future()
        future.set_running_or_notify_cancel()
        run = _ReviewRun(
            reviewer=self,
            client=self._client,
            start_fen=start_fen,
            played=played,
            depth=depth,
            future=future,
            on_progress=on_progress,
        )
        self._active = run
        run.start()
        return future

    def cancel(self) -> None:
        """Cancel the running review, if any.

        Only the review's own search is stopped; a search another caller
        has running on the same client is left to finish.
        """
        run = self._active
        if run is None or run.future.done():
            return
        run.cancel()

    def classify(self, cp_loss: int) -> MoveJudgment:
        th = self._thresholds
        if cp_loss <= 0:
            return MoveJudgment.BEST
        if cp_loss <= th.excellent:
            return MoveJudgment.EXCELLENT
        if cp_loss <= th.good:
            return MoveJudgment.GOOD
        if cp_loss <= th.inaccuracy:
            return MoveJudgment.INACCURACY
        if cp_loss <= th.mistake:
            return MoveJudgment.MISTAKE
        return MoveJudgment.BLUNDER

    def build_report(
        self,
        start_fen: str,
        analyses: list[ReviewedMove],
    ) -> GameReviewReport:
        critical = tuple(
            a.ply
            for a in sorted(analyses, key=lambda m: m.cp_loss, reverse=True)[
                :_CRITICAL_MOVE_COUNT
            ]
            if a.cp_loss > 0
        )
        return GameReviewReport(
            start_fen=start_fen,
            total_plies=len(analyses),
            moves=tuple(analyses),
            white=self._side_summary(a for a in analyses if a.color == "w"),
            black=self._side_summary(a for a in analyses if a.color == "b"),
            critical_plies=critical,
        )

    def _side_summary(self, analyses: Iterable[ReviewedMove]) -> SideReviewSummary:
        acc = _SideAcc()
        for move in analyses:
            acc.moves += 1
            acc.cp_loss_sum += move.cp_loss
            if move.judgment == MoveJudgment.BEST:
                acc.best += 1
            elif move.judgment == MoveJudgment.EXCELLENT:
                acc.excellent += 1
            elif move.judgment == MoveJudgment.GOOD:
                acc.good += 1
            elif move.judgment == MoveJudgment.INACCURACY:
                acc.inaccuracies += 1
            elif move.judgment == MoveJudgment.MISTAKE:
                acc.mistakes += 1
            elif move.judgment == MoveJudgment.BLUNDER:
                acc.blunders += 1

        avg = (acc.cp_loss_sum / acc.moves) if acc.moves > 0 else 0.0
        accuracy = accuracy_from_avg_cp_loss(avg) if acc.moves > 0 else 100.0
        rating = (
            performance_rating(accuracy, self._rating_scale) if acc.moves > 0 else 0
        )
        return SideReviewSummary(
            moves=acc.moves,
            avg_cp_loss=avg,
            best=acc.best,
            excellent=acc.excellent,
            good=acc.good,
            inaccuracies=acc.inaccuracies,
            mistakes=acc.mistakes,
            blunders=acc.blunders,
            accuracy=accuracy,
            rating=rating,
        )


class _ReviewRun:
    """State of one review; each search is requested once the previous one lands."""

    __slots__ = (
        "reviewer",
        "client",
        "start_fen",
        "played",
        "depth",
        "future",
        "on_progress",
        "cancelled",
        "_index",
        "_before",
        "_analyses",
        "_pending",
    )

    def __init__(
        self,
        *,
        reviewer: GameReviewer,
        client: IAnalysisClient,
        start_fen: str,
        played: list[MoveOutcome],
        depth: int,
        future: Future[GameReviewReport],
        on_progress: ProgressCallback | None,
    ) -> None:
        self.reviewer = reviewer
        self.client = client
        self.start_fen = start_fen
        self.played = played
        self.depth = depth
        self.future = future
        self.on_progress = on_progress
        self.cancelled = False
        self._index = 0
        self._before: AnalysisResult | None = None
        self._analyses: list[ReviewedMove] = []
        self._pending: Future[AnalysisResult] | None = None

    def start(self) -> None:
        if not self.played:
            self._finish()
            return
        self._drive(self.client.find_best_move(self.start_fen, self.depth))

    def cancel(self) -> None:
        self.cancelled = True
        search = self._pending
        if search is not None and not search.done():
            self.client.cancel(search)

    def _drive(self, search: Future[AnalysisResult] | None) -> None:
        # Searches that are already resolved are consumed in this loop, so a
        # client answering synchronously does not grow the stack per ply.
        while search is not None:
            if not search.done():
                self._pending = search
                search.add_done_callback(self._on_search_done)
                return
            search = self._advance(search)

    def _on_search_done(self, search: Future[AnalysisResult]) -> None:
        if search is not self._pending:
            return
        self._pending = None
        self._drive(self._advance(search))

    def _advance(self, search: Future[AnalysisResult]) -> Future[AnalysisResult] | None:
        """Consume one finished search and request the next, if any."""
        if self._stopped(search):
            return None
        try:
            after = search.result()
            if self._before is not None:
                outcome = self.played[self._index]
                self._analyses.append(
                    self._review_move(self._index, outcome, self._before, after)
                )
                self._index += 1
                self._emit(ReviewProgress(self._index, len(self.played)))
            self._before = after

            if self._index == len(self.played):
                self._finish()
                return None
            if self.cancelled:
                self._fail(ReviewCancelled())
                return None
            fen = self.played[self._index].fen_after
            return self.client.find_best_move(fen, self.depth)
        except Exception as exc:
            self._fail(exc)
            return None

    def _review_move(
        self,
        ply: int,
        outcome: MoveOutcome,
        before: AnalysisResult,
        after: AnalysisResult,
    ) -> ReviewedMove:
        best_for_mover = clamp_cp(_score_or_draw(before).centipawns())
        after_score = after.score
        if after_score is None:
            after_score = Score.mate(0) if outcome.is_checkmate else Score.cp(0)
        after_for_mover = -clamp_cp(after_score.centipawns())

        # The engine's own choice loses nothing, whatever the search noise.
        if before.best_move is not None and before.best_move == outcome.uci:
            cp_loss = 0
        else:
            cp_loss = max(0, best_for_mover - after_for_mover)

        sign = 1 if outcome.color == "w" else -1
        return ReviewedMove(
            ply=ply,
            color=outcome.color,
            move_number=outcome.move_number,
            played_uci=outcome.uci,
            played_san=outcome.san,
            fen_before=outcome.fen_before,
            fen_after=outcome.fen_after,
            best_move=before.best_move,
            evaluation=after_score,
            eval_before_white_cp=sign * best_for_mover,
            eval_after_white_cp=sign * after_for_mover,
            cp_loss=cp_loss,
            judgment=self.reviewer.classify(cp_loss),
        )

    def _finish(self) -> None:
        total = len(self.played)
        report = self.reviewer.build_report(self.start_fen, self._analyses)
        self._emit(ReviewProgress(total, total, done=True))
        _LOGGER.info(
            "Review finished: %d plies, ratings %s", total, report.performance_ratings
        )
        self.future.set_result(report)

    def _emit(self, progress: ReviewProgress) -> None:
        if self.on_progress is not None:
            self.on_progress(progress)

    def _stopped(self, search: Future[AnalysisResult]) -> bool:
        if self.cancelled:
            self._fail(ReviewCancelled())
            return True
        error = search.exception()
        if error is not None:
            self._fail(error)
            return True
        return False

    def _fail(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


def _score_or_draw(result: AnalysisResult) -> Score:
    return result.score if result.score is not None else Score.cp(0)


def replay_moves(
    validator: MoveValidator,
    start_fen: str,
    moves: Iterable[MoveInput],
) -> list[MoveOutcome]:
    """Validate *moves* in order from *start_fen*.

    Raises:
        ValueError: a move is illegal in the position it is played from.
    """
    fen = start_fen
    played: list[MoveOutcome] = []
    for ply, move in enumerate(moves, start=1):
        outcome = validator.apply(fen, move)
        if outcome is None:
            raise ValueError(f"Illegal move at ply {ply}: {move!r}")
        played.append(outcome)
        fen = outcome.fen_after
    return played


def moves_on_path(nodes: Iterable[PositionNode]) -> list[str]:
    """UCI moves along a tree path (as returned by ``GameTree.path_to``)."""
    return [node.move.uci for node in nodes if node.move is not None]


# Cap centipawn values so mate scores don't blow up ACPL/accuracy.
_CP_CAP = 1500


def clamp_cp(cp: int) -> int:
    """Clamp a centipawn value to ±_CP_CAP to bound mate-score effects."""
    return max(-_CP_CAP, min(_CP_CAP, cp))


def accuracy_from_avg_cp_loss(avg_cp_loss: float) -> float:
    """Convert average centipawn loss to an accuracy percentage.

    ``103.1668 * exp(-0.04354 * ACPL) - 3.1669`` is a well-known
    approximation (Lichess / chess.com style).
    """
    if avg_cp_loss <= 0:
        return 100.0
    raw = 103.1668 * math.exp(-0.04354 * avg_cp_loss) - 3.1669
    return max(0.0, min(100.0, raw))


def performance_rating(accuracy: float, scale: RatingScale) -> int:
    """Map an accuracy percentage onto ``scale``, rounded to the nearest 10."""
    fraction = max(0.0, min(100.0, accuracy)) / 100
    raw = scale.floor + (scale.ceiling - scale.floor) * fraction**2
    return int(round(raw / 10) * 10)

"""Shared engine analysis models."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum, StrEnum, auto

MATE_SCORE_CP = 100_000

# Logistic fit used by Lichess to turn centipawns into a winning chance.
_WIN_CHANCE_SLOPE = 0.00368208


class EngineState(IntEnum):
    """Finite-state-machine states of the engine client."""

    STARTING = auto()  # handshake in progress
    IDLE = auto()
    SEARCHING = auto()
    CLOSED = auto()
    FAILED = auto()


class ScoreKind(StrEnum):
    CENTIPAWNS = "cp"
    MATE = "mate"


@dataclass(slots=True, frozen=True)
class Score:
    """Engine score from the side-to-move's point of view.

    ``Score(MATE, 3)`` means the side to move mates in 3 plies;
    ``Score(MATE, -2)`` means it gets mated.  ``Score(MATE, 0)`` is reported
    for a position where the side to move is already checkmated.
    """

    kind: ScoreKind
    value: int

    @classmethod
    def cp(cls, value: int) -> Score:
        return cls(ScoreKind.CENTIPAWNS, value)

    @classmethod
    def mate(cls, plies: int) -> Score:
        return cls(ScoreKind.MATE, plies)

    @property
    def is_mate(self) -> bool:
        return self.kind == ScoreKind.MATE

    def centipawns(self, mate_score: int = MATE_SCORE_CP) -> int:
        """Collapse to centipawns, mapping mate-in-n to ``±(mate_score - n)``."""
        if not self.is_mate:
            return self.value
        if self.value > 0:
            return mate_score - self.value
        return -mate_score - self.value

    def win_chance(self) -> float:
        """Winning chance (0..100) for the side to move."""
        if self.is_mate:
            return 100.0 if self.value > 0 else 0.0
        return 50 + 50 * (2 / (1 + math.exp(-_WIN_CHANCE_SLOPE * self.value)) - 1)

    def negated(self) -> Score:
        """The same score seen from the other side."""
        return Score(self.kind, -self.value)

    def __str__(self) -> str:
        if self.is_mate:
            return f"#{self.value}"
        return f"{self.value / 100:+.2f}"


@dataclass(slots=True, frozen=True)
class EvaluationLine:
    """One ``info ... pv`` update, i.e. a scored principal variation."""

    score: Score
    depth: int
    multipv: int = 1
    pv: tuple[str, ...] = ()
    seldepth: int | None = None
    nodes: int | None = None
    nps: int | None = None
    time_ms: int | None = None

    @property
    def first_move(self) -> str | None:
        return self.pv[0] if self.pv else None

    @property
    def win_chance(self) -> float:
        return self.score.win_chance()


@dataclass(slots=True, frozen=True)
class AnalysisResult:
    """Outcome of one search: the engine's choice plus its lines."""

    fen: str
    best_move: str | None
    ponder: str | None = None
    lines: tuple[EvaluationLine, ...] = ()

    @property
    def best_line(self) -> EvaluationLine | None:
        return self.lines[0] if self.lines else None

    @property
    def score(self) -> Score | None:
        line = self.best_line
        return line.score if line is not None else None


def _line_sort_key(line: EvaluationLine) -> tuple[int, int]:
    score = line.score
    if score.is_mate:
        if score.value > 0:
            return (0, score.value)
        # Being mated: the longest defence is the least bad.
        return (1, score.value)
    return (2, -score.value)


def sort_lines(lines: Iterable[EvaluationLine]) -> tuple[EvaluationLine, ...]:
    """Order lines: mates first (quickest win first), then by descending cp."""
    return tuple(sorted(lines, key=_line_sort_key))

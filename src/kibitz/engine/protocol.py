"""UCI text protocol: command builders and engine output parsing.

Parsing never raises.  Lines that are not evaluation updates, terminal
``bestmove`` lines or handshake replies are ignored, and lines with
unparsable numeric fields are dropped (and logged at DEBUG).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from kibitz.engine.models import EvaluationLine, Score, ScoreKind

_LOGGER = logging.getLogger(__name__)

UCI = "uci"
ISREADY = "isready"
STOP = "stop"
QUIT = "quit"

NO_MOVE = "(none)"

_INT_FIELDS = {
    "depth": "depth",
    "seldepth": "seldepth",
    "multipv": "multipv",
    "nodes": "nodes",
    "nps": "nps",
    "time": "time_ms",
}
# Tokens that carry a value we do not use; skipped with their argument.
_SKIP_WITH_VALUE = frozenset(
    {"hashfull", "tbhits", "cpuload", "currmove", "currmovenumber", "sbhits"}
)


# ── Commands ─────────────────────────────────────────────────────────────────


def position_command(fen: str) -> str:
    return f"position fen {fen}"


def go_depth_command(depth: int) -> str:
    return f"go depth {depth}"


def setoption_command(name: str, value: object) -> str:
    return f"setoption name {name} value {value}"


def multipv_command(count: int) -> str:
    return setoption_command("MultiPV", count)


# ── Parsed messages ──────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class InfoUpdate:
    line: EvaluationLine


@dataclass(slots=True, frozen=True)
class BestMove:
    move: str | None
    ponder: str | None = None


@dataclass(slots=True, frozen=True)
class Handshake:
    kind: str  # "id", "uciok" or "readyok"
    payload: str = ""


EngineMessage = InfoUpdate | BestMove | Handshake


def parse_line(raw: str) -> EngineMessage | None:
    """Classify one engine output line by its leading token."""
    tokens = raw.split()
    if not tokens:
        return None

    head = tokens[0]
    if head == "info":
        line = parse_info(tokens[1:])
        return InfoUpdate(line) if line is not None else None
    if head == "bestmove":
        return parse_bestmove(tokens[1:])
    if head in ("uciok", "readyok"):
        return Handshake(head)
    if head == "id" and len(tokens) > 2 and tokens[1] == "name":
        return Handshake("id", " ".join(tokens[2:]))
    return None


def parse_bestmove(tokens: list[str]) -> BestMove:
    move = tokens[0] if tokens else None
    if move == NO_MOVE:
        move = None
    ponder = None
    if len(tokens) >= 3 and tokens[1] == "ponder":
        ponder = tokens[2] if tokens[2] != NO_MOVE else None
    return BestMove(move, ponder)


def parse_info(tokens: list[str]) -> EvaluationLine | None:
    """Parse the tokens after ``info``; ``None`` unless it has score and pv."""
    values: dict[str, int] = {}
    score: Score | None = None
    pv: tuple[str, ...] | None = None

    i = 0
    n = len(tokens)
    try:
        while i < n:
            key = tokens[i]
            if key in _INT_FIELDS:
                values[_INT_FIELDS[key]] = int(tokens[i + 1])
                i += 2
            elif key == "score":
                kind = ScoreKind(tokens[i + 1])
                score = Score(kind, int(tokens[i + 2]))
                i += 3
                if i < n and tokens[i] in ("lowerbound", "upperbound"):
                    i += 1
            elif key == "pv":
                pv = tuple(tokens[i + 1 :])
                break
            elif key == "string":
                break
            elif key in _SKIP_WITH_VALUE:
                i += 2
            else:
                i += 1
    except (IndexError, ValueError):
        _LOGGER.debug("Dropping malformed info line: %s", " ".join(tokens))
        return None

    if score is None or not pv:
        return None
    return EvaluationLine(
        score=score,
        depth=values.get("depth", 0),
        multipv=values.get("multipv", 1),
        pv=pv,
        seldepth=values.get("seldepth"),
        nodes=values.get("nodes"),
        nps=values.get("nps"),
        time_ms=values.get("time_ms"),
    )

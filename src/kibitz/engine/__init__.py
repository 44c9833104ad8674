"""Engine package: UCI protocol client, line parser and process transport."""

from kibitz.engine.client import EngineClient
from kibitz.engine.errors import (
    EngineCommunicationFailure,
    EngineError,
    EngineShutdown,
    EngineTimeout,
    SearchAborted,
)
from kibitz.engine.models import (
    AnalysisResult,
    EngineState,
    EvaluationLine,
    Score,
    ScoreKind,
    sort_lines,
)
from kibitz.engine.transport import IEngineTransport, LineAssembler, QProcessTransport

__all__ = [
    "AnalysisResult",
    "EngineClient",
    "EngineCommunicationFailure",
    "EngineError",
    "EngineShutdown",
    "EngineState",
    "EngineTimeout",
    "EvaluationLine",
    "IEngineTransport",
    "LineAssembler",
    "QProcessTransport",
    "Score",
    "ScoreKind",
    "SearchAborted",
    "sort_lines",
]

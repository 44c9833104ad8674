"""Asynchronous UCI client that serializes searches over one engine.

The engine runs a single search at a time.  Every request goes through a
FIFO and is dispatched only once the previous request's ``bestmove`` has been
observed, so streamed ``info`` lines can always be attributed to the request
at the head of the queue.  Callers get a :class:`concurrent.futures.Future`
immediately; it is resolved on the thread that runs the Qt event loop.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping
from concurrent.futures import Future
from dataclasses import dataclass, field

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from kibitz.engine import protocol
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
    sort_lines,
)
from kibitz.engine.transport import IEngineTransport

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, eq=False)
class _SearchRequest:
    """One queued search and the lines accumulated while it runs."""

    fen: str
    depth: int
    multipv: int
    future: Future[AnalysisResult]
    lines: dict[int, EvaluationLine] = field(default_factory=dict)
    stop_sent: bool = False
    timed_out: bool = False

    def merge(self, line: EvaluationLine) -> bool:
        # Deeper updates at the same rank replace shallower ones.
        if line.multipv < 1 or line.multipv > self.multipv:
            return False
        self.lines[line.multipv] = line
        return True

    def build_result(self, best: protocol.BestMove) -> AnalysisResult:
        return AnalysisResult(
            fen=self.fen,
            best_move=best.move,
            ponder=best.ponder,
            lines=sort_lines(self.lines.values()),
        )


class EngineClient(QObject):
    """Drives one UCI engine over an :class:`IEngineTransport`.

    Signals:
        evaluation_updated: an :class:`EvaluationLine` merged into the
            active search.
        search_finished: the :class:`AnalysisResult` of a completed search.
        state_changed: the new :class:`EngineState` (as int).
    """

    evaluation_updated = pyqtSignal(object)
    search_finished = pyqtSignal(object)
    state_changed = pyqtSignal(int)

    def __init__(
        self,
        transport: IEngineTransport,
        *,
        engine_options: Mapping[str, object] | None = None,
        search_timeout_ms: int | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        if search_timeout_ms is not None and search_timeout_ms <= 0:
            raise ValueError("search_timeout_ms must be positive")

        self._transport = transport
        self._engine_options = dict(engine_options or {})
        self._search_timeout_ms = search_timeout_ms

        self._state = EngineState.STARTING
        self._is_started = False
        self._engine_name: str | None = None
        self._failure_message = ""
        self._queue: deque[_SearchRequest] = deque()
        self._active: _SearchRequest | None = None

        self._timeout_timer = QTimer(self)
        self._timeout_timer.setSingleShot(True)
        self._timeout_timer.timeout.connect(self._on_search_timeout)

        transport.line_received.connect(self._on_line)
        transport.failed.connect(self._on_transport_failed)

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def engine_name(self) -> str | None:
        return self._engine_name

    @property
    def pending_count(self) -> int:
        """Number of requests not yet resolved (active plus queued)."""
        return len(self._queue) + (1 if self._active is not None else 0)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the transport and begin the UCI handshake."""
        if self._is_started or self._state != EngineState.STARTING:
            return
        self._is_started = True
        self._transport.start()
        self._send(protocol.UCI)

    def shutdown(self) -> None:
        """Quit the engine; every pending request fails with EngineShutdown."""
        if self._state == EngineState.CLOSED:
            return
        was_failed = self._state == EngineState.FAILED
        self._timeout_timer.stop()
        self._set_state(EngineState.CLOSED)
        if not was_failed:
            self._transport.send(protocol.QUIT)
            self._transport.close()
        self._fail_pending(EngineShutdown, "Engine client was shut down")

    # ── Requests ─────────────────────────────────────────────────────────

    def find_best_move(self, fen: str, depth: int) -> Future[AnalysisResult]:
        """Search *fen* to *depth*; the result has one rank-1 line."""
        return self._submit(fen, depth, multipv=1)

    def get_top_moves(self, fen: str, count: int, depth: int) -> Future[AnalysisResult]:
        """Search *fen* with ``MultiPV`` set to *count*.

        ``MultiPV`` is reset to 1 before the future resolves.
        """
        if count < 1:
            raise ValueError("count must be >= 1")
        return self._submit(fen, depth, multipv=count)

    def cancel(self, search: Future[AnalysisResult] | None = None) -> None:
        """Stop the active search.

        The request still resolves with its partial lines once the engine
        answers ``bestmove``; with no lines it fails with SearchAborted.
        Queued requests are not affected.

        Given *search*, only that request is cancelled: it is stopped if it
        is the active one, or dropped from the queue with SearchAborted if it
        has not been dispatched yet.  Other requests are left alone.
        """
        request = self._active
        if search is not None and (request is None or request.future is not search):
            self._drop_queued(search)
            return
        if request is None or request.stop_sent:
            return
        request.stop_sent = True
        self._send(protocol.STOP)

    def _drop_queued(self, search: Future[AnalysisResult]) -> None:
        request = next((r for r in self._queue if r.future is search), None)
        if request is None:
            return
        self._queue.remove(request)
        request.future.set_exception(
            SearchAborted(f"Search of {request.fen!r} cancelled before dispatch")
        )

    def _submit(self, fen: str, depth: int, *, multipv: int) -> Future[AnalysisResult]:
        if not fen.strip():
            raise ValueError("FEN must not be empty")
        if depth < 1:
            raise ValueError("depth must be >= 1")

        future: Future[AnalysisResult] = Future()
        # Running futures cannot be cancelled behind our back; use cancel().
        future.set_running_or_notify_cancel()

        if self._state in (EngineState.CLOSED, EngineState.FAILED):
            future.set_exception(self._terminal_error())
            return future

        self._queue.append(_SearchRequest(fen.strip(), depth, multipv, future))
        self._dispatch_next()
        return future

    # ── Dispatch ─────────────────────────────────────────────────────────

    def _dispatch_next(self) -> None:
        if self._state != EngineState.IDLE or self._active is not None:
            return
        if not self._queue:
            return

        request = self._queue.popleft()
        self._active = request
        self._set_state(EngineState.SEARCHING)
        if request.multipv != 1:
            self._send(protocol.multipv_command(request.multipv))
        self._send(protocol.position_command(request.fen))
        self._send(protocol.go_depth_command(request.depth))
        if self._search_timeout_ms is not None:
            self._timeout_timer.start(self._search_timeout_ms)

    def _finish_active(self, best: protocol.BestMove) -> None:
        request = self._active
        if request is None:
            _LOGGER.debug("Ignoring bestmove with no active search")
            return

        self._timeout_timer.stop()
        if request.multipv != 1:
            self._send(protocol.multipv_command(1))
        self._active = None
        self._set_state(EngineState.IDLE)

        if request.timed_out:
            pass  # already failed with EngineTimeout
        elif request.stop_sent and not request.lines:
            request.future.set_exception(
                SearchAborted(f"Search of {request.fen!r} stopped before any line")
            )
        else:
            result = request.build_result(best)
            request.future.set_result(result)
            self.search_finished.emit(result)

        self._dispatch_next()

    # ── Transport slots ──────────────────────────────────────────────────

    def _on_line(self, raw: str) -> None:
        if self._state in (EngineState.CLOSED, EngineState.FAILED):
            return
        message = protocol.parse_line(raw)
        if message is None:
            return

        if isinstance(message, protocol.InfoUpdate):
            request = self._active
            if request is not None and request.merge(message.line):
                self.evaluation_updated.emit(message.line)
        elif isinstance(message, protocol.BestMove):
            self._finish_active(message)
        else:
            self._on_handshake(message)

    def _on_handshake(self, message: protocol.Handshake) -> None:
        if message.kind == "id":
            self._engine_name = message.payload
        elif message.kind == "uciok" and self._state == EngineState.STARTING:
            for name, value in self._engine_options.items():
                self._send(protocol.setoption_command(name, value))
            self._send(protocol.ISREADY)
        elif message.kind == "readyok" and self._state == EngineState.STARTING:
            _LOGGER.info("Engine ready: %s", self._engine_name or "<unnamed>")
            self._set_state(EngineState.IDLE)
            self._dispatch_next()

    def _on_transport_failed(self, message: str) -> None:
        if self._state in (EngineState.CLOSED, EngineState.FAILED):
            return
        self._timeout_timer.stop()
        self._failure_message = message
        self._set_state(EngineState.FAILED)
        self._fail_pending(EngineCommunicationFailure, message)

    def _on_search_timeout(self) -> None:
        request = self._active
        if request is None or request.future.done():
            return
        _LOGGER.warning("Search of %s exceeded %s ms", request.fen, self._search_timeout_ms)
        request.timed_out = True
        if not request.stop_sent:
            request.stop_sent = True
            self._send(protocol.STOP)
        request.future.set_exception(
            EngineTimeout(f"No bestmove within {self._search_timeout_ms} ms")
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _send(self, command: str) -> None:
        self._transport.send(command)

    def _set_state(self, state: EngineState) -> None:
        if state == self._state:
            return
        self._state = state
        self.state_changed.emit(int(state))

    def _terminal_error(self) -> EngineError:
        if self._state == EngineState.FAILED:
            return EngineCommunicationFailure(self._failure_message)
        return EngineShutdown("Engine client was shut down")

    def _fail_pending(self, error_type: type[EngineError], message: str) -> None:
        pending = list(self._queue)
        if self._active is not None:
            pending.insert(0, self._active)
        self._active = None
        self._queue.clear()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(error_type(message))

"""Line-oriented message channel to an external engine process."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Protocol

from PyQt6.QtCore import QObject, QProcess, pyqtSignal

_LOGGER = logging.getLogger(__name__)


class TransportSignal(Protocol):
    """Minimal signal interface used by :class:`EngineClient`."""

    def connect(self, slot: Callable[..., object]) -> object: ...


class IEngineTransport(Protocol):
    """Bidirectional text channel to one engine process."""

    line_received: TransportSignal
    failed: TransportSignal

    def start(self) -> None: ...

    def send(self, command: str) -> None: ...

    def close(self) -> None: ...


class LineAssembler:
    """Splits a byte stream into complete, decoded text lines."""

    __slots__ = ("_buffer",)

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += chunk
        *complete, self._buffer = self._buffer.split(b"\n")
        lines = []
        for raw in complete:
            text = raw.decode("utf-8", errors="replace").rstrip("\r")
            if text:
                lines.append(text)
        return lines

    def flush(self) -> list[str]:
        """Return any trailing text that was not newline-terminated."""
        rest, self._buffer = self._buffer, b""
        text = rest.decode("utf-8", errors="replace").strip()
        return [text] if text else []


class QProcessTransport(QObject):
    """Runs the engine via :class:`QProcess` on the caller's event loop.

    Emits ``line_received`` per stdout line and ``failed`` once if the
    process cannot start, crashes, or exits without :meth:`close`.
    """

    line_received = pyqtSignal(str)
    failed = pyqtSignal(str)

    _KILL_TIMEOUT_MS = 2000

    def __init__(
        self,
        program: str,
        args: Sequence[str] = (),
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._program = program
        self._args = list(args)
        self._assembler = LineAssembler()
        self._closing = False
        self._has_failed = False

        self._process = QProcess(self)
        self._process.setProcessChannelMode(
            QProcess.ProcessChannelMode.SeparateChannels
        )
        self._process.readyReadStandardOutput.connect(self._on_ready_read)
        self._process.errorOccurred.connect(self._on_error)
        self._process.finished.connect(self._on_finished)

    def start(self) -> None:
        """Launch the engine process (asynchronously)."""
        _LOGGER.info("Starting engine: %s %s", self._program, " ".join(self._args))
        self._closing = False
        self._process.start(self._program, self._args)

    def send(self, command: str) -> None:
        if self._process.state() == QProcess.ProcessState.NotRunning:
            self._fail(f"Cannot send {command!r}: engine process is not running")
            return
        _LOGGER.debug(">> %s", command)
        self._process.write(f"{command}\n".encode())

    def close(self) -> None:
        """Close stdin and wait briefly for the process to exit."""
        self._closing = True
        if self._process.state() == QProcess.ProcessState.NotRunning:
            return
        self._process.closeWriteChannel()
        if not self._process.waitForFinished(self._KILL_TIMEOUT_MS):
            _LOGGER.warning("Engine did not exit, killing %s", self._program)
            self._process.kill()
            self._process.waitForFinished(self._KILL_TIMEOUT_MS)

    # ── QProcess slots ───────────────────────────────────────────────────

    def _on_ready_read(self) -> None:
        chunk = bytes(self._process.readAllStandardOutput().data())
        for line in self._assembler.feed(chunk):
            _LOGGER.debug("<< %s", line)
            self.line_received.emit(line)

    def _on_error(self, error: QProcess.ProcessError) -> None:
        if self._closing:
            return
        self._fail(f"Engine process error ({error.name}): {self._process.errorString()}")

    def _on_finished(self, exit_code: int, _status: QProcess.ExitStatus) -> None:
        for line in self._assembler.flush():
            self.line_received.emit(line)
        if self._closing:
            return
        self._fail(f"Engine process exited unexpectedly (code {exit_code})")

    def _fail(self, message: str) -> None:
        if self._has_failed:
            return
        self._has_failed = True
        _LOGGER.warning("%s", message)
        self.failed.emit(message)

"""Tests for EngineClient request queueing and UCI conversation."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from PyQt6.QtCore import QObject, pyqtSignal
from PyQt6.QtTest import QSignalSpy, QTest

from kibitz.engine import (
    EngineClient,
    EngineCommunicationFailure,
    EngineShutdown,
    EngineState,
    EngineTimeout,
    Score,
    SearchAborted,
)
from kibitz.tree import STARTING_FEN

pytestmark = pytest.mark.usefixtures("qapp")

AFTER_E4_FEN = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"


class _FakeTransport(QObject):
    """Records commands and lets tests play the engine's side."""

    line_received = pyqtSignal(str)
    failed = pyqtSignal(str)

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[str] = []
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def send(self, command: str) -> None:
        self.sent.append(command)

    def close(self) -> None:
        self.closed = True

    def feed(self, *lines: str) -> None:
        for line in lines:
            self.line_received.emit(line)

    def positions(self) -> list[str]:
        return [c for c in self.sent if c.startswith("position ")]


def _ready_client(transport: _FakeTransport, **kwargs: object) -> EngineClient:
    client = EngineClient(transport, **kwargs)
    client.start()
    transport.feed("id name Fakefish 1", "uciok", "readyok")
    return client


# ── Handshake ────────────────────────────────────────────────────────────────


class TestHandshake:
    def test_requests_wait_for_readyok(self) -> None:
        transport = _FakeTransport()
        client = EngineClient(transport, engine_options={"Hash": 32})
        client.start()
        future = client.find_best_move(STARTING_FEN, 8)

        assert transport.started
        assert transport.sent == ["uci"]
        assert client.state == EngineState.STARTING

        transport.feed("id name Fakefish 1", "uciok")
        assert transport.sent == ["uci", "setoption name Hash value 32", "isready"]
        assert not future.done()

        transport.feed("readyok")
        assert transport.sent[-2:] == [
            f"position fen {STARTING_FEN}",
            "go depth 8",
        ]
        assert client.state == EngineState.SEARCHING
        assert client.engine_name == "Fakefish 1"

    def test_start_is_idempotent(self) -> None:
        transport = _FakeTransport()
        client = EngineClient(transport)
        client.start()
        client.start()
        assert transport.sent == ["uci"]

    def test_state_changes_are_signalled(self) -> None:
        transport = _FakeTransport()
        client = EngineClient(transport)
        spy = QSignalSpy(client.state_changed)
        client.start()
        transport.feed("uciok", "readyok")
        client.find_best_move(STARTING_FEN, 4)
        transport.feed("bestmove e2e4")

        assert [spy[i][0] for i in range(len(spy))] == [
            int(EngineState.IDLE),
            int(EngineState.SEARCHING),
            int(EngineState.IDLE),
        ]


# ── Searches ─────────────────────────────────────────────────────────────────


class TestSearch:
    def test_best_move_keeps_deepest_line(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        future = client.find_best_move(STARTING_FEN, 2)

        transport.feed(
            "info depth 1 score cp 10 nodes 20 pv e2e4",
            "info depth 2 score cp 25 nodes 90 pv d2d4 g8f6",
            "bestmove d2d4 ponder g8f6",
        )

        result = future.result(timeout=0)
        assert result.fen == STARTING_FEN
        assert result.best_move == "d2d4"
        assert result.ponder == "g8f6"
        assert len(result.lines) == 1
        assert result.lines[0].depth == 2
        assert result.score == Score.cp(25)
        assert client.state == EngineState.IDLE
        assert client.pending_count == 0

    def test_top_moves_sorted_and_multipv_reset_before_completion(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        future = client.get_top_moves(STARTING_FEN, 3, 10)

        assert transport.sent[-3:] == [
            "setoption name MultiPV value 3",
            f"position fen {STARTING_FEN}",
            "go depth 10",
        ]

        seen_at_completion: list[str] = []
        future.add_done_callback(lambda _f: seen_at_completion.extend(transport.sent))

        transport.feed(
            "info depth 10 multipv 1 score cp 50 pv e2e4",
            "info depth 10 multipv 2 score cp 100 pv d2d4",
            "info depth 10 multipv 3 score mate 2 pv g1f3",
            "bestmove e2e4",
        )

        assert seen_at_completion[-1] == "setoption name MultiPV value 1"
        result = future.result(timeout=0)
        assert [line.score for line in result.lines] == [
            Score.mate(2),
            Score.cp(100),
            Score.cp(50),
        ]
        assert [line.multipv for line in result.lines] == [3, 2, 1]

    def test_requests_are_served_one_at_a_time(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        first = client.find_best_move(STARTING_FEN, 6)
        second = client.find_best_move(AFTER_E4_FEN, 6)

        assert transport.positions() == [f"position fen {STARTING_FEN}"]
        assert client.pending_count == 2

        transport.feed("info depth 6 score cp 30 pv e2e4", "bestmove e2e4")

        assert first.result(timeout=0).best_move == "e2e4"
        assert not second.done()
        assert transport.positions()[-1] == f"position fen {AFTER_E4_FEN}"

        transport.feed("info depth 6 score cp -20 pv e7e5", "bestmove e7e5")
        second_result = second.result(timeout=0)
        assert second_result.fen == AFTER_E4_FEN
        assert second_result.score == Score.cp(-20)

    def test_bestmove_none_resolves_without_move(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        future = client.find_best_move("7k/5Q2/6K1/8/8/8/8/8 b - - 0 1", 5)

        transport.feed("info depth 0 score cp 0", "bestmove (none)")

        result = future.result(timeout=0)
        assert result.best_move is None
        assert result.lines == ()

    def test_evaluation_updates_ignore_unrequested_ranks(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        updates = QSignalSpy(client.evaluation_updated)
        finished = QSignalSpy(client.search_finished)
        future = client.find_best_move(STARTING_FEN, 3)

        transport.feed(
            "info depth 3 multipv 1 score cp 12 pv e2e4",
            "info depth 3 multipv 2 score cp 5 pv d2d4",
            "bestmove e2e4",
        )

        assert len(updates) == 1
        assert updates[0][0].first_move == "e2e4"
        assert len(finished) == 1
        assert len(future.result(timeout=0).lines) == 1

    def test_info_without_active_search_is_ignored(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        transport.feed("info depth 3 score cp 12 pv e2e4", "bestmove e2e4")
        assert client.state == EngineState.IDLE

    @pytest.mark.parametrize(
        ("fen", "depth"),
        [("", 5), ("   ", 5), (STARTING_FEN, 0), (STARTING_FEN, -3)],
    )
    def test_invalid_requests_raise(self, fen: str, depth: int) -> None:
        client = _ready_client(_FakeTransport())
        with pytest.raises(ValueError):
            client.find_best_move(fen, depth)

    def test_invalid_top_move_count_raises(self) -> None:
        client = _ready_client(_FakeTransport())
        with pytest.raises(ValueError):
            client.get_top_moves(STARTING_FEN, 0, 5)

    def test_invalid_timeout_raises(self) -> None:
        with pytest.raises(ValueError):
            EngineClient(_FakeTransport(), search_timeout_ms=0)


# ── Cancellation ─────────────────────────────────────────────────────────────


class TestCancel:
    def test_cancel_returns_partial_lines(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        future = client.find_best_move(STARTING_FEN, 30)
        transport.feed("info depth 7 score cp 33 pv c2c4")

        client.cancel()
        client.cancel()
        assert transport.sent.count("stop") == 1

        transport.feed("bestmove c2c4")
        result = future.result(timeout=0)
        assert result.best_move == "c2c4"
        assert result.score == Score.cp(33)

    def test_cancel_without_lines_aborts(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        future = client.find_best_move(STARTING_FEN, 30)

        client.cancel()
        transport.feed("bestmove e2e4")

        with pytest.raises(SearchAborted):
            future.result(timeout=0)

    def test_cancel_leaves_queued_requests(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        first = client.find_best_move(STARTING_FEN, 30)
        second = client.find_best_move(AFTER_E4_FEN, 4)

        client.cancel()
        transport.feed("bestmove (none)")

        assert isinstance(first.exception(timeout=0), SearchAborted)
        assert not second.done()
        assert transport.positions()[-1] == f"position fen {AFTER_E4_FEN}"

    def test_cancel_while_idle_is_noop(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        before = list(transport.sent)

        client.cancel()

        assert transport.sent == before
        assert client.state == EngineState.IDLE

    def test_cancel_of_queued_search_drops_only_that_request(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        active = client.find_best_move(STARTING_FEN, 10)
        dropped = client.find_best_move(AFTER_E4_FEN, 10)
        kept = client.find_best_move(AFTER_E4_FEN, 12)

        client.cancel(dropped)

        assert isinstance(dropped.exception(timeout=0), SearchAborted)
        assert "stop" not in transport.sent
        assert client.pending_count == 2

        transport.feed("info depth 10 score cp 5 pv e2e4", "bestmove e2e4")
        assert active.result(timeout=0).best_move == "e2e4"
        assert transport.sent[-1] == "go depth 12"
        assert not kept.done()

    def test_cancel_of_active_search_by_handle(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        active = client.find_best_move(STARTING_FEN, 30)

        client.cancel(active)
        transport.feed("bestmove e2e4")

        assert transport.sent.count("stop") == 1
        assert isinstance(active.exception(timeout=0), SearchAborted)

    def test_cancel_of_finished_search_is_noop(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        finished = client.find_best_move(STARTING_FEN, 3)
        transport.feed("info depth 3 score cp 1 pv e2e4", "bestmove e2e4")
        running = client.find_best_move(AFTER_E4_FEN, 30)

        client.cancel(finished)

        assert "stop" not in transport.sent
        assert not running.done()


# ── Failure and shutdown ─────────────────────────────────────────────────────


class TestTermination:
    def test_shutdown_fails_pending_requests(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        active = client.find_best_move(STARTING_FEN, 20)
        queued = client.find_best_move(AFTER_E4_FEN, 20)

        client.shutdown()

        assert isinstance(active.exception(timeout=0), EngineShutdown)
        assert isinstance(queued.exception(timeout=0), EngineShutdown)
        assert transport.sent[-1] == "quit"
        assert transport.closed
        assert client.state == EngineState.CLOSED
        assert client.pending_count == 0

    def test_requests_after_shutdown_fail_immediately(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        client.shutdown()
        sent = len(transport.sent)

        future = client.find_best_move(STARTING_FEN, 5)

        assert isinstance(future.exception(timeout=0), EngineShutdown)
        assert len(transport.sent) == sent

    def test_late_output_after_shutdown_is_ignored(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        finished = QSignalSpy(client.search_finished)
        client.find_best_move(STARTING_FEN, 5)
        client.shutdown()

        transport.feed("info depth 5 score cp 1 pv e2e4", "bestmove e2e4")

        assert len(finished) == 0
        assert client.state == EngineState.CLOSED

    def test_transport_failure_fails_everything(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        active = client.find_best_move(STARTING_FEN, 20)
        queued = client.get_top_moves(STARTING_FEN, 2, 20)

        transport.failed.emit("engine crashed")

        for future in (active, queued):
            error = future.exception(timeout=0)
            assert isinstance(error, EngineCommunicationFailure)
            assert "engine crashed" in str(error)
        assert client.state == EngineState.FAILED

        later = client.find_best_move(STARTING_FEN, 1)
        assert isinstance(later.exception(timeout=0), EngineCommunicationFailure)

        client.shutdown()
        assert "quit" not in transport.sent
        assert client.state == EngineState.CLOSED

    def test_failure_during_handshake(self) -> None:
        transport = _FakeTransport()
        client = EngineClient(transport)
        client.start()
        future = client.find_best_move(STARTING_FEN, 5)

        transport.failed.emit("Engine process error (FailedToStart)")

        assert isinstance(future.exception(timeout=0), EngineCommunicationFailure)


# ── Timeout ──────────────────────────────────────────────────────────────────


def _wait_until(predicate: Callable[[], bool], timeout_ms: int = 2000) -> bool:
    for _ in range(timeout_ms // 10):
        if predicate():
            return True
        QTest.qWait(10)
    return predicate()


class TestTimeout:
    def test_timer_fails_request_and_waits_for_bestmove(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport, search_timeout_ms=20)
        slow = client.find_best_move(STARTING_FEN, 40)
        queued = client.find_best_move(AFTER_E4_FEN, 4)

        assert _wait_until(slow.done)

        assert isinstance(slow.exception(timeout=0), EngineTimeout)
        assert transport.sent[-1] == "stop"
        assert client.state == EngineState.SEARCHING
        assert len(transport.positions()) == 1

        transport.feed("info depth 12 score cp 8 pv e2e4", "bestmove e2e4")

        assert isinstance(slow.exception(timeout=0), EngineTimeout)
        assert transport.positions()[-1] == f"position fen {AFTER_E4_FEN}"
        assert not queued.done()

    def test_search_finishing_in_time_is_not_stopped(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport, search_timeout_ms=50)
        quick = client.find_best_move(STARTING_FEN, 4)

        transport.feed("info depth 4 score cp 20 pv e2e4", "bestmove e2e4")
        QTest.qWait(150)

        assert quick.result(timeout=0).best_move == "e2e4"
        assert "stop" not in transport.sent
        assert client.state == EngineState.IDLE

        # The next search gets its own deadline.
        slow = client.find_best_move(AFTER_E4_FEN, 40)
        assert _wait_until(slow.done)
        assert isinstance(slow.exception(timeout=0), EngineTimeout)
        assert transport.sent.count("stop") == 1

    def test_no_timer_without_timeout(self) -> None:
        transport = _FakeTransport()
        client = _ready_client(transport)
        future = client.find_best_move(STARTING_FEN, 40)

        QTest.qWait(50)

        assert not future.done()
        assert "stop" not in transport.sent

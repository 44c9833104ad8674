"""Tests for UCI output parsing and command builders."""

from __future__ import annotations

import pytest

from kibitz.engine import protocol
from kibitz.engine.models import Score, ScoreKind
from kibitz.engine.protocol import BestMove, Handshake, InfoUpdate, parse_line

FULL_INFO = (
    "info depth 12 seldepth 18 multipv 2 score cp -35 nodes 123456 "
    "nps 987654 hashfull 12 tbhits 0 time 125 pv e7e5 g1f3 b8c6"
)


class TestInfoLines:
    def test_full_evaluation_line(self) -> None:
        message = parse_line(FULL_INFO)

        assert isinstance(message, InfoUpdate)
        line = message.line
        assert line.depth == 12
        assert line.seldepth == 18
        assert line.multipv == 2
        assert line.score == Score.cp(-35)
        assert line.nodes == 123456
        assert line.nps == 987654
        assert line.time_ms == 125
        assert line.pv == ("e7e5", "g1f3", "b8c6")
        assert line.first_move == "e7e5"

    def test_multipv_defaults_to_one(self) -> None:
        message = parse_line("info depth 5 score mate -3 pv h7h6")

        assert isinstance(message, InfoUpdate)
        assert message.line.multipv == 1
        assert message.line.score.kind == ScoreKind.MATE
        assert message.line.score.value == -3

    def test_bound_markers_are_skipped(self) -> None:
        message = parse_line("info depth 9 score cp 20 lowerbound nodes 10 pv d2d4")

        assert isinstance(message, InfoUpdate)
        assert message.line.score == Score.cp(20)
        assert message.line.nodes == 10

    @pytest.mark.parametrize(
        "raw",
        [
            "info depth 10 currmove e2e4 currmovenumber 1",
            "info depth 10 score cp 10 nodes 100",
            "info depth 10 pv e2e4",
            "info string NNUE evaluation using nn-123.nnue enabled",
            "info depth 0 score mate 0",
        ],
    )
    def test_non_evaluation_lines_are_ignored(self, raw: str) -> None:
        assert parse_line(raw) is None

    @pytest.mark.parametrize(
        "raw",
        [
            "info depth ten score cp 10 pv e2e4",
            "info depth 10 score cp abc pv e2e4",
            "info depth 10 score wdl 10 pv e2e4",
            "info depth 10 multipv",
            "info depth 10 score cp",
        ],
    )
    def test_malformed_lines_are_dropped(self, raw: str) -> None:
        assert parse_line(raw) is None


class TestOtherLines:
    def test_bestmove_with_ponder(self) -> None:
        assert parse_line("bestmove e2e4 ponder e7e5") == BestMove("e2e4", "e7e5")

    def test_bestmove_without_ponder(self) -> None:
        assert parse_line("bestmove g1f3") == BestMove("g1f3", None)

    def test_bestmove_none(self) -> None:
        assert parse_line("bestmove (none)") == BestMove(None, None)

    def test_handshake_lines(self) -> None:
        assert parse_line("id name Stockfish 16.1") == Handshake("id", "Stockfish 16.1")
        assert parse_line("uciok") == Handshake("uciok")
        assert parse_line("readyok") == Handshake("readyok")

    @pytest.mark.parametrize("raw", ["", "   ", "id author T. Romstad", "option name Hash"])
    def test_unrelated_lines(self, raw: str) -> None:
        assert parse_line(raw) is None


def test_command_builders() -> None:
    fen = "8/8/8/8/8/8/8/K6k w - - 0 1"
    assert protocol.position_command(fen) == f"position fen {fen}"
    assert protocol.go_depth_command(14) == "go depth 14"
    assert protocol.multipv_command(3) == "setoption name MultiPV value 3"
    assert protocol.setoption_command("Threads", 4) == "setoption name Threads value 4"

"""Command-line entry point: query an engine or review a PGN game."""

from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import Future
from pathlib import Path
from typing import Any

import chess.pgn

from kibitz.analysis import GameReviewer, GameReviewReport, ReviewProgress
from kibitz.config import KibitzSettings, load_settings
from kibitz.engine import AnalysisResult, EngineClient, EngineError, QProcessTransport
from kibitz.tree import STARTING_FEN, GameTree


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, help="TOML settings file")
    common.add_argument("--engine", help="engine executable (overrides config)")
    common.add_argument("-v", "--verbose", action="store_true", help="debug logging")

    parser = argparse.ArgumentParser(prog="kibitz", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    best = sub.add_parser("best", parents=[common], help="best move for a position")
    best.add_argument("fen", nargs="?", default=STARTING_FEN)
    best.add_argument("--depth", type=int)

    top = sub.add_parser("top", parents=[common], help="top N moves for a position")
    top.add_argument("fen", nargs="?", default=STARTING_FEN)
    top.add_argument("--count", type=int)
    top.add_argument("--depth", type=int)

    review = sub.add_parser(
        "review", parents=[common], help="review the main line of a PGN game"
    )
    review.add_argument("pgn", type=Path)
    review.add_argument("--depth", type=int)

    line = sub.add_parser(
        "line", parents=[common], help="print moves as numbered notation"
    )
    line.add_argument("moves", nargs="+")
    line.add_argument("--fen", default=STARTING_FEN)
    return parser


def _print_result(result: AnalysisResult) -> None:
    print(f"bestmove {result.best_move or '(none)'}", end="")
    print(f" ponder {result.ponder}" if result.ponder else "")
    for line in result.lines:
        pv = " ".join(line.pv)
        print(
            f"  #{line.multipv} {line.score!s:>7} depth {line.depth:<3}"
            f" win {line.win_chance:5.1f}%  {pv}"
        )


def _print_report(report: GameReviewReport) -> None:
    for move in report.moves:
        prefix = f"{move.move_number}." if move.color == "w" else f"{move.move_number}..."
        print(
            f"{prefix:<6}{move.played_san + move.judgment.nag:<10}"
            f"{move.judgment.value:<11} loss {move.cp_loss:>4}"
            f"  best {move.best_move or '-'}"
        )
    for name, side in (("White", report.white), ("Black", report.black)):
        print(
            f"{name}: accuracy {side.accuracy:.1f}%  rating {side.rating}  "
            f"inaccuracies {side.inaccuracies}  mistakes {side.mistakes}  "
            f"blunders {side.blunders}"
        )


def _print_progress(progress: ReviewProgress) -> None:
    if not progress.done:
        print(f"\rreviewing {progress.processed}/{progress.total}", end="", flush=True)
    else:
        print()


def _read_pgn(path: Path) -> tuple[str, list[str]]:
    with path.open(encoding="utf-8") as fh:
        game = chess.pgn.read_game(fh)
    if game is None:
        raise ValueError(f"No game found in {path}")
    moves = [move.uci() for move in game.mainline_moves()]
    return game.board().fen(), moves


def _run_line(args: argparse.Namespace) -> int:
    tree = GameTree(args.fen, args.moves)
    path = tree.path_to()
    print(tree.format_path(path))
    return 0 if len(path) - 1 == len(args.moves) else 1


def _submit(
    args: argparse.Namespace,
    settings: KibitzSettings,
    client: EngineClient,
) -> Future[Any]:
    engine = settings.engine
    depth = args.depth or engine.depth
    if args.command == "best":
        return client.find_best_move(args.fen, depth)
    if args.command == "top":
        return client.get_top_moves(args.fen, args.count or engine.top_moves, depth)

    start_fen, moves = _read_pgn(args.pgn)
    reviewer = GameReviewer(
        client,
        thresholds=settings.review,
        rating_scale=settings.rating,
    )
    return reviewer.review_game(
        moves, depth, start_fen=start_fen, on_progress=_print_progress
    )


def _run_engine_command(args: argparse.Namespace, settings: KibitzSettings) -> int:
    from PyQt6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    engine = settings.engine
    transport = QProcessTransport(args.engine or engine.path, engine.args)
    client = EngineClient(
        transport,
        engine_options=engine.options,
        search_timeout_ms=engine.search_timeout_ms,
    )
    client.start()
    try:
        future = _submit(args, settings, client)
        future.add_done_callback(lambda _f: app.quit())
        if not future.done():
            app.exec()
    finally:
        client.shutdown()

    try:
        outcome = future.result()
    except EngineError as exc:
        print(f"engine error: {exc}", file=sys.stderr)
        return 2

    if isinstance(outcome, GameReviewReport):
        _print_report(outcome)
    else:
        _print_result(outcome)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "line":
        return _run_line(args)
    try:
        settings = load_settings(args.config)
        return _run_engine_command(args, settings)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())

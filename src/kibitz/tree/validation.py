"""Move-validation service backed by python-chess.

The tree never applies chess rules itself; it asks a :class:`MoveValidator`
for the resulting position and treats ``None`` as "illegal move".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import chess

STARTING_FEN = chess.STARTING_FEN


@dataclass(slots=True, frozen=True)
class MoveSpec:
    """A move given by its squares, e.g. ``MoveSpec("e7", "e8", "q")``."""

    from_square: str
    to_square: str
    promotion: str | None = None


MoveInput = str | MoveSpec


@dataclass(slots=True, frozen=True)
class MoveOutcome:
    """A validated move together with the position it produces."""

    uci: str
    san: str
    from_square: str
    to_square: str
    promotion: str | None
    color: str  # "w" or "b": the side that made the move
    fen_before: str
    fen_after: str
    move_number: int  # full-move number of the position before the move
    is_check: bool = False
    is_capture: bool = False
    is_checkmate: bool = False

    def same_move(self, other: MoveOutcome) -> bool:
        return (
            self.from_square == other.from_square
            and self.to_square == other.to_square
            and self.promotion == other.promotion
        )


class MoveValidator(Protocol):
    """Applies a candidate move to a position."""

    def apply(self, fen: str, move: MoveInput) -> MoveOutcome | None: ...


class ChessMoveValidator:
    """Validator using python-chess legality and SAN rendering."""

    __slots__ = ()

    def apply(self, fen: str, move: MoveInput) -> MoveOutcome | None:
        """Return the outcome of *move* played from *fen*, or ``None``.

        Raises:
            ValueError: *fen* is not a valid position.
        """
        board = chess.Board(fen)
        parsed = _parse_move(board, move)
        if not parsed:  # None or a null move
            return None

        san = board.san(parsed)
        is_capture = board.is_capture(parsed)
        move_number = board.fullmove_number
        color = "w" if board.turn == chess.WHITE else "b"
        board.push(parsed)
        promotion = (
            chess.piece_symbol(parsed.promotion) if parsed.promotion else None
        )
        return MoveOutcome(
            uci=parsed.uci(),
            san=san,
            from_square=chess.square_name(parsed.from_square),
            to_square=chess.square_name(parsed.to_square),
            promotion=promotion,
            color=color,
            fen_before=fen,
            fen_after=board.fen(),
            move_number=move_number,
            is_check=board.is_check(),
            is_capture=is_capture,
            is_checkmate=board.is_checkmate(),
        )


def _parse_move(board: chess.Board, move: MoveInput) -> chess.Move | None:
    if isinstance(move, MoveSpec):
        try:
            candidate = chess.Move(
                chess.parse_square(move.from_square.lower()),
                chess.parse_square(move.to_square.lower()),
                chess.Piece.from_symbol(move.promotion.lower()).piece_type
                if move.promotion
                else None,
            )
        except ValueError:
            return None
        return candidate if board.is_legal(candidate) else None

    text = move.strip()
    if not text:
        return None
    try:
        return board.parse_san(text)
    except ValueError:
        pass
    try:
        candidate = chess.Move.from_uci(text.lower())
    except ValueError:
        return None
    return candidate if board.is_legal(candidate) else None

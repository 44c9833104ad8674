"""Move tree: main line plus variations over validated positions."""

from kibitz.tree.game_tree import (
    GameTree,
    NodeIdFactory,
    PositionNode,
    UnknownNodeError,
    sequential_ids,
)
from kibitz.tree.validation import (
    STARTING_FEN,
    ChessMoveValidator,
    MoveInput,
    MoveOutcome,
    MoveSpec,
    MoveValidator,
)

__all__ = [
    "STARTING_FEN",
    "ChessMoveValidator",
    "GameTree",
    "MoveInput",
    "MoveOutcome",
    "MoveSpec",
    "MoveValidator",
    "NodeIdFactory",
    "PositionNode",
    "UnknownNodeError",
    "sequential_ids",
]

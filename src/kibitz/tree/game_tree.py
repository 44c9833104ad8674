"""Branching move history of a game being explored.

The tree only grows: nodes are created by :meth:`GameTree.add_move` and never
removed.  Every non-root node stores the position its parent's position
produces under the move validator, so navigation can never yield an
inconsistent board.
"""

from __future__ import annotations

import itertools
import logging
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from kibitz.tree.validation import (
    STARTING_FEN,
    ChessMoveValidator,
    MoveInput,
    MoveOutcome,
    MoveValidator,
)

_LOGGER = logging.getLogger(__name__)

NodeIdFactory = Callable[[], str]


class UnknownNodeError(LookupError):
    """Raised when a node identifier does not belong to the tree."""


@dataclass(slots=True, eq=False)
class PositionNode:
    """One position in the tree and the move that reached it."""

    id: str
    fen: str
    move: MoveOutcome | None
    san: str
    parent_id: str | None
    move_number: int
    is_main_line: bool = False
    children: list[PositionNode] = field(default_factory=list)
    comment: str | None = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def color(self) -> str | None:
        """Side that played :attr:`move` (``"w"``/``"b"``), ``None`` for root."""
        return self.move.color if self.move is not None else None

    def __repr__(self) -> str:
        label = self.san or "<root>"
        return f"PositionNode({self.id!r}, {label!r}, children={len(self.children)})"


def sequential_ids(prefix: str = "node-") -> NodeIdFactory:
    """Return a fresh generator of ``node-1``, ``node-2``, ... identifiers."""
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter)}"


def _fullmove_number(fen: str) -> int:
    parts = fen.split()
    if len(parts) == 6:
        return int(parts[5])
    return 1


class GameTree:
    """Main line plus variations rooted at a starting position.

    Args:
        start_fen: Root position (standard start if omitted).
        main_line: Optional SAN/UCI moves inserted as the main line.  Insertion
            stops at the first illegal move and the current node is left at
            the last move that was accepted.
        validator: Move-validation service (python-chess by default).
        id_factory: Identifier generator owned by this tree.
    """

    __slots__ = ("_validator", "_next_id", "_nodes", "_root", "_current_id")

    def __init__(
        self,
        start_fen: str | None = None,
        main_line: Iterable[MoveInput] | None = None,
        *,
        validator: MoveValidator | None = None,
        id_factory: NodeIdFactory | None = None,
    ) -> None:
        self._validator: MoveValidator = validator or ChessMoveValidator()
        self._next_id = id_factory or sequential_ids()
        self._nodes: dict[str, PositionNode] = {}

        fen = start_fen or STARTING_FEN
        self._root = PositionNode(
            id=self._new_id(),
            fen=fen,
            move=None,
            san="",
            parent_id=None,
            move_number=_fullmove_number(fen),
            is_main_line=True,
        )
        self._nodes[self._root.id] = self._root
        self._current_id = self._root.id

        if main_line is not None:
            parent_id = self._root.id
            for move in main_line:
                node = self.add_move(move, parent_id, is_main_line=True)
                if node is None:
                    _LOGGER.warning(
                        "Stopping main line at illegal move %r after node %s",
                        move,
                        parent_id,
                    )
                    break
                parent_id = node.id
            self._current_id = parent_id

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def root(self) -> PositionNode:
        return self._root

    @property
    def current_node_id(self) -> str:
        return self._current_id

    @property
    def current_node(self) -> PositionNode:
        return self._nodes[self._current_id]

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[PositionNode]:
        return iter(self._nodes.values())

    # ── Lookups ──────────────────────────────────────────────────────────

    def get(self, node_id: str) -> PositionNode:
        """Return the node for *node_id*.

        Raises:
            UnknownNodeError: *node_id* is not part of this tree.
        """
        try:
            return self._nodes[node_id]
        except KeyError:
            raise UnknownNodeError(node_id) from None

    def children_of(self, node_id: str) -> list[PositionNode]:
        return list(self.get(node_id).children)

    def parent_of(self, node_id: str) -> PositionNode | None:
        node = self.get(node_id)
        if node.parent_id is None:
            return None
        return self._nodes[node.parent_id]

    def find_child(self, parent_id: str, move: MoveInput) -> PositionNode | None:
        """Return the existing child reached by *move*, without inserting."""
        parent = self.get(parent_id)
        outcome = self._validator.apply(parent.fen, move)
        if outcome is None:
            return None
        return self._matching_child(parent, outcome)

    def find_node_by_fen(
        self,
        fen: str,
        search_root_id: str | None = None,
    ) -> PositionNode | None:
        """Breadth-first search for the first node holding *fen*."""
        start = self.get(search_root_id) if search_root_id else self._root
        queue: deque[PositionNode] = deque([start])
        while queue:
            node = queue.popleft()
            if node.fen == fen:
                return node
            queue.extend(node.children)
        return None

    # ── Mutation ─────────────────────────────────────────────────────────

    def add_move(
        self,
        move: MoveInput,
        parent_id: str,
        *,
        is_main_line: bool = False,
    ) -> PositionNode | None:
        """Play *move* from *parent_id* and return the resulting node.

        Returns ``None`` for an illegal move (the tree is left untouched).
        If the parent already has a child for the same move, that child is
        returned unchanged.

        Raises:
            UnknownNodeError: *parent_id* is not part of this tree.
        """
        parent = self.get(parent_id)
        outcome = self._validator.apply(parent.fen, move)
        if outcome is None:
            return None

        existing = self._matching_child(parent, outcome)
        if existing is not None:
            return existing

        node = PositionNode(
            id=self._new_id(),
            fen=outcome.fen_after,
            move=outcome,
            san=outcome.san,
            parent_id=parent.id,
            move_number=outcome.move_number,
            is_main_line=is_main_line,
        )
        parent.children.append(node)
        self._nodes[node.id] = node
        return node

    def navigate_to(self, node_id: str) -> bool:
        """Make *node_id* the current node; ``False`` if it is unknown."""
        if node_id not in self._nodes:
            return False
        self._current_id = node_id
        return True

    # ── Paths ────────────────────────────────────────────────────────────

    def path_to(self, node_id: str | None = None) -> list[PositionNode]:
        """Nodes from the root to *node_id* (current node by default)."""
        node: PositionNode | None = self.get(node_id or self._current_id)
        path: list[PositionNode] = []
        while node is not None:
            path.append(node)
            node = self._nodes[node.parent_id] if node.parent_id is not None else None
        path.reverse()
        return path

    def main_line(self) -> list[PositionNode]:
        """Root followed by the chain of main-line children."""
        line = [self._root]
        node = self._root
        while True:
            nxt = next((c for c in node.children if c.is_main_line), None)
            if nxt is None:
                return line
            line.append(nxt)
            node = nxt

    @staticmethod
    def format_path(nodes: Iterable[PositionNode]) -> str:
        """Render *nodes* as numbered algebraic notation.

        ``1. e4 e5 2. Nf3``; a path whose first move is Black's starts with
        the continuation form ``3... Nc6``.
        """
        parts: list[str] = []
        first = True
        for node in nodes:
            if node.move is None:
                continue
            if node.move.color == "w":
                parts.append(f"{node.move_number}.")
            elif first:
                parts.append(f"{node.move_number}...")
            parts.append(node.san)
            first = False
        return " ".join(parts)

    # ── Internals ────────────────────────────────────────────────────────

    def _new_id(self) -> str:
        node_id = self._next_id()
        if node_id in self._nodes:
            raise ValueError(f"Node id factory produced a duplicate id: {node_id}")
        return node_id

    @staticmethod
    def _matching_child(
        parent: PositionNode,
        outcome: MoveOutcome,
    ) -> PositionNode | None:
        for child in parent.children:
            if child.move is not None and child.move.same_move(outcome):
                return child
        return None

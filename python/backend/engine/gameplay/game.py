"""Core gameplay logic: move legality, line shifts, shuffle and snapshots."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Sequence

from backend.engine.gamegenerator import GameGenerator
from backend.engine.gamestate import GameState
from backend.models.board import MAX_SIZE, MIN_SIZE, Board, Direction, Position
from backend.models.errors import MalformedStateError

OUT_OF_BOUNDS = "out_of_bounds"
BLANK = "blank"
NOT_IN_LINE = "not_in_line"
REMOTE_REPLAY = "remote_replay"


@dataclass(frozen=True)
class MoveResult:
    """Outcome of a move request.

    Truthy when the move was applied. ``shifted`` lists the original
    positions of the tiles that moved, nearest to the old blank first.
    """

    applied: bool
    target: Position
    shifted: tuple[Position, ...] = field(default=())
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.applied

    @property
    def distance(self) -> int:
        return len(self.shifted)


def clamp_dimension(dimension: int) -> int:
    return max(MIN_SIZE, min(MAX_SIZE, int(dimension)))


class PuzzleEngine:
    """Owns one board and every rule that touches it.

    Local input and replayed peer moves both go through :meth:`apply_move`,
    so two engines fed the same snapshot and the same ordered moves stay
    identical.
    """

    def __init__(self, dimension: int = 3, *, rng: random.Random | None = None) -> None:
        self._dimension = clamp_dimension(dimension)
        self._rng = rng or random.Random()
        self._solution = GameGenerator.solved(self._dimension)
        self._board = self._solution.copy()
        self.state = GameState()

    @classmethod
    def from_snapshot(
        cls,
        dimension: int,
        data: Sequence[int] | Sequence[Sequence[int]],
        *,
        rng: random.Random | None = None,
    ) -> "PuzzleEngine":
        """Build an engine from a transferred board.

        Unlike the constructor, *dimension* is not clamped: a remote
        snapshot outside the supported range is malformed.
        """
        if isinstance(dimension, bool) or not isinstance(dimension, int):
            raise MalformedStateError(f"Dimension must be an int, got {dimension!r}.")
        if not MIN_SIZE <= dimension <= MAX_SIZE:
            raise MalformedStateError(
                f"Dimension {dimension} outside {MIN_SIZE}..{MAX_SIZE}."
            )
        engine = cls(dimension, rng=rng)
        engine.deserialize(data)
        return engine

    # -- queries --------------------------------------------------------------

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def size(self) -> int:
        return self._dimension

    @property
    def board(self) -> Board:
        """A copy of the current board."""
        return self._board.copy()

    @property
    def empty_position(self) -> Position:
        return self._board.blank_pos

    def tile(self, row: int, col: int) -> int:
        if not self._board.in_bounds(row, col):
            return -1
        return self._board.get_tile(row, col)

    def is_solved(self) -> bool:
        return self._board.tiles == self._solution.tiles

    @property
    def is_won(self) -> bool:
        return self.is_solved()

    def is_legal_move(self, pos: Position) -> bool:
        return self._rejection(pos) is None

    def affected_cells(self, pos: Position) -> list[Position]:
        """Cells strictly between the blank and *pos*, blank side first.

        Empty for illegal targets and for single-step moves. Frontends use
        it to preview or animate long moves.
        """
        if not self.is_legal_move(pos):
            return []
        br, bc = self._board.blank_pos
        tr, tc = pos
        dr = (tr > br) - (tr < br)
        dc = (tc > bc) - (tc < bc)
        cells: list[Position] = []
        r, c = br + dr, bc + dc
        while (r, c) != (tr, tc):
            cells.append((r, c))
            r, c = r + dr, c + dc
        return cells

    # -- movement -------------------------------------------------------------

    def apply_move(self, pos: Position) -> MoveResult:
        """Shift the line between the blank and *pos*.

        Illegal targets leave the board untouched and come back as an
        unapplied result; this never raises for a bad target.
        """
        target = (int(pos[0]), int(pos[1]))
        reason = self._rejection(target)
        if reason is not None:
            return MoveResult(applied=False, target=target, reason=reason)

        shifted = self._board.shift(target)
        self.state.increment_moves()
        return MoveResult(applied=True, target=target, shifted=tuple(shifted))

    def move(self, direction: Direction) -> MoveResult:
        """Slide the tile next to the blank in *direction*.

        E.g. ``Direction.UP`` moves the tile **below** the blank upward.
        """
        br, bc = self._board.blank_pos

        # The offset points to the tile that will slide into the blank.
        offsets = {
            Direction.UP: (1, 0),
            Direction.DOWN: (-1, 0),
            Direction.LEFT: (0, 1),
            Direction.RIGHT: (0, -1),
        }
        dr, dc = offsets[direction]
        return self.apply_move((br + dr, bc + dc))

    def reset(self) -> None:
        self._board = self._solution.copy()
        self.state.restart()

    def shuffle(self, target_move_count: int = 200) -> None:
        """Replace the board with a fresh unsolved scramble and restart stats."""
        self._board = GameGenerator.generate(self._dimension, target_move_count, self._rng)
        self.state.restart()

    # -- snapshots ------------------------------------------------------------

    def serialize(self) -> list[int]:
        """Row-major tile values; enough to rebuild the board remotely."""
        return self._board.to_flat()

    def deserialize(self, data: Sequence[int] | Sequence[Sequence[int]]) -> None:
        """Replace the board with *data* (flat or nested rows).

        The blank is located by scanning the grid. Move statistics are
        left alone; callers restart them when a new game begins.
        """
        if isinstance(data, (str, bytes)) or not isinstance(data, Sequence):
            raise MalformedStateError(f"Board snapshot must be a list, got {type(data).__name__}.")
        if data and all(isinstance(row, Sequence) and not isinstance(row, (str, bytes)) for row in data):
            board = Board.from_rows(data)  # type: ignore[arg-type]
        else:
            board = Board.from_flat(self._dimension, data)  # type: ignore[arg-type]
        if board.size != self._dimension:
            raise MalformedStateError(
                f"Snapshot is {board.size}×{board.size}, engine is "
                f"{self._dimension}×{self._dimension}."
            )
        self._board = board

    # -- helpers --------------------------------------------------------------

    def _rejection(self, pos: Position) -> str | None:
        row, col = pos
        if not self._board.in_bounds(row, col):
            return OUT_OF_BOUNDS
        br, bc = self._board.blank_pos
        if (row, col) == (br, bc):
            return BLANK
        if row != br and col != bc:
            return NOT_IN_LINE
        return None

"""Board model for the line-slide puzzle."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Sequence

from backend.models.errors import MalformedStateError

MIN_SIZE = 2
MAX_SIZE = 8

Position = tuple[int, int]


class Direction(StrEnum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


@dataclass
class Board:
    """Represents the puzzle grid.

    Tiles are stored as a 2D list of ints. 0 represents the blank space and
    ``blank_pos`` always holds its coordinates.
    """

    size: int
    tiles: list[list[int]]
    blank_pos: Position

    # -- construction helpers -------------------------------------------------

    @classmethod
    def from_flat(cls, size: int, flat: Sequence[int]) -> Board:
        """Create a board from a flat row-major tile list.

        The blank position is found by scanning, never assumed::

            Board.from_flat(3, [1, 2, 3, 4, 5, 6, 7, 0, 8])

        Raises ``MalformedStateError`` unless *flat* is a permutation of
        ``0 .. size*size - 1``.
        """
        cells = size * size
        if len(flat) != cells:
            raise MalformedStateError(
                f"Expected {cells} tiles for a {size}×{size} board, "
                f"got {len(flat)}."
            )
        seen: set[int] = set()
        blank: Position | None = None
        tiles: list[list[int]] = []
        for r in range(size):
            row: list[int] = []
            for c in range(size):
                v = flat[r * size + c]
                if isinstance(v, bool) or not isinstance(v, int):
                    raise MalformedStateError(f"Tile at ({r}, {c}) is not an int: {v!r}")
                if not 0 <= v < cells:
                    raise MalformedStateError(f"Tile value {v} out of range at ({r}, {c}).")
                if v in seen:
                    if v == 0:
                        raise MalformedStateError("Board has more than one blank.")
                    raise MalformedStateError(f"Tile value {v} appears twice.")
                seen.add(v)
                if v == 0:
                    blank = (r, c)
                row.append(v)
            tiles.append(row)
        if blank is None:
            raise MalformedStateError("Board has no blank.")
        return cls(size=size, tiles=tiles, blank_pos=blank)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[int]]) -> Board:
        size = len(rows)
        if any(len(row) != size for row in rows):
            raise MalformedStateError("Board rows must form a square grid.")
        return cls.from_flat(size, [v for row in rows for v in row])

    def to_flat(self) -> list[int]:
        return [v for row in self.tiles for v in row]

    def validate(self) -> None:
        """Re-check the permutation invariant and the cached blank."""
        checked = Board.from_flat(self.size, self.to_flat())
        if checked.blank_pos != self.blank_pos:
            raise MalformedStateError(
                f"Cached blank {self.blank_pos} does not match the grid "
                f"({checked.blank_pos})."
            )

    # -- queries --------------------------------------------------------------

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.size and 0 <= col < self.size

    def get_tile(self, row: int, col: int) -> int:
        return self.tiles[row][col]

    def is_solved(self) -> bool:
        """Check if all tiles are in their goal positions."""
        expected = 1
        for r in range(self.size):
            for c in range(self.size):
                if r == self.size - 1 and c == self.size - 1:
                    return self.tiles[r][c] == 0
                if self.tiles[r][c] != expected:
                    return False
                expected += 1
        return True

    def is_tile_correct(self, row: int, col: int) -> bool:
        """Check if a specific tile is in its goal position."""
        val = self.tiles[row][col]
        if val == 0:
            return row == self.size - 1 and col == self.size - 1
        expected_row = (val - 1) // self.size
        expected_col = (val - 1) % self.size
        return row == expected_row and col == expected_col

    def copy(self) -> Board:
        return Board(
            size=self.size,
            tiles=[row[:] for row in self.tiles],
            blank_pos=self.blank_pos,
        )

    # -- mutation -------------------------------------------------------------

    def shift(self, target: Position) -> list[Position]:
        """Shift the line between the blank and *target* toward the blank.

        Every cell from the blank toward *target* takes the value of its
        neighbour one step closer to *target*; *target* becomes the blank.
        Returns the original positions of the tiles that moved, nearest to
        the blank first.
        """
        br, bc = self.blank_pos
        tr, tc = target
        if (tr, tc) == (br, bc) or (tr != br and tc != bc):
            raise ValueError(f"{target} is not in line with the blank at {self.blank_pos}.")

        dr = (tr > br) - (tr < br)
        dc = (tc > bc) - (tc < bc)
        moved: list[Position] = []
        r, c = br, bc
        while (r, c) != (tr, tc):
            nr, nc = r + dr, c + dc
            self.tiles[r][c] = self.tiles[nr][nc]
            moved.append((nr, nc))
            r, c = nr, nc
        self.tiles[tr][tc] = 0
        self.blank_pos = (tr, tc)
        return moved

"""Reachability check for sliding-puzzle boards.

The engine never needs this for its own boards (they are generated by
legal moves); it guards boards that arrive from elsewhere.
"""

from __future__ import annotations

from backend.models.board import Board


class Solver:
    """Stateless parity helpers; all methods are static."""

    @staticmethod
    def inversions(board: Board) -> int:
        """Count tile pairs that appear in the wrong relative order."""
        flat = [v for v in board.to_flat() if v != 0]
        count = 0
        for i in range(len(flat)):
            for j in range(i + 1, len(flat)):
                if flat[i] > flat[j]:
                    count += 1
        return count

    @staticmethod
    def is_solvable(board: Board) -> bool:
        """Return True if *board* can reach the goal state.

        Odd widths need an even inversion count; even widths also count
        the blank's row distance from the bottom.
        """
        inversions = Solver.inversions(board)
        n = board.size
        if n % 2 == 1:
            return inversions % 2 == 0
        blank_row_from_bottom = n - 1 - board.blank_pos[0]
        return (inversions + blank_row_from_bottom) % 2 == 0

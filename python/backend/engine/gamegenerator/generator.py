"""Generates solvable boards by walking the blank from the solved state."""

from __future__ import annotations

import random

from backend.models.board import Board, Position


class GameGenerator:
    """Creates solvable puzzles by shuffling from the solved state.

    Only single-step moves are used while scrambling, so every generated
    board is reachable from the goal with the engine's own moves and no
    parity check is ever needed.
    """

    @staticmethod
    def solved(size: int) -> Board:
        """Return the goal-state board (all tiles in order, blank bottom-right)."""
        flat = list(range(1, size * size)) + [0]
        return Board.from_flat(size, flat)

    @staticmethod
    def move_budget(size: int, requested: int) -> int:
        """Number of scramble steps for *size*: at least ``10 * size**2``."""
        return max(requested, size * size * 10)

    @staticmethod
    def scramble(
        board: Board, moves: int, rng: random.Random | None = None
    ) -> None:
        """Scramble *board* in-place with *moves* random adjacent slides.

        Each step picks uniformly among the up to four neighbours of the
        blank.
        """
        choose = (rng or random).choice
        for _ in range(moves):
            board.shift(choose(GameGenerator.neighbors(board)))

    @staticmethod
    def generate(
        size: int, moves: int = 200, rng: random.Random | None = None
    ) -> Board:
        """Return a random, unsolved, solvable board of the given size."""
        board = GameGenerator.solved(size)
        GameGenerator.scramble(board, GameGenerator.move_budget(size, moves), rng)

        # Ensure the board is not already solved
        if board.is_solved():
            return GameGenerator.generate(size, moves, rng)

        return board

    # -- helpers --------------------------------------------------------------

    @staticmethod
    def neighbors(board: Board) -> list[Position]:
        br, bc = board.blank_pos
        neighbors: list[Position] = []
        for dr, dc in ((-1, 0), (1, 0), (0, -1), (0, 1)):
            nr, nc = br + dr, bc + dc
            if board.in_bounds(nr, nc):
                neighbors.append((nr, nc))
        return neighbors

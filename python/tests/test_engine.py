"""PuzzleEngine: legality, line shifts, shuffle and snapshots.

Randomised checks use seeded generators so every run sees the same
boards.
"""

from __future__ import annotations

import random

import pytest

from backend.engine.gameplay import MoveResult, PuzzleEngine, clamp_dimension
from backend.engine.gameplay.game import BLANK, NOT_IN_LINE, OUT_OF_BOUNDS
from backend.engine.gamegenerator import GameGenerator
from backend.engine.gamesolver import Solver
from backend.models.board import MAX_SIZE, MIN_SIZE, Board, Direction
from backend.models.errors import MalformedStateError

SIZES = list(range(MIN_SIZE, MAX_SIZE + 1))


# -- helpers ------------------------------------------------------------------


def _all_cells(n: int) -> list[tuple[int, int]]:
    return [(r, c) for r in range(n) for c in range(n)]


def _assert_invariant(engine: PuzzleEngine) -> None:
    n = engine.dimension
    flat = engine.serialize()
    assert sorted(flat) == list(range(n * n))
    r, c = engine.empty_position
    assert engine.tile(r, c) == 0


def _line_distance(a: tuple[int, int], b: tuple[int, int]) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])


def _random_walk(engine: PuzzleEngine, rng: random.Random, steps: int) -> list[tuple[int, int]]:
    """Apply *steps* random legal line moves; return the targets used."""
    n = engine.dimension
    targets = []
    for _ in range(steps):
        target = rng.choice([p for p in _all_cells(n) if engine.is_legal_move(p)])
        assert engine.apply_move(target)
        targets.append(target)
    return targets


# -- construction -------------------------------------------------------------


@pytest.mark.parametrize("n", SIZES)
def test_fresh_engine_is_solved(n: int) -> None:
    engine = PuzzleEngine(n)
    assert engine.is_solved()
    assert engine.empty_position == (n - 1, n - 1)
    assert engine.state.moves == 0


@pytest.mark.parametrize("requested, expected", [(0, 2), (1, 2), (5, 5), (9, 8), (100, 8)])
def test_dimension_is_clamped(requested: int, expected: int) -> None:
    assert clamp_dimension(requested) == expected
    assert PuzzleEngine(requested).dimension == expected


# -- legality -----------------------------------------------------------------


def test_rejection_reasons() -> None:
    engine = PuzzleEngine(3)
    assert engine.apply_move((2, 2)).reason == BLANK
    assert engine.apply_move((0, 0)).reason == NOT_IN_LINE
    assert engine.apply_move((3, 2)).reason == OUT_OF_BOUNDS
    assert engine.apply_move((-1, 2)).reason == OUT_OF_BOUNDS


@pytest.mark.parametrize("n", SIZES)
def test_legal_moves_keep_invariant(n: int) -> None:
    engine = PuzzleEngine(n)
    rng = random.Random(n)
    for _ in range(60):
        target = rng.choice([p for p in _all_cells(n) if engine.is_legal_move(p)])
        result = engine.apply_move(target)
        assert result.applied
        assert engine.empty_position == target
        _assert_invariant(engine)


@pytest.mark.parametrize("n", SIZES)
def test_illegal_moves_are_reported_noops(n: int) -> None:
    engine = PuzzleEngine(n)
    engine.shuffle()
    before = engine.serialize()
    blank = engine.empty_position
    moves = engine.state.moves
    for pos in _all_cells(n) + [(n, 0), (0, n), (-1, -1)]:
        if engine.is_legal_move(pos):
            continue
        result = engine.apply_move(pos)
        assert not result
        assert result.reason is not None
        assert engine.serialize() == before
        assert engine.empty_position == blank
    assert engine.state.moves == moves


@pytest.mark.parametrize("n", SIZES)
def test_affected_cells_length(n: int) -> None:
    engine = PuzzleEngine(n)
    engine.shuffle()
    blank = engine.empty_position
    for pos in _all_cells(n):
        cells = engine.affected_cells(pos)
        if engine.is_legal_move(pos):
            assert len(cells) == _line_distance(pos, blank) - 1
            assert blank not in cells and pos not in cells
        else:
            assert cells == []


def test_affected_cells_ordered_from_blank() -> None:
    engine = PuzzleEngine(5)
    assert engine.affected_cells((4, 0)) == [(4, 3), (4, 2), (4, 1)]
    assert engine.affected_cells((0, 4)) == [(3, 4), (2, 4), (1, 4)]
    assert engine.affected_cells((4, 3)) == []


# -- example scenarios --------------------------------------------------------


def test_click_same_row_shifts_line() -> None:
    engine = PuzzleEngine(3)
    result = engine.apply_move((2, 0))
    assert isinstance(result, MoveResult)
    assert result.applied
    assert result.distance == 2
    assert engine.board.tiles == [[1, 2, 3], [4, 5, 6], [0, 7, 8]]
    assert engine.empty_position == (2, 0)
    assert engine.state.moves == 1


def test_click_off_line_is_illegal() -> None:
    engine = PuzzleEngine(3)
    result = engine.apply_move((0, 0))
    assert not result
    assert engine.board.tiles == [[1, 2, 3], [4, 5, 6], [7, 8, 0]]
    assert engine.empty_position == (2, 2)


def test_keyboard_directions() -> None:
    engine = PuzzleEngine(3)
    assert not engine.move(Direction.UP)      # nothing below the blank
    assert engine.move(Direction.DOWN)        # 6 slides down
    assert engine.empty_position == (1, 2)
    assert engine.move(Direction.RIGHT)       # 5 slides right
    assert engine.empty_position == (1, 1)


# -- shuffle ------------------------------------------------------------------


@pytest.mark.parametrize("n", SIZES)
@pytest.mark.parametrize("m", [0, 1, 200])
def test_shuffle_is_unsolved_and_reachable(n: int, m: int) -> None:
    engine = PuzzleEngine(n, rng=random.Random(n * 31 + m))
    engine.apply_move((0, n - 1))
    engine.shuffle(m)
    assert not engine.is_solved()
    assert engine.state.moves == 0
    assert Solver.is_solvable(engine.board)
    _assert_invariant(engine)


def test_shuffle_is_reproducible_with_seed() -> None:
    a = PuzzleEngine(4, rng=random.Random(7))
    b = PuzzleEngine(4, rng=random.Random(7))
    a.shuffle()
    b.shuffle()
    assert a.serialize() == b.serialize()


def test_reset_restores_solution() -> None:
    engine = PuzzleEngine(4)
    engine.shuffle()
    row, col = engine.empty_position
    assert engine.apply_move((row, (col + 1) % 4))
    engine.reset()
    assert engine.is_solved()
    assert engine.empty_position == (3, 3)
    assert engine.state.moves == 0


# -- snapshots ----------------------------------------------------------------


@pytest.mark.parametrize("n", SIZES)
def test_serialize_round_trip(n: int) -> None:
    source = PuzzleEngine(n)
    source.shuffle()
    copy = PuzzleEngine(n)
    copy.deserialize(source.serialize())
    assert copy.board == source.board
    assert copy.empty_position == source.empty_position


def test_deserialize_accepts_rows() -> None:
    engine = PuzzleEngine(3)
    engine.deserialize([[1, 2, 3], [4, 0, 5], [7, 8, 6]])
    assert engine.empty_position == (1, 1)
    assert not engine.is_solved()


@pytest.mark.parametrize(
    "data",
    [
        [1, 2, 3, 4, 5, 6, 7, 8],
        [1, 2, 3, 4, 5, 6, 7, 8, 8],
        [0, 2, 3, 4, 5, 6, 7, 8, 0],
        [1, 2, 3, 4, 5, 6, 7, 8, 9],
        [[1, 2], [3, 0]],
        "123456780",
    ],
    ids=["short", "duplicate", "two-blanks", "out-of-range", "wrong-size", "string"],
)
def test_deserialize_rejects_malformed(data) -> None:
    engine = PuzzleEngine(3)
    engine.shuffle()
    before = engine.serialize()
    with pytest.raises(MalformedStateError):
        engine.deserialize(data)
    assert engine.serialize() == before


@pytest.mark.parametrize("dimension", [1, 9, "4", 4.0, True])
def test_from_snapshot_rejects_bad_dimension(dimension) -> None:
    with pytest.raises(MalformedStateError):
        PuzzleEngine.from_snapshot(dimension, [1, 2, 3, 0])


def test_board_property_is_a_copy() -> None:
    engine = PuzzleEngine(3)
    board: Board = engine.board
    board.shift((2, 0))
    assert engine.is_solved()


# -- protocol determinism -----------------------------------------------------


@pytest.mark.parametrize("n", SIZES)
def test_same_snapshot_same_moves_stay_identical(n: int) -> None:
    host = PuzzleEngine(n, rng=random.Random(n))
    host.shuffle()
    guest = PuzzleEngine.from_snapshot(n, host.serialize())

    rng = random.Random(100 + n)
    probe = PuzzleEngine.from_snapshot(n, host.serialize())
    targets = _random_walk(probe, rng, 40)

    for target in targets:
        assert host.apply_move(target)
        assert guest.apply_move(target)
        assert host.serialize() == guest.serialize()
        assert host.empty_position == guest.empty_position


def test_shuffle_deals_the_generator_board() -> None:
    engine = PuzzleEngine(5, rng=random.Random(21))
    engine.apply_move((4, 0))
    engine.shuffle(300)
    expected = GameGenerator.generate(5, 300, random.Random(21))
    assert engine.board == expected
    assert engine.state.moves == 0

"""Vanilla terminal frontend: ANSI escape codes and the stdlib only.

A cursor picks any tile on the blank's row or column; Space/Enter slides
the whole line toward the blank. The tiles that would move are
highlighted before the move is made.
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

from backend.engine.gameplay import PuzzleEngine
from backend.models.board import MAX_SIZE, MIN_SIZE, Position
from backend.models.highscore import SOLO, HighScoreEntry, HighScoreManager
from frontend.cli.input_handler import get_key, get_key_timeout

# -- ANSI helpers -------------------------------------------------------------

_G = "\033[32;1m"    # bold green
_Y = "\033[33;1m"    # bold yellow
_C = "\033[36;1m"    # bold cyan
_DIM = "\033[2m"
_BOLD = "\033[1m"
_R = "\033[0m"
_BG_SEL = "\033[42;30m"   # selected menu entry
_BG_CUR = "\033[46;30m"   # cursor
_BG_LINE = "\033[44;37m"  # tiles that move with the cursor's line

_STEPS: dict[str, tuple[int, int]] = {
    "up": (-1, 0),
    "down": (1, 0),
    "left": (0, -1),
    "right": (0, 1),
}


def _clear() -> None:
    sys.stdout.write("\033[2J\033[H")
    sys.stdout.flush()


def _format_time(seconds: float) -> str:
    m, s = divmod(int(seconds), 60)
    return f"{m}:{s:02d}" if m else f"{s}s"


def _stats_line(engine: PuzzleEngine) -> str:
    return (
        f"  Moves: {_Y}{engine.state.moves}{_R}  |  "
        f"Time: {_Y}{_format_time(engine.state.elapsed_time)}{_R}"
    )


def step_cursor(cursor: Position, key: str, size: int) -> Position:
    """Move *cursor* one cell for an arrow action, staying on the board."""
    dr, dc = _STEPS.get(key, (0, 0))
    row = min(max(cursor[0] + dr, 0), size - 1)
    col = min(max(cursor[1] + dc, 0), size - 1)
    return row, col


# -- board rendering ----------------------------------------------------------


def render_board(engine: PuzzleEngine, cursor: Position | None = None) -> str:
    """ANSI text for the board, with the cursor and its line highlighted."""
    board = engine.board
    width = len(str(board.size * board.size - 1))
    sep = "+" + ("-" * (width + 2) + "+") * board.size

    moving: set[Position] = set()
    if cursor is not None and engine.is_legal_move(cursor):
        moving = set(engine.affected_cells(cursor))

    lines = [sep]
    for r, row in enumerate(board.tiles):
        cells: list[str] = []
        for c, val in enumerate(row):
            text = f" {'·' if val == 0 else val:>{width}} "
            if (r, c) == cursor:
                cells.append(f"{_BG_CUR}{text}{_R}")
            elif (r, c) in moving:
                cells.append(f"{_BG_LINE}{text}{_R}")
            elif val == 0:
                cells.append(f"{_DIM}{text}{_R}")
            elif board.is_tile_correct(r, c):
                cells.append(f"{_G}{text}{_R}")
            else:
                cells.append(text)
        lines.append("|" + "|".join(cells) + "|")
        lines.append(sep)
    return "\n".join(lines)


# -- screens ------------------------------------------------------------------


def _show_menu(sel_size: int) -> None:
    _clear()
    print()
    print(f"  {_BOLD}======================================{_R}")
    print(f"  {_BOLD}        L I N E   S L I D E           {_R}")
    print(f"  {_BOLD}======================================{_R}")
    print()
    sizes = ""
    for s in range(MIN_SIZE, MAX_SIZE + 1):
        label = f"{s}×{s}"
        sizes += f"  {_BG_SEL} {label} {_R}" if s == sel_size else f"  {_DIM}{label}{_R}"
    print(f"    Size:{sizes}")
    print(f"    {_DIM}← → to change{_R}")
    print()
    print(f"    {_C}1{_R}  Play")
    print(f"    {_DIM}2{_R}  Best results")
    print(f"    {_DIM}Q{_R}  Quit")
    print()


def _show_game(engine: PuzzleEngine, cursor: Position, status: str = "") -> None:
    """Draw the game screen.

    The stats line goes last with no trailing newline so ``_update_time``
    can overwrite it in place.
    """
    _clear()
    size = engine.dimension
    print(f"  {_C}=== Line Slide ({size}×{size}) ==={_R}")
    print()
    print(render_board(engine, cursor))
    print()
    print(
        f"  {_C}WASD{_R}/{_C}Arrows{_R}: cursor  |  "
        f"{_C}Space{_R}: slide  |  "
        f"{_C}R{_R}: new board  |  "
        f"{_C}Q{_R}: back"
    )
    if status:
        print(f"  {status}")
    sys.stdout.write(f"\n{_stats_line(engine)}")
    sys.stdout.flush()


def _update_time(engine: PuzzleEngine) -> None:
    sys.stdout.write(f"\r\033[K{_stats_line(engine)}")
    sys.stdout.flush()


def _show_win(engine: PuzzleEngine, rank: int) -> None:
    _clear()
    size = engine.dimension
    print(f"  {_G}=== Line Slide ({size}×{size}) ==={_R}")
    print()
    print(render_board(engine))
    print()
    print(f"  {_G}★ Solved! ★{_R}")
    print()
    print(_stats_line(engine))
    if rank == 1:
        print(f"\n  {_Y}New best for {size}×{size}!{_R}")


def _show_highscores(manager: HighScoreManager) -> None:
    _clear()
    print()
    print(f"  {_BOLD}=== BEST RESULTS ==={_R}")
    sizes = manager.get_all_sizes()
    if not sizes:
        print(f"\n  {_DIM}Nothing solved yet.{_R}")
    for size in sizes:
        print(f"\n  {_C}--- {size}×{size} ---{_R}")
        for i, e in enumerate(manager.get_scores(size)[:10], 1):
            vs = f" vs {e.opponent}" if e.opponent else ""
            print(
                f"  {i:>2}. {_Y}{e.moves:>4}{_R} moves  "
                f"{_Y}{e.time:>7.1f}s{_R}  "
                f"{_DIM}{e.mode}{vs} ({e.date}){_R}"
            )
    print(f"\n  {_DIM}Press any key to go back.{_R}")
    get_key()


# -- game loop ----------------------------------------------------------------


def _play_game(size: int, manager: HighScoreManager) -> None:
    while True:
        engine = PuzzleEngine(size)
        engine.shuffle()
        cursor = engine.empty_position
        status = ""

        while not engine.is_won:
            _show_game(engine, cursor, status)
            status = ""

            while True:
                key = get_key_timeout(0.5)
                if key is not None:
                    break
                _update_time(engine)

            if key in _STEPS:
                cursor = step_cursor(cursor, key, size)
            elif key == "select":
                result = engine.apply_move(cursor)
                if not result:
                    status = f"{_DIM}That tile is not in line with the gap.{_R}"
            elif key == "restart":
                engine.shuffle()
                cursor = engine.empty_position
            elif key == "quit":
                return

        engine.state.pause()
        rank = manager.add_score(
            size,
            HighScoreEntry(
                moves=engine.state.moves,
                time=round(engine.state.elapsed_time, 2),
                date=datetime.now().strftime("%Y-%m-%d %H:%M"),
                mode=SOLO,
            ),
        )
        _show_win(engine, rank)
        print(f"\n  Press {_C}R{_R} to play again, {_C}Q{_R} to go back.")

        while True:
            key = get_key()
            if key == "restart":
                break
            if key == "quit":
                return


# -- menu loop ----------------------------------------------------------------


def run(data_dir: Path, size: int = 4) -> None:
    """Launch the vanilla CLI with its interactive menu."""
    manager = HighScoreManager(data_dir / "highscores.json")
    sel_size = size

    while True:
        _show_menu(sel_size)
        key = get_key()

        if key == "quit":
            _clear()
            print("  Goodbye!\n")
            return
        elif key == "left":
            sel_size = max(MIN_SIZE, sel_size - 1)
        elif key == "right":
            sel_size = min(MAX_SIZE, sel_size + 1)
        elif key in ("1", "select"):
            _play_game(sel_size, manager)
        elif key in ("2", "help"):
            _show_highscores(manager)

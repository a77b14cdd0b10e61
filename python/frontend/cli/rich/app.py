"""Rich terminal frontend: tables, colours and panels.

Shares the input handler and backend with the vanilla CLI. Besides the
single-player menu it hosts the two-player mode: a lobby listing the
players found on the LAN, then a shared board driven by a
:class:`~backend.sync.session.SyncSession`.
"""

from __future__ import annotations

import sys
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import rich.box
from rich.align import Align
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from backend.engine.gameplay import PuzzleEngine
from backend.models.board import MAX_SIZE, MIN_SIZE, Position
from backend.models.errors import SessionStateError
from backend.models.highscore import SOLO, VERSUS, HighScoreEntry, HighScoreManager
from backend.sync.session import (
    NOT_READY,
    Role,
    SessionEvent,
    SessionEventKind,
    SessionState,
    SyncSession,
)
from frontend.cli.input_handler import get_key, get_key_timeout
from frontend.cli.vanilla.app import step_cursor

console = Console()

_ARROWS = ("up", "down", "left", "right")


# -- helpers ------------------------------------------------------------------


def _format_time(seconds: float) -> str:
    m, s = divmod(int(seconds), 60)
    return f"{m:02d}:{s:02d}"


def _stats(engine: PuzzleEngine) -> Text:
    stats = Text()
    stats.append("  Moves: ", style="dim")
    stats.append(str(engine.state.moves), style="bold yellow")
    stats.append("    Time: ", style="dim")
    stats.append(_format_time(engine.state.elapsed_time), style="bold yellow")
    return stats


def _controls(*pairs: tuple[str, str]) -> Text:
    controls = Text()
    for key, label in pairs:
        controls.append(f"  {key}", style="bold cyan")
        controls.append(f"  {label} ", style="dim")
    return controls


def _record(manager: HighScoreManager, engine: PuzzleEngine, mode: str, opponent: str | None = None) -> int:
    return manager.add_score(
        engine.dimension,
        HighScoreEntry(
            moves=engine.state.moves,
            time=round(engine.state.elapsed_time, 2),
            date=datetime.now().strftime("%Y-%m-%d %H:%M"),
            mode=mode,
            opponent=opponent,
        ),
    )


# -- board rendering ----------------------------------------------------------


def render_board(engine: PuzzleEngine, cursor: Position | None = None) -> Table:
    """Rich table for the grid; the cursor's line preview is shaded."""
    board = engine.board
    width = len(str(board.size * board.size - 1))
    table = Table(
        show_header=False,
        show_edge=True,
        pad_edge=True,
        box=rich.box.HEAVY,
        border_style="bright_blue",
        padding=(0, 1),
    )
    for _ in range(board.size):
        table.add_column(width=width + 1, justify="center")

    moving: set[Position] = set()
    if cursor is not None and engine.is_legal_move(cursor):
        moving = set(engine.affected_cells(cursor))

    for r, row in enumerate(board.tiles):
        cells: list[Text] = []
        for c, val in enumerate(row):
            label = "·" if val == 0 else f"{val:>{width}}"
            if (r, c) == cursor:
                style = "bold black on cyan"
            elif (r, c) in moving:
                style = "bold white on blue"
            elif val == 0:
                style = "dim"
            elif board.is_tile_correct(r, c):
                style = "bold green"
            else:
                style = "bold white"
            cells.append(Text(label, style=style))
        table.add_row(*cells)
    return table


# -- single player ------------------------------------------------------------


def _draw_menu(sel_size: int) -> None:
    console.clear()
    sizes = Text()
    for s in range(MIN_SIZE, MAX_SIZE + 1):
        if s > MIN_SIZE:
            sizes.append("  ")
        style = "bold green on #313244" if s == sel_size else "dim"
        sizes.append(f" {s}×{s} ", style=style)

    opts = Text()
    opts.append("  1", style="bold cyan")
    opts.append("  Play    ")
    opts.append("2", style="dim bold")
    opts.append("  Best results    ", style="dim")
    opts.append("Q", style="dim bold")
    opts.append("  Quit", style="dim")

    body = Group(
        Text(""),
        Align.center(sizes),
        Align.center(Text("  ← →  change size", style="dim")),
        Text(""),
        Align.center(opts),
        Text(""),
    )
    console.print()
    console.print(
        Align.center(
            Panel(body, title="[bold]L I N E   S L I D E[/bold]", border_style="bright_blue", padding=(1, 4))
        )
    )


def _draw_game(engine: PuzzleEngine, cursor: Position, status: str = "") -> None:
    console.clear()
    size = engine.dimension
    panel = Panel(
        Align.center(render_board(engine, cursor)),
        title=f"[bold cyan]Line Slide  {size}×{size}[/bold cyan]",
        border_style="bright_blue",
        padding=(1, 2),
    )
    console.print()
    console.print(Align.center(panel))
    # saved cursor position: _update_time repaints only the stats line
    sys.stdout.write("\033[s")
    sys.stdout.flush()
    console.print(Align.center(_stats(engine)))
    if status:
        console.print(Align.center(Text.from_markup(f"  {status}")))
    console.print(
        Align.center(_controls(("↑↓←→/WASD", "cursor"), ("Space", "slide"), ("R", "new board"), ("Q", "back")))
    )


def _update_time(engine: PuzzleEngine) -> None:
    """Repaint the stats line in place with raw ANSI codes."""
    m, s = divmod(int(engine.state.elapsed_time), 60)
    visible = f"Moves: {engine.state.moves}    Time: {m:02d}:{s:02d}"
    raw = (
        f"\033[2mMoves: \033[0m\033[33;1m{engine.state.moves}\033[0m"
        f"    \033[2mTime: \033[0m\033[33;1m{m:02d}:{s:02d}\033[0m"
    )
    pad = max(0, (console.width - len(visible)) // 2)
    sys.stdout.write(f"\033[u\033[K{' ' * pad}{raw}")
    sys.stdout.flush()


def _draw_win(engine: PuzzleEngine, headline: str) -> None:
    console.clear()
    size = engine.dimension
    congrats = Text()
    congrats.append("\n  ★ ", style="bold yellow")
    congrats.append(headline, style="bold green")
    congrats.append(" ★\n", style="bold yellow")
    panel = Panel(
        Group(Align.center(render_board(engine)), Align.center(congrats), Align.center(_stats(engine))),
        title=f"[bold green]Line Slide  {size}×{size}[/bold green]",
        border_style="bold green",
        padding=(1, 2),
    )
    console.print()
    console.print(Align.center(panel))


def _draw_highscores(manager: HighScoreManager) -> None:
    console.clear()
    parts: list[Align] = []
    for size in manager.get_all_sizes():
        table = Table(
            title=f"{size}×{size}",
            title_style="bold cyan",
            box=rich.box.ROUNDED,
            border_style="dim",
        )
        table.add_column("#", justify="right", style="dim", width=3)
        table.add_column("Moves", justify="right", style="yellow")
        table.add_column("Time", justify="right", style="yellow")
        table.add_column("Mode")
        table.add_column("Date", style="dim")
        for i, e in enumerate(manager.get_scores(size)[:10], 1):
            mode = f"vs {e.opponent}" if e.mode == VERSUS and e.opponent else e.mode
            table.add_row(str(i), str(e.moves), f"{e.time:.1f}s", mode, e.date)
        parts.append(Align.center(table))
    if not parts:
        parts.append(Align.center(Text("  Nothing solved yet.", style="dim")))

    console.print()
    console.print(
        Align.center(Panel(Group(*parts), title="[bold]BEST  RESULTS[/bold]", border_style="bright_blue", padding=(1, 2)))
    )
    console.print(Align.center(Text("\n  Press any key to go back.\n", style="dim")))
    get_key()


def _play_game(size: int, manager: HighScoreManager) -> None:
    while True:
        engine = PuzzleEngine(size)
        engine.shuffle()
        cursor = engine.empty_position
        status = ""

        while not engine.is_won:
            _draw_game(engine, cursor, status)
            status = ""
            while True:
                key = get_key_timeout(0.5)
                if key is not None:
                    break
                _update_time(engine)

            if key in _ARROWS:
                cursor = step_cursor(cursor, key, size)
            elif key == "select":
                if not engine.apply_move(cursor):
                    status = "[dim]That tile is not in line with the gap.[/dim]"
            elif key == "restart":
                engine.shuffle()
                cursor = engine.empty_position
            elif key == "quit":
                return

        engine.state.pause()
        rank = _record(manager, engine, SOLO)
        _draw_win(engine, "New best!" if rank == 1 else "Solved!")
        console.print(Align.center(Text("\n  Press R to play again, Q to go back.\n", style="dim")))
        while True:
            key = get_key()
            if key == "restart":
                break
            if key == "quit":
                return


def run(data_dir: Path, size: int = 4) -> None:
    """Launch the Rich CLI with its interactive menu."""
    manager = HighScoreManager(data_dir / "highscores.json")
    sel_size = size

    while True:
        _draw_menu(sel_size)
        key = get_key()

        if key == "quit":
            console.clear()
            console.print(Align.center(Text("\nGoodbye!\n", style="bold cyan")))
            return
        elif key == "left":
            sel_size = max(MIN_SIZE, sel_size - 1)
        elif key == "right":
            sel_size = min(MAX_SIZE, sel_size + 1)
        elif key in ("1", "select"):
            _play_game(sel_size, manager)
        elif key in ("2", "help"):
            _draw_highscores(manager)


# -- two players --------------------------------------------------------------


@dataclass
class MultiplayerView:
    """What the two-player screens show besides the session itself."""

    cursor: Position = (0, 0)
    notices: deque[str] = field(default_factory=lambda: deque(maxlen=5))
    reset_requested: bool = False

    def notice(self, text: str) -> None:
        self.notices.append(text)


def describe(event: SessionEvent, session: SyncSession) -> str | None:
    """One-line, markup-formatted notice for *event*; ``None`` to skip it."""
    who = session.peer_name or event.peer_id or "opponent"
    kind = event.kind
    if kind == SessionEventKind.GAME_REQUESTED:
        return f"[bold yellow]{event.detail}[/bold yellow] wants to play: Y accept, N decline"
    if kind == SessionEventKind.REQUEST_WITHDRAWN:
        return f"[dim]Request from {event.peer_id} is gone ({event.detail}).[/dim]"
    if kind == SessionEventKind.REQUEST_DECLINED:
        return "[yellow]Your request was declined.[/yellow]"
    if kind == SessionEventKind.REQUEST_EXPIRED:
        return "[yellow]No answer; request expired.[/yellow]"
    if kind == SessionEventKind.CONNECTED:
        return f"[green]Connected to {who} as {event.detail}.[/green]"
    if kind == SessionEventKind.GAME_STARTED:
        return "[cyan]New board dealt.[/cyan]"
    if kind == SessionEventKind.LOCAL_WON:
        first = " first" if not session.opponent_won else ""
        return f"[bold green]You solved it{first}![/bold green]"
    if kind == SessionEventKind.OPPONENT_WON:
        return f"[bold magenta]{event.detail or who} solved it![/bold magenta]"
    if kind == SessionEventKind.RESET_ANNOUNCED:
        return f"[cyan]{who} is dealing a new board.[/cyan]"
    if kind == SessionEventKind.RESET_REQUESTED:
        return f"[yellow]{who} asks for a new board: press R to deal one.[/yellow]"
    if kind == SessionEventKind.DESYNC:
        return "[red]Boards out of step; resynchronising.[/red]"
    if kind == SessionEventKind.RESYNCED:
        return "[cyan]Boards back in step.[/cyan]"
    if kind == SessionEventKind.DISCONNECTED:
        return f"[red]Disconnected: {event.detail}[/red]"
    if kind == SessionEventKind.ERROR:
        return f"[red]{event.detail}[/red]"
    return None


def _draw_lobby(session: SyncSession, view: MultiplayerView) -> None:
    console.clear()
    peers = Table(box=rich.box.ROUNDED, border_style="dim", title="Players nearby", title_style="bold cyan")
    peers.add_column("#", justify="right", style="bold cyan", width=3)
    peers.add_column("Name", style="bold")
    peers.add_column("Id", style="dim")
    for i, peer in enumerate(session.peers()[:9], 1):
        peers.add_row(str(i), peer.name, peer.id)

    requests = Text()
    for req in session.incoming_requests():
        requests.append(f"  ← {req.name} ", style="bold yellow")
        requests.append(f"({req.id})\n", style="dim")

    if session.state == SessionState.AWAITING_ACCEPTANCE:
        headline = Text(f"Waiting for {session.peer_id} to answer…  X to cancel", style="yellow")
        keys = _controls(("X", "cancel"), ("Q", "leave"))
    elif session.state == SessionState.DISCONNECTED:
        headline = Text("Offline.", style="red")
        keys = _controls(("R", "reconnect"), ("Q", "leave"))
    else:
        headline = Text("Pick a player to challenge.", style="dim")
        keys = _controls(("1-9", "challenge"), ("J", "join by id"), ("Y/N", "answer"), ("Q", "leave"))

    me = Text()
    me.append("  You are ", style="dim")
    me.append(session.player_name, style="bold")
    if session.state != SessionState.DISCONNECTED:
        me.append(f"  ({session.transport.self_id})", style="dim")

    body = Group(
        me,
        Text(""),
        Align.center(peers),
        requests,
        Align.center(headline),
        Text(""),
        *(Text.from_markup(f"  {n}") for n in view.notices),
    )
    console.print()
    console.print(Align.center(Panel(body, title="[bold]L O B B Y[/bold]", border_style="bright_blue", padding=(1, 2))))
    console.print(Align.center(keys))


def _draw_shared_game(session: SyncSession, view: MultiplayerView) -> None:
    console.clear()
    opponent = session.peer_name or session.peer_id or "?"
    engine = session.engine
    if engine is None:
        body: Group | Align = Align.center(Text(f"Waiting for {opponent} to deal the board…", style="yellow"))
    else:
        status = Text()
        status.append(f"  vs {opponent}", style="bold magenta")
        status.append(f"   you are {session.role}", style="dim")
        if session.opponent_won:
            status.append("   ✔ opponent solved it", style="magenta")
        if session.local_won:
            status.append("   ✔ you solved it", style="green")
        if session.suspended:
            status.append("   resyncing…", style="red")
        body = Group(Align.center(render_board(engine, view.cursor)), Align.center(_stats(engine)), Align.center(status))

    size = engine.dimension if engine else session.dimension
    console.print()
    console.print(
        Align.center(
            Panel(body, title=f"[bold cyan]Line Slide  {size}×{size}  (two players)[/bold cyan]", border_style="bright_blue", padding=(1, 2))
        )
    )
    for n in view.notices:
        console.print(Align.center(Text.from_markup(n)))
    label = "new board" if session.role == Role.HOST else "ask for new board"
    console.print(Align.center(_controls(("↑↓←→/WASD", "cursor"), ("Space", "slide"), ("R", label), ("Q", "leave"))))


def _lobby_key(session: SyncSession, view: MultiplayerView, key: str) -> bool:
    """Handle a lobby keypress; False means leave multiplayer."""
    state = session.state
    if key == "quit":
        return False
    if state == SessionState.DISCONNECTED:
        if key == "restart":
            session.enter_multiplayer()
        return True
    if state == SessionState.AWAITING_ACCEPTANCE:
        if key == "cancel":
            session.cancel_request()
            view.notice("[dim]Request cancelled.[/dim]")
        return True

    incoming = session.incoming_requests()
    if key == "accept" and incoming:
        session.accept_request(incoming[0].id)
    elif key == "decline" and incoming:
        session.decline_request(incoming[0].id)
    elif key == "join":
        console.print()
        peer_id = console.input("  [bold cyan]Player id (host:port):[/bold cyan] ").strip()
        if peer_id and session.request_game(peer_id):
            view.notice(f"Asked {peer_id} for a game.")
    elif key.isdigit() and key != "0":
        peers = session.peers()
        index = int(key) - 1
        if index < len(peers) and session.request_game(peers[index].id):
            view.notice(f"Asked {peers[index].name} for a game.")
    return True


def _game_key(session: SyncSession, view: MultiplayerView, key: str) -> bool:
    engine = session.engine
    if key == "quit":
        session.leave()
        return True
    if engine is None:
        return True
    if key in _ARROWS:
        view.cursor = step_cursor(view.cursor, key, engine.dimension)
    elif key == "select":
        result = session.make_move(*view.cursor)
        if not result and result.reason != NOT_READY:
            view.notice("[dim]That tile is not in line with the gap.[/dim]")
    elif key == "restart":
        session.request_reset()
        view.reset_requested = False
    return True


def _apply_events(session: SyncSession, view: MultiplayerView, manager: HighScoreManager, events: list[SessionEvent]) -> None:
    for event in events:
        text = describe(event, session)
        if text:
            view.notice(text)
        if event.kind == SessionEventKind.GAME_STARTED and session.engine is not None:
            view.cursor = session.engine.empty_position
        elif event.kind == SessionEventKind.RESET_REQUESTED:
            view.reset_requested = True
        elif event.kind == SessionEventKind.LOCAL_WON and session.engine is not None:
            _record(manager, session.engine, VERSUS, opponent=session.peer_name)


def run_multiplayer(session: SyncSession, data_dir: Path, join: str | None = None) -> None:
    """Two-player mode: lobby, then the shared board, until the player quits."""
    manager = HighScoreManager(data_dir / "highscores.json")
    view = MultiplayerView()
    session.enter_multiplayer()
    if join and session.state == SessionState.DISCOVERING:
        session.request_game(join)

    dirty = True
    shown_second = -1
    try:
        while True:
            events = session.poll()
            _apply_events(session, view, manager, events)
            if events:
                dirty = True
            if dirty:
                if session.state == SessionState.CONNECTED:
                    _draw_shared_game(session, view)
                else:
                    _draw_lobby(session, view)
                dirty = False

            key = get_key_timeout(0.25)
            if key is None:
                engine = session.engine
                if session.state == SessionState.CONNECTED and engine is not None:
                    # keep the clock ticking on screen
                    second = int(engine.state.elapsed_time)
                    dirty = second != shown_second
                    shown_second = second
                continue
            dirty = True
            try:
                if session.state == SessionState.CONNECTED:
                    _game_key(session, view, key)
                elif not _lobby_key(session, view, key):
                    return
            except SessionStateError as exc:
                view.notice(f"[red]{exc}[/red]")
    finally:
        session.leave()
        console.clear()
        console.print(Align.center(Text("\nLeft two-player mode.\n", style="bold cyan")))

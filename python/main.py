#!/usr/bin/env python3
"""Line Slide: a sliding puzzle where whole lines move at once.

Usage::

    python main.py                     # interactive menu
    python main.py -f rich -s 3        # Rich terminal, 3×3
    python main.py -f pygame           # Pygame GUI (has its own menu)
    python main.py --scores            # view best results
    python main.py -m --name Ana       # two players on the LAN
    python main.py -m --join 10.0.0.7:47800
"""

import getpass
import importlib
import logging
import sys
from enum import StrEnum
from pathlib import Path
from typing import Optional

import typer

ROOT = Path(__file__).resolve().parent  # python/
PROJECT_ROOT = ROOT.parent
DATA_DIR = PROJECT_ROOT / "data"

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


# -- frontend registry -------------------------------------------------------


class Frontend(StrEnum):
    vanilla = "vanilla"
    rich = "rich"
    pygame = "pygame"


_RUNNERS = {
    Frontend.vanilla: "frontend.cli.vanilla.app",
    Frontend.rich: "frontend.cli.rich.app",
    Frontend.pygame: "frontend.gui.pygame.app",
}


# -- helpers ------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _print_highscores(data_dir: Path) -> None:
    from backend.models.highscore import HighScoreManager

    manager = HighScoreManager(data_dir / "highscores.json")
    sizes = manager.get_all_sizes()

    print("\n  === BEST RESULTS ===")
    if not sizes:
        print("  Nothing solved yet.\n")
        return
    for size in sizes:
        print(f"\n  --- {size}x{size} ---")
        for i, e in enumerate(manager.get_scores(size)[:10], 1):
            vs = f" vs {e.opponent}" if e.opponent else ""
            print(f"  {i:>2}. {e.moves:>4} moves  {e.time:>7.1f}s  {e.mode}{vs}  ({e.date})")
    print()


def _ask_size() -> int:
    raw = input("  Grid size (2-8, default 4): ").strip() or "4"
    try:
        size = int(raw)
        if not 2 <= size <= 8:
            raise ValueError
    except ValueError:
        print("  Invalid size, using 4.")
        size = 4
    return size


def _run_multiplayer(
    name: str,
    size: int,
    port: Optional[int],
    join: Optional[str],
    discovery: bool,
    data_dir: Path,
) -> None:
    from backend.config import SyncConfig
    from backend.sync import SyncSession, TcpTransport
    from frontend.cli.rich.app import run_multiplayer

    try:
        config = SyncConfig.from_env(port=port, discovery=None if discovery else False)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    transport = TcpTransport(name, config)
    session = SyncSession(transport, player_name=name, dimension=size, config=config)
    run_multiplayer(session, data_dir, join=join)


def _menu_loop(data_dir: Path, name: str) -> None:
    while True:
        print()
        print("  ====================================")
        print("         L I N E   S L I D E          ")
        print("  ====================================")
        print()
        print("  1.  Play  (Vanilla Terminal)")
        print("  2.  Play  (Rich Terminal)")
        print("  3.  Play  (Pygame GUI)")
        print("  4.  Two players on the LAN")
        print("  5.  View Best Results")
        print("  0.  Quit")
        print()

        choice = input("  Select: ").strip()

        if choice == "0":
            print("\n  Goodbye!\n")
            return

        if choice in ("1", "2"):
            size = _ask_size()
            mod = importlib.import_module(
                {"1": _RUNNERS[Frontend.vanilla], "2": _RUNNERS[Frontend.rich]}[choice]
            )
            mod.run(size=size, data_dir=data_dir)

        elif choice == "3":
            mod = importlib.import_module(_RUNNERS[Frontend.pygame])
            mod.run(data_dir=data_dir)

        elif choice == "4":
            _run_multiplayer(name, _ask_size(), None, None, True, data_dir)

        elif choice == "5":
            _print_highscores(data_dir)

        else:
            print("  Unknown option.")


# -- CLI entry point ----------------------------------------------------------

app = typer.Typer(add_completion=False)


@app.command()
def main(
    frontend: Optional[Frontend] = typer.Option(
        None, "-f", "--frontend",
        help="Frontend to launch. Omit for interactive menu.",
    ),
    size: int = typer.Option(
        4, "-s", "--size",
        min=2, max=8,
        help="Grid size (2-8).",
    ),
    scores: bool = typer.Option(
        False, "--scores",
        help="Show best results and exit.",
    ),
    multiplayer: bool = typer.Option(
        False, "-m", "--multiplayer",
        help="Play against someone on the LAN (Rich terminal).",
    ),
    name: str = typer.Option(
        getpass.getuser(), "--name",
        envvar="LINESLIDE_NAME",
        help="Name other players see.",
    ),
    port: Optional[int] = typer.Option(
        None, "--port",
        envvar="LINESLIDE_PORT",
        min=0, max=65535,
        help="TCP port for game links (0 picks a free one).",
    ),
    join: Optional[str] = typer.Option(
        None, "--join",
        help="Send a game request to host:port right away.",
    ),
    no_discovery: bool = typer.Option(
        False, "--no-discovery",
        help="Do not announce or look for players via multicast.",
    ),
    data_dir: Path = typer.Option(
        DATA_DIR, "--data-dir",
        file_okay=False,
        help="Where best results are kept.",
    ),
    verbose: bool = typer.Option(
        False, "-v", "--verbose",
        help="Log protocol traffic to stderr.",
    ),
) -> None:
    """Line Slide puzzle."""
    _setup_logging(verbose)

    if scores:
        _print_highscores(data_dir)
        return

    if multiplayer or join:
        if frontend not in (None, Frontend.rich):
            raise typer.BadParameter("two-player mode runs in the rich frontend", param_hint="--frontend")
        _run_multiplayer(name, size, port, join, not no_discovery, data_dir)
        return

    if frontend is None:
        _menu_loop(data_dir, name)
        return

    mod = importlib.import_module(_RUNNERS[frontend])
    mod.run(size=size, data_dir=data_dir)


if __name__ == "__main__":
    app()

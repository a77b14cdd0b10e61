"""Single-keypress input for the terminal frontends.

Keys are read in raw mode (no Enter needed) and mapped to action names.
Arrow keys and WASD move the selection cursor; Space or Enter shifts the
line toward the cursor. Works with tty+termios on macOS / Linux and with
msvcrt on Windows.
"""

from __future__ import annotations

import os
import sys
import time
from typing import Callable

# -- key mapping ---------------------------------------------------------------

_KEY_MAP: dict[str, str] = {
    "w": "up",
    "s": "down",
    "a": "left",
    "d": "right",
    " ": "select",
    "\r": "select",
    "\n": "select",
    "q": "quit",
    "\x03": "quit",  # Ctrl-C
    "r": "restart",
    "h": "help",
    "?": "help",
    "y": "accept",
    "n": "decline",
    "x": "cancel",
    "j": "join",
}

_ARROW_MAP: dict[str, str] = {
    "A": "up",
    "B": "down",
    "C": "right",
    "D": "left",
}


def _resolve(ch: str) -> str:
    if ch.lower() in _KEY_MAP and ch.isalpha():
        return _KEY_MAP[ch.lower()]
    return _KEY_MAP.get(ch, ch if ch.isprintable() else "")


def _escape(read_next: Callable[[], str | None]) -> str:
    """Decode what follows ESC. ``None`` from *read_next* means no more bytes."""
    ch2 = read_next()
    if ch2 != "[":
        return "quit"  # bare Escape
    ch3 = read_next()
    return _ARROW_MAP.get(ch3 or "", "")


# -- low-level readers ---------------------------------------------------------


def _getch_unix() -> str:
    import termios
    import tty

    fd = sys.stdin.fileno()
    old = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        return sys.stdin.read(1)
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)


def _getch_windows() -> str:
    import msvcrt  # type: ignore[import-not-found]

    return msvcrt.getch().decode("utf-8", errors="ignore")


_getch = _getch_windows if os.name == "nt" else _getch_unix


# -- public API ----------------------------------------------------------------


def get_key() -> str:
    """Block for one keypress and return its action name.

    Actions: ``up down left right select quit restart help accept decline
    cancel join``; any other printable key is returned as itself and
    unrecognised keys as ``""``.
    """
    ch = _getch()
    if ch == "\x1b":
        return _escape(_getch)
    return _resolve(ch)


def get_key_timeout(timeout: float) -> str | None:
    """Like :func:`get_key`, but return ``None`` after *timeout* seconds.

    The multiplayer loop calls this between network polls.
    """
    if os.name == "nt":
        import msvcrt  # type: ignore[import-not-found]

        end = time.monotonic() + timeout
        while time.monotonic() < end:
            if msvcrt.kbhit():
                return get_key()
            time.sleep(0.02)
        return None

    import select
    import termios
    import tty

    fd = sys.stdin.fileno()
    old = termios.tcgetattr(fd)

    def read_pending(wait: float) -> str | None:
        # os.read so select() still sees the rest of an escape sequence
        ready, _, _ = select.select([fd], [], [], wait)
        if not ready:
            return None
        return os.read(fd, 1).decode("utf-8", errors="ignore")

    try:
        tty.setraw(fd)
        ch = read_pending(timeout)
        if ch is None:
            return None
        if ch == "\x1b":
            return _escape(lambda: read_pending(0.1))
        return _resolve(ch)
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)

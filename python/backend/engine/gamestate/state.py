"""Move counter and play clock for a game in progress."""

from __future__ import annotations

import time
from typing import Callable


class GameState:
    """Counts applied moves and tracks elapsed play time.

    The board itself belongs to the engine; this only holds the numbers a
    frontend shows and a win announcement carries.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.moves: int = 0
        self._start_time: float = clock()
        self._elapsed_banked: float = 0.0
        self._running: bool = True

    # -- time tracking --------------------------------------------------------

    @property
    def elapsed_time(self) -> float:
        if self._running:
            return self._elapsed_banked + (self._clock() - self._start_time)
        return self._elapsed_banked

    @property
    def running(self) -> bool:
        return self._running

    def pause(self) -> None:
        if self._running:
            self._elapsed_banked += self._clock() - self._start_time
            self._running = False

    def resume(self) -> None:
        if not self._running:
            self._start_time = self._clock()
            self._running = True

    def restart(self) -> None:
        """Zero the counter and the clock, and start timing again."""
        self.moves = 0
        self._elapsed_banked = 0.0
        self._start_time = self._clock()
        self._running = True

    # -- moves ----------------------------------------------------------------

    def increment_moves(self) -> None:
        self.moves += 1

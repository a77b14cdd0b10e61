"""Shared fixtures: a controllable clock and sessions wired over loopback."""

from __future__ import annotations

import random
from typing import Callable

import pytest

from backend.config import SyncConfig
from backend.sync.loopback import LoopbackHub, LoopbackTransport
from backend.sync.session import SessionEvent, SessionEventKind, SyncSession


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def kinds(events: list[SessionEvent]) -> list[SessionEventKind]:
    return [e.kind for e in events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hub() -> LoopbackHub:
    return LoopbackHub()


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig(request_timeout=30.0, shuffle_moves=50)


@pytest.fixture
def make_session(hub: LoopbackHub, clock: FakeClock, config: SyncConfig) -> Callable[..., SyncSession]:
    seeds = iter(range(100))

    def factory(name: str, dimension: int = 4) -> SyncSession:
        transport = LoopbackTransport(hub, name)
        session = SyncSession(
            transport,
            player_name=name,
            dimension=dimension,
            config=config,
            clock=clock,
            rng=random.Random(next(seeds)),
        )
        session.enter_multiplayer()
        return session

    return factory


def handshake(host: SyncSession, guest: SyncSession) -> None:
    """Run request → accept → GameStart between two discovering sessions."""
    host.request_game(guest.transport.self_id)
    guest.poll()
    guest.accept_request(host.transport.self_id)
    host.poll()
    guest.poll()


@pytest.fixture
def pair(make_session) -> tuple[SyncSession, SyncSession]:
    """Host ``Ana`` and guest ``Ben`` playing the same 4×4 board."""
    host = make_session("Ana")
    guest = make_session("Ben")
    handshake(host, guest)
    return host, guest

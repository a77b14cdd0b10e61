"""What a session needs from the channel that carries its messages.

A transport finds peers, opens point-to-point links to them and delivers
messages reliably and in order. Anything it learns asynchronously
(a peer appearing, a message arriving, a link dropping) is queued as a
:class:`TransportEvent` and handed over by :meth:`TransportChannel.poll_events`
on the caller's thread, so the session never runs concurrently with itself.
"""

from __future__ import annotations

import queue
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum

from backend.sync.messages import Message


class EventKind(StrEnum):
    PEERS_CHANGED = "peers_changed"
    OPENED = "opened"
    MESSAGE = "message"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class PeerInfo:
    id: str
    name: str
    last_seen: float = 0.0


@dataclass(frozen=True)
class TransportEvent:
    kind: EventKind
    peer_id: str | None = None
    message: Message | None = None
    error: str | None = None


class TransportChannel(ABC):
    """Reliable, ordered, bidirectional links plus peer discovery."""

    def __init__(self, display_name: str) -> None:
        self.display_name = display_name
        self._events: queue.Queue[TransportEvent] = queue.Queue()

    @property
    @abstractmethod
    def self_id(self) -> str:
        """Identifier other peers use to reach this endpoint."""

    @abstractmethod
    def start(self) -> None:
        """Begin listening and announcing presence."""

    @abstractmethod
    def peers(self) -> list[PeerInfo]:
        """Peers currently reachable through discovery."""

    @abstractmethod
    def connect(self, peer_id: str) -> None:
        """Open a link to *peer_id* (a discovered id or an out-of-band one).

        Raises ``TransportError`` if the peer cannot be reached.
        """

    @abstractmethod
    def send(self, peer_id: str, message: Message) -> None:
        """Queue *message* on the link to *peer_id*; raises ``TransportError``."""

    @abstractmethod
    def disconnect(self, peer_id: str) -> None:
        """Drop the link to *peer_id* without notifying ourselves."""

    @abstractmethod
    def close(self) -> None:
        """Drop every link and stop discovery."""

    def is_connected(self, peer_id: str) -> bool:
        return False

    def peer_name(self, peer_id: str) -> str | None:
        for peer in self.peers():
            if peer.id == peer_id:
                return peer.name
        return None

    # -- event queue ----------------------------------------------------------

    def poll_events(self) -> list[TransportEvent]:
        events: list[TransportEvent] = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    def _emit(self, kind: EventKind, peer_id: str | None = None, **kwargs) -> None:
        self._events.put(TransportEvent(kind, peer_id, **kwargs))

"""In-process transport: a shared hub stands in for the network.

Every endpoint registered on a :class:`LoopbackHub` can see the others
(like tabs sharing a broadcast channel) and open links to them. Messages
are encoded on send and decoded on delivery, so two endpoints never share
an object.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time

from backend.models.errors import ProtocolError, TransportError
from backend.sync.messages import Message, decode, encode
from backend.sync.transport import EventKind, PeerInfo, TransportChannel

logger = logging.getLogger(__name__)


class LoopbackHub:
    """Directory of live loopback endpoints."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._endpoints: dict[str, LoopbackTransport] = {}
        self._ids = itertools.count(1)

    def next_id(self) -> str:
        return f"loop-{next(self._ids)}"

    def register(self, endpoint: LoopbackTransport) -> None:
        with self._lock:
            self._endpoints[endpoint.self_id] = endpoint
            others = [e for e in self._endpoints.values() if e is not endpoint]
        for other in others:
            other._emit(EventKind.PEERS_CHANGED)

    def unregister(self, endpoint: LoopbackTransport) -> None:
        with self._lock:
            if self._endpoints.get(endpoint.self_id) is not endpoint:
                return
            del self._endpoints[endpoint.self_id]
            others = list(self._endpoints.values())
        for other in others:
            other._emit(EventKind.PEERS_CHANGED)

    def lookup(self, peer_id: str) -> LoopbackTransport | None:
        with self._lock:
            return self._endpoints.get(peer_id)

    def listing(self, exclude: str) -> list[PeerInfo]:
        with self._lock:
            endpoints = [e for e in self._endpoints.values() if e.self_id != exclude]
        now = time.monotonic()
        return sorted(
            (PeerInfo(e.self_id, e.display_name, now) for e in endpoints),
            key=lambda p: (p.name, p.id),
        )


class LoopbackTransport(TransportChannel):
    def __init__(self, hub: LoopbackHub, display_name: str, peer_id: str | None = None) -> None:
        super().__init__(display_name)
        self._hub = hub
        self._id = peer_id or hub.next_id()
        self._links: set[str] = set()
        self._started = False

    @property
    def self_id(self) -> str:
        return self._id

    def start(self) -> None:
        if not self._started:
            self._started = True
            self._hub.register(self)

    def peers(self) -> list[PeerInfo]:
        return self._hub.listing(exclude=self._id)

    def is_connected(self, peer_id: str) -> bool:
        return peer_id in self._links

    def connect(self, peer_id: str) -> None:
        if peer_id in self._links:
            return
        if peer_id == self._id:
            raise TransportError("Refusing to connect to ourselves.")
        other = self._hub.lookup(peer_id)
        if other is None or not self._started:
            raise TransportError(f"Peer {peer_id} is not reachable.")
        self._links.add(peer_id)
        other._links.add(self._id)
        self._emit(EventKind.OPENED, peer_id)
        other._emit(EventKind.OPENED, self._id)

    def send(self, peer_id: str, message: Message) -> None:
        other = self._hub.lookup(peer_id)
        if peer_id not in self._links or other is None:
            raise TransportError(f"No open link to {peer_id}.")
        payload = encode(message)
        logger.debug("%s -> %s %s", self._id, peer_id, payload)
        try:
            other._emit(EventKind.MESSAGE, self._id, message=decode(payload))
        except ProtocolError as exc:
            other._emit(EventKind.ERROR, self._id, error=str(exc))

    def disconnect(self, peer_id: str) -> None:
        if peer_id not in self._links:
            return
        self._links.discard(peer_id)
        other = self._hub.lookup(peer_id)
        if other is not None and self._id in other._links:
            other._links.discard(self._id)
            other._emit(EventKind.CLOSED, self._id)

    def close(self) -> None:
        for peer_id in list(self._links):
            self.disconnect(peer_id)
        if self._started:
            self._started = False
            self._hub.unregister(self)

    # -- test helpers ---------------------------------------------------------

    def deliver_raw(self, peer_id: str, payload: bytes) -> None:
        """Push an arbitrary frame to *peer_id* as if it came off the wire."""
        other = self._hub.lookup(peer_id)
        if other is None:
            raise TransportError(f"Peer {peer_id} is not reachable.")
        try:
            other._emit(EventKind.MESSAGE, self._id, message=decode(payload))
        except ProtocolError as exc:
            other._emit(EventKind.ERROR, self._id, error=str(exc))

    def fail(self, error: str) -> None:
        """Report a channel failure to ourselves (simulated network loss)."""
        self._emit(EventKind.ERROR, None, error=error)

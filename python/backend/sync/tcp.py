"""LAN transport: TCP links between peers, UDP multicast for presence.

Peer ids are ``"host:port"`` strings, so an id read off another player's
screen is enough to connect even when multicast is blocked. Every TCP
link opens with a ``hello`` frame in each direction carrying the
endpoint's id and display name; after that each frame is one encoded
:mod:`backend.sync.messages` message.

Frames are a 4-byte big-endian length followed by UTF-8 JSON.

Presence datagrams on the multicast group::

    {"type": "announce", "id": "10.0.0.5:47800", "name": "Ana"}
    {"type": "leave", "id": "10.0.0.5:47800"}
"""

from __future__ import annotations

import json
import logging
import socket
import struct
import threading
import time
from dataclasses import dataclass, field

from backend.config import SyncConfig
from backend.models.errors import ProtocolError, TransportError
from backend.sync.messages import Message, decode, encode
from backend.sync.transport import EventKind, PeerInfo, TransportChannel

logger = logging.getLogger(__name__)

MAX_FRAME = 1 << 20
HELLO = "hello"
ANNOUNCE = "announce"
LEAVE = "leave"


# -- framing ------------------------------------------------------------------


def send_frame(sock: socket.socket, payload: bytes) -> None:
    sock.sendall(len(payload).to_bytes(4, "big") + payload)


def _recv_exact(sock: socket.socket, count: int) -> bytes | None:
    buf = b""
    while len(buf) < count:
        chunk = sock.recv(count - len(buf))
        if not chunk:
            return None
        buf += chunk
    return buf


def recv_frame(sock: socket.socket) -> bytes | None:
    """Read one frame; ``None`` means the other side closed the stream."""
    header = _recv_exact(sock, 4)
    if header is None:
        return None
    length = int.from_bytes(header, "big")
    if length > MAX_FRAME:
        raise ProtocolError(f"Frame of {length} bytes exceeds the {MAX_FRAME} limit.")
    return _recv_exact(sock, length)


def parse_peer_id(peer_id: str) -> tuple[str, int]:
    host, sep, port = peer_id.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise TransportError(f"Peer id {peer_id!r} is not of the form host:port.")
    return host, int(port)


def _control(kind: str, **fields) -> bytes:
    return json.dumps({"type": kind, **fields}).encode("utf-8")


def _read_control(payload: bytes | None, kind: str) -> dict:
    if payload is None:
        raise ProtocolError(f"Stream closed before {kind}.")
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"Undecodable {kind}: {exc}") from exc
    if not isinstance(data, dict) or data.get("type") != kind:
        raise ProtocolError(f"Expected {kind}, got {data!r}.")
    if not isinstance(data.get("id"), str):
        raise ProtocolError(f"{kind} without an id.")
    return data


def detect_host() -> str:
    """Best guess at the address other machines on the LAN can reach."""
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # connecting a UDP socket sends nothing; it only picks a route
        probe.connect(("10.255.255.255", 1))
        return probe.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        probe.close()


@dataclass(eq=False)
class _Link:
    peer_id: str
    sock: socket.socket
    send_lock: threading.Lock = field(default_factory=threading.Lock)
    dropped: bool = False

    def shutdown(self) -> None:
        self.dropped = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already gone
        self.sock.close()


class TcpTransport(TransportChannel):
    def __init__(self, display_name: str, config: SyncConfig | None = None) -> None:
        super().__init__(display_name)
        self.config = config or SyncConfig()
        self._lock = threading.Lock()
        self._links: dict[str, list[_Link]] = {}
        self._discovered: dict[str, PeerInfo] = {}
        self._listener: socket.socket | None = None
        self._mcast: socket.socket | None = None
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._id = ""

    @property
    def self_id(self) -> str:
        if not self._id:
            raise TransportError("Transport has not been started.")
        return self._id

    @property
    def port(self) -> int:
        return parse_peer_id(self.self_id)[1]

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        if self._listener is not None:
            return
        cfg = self.config
        try:
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((cfg.bind_host, cfg.port))
            listener.listen()
            listener.settimeout(0.5)
        except OSError as exc:
            raise TransportError(f"Cannot listen on {cfg.bind_host}:{cfg.port}: {exc}") from exc

        self._stop = threading.Event()
        self._listener = listener
        host = cfg.advertise_host
        if host is None:
            host = cfg.bind_host if cfg.bind_host not in ("0.0.0.0", "") else detect_host()
        self._id = f"{host}:{listener.getsockname()[1]}"
        logger.info("listening as %s (%s)", self._id, self.display_name)

        self._spawn(self._accept_loop, listener)
        if cfg.discovery:
            try:
                self._mcast = self._open_multicast()
            except OSError as exc:
                # manual ids keep working without multicast
                logger.warning("discovery unavailable: %s", exc)
            else:
                self._spawn(self._discovery_loop, self._mcast)
                self._spawn(self._announce_loop)

    def close(self) -> None:
        if self._listener is None:
            return
        self._stop.set()
        with self._lock:
            links = [link for group in self._links.values() for link in group]
            self._links.clear()
            had_peers = bool(self._discovered)
            self._discovered.clear()
        for link in links:
            link.shutdown()
        if self._mcast is not None:
            self._announce(_control(LEAVE, id=self._id))
            self._mcast.close()
            self._mcast = None
        self._listener.close()
        self._listener = None
        with self._lock:
            threads, self._threads = self._threads, []
        for thread in threads:
            if thread is not threading.current_thread():
                thread.join(timeout=1.0)
        if had_peers:
            self._emit(EventKind.PEERS_CHANGED)
        logger.info("transport %s closed", self._id)

    def _spawn(self, target, *args) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    # -- links ----------------------------------------------------------------

    def is_connected(self, peer_id: str) -> bool:
        with self._lock:
            return bool(self._links.get(peer_id))

    def connect(self, peer_id: str) -> None:
        if self.is_connected(peer_id):
            return
        if peer_id == self.self_id:
            raise TransportError("Refusing to connect to ourselves.")
        address = parse_peer_id(peer_id)
        try:
            sock = socket.create_connection(address, timeout=self.config.connect_timeout)
            send_frame(sock, _control(HELLO, id=self._id, name=self.display_name))
            hello = _read_control(recv_frame(sock), HELLO)
            sock.settimeout(None)
        except (OSError, ProtocolError) as exc:
            raise TransportError(f"Cannot reach {peer_id}: {exc}") from exc

        if hello["id"] != peer_id:
            logger.info("%s answered as %s", peer_id, hello["id"])
        self._remember(peer_id, str(hello.get("name") or peer_id))
        self._open(peer_id, sock)

    def send(self, peer_id: str, message: Message) -> None:
        with self._lock:
            group = self._links.get(peer_id)
            link = group[0] if group else None
        if link is None:
            raise TransportError(f"No open link to {peer_id}.")
        payload = encode(message)
        logger.debug("-> %s %s", peer_id, payload)
        try:
            with link.send_lock:
                send_frame(link.sock, payload)
        except OSError as exc:
            self._drop(link, error=str(exc))
            raise TransportError(f"Send to {peer_id} failed: {exc}") from exc

    def disconnect(self, peer_id: str) -> None:
        with self._lock:
            group = self._links.pop(peer_id, [])
        for link in group:
            link.shutdown()

    def _open(self, peer_id: str, sock: socket.socket) -> None:
        link = _Link(peer_id, sock)
        with self._lock:
            self._links.setdefault(peer_id, []).append(link)
        self._emit(EventKind.OPENED, peer_id)
        self._spawn(self._read_loop, link)

    def _drop(self, link: _Link, *, error: str | None = None) -> None:
        """Forget *link*; report the peer gone once its last link is."""
        with self._lock:
            if link.dropped:
                return
            group = self._links.get(link.peer_id, [])
            if link in group:
                group.remove(link)
            if not group:
                self._links.pop(link.peer_id, None)
            last = not group
        link.shutdown()
        if error is not None:
            self._emit(EventKind.ERROR, link.peer_id, error=error)
        elif last:
            self._emit(EventKind.CLOSED, link.peer_id)

    def _read_loop(self, link: _Link) -> None:
        while not link.dropped:
            try:
                payload = recv_frame(link.sock)
                if payload is None:
                    self._drop(link)
                    return
                message = decode(payload)
            except ProtocolError as exc:
                logger.warning("bad frame from %s: %s", link.peer_id, exc)
                self._drop(link, error=str(exc))
                return
            except OSError as exc:
                if not link.dropped:
                    self._drop(link, error=str(exc))
                return
            logger.debug("<- %s %s", link.peer_id, payload)
            self._emit(EventKind.MESSAGE, link.peer_id, message=message)

    def _accept_loop(self, listener: socket.socket) -> None:
        while not self._stop.is_set():
            try:
                sock, address = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            self._spawn(self._handshake, sock, address)

    def _handshake(self, sock: socket.socket, address: tuple[str, int]) -> None:
        try:
            sock.settimeout(self.config.connect_timeout)
            hello = _read_control(recv_frame(sock), HELLO)
            send_frame(sock, _control(HELLO, id=self._id, name=self.display_name))
            sock.settimeout(None)
        except (OSError, ProtocolError) as exc:
            logger.warning("handshake with %s:%s failed: %s", *address, exc)
            sock.close()
            return
        if self._stop.is_set():
            sock.close()
            return
        peer_id = hello["id"]
        self._remember(peer_id, str(hello.get("name") or peer_id))
        self._open(peer_id, sock)

    # -- discovery ------------------------------------------------------------

    def peers(self) -> list[PeerInfo]:
        self._expire()
        with self._lock:
            found = list(self._discovered.values())
        return sorted(found, key=lambda p: (p.name, p.id))

    def peer_name(self, peer_id: str) -> str | None:
        with self._lock:
            info = self._discovered.get(peer_id)
        return info.name if info else None

    def _remember(self, peer_id: str, name: str) -> None:
        if peer_id == self._id:
            return
        with self._lock:
            previous = self._discovered.get(peer_id)
            self._discovered[peer_id] = PeerInfo(peer_id, name, time.monotonic())
        if previous is None or previous.name != name:
            self._emit(EventKind.PEERS_CHANGED)

    def _forget(self, peer_id: str) -> None:
        with self._lock:
            gone = self._discovered.pop(peer_id, None)
        if gone is not None:
            self._emit(EventKind.PEERS_CHANGED)

    def _expire(self) -> None:
        cutoff = time.monotonic() - self.config.peer_ttl
        with self._lock:
            stale = [
                pid
                for pid, info in self._discovered.items()
                if info.last_seen < cutoff and not self._links.get(pid)
            ]
            for pid in stale:
                del self._discovered[pid]
        if stale:
            logger.debug("peers expired: %s", stale)
            self._emit(EventKind.PEERS_CHANGED)

    def _open_multicast(self) -> socket.socket:
        cfg = self.config
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind(("", cfg.multicast_port))
        mreq = struct.pack("4sl", socket.inet_aton(cfg.multicast_group), socket.INADDR_ANY)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, cfg.multicast_ttl)
        sock.settimeout(0.5)
        return sock

    def _announce(self, payload: bytes) -> None:
        sock = self._mcast
        if sock is None:
            return
        try:
            sock.sendto(payload, (self.config.multicast_group, self.config.multicast_port))
        except OSError as exc:
            logger.warning("multicast send failed: %s", exc)

    def _announce_loop(self) -> None:
        payload = _control(ANNOUNCE, id=self._id, name=self.display_name)
        while not self._stop.is_set():
            self._announce(payload)
            self._expire()
            self._stop.wait(self.config.heartbeat_interval)

    def _discovery_loop(self, sock: socket.socket) -> None:
        while not self._stop.is_set():
            try:
                data, _ = sock.recvfrom(65536)
            except socket.timeout:
                continue
            except OSError:
                return
            try:
                kind = json.loads(data.decode("utf-8")).get("type")
                info = _read_control(data, kind) if kind in (ANNOUNCE, LEAVE) else None
            except (UnicodeDecodeError, json.JSONDecodeError, AttributeError, ProtocolError):
                logger.debug("ignoring stray datagram %r", data[:64])
                continue
            if info is None or info["id"] == self._id:
                continue
            if kind == ANNOUNCE:
                self._remember(info["id"], str(info.get("name") or info["id"]))
            else:
                self._forget(info["id"])

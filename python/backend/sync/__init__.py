from backend.sync.loopback import LoopbackHub, LoopbackTransport
from backend.sync.session import (
    Role,
    SessionEvent,
    SessionEventKind,
    SessionState,
    SyncSession,
)
from backend.sync.tcp import TcpTransport
from backend.sync.transport import EventKind, PeerInfo, TransportChannel, TransportEvent

__all__ = [
    "EventKind",
    "LoopbackHub",
    "LoopbackTransport",
    "PeerInfo",
    "Role",
    "SessionEvent",
    "SessionEventKind",
    "SessionState",
    "SyncSession",
    "TcpTransport",
    "TransportChannel",
    "TransportEvent",
]

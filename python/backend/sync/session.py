"""Two-party session: one authoritative board, one mirror.

The host deals every board and sends it as a ``GameStart`` snapshot; after
that both sides relay moves as bare coordinates and replay them through
the same :meth:`PuzzleEngine.apply_move` that local input uses. A session
never touches a board directly.

All work happens on the caller's thread: local operations run when the
frontend calls them, and everything the transport queued is processed by
:meth:`SyncSession.poll`, which the frontend calls from its input loop.
"""

from __future__ import annotations

import logging
import random
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable, Iterator

from backend.config import SyncConfig
from backend.engine.gameplay import MoveResult, PuzzleEngine, clamp_dimension
from backend.engine.gameplay.game import REMOTE_REPLAY
from backend.engine.gamesolver import Solver
from backend.models.errors import (
    MalformedStateError,
    ProtocolDesyncError,
    SessionStateError,
    TransportError,
)
from backend.sync.messages import (
    GameAccept,
    GameDecline,
    GameRequest,
    GameStart,
    Message,
    MessageType,
    MoveMade,
    ResetGame,
    ResyncRequest,
    WinAchieved,
)
from backend.sync.transport import EventKind, PeerInfo, TransportChannel, TransportEvent

logger = logging.getLogger(__name__)

NOT_READY = "not_ready"


class SessionState(StrEnum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    REQUEST_PENDING = "request_pending"
    AWAITING_ACCEPTANCE = "awaiting_acceptance"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class Role(StrEnum):
    HOST = "host"
    GUEST = "guest"


class SessionEventKind(StrEnum):
    PEERS_CHANGED = "peers_changed"
    GAME_REQUESTED = "game_requested"
    REQUEST_WITHDRAWN = "request_withdrawn"
    REQUEST_DECLINED = "request_declined"
    REQUEST_EXPIRED = "request_expired"
    CONNECTED = "connected"
    GAME_STARTED = "game_started"
    MOVE_APPLIED = "move_applied"
    LOCAL_WON = "local_won"
    OPPONENT_WON = "opponent_won"
    RESET_ANNOUNCED = "reset_announced"
    RESET_REQUESTED = "reset_requested"
    DESYNC = "desync"
    RESYNCED = "resynced"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    peer_id: str | None = None
    detail: str | None = None
    move: MoveResult | None = None
    remote: bool = False


@dataclass
class _IncomingRequest:
    name: str
    received_at: float


class SyncSession:
    """State machine for one participant of a two-party game."""

    def __init__(
        self,
        transport: TransportChannel,
        *,
        player_name: str | None = None,
        dimension: int = 3,
        config: SyncConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.transport = transport
        self.player_name = player_name or transport.display_name
        self.dimension = clamp_dimension(dimension)
        self.config = config or SyncConfig()
        self._clock = clock
        self._rng = rng

        self.state = SessionState.IDLE
        self.role: Role | None = None
        self.peer_id: str | None = None
        self.peer_name: str | None = None
        self.engine: PuzzleEngine | None = None

        self.local_won = False
        self.opponent_won = False
        self.opponent_result: WinAchieved | None = None

        self._incoming: dict[str, _IncomingRequest] = {}
        self._pending_since: float | None = None
        self._epoch = 0
        self._ply = 0
        self._suspended = False
        self._replaying = False
        self._events: list[SessionEvent] = []

        self._handlers: dict[MessageType, Callable[[str, Message], None]] = {
            MessageType.GAME_REQUEST: self._on_game_request,
            MessageType.GAME_ACCEPT: self._on_game_accept,
            MessageType.GAME_DECLINE: self._on_game_decline,
            MessageType.GAME_START: self._on_game_start,
            MessageType.MOVE_MADE: self._on_move_made,
            MessageType.WIN_ACHIEVED: self._on_win_achieved,
            MessageType.RESET_GAME: self._on_reset_game,
            MessageType.RESYNC_REQUEST: self._on_resync_request,
        }

    # -- queries --------------------------------------------------------------

    @property
    def is_host(self) -> bool:
        return self.state == SessionState.CONNECTED and self.role == Role.HOST

    @property
    def awaiting_start(self) -> bool:
        return self.state == SessionState.CONNECTED and self.engine is None

    @property
    def can_move(self) -> bool:
        return (
            self.state == SessionState.CONNECTED
            and self.engine is not None
            and not self._suspended
            and not self._replaying
        )

    @property
    def suspended(self) -> bool:
        return self._suspended

    @property
    def replaying(self) -> bool:
        return self._replaying

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def ply(self) -> int:
        return self._ply

    def peers(self) -> list[PeerInfo]:
        return self.transport.peers()

    def incoming_requests(self) -> list[PeerInfo]:
        return [
            PeerInfo(peer_id, req.name, req.received_at)
            for peer_id, req in self._incoming.items()
        ]

    # -- local operations -----------------------------------------------------

    def enter_multiplayer(self) -> None:
        """Start listening and announcing; IDLE/DISCONNECTED → DISCOVERING."""
        self._expect(SessionState.IDLE, SessionState.DISCONNECTED)
        self._clear_game()
        self._incoming.clear()
        try:
            self.transport.start()
        except TransportError as exc:
            logger.warning("could not start transport: %s", exc)
            self._emit(SessionEventKind.ERROR, detail=str(exc))
            self._set_state(SessionState.DISCONNECTED)
            return
        self._set_state(SessionState.DISCOVERING)

    def request_game(self, peer_id: str) -> bool:
        """Send a game request to *peer_id*; True once it is on its way."""
        self._expect(SessionState.DISCOVERING)
        self.peer_id = peer_id
        self._set_state(SessionState.REQUEST_PENDING)
        try:
            self.transport.connect(peer_id)
            self.transport.send(
                peer_id, GameRequest(self.transport.self_id, self.player_name)
            )
        except TransportError as exc:
            logger.warning("game request to %s failed: %s", peer_id, exc)
            self.transport.disconnect(peer_id)
            self.peer_id = None
            self._set_state(SessionState.DISCOVERING)
            self._emit(SessionEventKind.ERROR, peer_id, detail=str(exc))
            return False
        self._pending_since = self._clock()
        self._set_state(SessionState.AWAITING_ACCEPTANCE)
        return True

    def cancel_request(self) -> None:
        """Stop waiting for an answer and drop the link; the peer sees it withdrawn."""
        self._expect(SessionState.REQUEST_PENDING, SessionState.AWAITING_ACCEPTANCE)
        if self.peer_id is not None:
            self.transport.disconnect(self.peer_id)
        self.peer_id = None
        self._pending_since = None
        self._set_state(SessionState.DISCOVERING)

    def accept_request(self, peer_id: str) -> None:
        """Accept *peer_id*'s request and wait for its board as the guest."""
        self._expect(SessionState.IDLE, SessionState.DISCOVERING)
        request = self._incoming.pop(peer_id, None)
        if request is None:
            raise SessionStateError(f"No pending request from {peer_id}.")

        for other in list(self._incoming):
            self.decline_request(other)

        self.peer_id = peer_id
        self.peer_name = request.name
        self.role = Role.GUEST
        self._pending_since = self._clock()
        self._set_state(SessionState.CONNECTED)
        self._emit(SessionEventKind.CONNECTED, peer_id, detail=Role.GUEST.value)
        self._send(GameAccept(self.transport.self_id))

    def decline_request(self, peer_id: str) -> None:
        if self._incoming.pop(peer_id, None) is None:
            raise SessionStateError(f"No pending request from {peer_id}.")
        self._send_to(peer_id, GameDecline(self.transport.self_id))
        self.transport.disconnect(peer_id)

    def make_move(self, row: int, col: int) -> MoveResult:
        """Apply a local move and, if it took effect, relay it to the peer."""
        target = (row, col)
        if self._replaying:
            return MoveResult(applied=False, target=target, reason=REMOTE_REPLAY)
        self._expect(SessionState.CONNECTED)
        if self.engine is None or self._suspended:
            return MoveResult(applied=False, target=target, reason=NOT_READY)

        ply = self._ply
        result = self.engine.apply_move(target)
        if not result:
            return result

        self._ply += 1
        self._emit(SessionEventKind.MOVE_APPLIED, self.peer_id, move=result)
        self._send(MoveMade(row, col, epoch=self._epoch, ply=ply))
        self._check_local_win()
        return result

    def request_reset(self) -> None:
        """Host: deal and send a new board. Guest: ask the host for one."""
        self._expect(SessionState.CONNECTED)
        if self.role == Role.HOST:
            self._deal_new_game(announce=True)
        else:
            self._send(ResetGame())

    def leave(self) -> None:
        """Drop the connection and stop discovery."""
        if self.state == SessionState.DISCONNECTED:
            return
        self._shutdown("left the game")

    def poll(self) -> list[SessionEvent]:
        """Process queued transport events and timeouts; return what happened."""
        for event in self.transport.poll_events():
            self._handle_transport_event(event)
        self._check_timeouts()
        events, self._events = self._events, []
        return events

    # -- transport events -----------------------------------------------------

    def _handle_transport_event(self, event: TransportEvent) -> None:
        if self.state in (SessionState.IDLE, SessionState.DISCONNECTED):
            return
        if event.kind == EventKind.PEERS_CHANGED:
            self._emit(SessionEventKind.PEERS_CHANGED)
        elif event.kind == EventKind.OPENED:
            logger.debug("link opened with %s", event.peer_id)
        elif event.kind == EventKind.MESSAGE:
            if event.peer_id is not None and event.message is not None:
                self.handle_message(event.peer_id, event.message)
        elif event.kind == EventKind.CLOSED:
            self._on_link_lost(event.peer_id, "connection closed")
        elif event.kind == EventKind.ERROR:
            if event.peer_id is None:
                self._fail(event.error or "transport failure")
            else:
                self._on_link_lost(event.peer_id, event.error or "connection error")

    def _on_link_lost(self, peer_id: str | None, reason: str) -> None:
        if peer_id in self._incoming:
            del self._incoming[peer_id]
            self._emit(SessionEventKind.REQUEST_WITHDRAWN, peer_id, detail=reason)
        if peer_id is None or peer_id != self.peer_id:
            return
        if self.awaiting_start:
            # the host went away before dealing; nothing to tear down
            logger.info("%s left before the game began: %s", peer_id, reason)
            self.transport.disconnect(peer_id)
            self._clear_game()
            self._set_state(SessionState.DISCOVERING)
            self._emit(SessionEventKind.REQUEST_WITHDRAWN, peer_id, detail=reason)
        elif self.state in (
            SessionState.REQUEST_PENDING,
            SessionState.AWAITING_ACCEPTANCE,
            SessionState.CONNECTED,
        ):
            self._fail(f"{self.peer_name or peer_id}: {reason}")

    def handle_message(self, peer_id: str, message: Message) -> None:
        logger.debug("<- %s %s", peer_id, message)
        handler = self._handlers[message.TYPE]
        try:
            handler(peer_id, message)
        except ProtocolDesyncError as exc:
            self._on_desync(str(exc))

    # -- message handlers -----------------------------------------------------

    def _on_game_request(self, peer_id: str, msg: GameRequest) -> None:
        if self.state in (SessionState.IDLE, SessionState.DISCOVERING):
            self._incoming[peer_id] = _IncomingRequest(msg.sender_name, self._clock())
            self._emit(SessionEventKind.GAME_REQUESTED, peer_id, detail=msg.sender_name)
            return

        if (
            self.state == SessionState.AWAITING_ACCEPTANCE
            and self.peer_id in (peer_id, msg.sender_id)
        ):
            # Both sides asked each other; the lower advertised id keeps the
            # host seat. A typed id can differ from the advertised one.
            if self.transport.self_id < msg.sender_id:
                logger.info("crossed requests with %s, staying requester", peer_id)
                return
            logger.info("crossed requests with %s, accepting theirs", peer_id)
            self.peer_id = None
            self._set_state(SessionState.DISCOVERING)
            self._incoming[peer_id] = _IncomingRequest(msg.sender_name, self._clock())
            self.accept_request(peer_id)
            return

        logger.info("busy, declining request from %s", peer_id)
        self._send_to(peer_id, GameDecline(self.transport.self_id))
        if peer_id != self.peer_id:
            self.transport.disconnect(peer_id)

    def _on_game_accept(self, peer_id: str, msg: GameAccept) -> None:
        if self.state != SessionState.AWAITING_ACCEPTANCE or peer_id != self.peer_id:
            logger.info("ignoring stale accept from %s", peer_id)
            if peer_id != self.peer_id:
                self.transport.disconnect(peer_id)
            return
        self.role = Role.HOST
        self.peer_name = self.transport.peer_name(peer_id) or peer_id
        self._pending_since = None
        self._set_state(SessionState.CONNECTED)
        self._emit(SessionEventKind.CONNECTED, peer_id, detail=Role.HOST.value)
        self._deal_new_game(announce=False)

    def _on_game_decline(self, peer_id: str, msg: GameDecline) -> None:
        if self.state != SessionState.AWAITING_ACCEPTANCE or peer_id != self.peer_id:
            return
        self.transport.disconnect(peer_id)
        self.peer_id = None
        self._pending_since = None
        self._set_state(SessionState.DISCOVERING)
        self._emit(SessionEventKind.REQUEST_DECLINED, peer_id)

    def _on_game_start(self, peer_id: str, msg: GameStart) -> None:
        if not self._from_peer(peer_id):
            return
        if self.role == Role.HOST:
            raise ProtocolDesyncError("host received a GameStart")

        try:
            engine = PuzzleEngine.from_snapshot(msg.dimension, list(msg.board), rng=self._rng)
            if not Solver.is_solvable(engine.board):
                raise MalformedStateError("board cannot be solved from the goal state")
        except MalformedStateError as exc:
            logger.warning("malformed GameStart from %s: %s", peer_id, exc)
            self._fail(f"connection error: malformed board ({exc})")
            return

        resync = msg.resync and self.engine is not None
        if resync:
            engine.state = self.engine.state  # type: ignore[union-attr]
        else:
            self.dimension = msg.dimension
            self.local_won = False
            self.opponent_won = False
            self.opponent_result = None
        self.engine = engine
        self._epoch = msg.epoch
        self._ply = 0
        self._suspended = False
        self._pending_since = None
        kind = SessionEventKind.RESYNCED if resync else SessionEventKind.GAME_STARTED
        self._emit(kind, peer_id)

    def _on_move_made(self, peer_id: str, msg: MoveMade) -> None:
        if not self._from_peer(peer_id):
            return
        if self.engine is None:
            raise ProtocolDesyncError("move received before any board was dealt")
        if msg.epoch is not None and msg.epoch < self._epoch:
            # made against a board we have since replaced
            logger.debug("dropping move from epoch %s (now %s)", msg.epoch, self._epoch)
            return
        if msg.epoch is not None and msg.epoch > self._epoch:
            raise ProtocolDesyncError(f"move from unknown epoch {msg.epoch}")
        if self._suspended:
            return
        if msg.ply is not None and msg.ply != self._ply:
            raise ProtocolDesyncError(
                f"concurrent moves: peer was at ply {msg.ply}, we are at {self._ply}"
            )

        with self._remote_replay():
            result = self.engine.apply_move((msg.row, msg.col))
        if not result:
            raise ProtocolDesyncError(
                f"peer move ({msg.row}, {msg.col}) is illegal here ({result.reason})"
            )
        self._ply += 1
        self._emit(SessionEventKind.MOVE_APPLIED, peer_id, move=result, remote=True)

    def _on_win_achieved(self, peer_id: str, msg: WinAchieved) -> None:
        if not self._from_peer(peer_id):
            return
        self.opponent_won = True
        self.opponent_result = msg
        self._emit(SessionEventKind.OPPONENT_WON, peer_id, detail=msg.player_name)

    def _on_reset_game(self, peer_id: str, msg: ResetGame) -> None:
        if not self._from_peer(peer_id):
            return
        if self.role == Role.HOST:
            self._emit(SessionEventKind.RESET_REQUESTED, peer_id)
        else:
            self.opponent_won = False
            self.opponent_result = None
            self._emit(SessionEventKind.RESET_ANNOUNCED, peer_id)

    def _on_resync_request(self, peer_id: str, msg: ResyncRequest) -> None:
        if not self._from_peer(peer_id) or self.role != Role.HOST:
            return
        if msg.epoch is not None and msg.epoch < self._epoch:
            return
        self._resync_guest()

    # -- game flow ------------------------------------------------------------

    def _deal_new_game(self, *, announce: bool) -> None:
        engine = PuzzleEngine(self.dimension, rng=self._rng)
        engine.shuffle(self.config.shuffle_moves)
        self.engine = engine
        self._epoch += 1
        self._ply = 0
        self._suspended = False
        self.local_won = False
        self.opponent_won = False
        self.opponent_result = None
        if announce:
            self._send(ResetGame())
            if self.state != SessionState.CONNECTED:
                return
        self._send(
            GameStart(self.dimension, tuple(engine.serialize()), epoch=self._epoch)
        )
        if self.state != SessionState.CONNECTED:
            return
        self._emit(SessionEventKind.GAME_STARTED, self.peer_id)

    def _resync_guest(self) -> None:
        assert self.engine is not None
        self._epoch += 1
        self._ply = 0
        logger.info("re-sending board to %s (epoch %d)", self.peer_id, self._epoch)
        self._send(
            GameStart(
                self.engine.dimension,
                tuple(self.engine.serialize()),
                epoch=self._epoch,
                resync=True,
            )
        )
        self._emit(SessionEventKind.RESYNCED, self.peer_id)

    def _on_desync(self, reason: str) -> None:
        logger.warning("desync with %s: %s", self.peer_id, reason)
        self._emit(SessionEventKind.DESYNC, self.peer_id, detail=reason)
        if self.state != SessionState.CONNECTED:
            return
        if self.role == Role.HOST and self.engine is not None:
            self._resync_guest()
        else:
            self._suspended = True
            self._send(ResyncRequest(self._epoch))

    def _check_local_win(self) -> None:
        if self.local_won or self.engine is None or not self.engine.is_solved():
            return
        self.local_won = True
        self.engine.state.pause()
        self._emit(SessionEventKind.LOCAL_WON, self.peer_id, detail=self.player_name)
        self._send(
            WinAchieved(
                self.player_name,
                moves=self.engine.state.moves,
                time_seconds=round(self.engine.state.elapsed_time, 2),
            )
        )

    def _check_timeouts(self) -> None:
        limit = self.config.request_timeout
        if limit <= 0:
            return
        now = self._clock()

        for peer_id, request in list(self._incoming.items()):
            if now - request.received_at >= limit:
                del self._incoming[peer_id]
                self.transport.disconnect(peer_id)
                self._emit(SessionEventKind.REQUEST_WITHDRAWN, peer_id, detail="expired")

        if self._pending_since is None or now - self._pending_since < limit:
            return
        if self.state == SessionState.AWAITING_ACCEPTANCE:
            peer_id = self.peer_id
            if peer_id is not None:
                self.transport.disconnect(peer_id)
            self.peer_id = None
            self._pending_since = None
            self._set_state(SessionState.DISCOVERING)
            self._emit(SessionEventKind.REQUEST_EXPIRED, peer_id)
        elif self.awaiting_start:
            self._fail("host never sent a board")

    # -- plumbing -------------------------------------------------------------

    @contextmanager
    def _remote_replay(self) -> Iterator[None]:
        self._replaying = True
        try:
            yield
        finally:
            self._replaying = False

    def _from_peer(self, peer_id: str) -> bool:
        if self.state == SessionState.CONNECTED and peer_id == self.peer_id:
            return True
        logger.info("ignoring message from %s in state %s", peer_id, self.state)
        return False

    def _send(self, message: Message) -> None:
        if self.peer_id is None:
            return
        try:
            self.transport.send(self.peer_id, message)
        except TransportError as exc:
            self._fail(str(exc))

    def _send_to(self, peer_id: str, message: Message) -> None:
        try:
            self.transport.send(peer_id, message)
        except TransportError as exc:
            logger.warning("could not send %s to %s: %s", message.TYPE, peer_id, exc)

    def _fail(self, reason: str) -> None:
        if self.state == SessionState.DISCONNECTED:
            return
        self._emit(SessionEventKind.ERROR, self.peer_id, detail=reason)
        self._shutdown(reason)

    def _shutdown(self, reason: str) -> None:
        peer_id = self.peer_id
        self.transport.close()
        self._incoming.clear()
        self._clear_game()
        self._set_state(SessionState.DISCONNECTED)
        self._emit(SessionEventKind.DISCONNECTED, peer_id, detail=reason)

    def _clear_game(self) -> None:
        self.role = None
        self.peer_id = None
        self.peer_name = None
        self.engine = None
        self.local_won = False
        self.opponent_won = False
        self.opponent_result = None
        self._pending_since = None
        self._epoch = 0
        self._ply = 0
        self._suspended = False

    def _expect(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise SessionStateError(f"Session is {self.state.value}; expected {allowed}.")

    def _set_state(self, state: SessionState) -> None:
        if state != self.state:
            logger.info("session %s -> %s", self.state.value, state.value)
        self.state = state

    def _emit(self, kind: SessionEventKind, peer_id: str | None = None, **kwargs) -> None:
        self._events.append(SessionEvent(kind, peer_id, **kwargs))

"""Two sessions over the loopback hub.

Each test drives both participants by hand: a local operation on one
side, then ``poll()`` on the other to deliver what it sent.
"""

from __future__ import annotations

import pytest

from backend.engine.gameplay.game import REMOTE_REPLAY
from backend.engine.gamegenerator import GameGenerator
from backend.models.errors import SessionStateError, TransportError
from backend.sync.messages import GameRequest, GameStart, MoveMade
from backend.sync.session import NOT_READY, Role, SessionEventKind as K, SessionState, SyncSession
from conftest import handshake, kinds


# -- helpers ------------------------------------------------------------------


def _legal_target(session: SyncSession) -> tuple[int, int]:
    """A legal move two cells away from the blank when possible."""
    engine = session.engine
    assert engine is not None
    n = engine.dimension
    br, bc = engine.empty_position
    return br, (bc + 2) % n if n > 2 else (bc + 1) % n


def _illegal_target(session: SyncSession) -> tuple[int, int]:
    engine = session.engine
    assert engine is not None
    n = engine.dimension
    br, bc = engine.empty_position
    return (br + 1) % n, (bc + 1) % n


def _same_board(a: SyncSession, b: SyncSession) -> bool:
    assert a.engine is not None and b.engine is not None
    return a.engine.serialize() == b.engine.serialize()


def _one_move_from_solved(n: int) -> list[int]:
    board = GameGenerator.solved(n)
    board.shift((n - 1, 0))
    return board.to_flat()


# -- handshake ----------------------------------------------------------------


def test_enter_multiplayer_discovers(make_session) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    assert a.state == b.state == SessionState.DISCOVERING
    assert [p.name for p in a.peers()] == ["Ben"]
    assert K.PEERS_CHANGED in kinds(a.poll())


def test_request_reaches_target(make_session) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    assert a.request_game(b.transport.self_id)
    assert a.state == SessionState.AWAITING_ACCEPTANCE

    events = b.poll()
    assert kinds(events) == [K.GAME_REQUESTED]
    assert events[0].detail == "Ana"
    assert [r.name for r in b.incoming_requests()] == ["Ana"]


def test_accept_makes_roles_and_deals_board(make_session) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    b.poll()
    b.accept_request(a.transport.self_id)

    assert b.state == SessionState.CONNECTED and b.role == Role.GUEST
    assert b.engine is None and b.awaiting_start
    assert not b.make_move(0, 0).applied

    assert kinds(a.poll()) == [K.PEERS_CHANGED, K.CONNECTED, K.GAME_STARTED]
    assert a.is_host and a.peer_name == "Ben"
    assert kinds(b.poll()) == [K.CONNECTED, K.GAME_STARTED]
    assert b.peer_name == "Ana"
    assert a.epoch == b.epoch == 1


def test_guest_mirrors_host_board_exactly(pair) -> None:
    host, guest = pair
    assert guest.engine is not None and host.engine is not None
    assert guest.engine.dimension == 4
    assert _same_board(host, guest)
    assert not guest.engine.is_solved()
    assert guest.engine.empty_position == host.engine.empty_position


def test_request_to_unknown_peer_reports_error(make_session) -> None:
    a = make_session("Ana")
    assert not a.request_game("loop-99")
    assert a.state == SessionState.DISCOVERING
    assert kinds(a.poll()) == [K.ERROR]


def test_decline(make_session) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    b.poll()
    b.decline_request(a.transport.self_id)
    assert b.incoming_requests() == []

    assert K.REQUEST_DECLINED in kinds(a.poll())
    assert a.state == SessionState.DISCOVERING
    assert a.peer_id is None


def test_cancel_withdraws_request(make_session) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    a.cancel_request()
    assert a.state == SessionState.DISCOVERING

    assert kinds(b.poll()) == [K.GAME_REQUESTED, K.REQUEST_WITHDRAWN]
    assert b.incoming_requests() == []
    with pytest.raises(SessionStateError):
        b.accept_request(a.transport.self_id)


def test_busy_peer_declines_automatically(pair, make_session) -> None:
    host, guest = pair
    c = make_session("Cy")
    c.request_game(host.transport.self_id)
    host.poll()
    assert K.REQUEST_DECLINED in kinds(c.poll())
    assert c.state == SessionState.DISCOVERING
    assert host.state == SessionState.CONNECTED and host.peer_id == guest.transport.self_id


def test_accepting_one_declines_the_rest(make_session) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    c = make_session("Cy")
    a.request_game(c.transport.self_id)
    b.request_game(c.transport.self_id)
    c.poll()
    assert len(c.incoming_requests()) == 2

    c.accept_request(a.transport.self_id)
    assert c.incoming_requests() == []
    assert K.REQUEST_DECLINED in kinds(b.poll())
    assert K.CONNECTED in kinds(a.poll())


def test_crossing_requests_pick_one_host(make_session) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    b.request_game(a.transport.self_id)
    a.poll()
    b.poll()
    a.poll()
    b.poll()
    assert a.state == b.state == SessionState.CONNECTED
    assert {a.role, b.role} == {Role.HOST, Role.GUEST}
    assert _same_board(a, b)


@pytest.mark.parametrize("advertised, role", [("aaa", Role.GUEST), ("zzz", None)])
def test_crossing_tie_break_uses_advertised_id(make_session, advertised: str, role) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    # same link, but the request names the sender by another address
    b.transport.send(a.transport.self_id, GameRequest(advertised, "Ben"))
    a.poll()
    assert a.role == role
    expected = SessionState.CONNECTED if role else SessionState.AWAITING_ACCEPTANCE
    assert a.state == expected


def test_cancel_after_accept_leaves_guest_discovering(make_session) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    c = make_session("Cy")
    a.request_game(b.transport.self_id)
    c.request_game(b.transport.self_id)
    b.poll()
    b.accept_request(a.transport.self_id)
    a.cancel_request()

    assert kinds(b.poll()) == [K.CONNECTED, K.REQUEST_WITHDRAWN]
    assert b.state == SessionState.DISCOVERING
    assert b.role is None and b.peer_id is None
    assert [p.name for p in b.peers()] == ["Ana", "Cy"]

    assert K.CONNECTED not in kinds(a.poll())
    assert a.state == SessionState.DISCOVERING

    c.poll()
    handshake(b, c)
    assert _same_board(b, c)


def test_operations_need_the_right_state(make_session) -> None:
    a = make_session("Ana")
    with pytest.raises(SessionStateError):
        a.make_move(0, 0)
    with pytest.raises(SessionStateError):
        a.request_reset()
    with pytest.raises(SessionStateError):
        a.cancel_request()
    with pytest.raises(SessionStateError):
        a.enter_multiplayer()


# -- move relay ---------------------------------------------------------------


def test_local_move_is_relayed_and_replayed(pair) -> None:
    host, guest = pair
    target = _legal_target(host)
    result = host.make_move(*target)
    assert result.applied

    events = guest.poll()
    assert kinds(events) == [K.MOVE_APPLIED]
    assert events[0].remote
    assert events[0].move is not None and events[0].move.target == target
    assert _same_board(host, guest)
    assert host.ply == guest.ply == 1


def test_guest_moves_reach_host(pair) -> None:
    host, guest = pair
    for _ in range(5):
        assert guest.make_move(*_legal_target(guest))
        host.poll()
        assert _same_board(host, guest)
    assert host.engine is not None and host.engine.state.moves == 5


def test_alternating_moves_stay_identical(pair) -> None:
    host, guest = pair
    for i in range(20):
        mover, other = (host, guest) if i % 2 == 0 else (guest, host)
        assert mover.make_move(*_legal_target(mover))
        other.poll()
        assert _same_board(host, guest)


def test_replayed_move_is_not_sent_back(pair) -> None:
    host, guest = pair
    host.make_move(*_legal_target(host))
    local = host.poll()
    assert kinds(local) == [K.MOVE_APPLIED] and not local[0].remote
    guest.poll()
    assert host.poll() == []


def test_illegal_local_move_is_not_sent(pair) -> None:
    host, guest = pair
    result = host.make_move(*_illegal_target(host))
    assert not result
    assert guest.poll() == []
    assert host.ply == 0


def test_moves_during_replay_are_refused(pair) -> None:
    host, guest = pair
    with guest._remote_replay():
        result = guest.make_move(*_legal_target(guest))
    assert not result.applied
    assert result.reason == REMOTE_REPLAY
    assert not guest.replaying
    assert host.poll() == []


# -- wins and resets ----------------------------------------------------------


def test_first_local_solve_announces_win_once(pair) -> None:
    host, guest = pair
    near = _one_move_from_solved(4)
    host.engine.deserialize(near)
    guest.engine.deserialize(near)

    host.make_move(3, 3)
    assert kinds(host.poll()) == [K.MOVE_APPLIED, K.LOCAL_WON]
    assert host.local_won
    assert host.engine.state.running is False

    guest_events = guest.poll()
    assert kinds(guest_events) == [K.MOVE_APPLIED, K.OPPONENT_WON]
    assert guest.opponent_won and not guest.local_won
    assert guest.opponent_result is not None
    assert guest.opponent_result.player_name == "Ana"
    assert guest.opponent_result.moves == 1

    # leave and re-enter the solved state: no second announcement
    host.make_move(3, 2)
    guest.poll()
    host.make_move(3, 3)
    assert kinds(guest.poll()) == [K.MOVE_APPLIED]


def test_host_reset_deals_new_board(pair) -> None:
    host, guest = pair
    before = host.engine.serialize()
    host.make_move(*_legal_target(host))
    guest.poll()

    host.request_reset()
    assert host.epoch == 2 and host.ply == 0
    assert kinds(guest.poll()) == [K.RESET_ANNOUNCED, K.GAME_STARTED]
    assert guest.epoch == 2 and guest.ply == 0
    assert _same_board(host, guest)
    assert host.engine.serialize() != before
    assert guest.engine.state.moves == 0


def test_guest_reset_is_a_request(pair) -> None:
    host, guest = pair
    board = host.engine.serialize()
    guest.request_reset()
    assert kinds(host.poll()) == [K.RESET_REQUESTED]
    assert host.engine.serialize() == board

    host.request_reset()
    guest.poll()
    assert _same_board(host, guest)


def test_reset_clears_win_flags(pair) -> None:
    host, guest = pair
    near = _one_move_from_solved(4)
    host.engine.deserialize(near)
    guest.engine.deserialize(near)
    guest.make_move(3, 3)
    host.poll()
    assert host.opponent_won

    host.request_reset()
    guest.poll()
    assert not host.opponent_won and not guest.local_won


# -- races and desync ---------------------------------------------------------


def test_concurrent_moves_resync_to_host_board(pair) -> None:
    host, guest = pair
    assert host.make_move(*_legal_target(host))
    assert guest.make_move(*_legal_target(guest))

    assert kinds(host.poll()) == [K.MOVE_APPLIED, K.DESYNC, K.RESYNCED]
    assert host.epoch == 2

    assert kinds(guest.poll()) == [K.MOVE_APPLIED, K.DESYNC, K.RESYNCED]
    assert not guest.suspended
    assert _same_board(host, guest)
    assert guest.epoch == 2 and guest.ply == host.ply == 0

    # the guest's stale resync request is ignored by the host
    assert host.poll() == []

    assert guest.make_move(*_legal_target(guest))
    host.poll()
    assert _same_board(host, guest)


def test_illegal_remote_move_suspends_guest_until_resync(pair) -> None:
    host, guest = pair
    bad = _illegal_target(guest)
    host.transport.send(guest.transport.self_id, MoveMade(*bad, epoch=1, ply=0))

    assert kinds(guest.poll()) == [K.DESYNC]
    assert guest.suspended
    assert not guest.replaying
    assert guest.make_move(*_legal_target(guest)).reason == NOT_READY

    assert kinds(host.poll()) == [K.RESYNCED]
    assert kinds(guest.poll()) == [K.RESYNCED]
    assert not guest.suspended
    assert _same_board(host, guest)


def test_stale_epoch_moves_are_dropped(pair) -> None:
    host, guest = pair
    board = guest.engine.serialize()
    host.transport.send(guest.transport.self_id, MoveMade(*_legal_target(guest), epoch=0, ply=0))
    assert guest.poll() == []
    assert guest.engine.serialize() == board


def test_host_resyncs_on_unexpected_game_start(pair) -> None:
    host, guest = pair
    guest.transport.send(host.transport.self_id, GameStart(4, tuple(host.engine.serialize()), epoch=1))
    assert kinds(host.poll()) == [K.DESYNC, K.RESYNCED]
    assert kinds(guest.poll()) == [K.RESYNCED]
    assert _same_board(host, guest)


# -- failures -----------------------------------------------------------------


def _connected_guest(make_session) -> tuple[SyncSession, SyncSession]:
    """Guest that accepted; the host has not dealt yet."""
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    b.poll()
    b.accept_request(a.transport.self_id)
    b.poll()
    return a, b


@pytest.mark.parametrize(
    "payload",
    [
        b'{"type":"game_start","dimension":3,"board":[1,1,2,3,4,5,6,7,0]}',
        b'{"type":"game_start","dimension":3,"board":[2,1,3,4,5,6,7,8,0]}',
        b'{"type":"game_start","dimension":12,"board":[1,2,3,0]}',
        b'{"type":"game_start","dimension":2,"board":[1,2,3]}',
    ],
    ids=["duplicate", "unsolvable", "bad-dimension", "short"],
)
def test_malformed_game_start_disconnects(make_session, payload: bytes) -> None:
    a, b = _connected_guest(make_session)
    a.transport.deliver_raw(b.transport.self_id, payload)
    events = b.poll()
    assert kinds(events) == [K.ERROR, K.DISCONNECTED]
    assert "malformed" in events[0].detail
    assert b.state == SessionState.DISCONNECTED
    assert b.engine is None


def test_undecodable_frame_disconnects(pair) -> None:
    host, guest = pair
    host.transport.deliver_raw(guest.transport.self_id, b"\x00garbage")
    assert kinds(guest.poll()) == [K.ERROR, K.DISCONNECTED]


def test_transport_failure_disconnects_both(pair) -> None:
    host, guest = pair
    host.transport.fail("network unreachable")
    events = host.poll()
    assert kinds(events) == [K.ERROR, K.DISCONNECTED]
    assert events[0].detail == "network unreachable"
    assert host.state == SessionState.DISCONNECTED and host.engine is None

    assert kinds(guest.poll()) == [K.ERROR, K.DISCONNECTED]
    assert guest.state == SessionState.DISCONNECTED


def test_leave_and_come_back(pair) -> None:
    host, guest = pair
    guest.leave()
    assert guest.state == SessionState.DISCONNECTED
    assert K.DISCONNECTED in kinds(host.poll())

    host.enter_multiplayer()
    guest.enter_multiplayer()
    assert host.state == guest.state == SessionState.DISCOVERING
    handshake(host, guest)
    assert _same_board(host, guest)


def _refuse(*args, **kwargs) -> None:
    raise TransportError("link down")


def test_failed_deal_on_reset_ends_disconnected(pair, monkeypatch) -> None:
    host, _ = pair
    monkeypatch.setattr(host.transport, "send", _refuse)
    host.request_reset()
    assert kinds(host.poll()) == [K.ERROR, K.DISCONNECTED]
    assert host.state == SessionState.DISCONNECTED and host.engine is None


def test_failed_deal_on_accept_ends_disconnected(make_session, monkeypatch) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    b.poll()
    b.accept_request(a.transport.self_id)
    monkeypatch.setattr(a.transport, "send", _refuse)
    assert kinds(a.poll()) == [K.PEERS_CHANGED, K.CONNECTED, K.ERROR, K.DISCONNECTED]
    assert a.engine is None


# -- timeouts -----------------------------------------------------------------


def test_unanswered_request_expires(make_session, clock) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    b.poll()

    clock.advance(29)
    assert K.REQUEST_EXPIRED not in kinds(a.poll())
    clock.advance(2)
    assert K.REQUEST_EXPIRED in kinds(a.poll())
    assert a.state == SessionState.DISCOVERING
    assert kinds(b.poll()) == [K.REQUEST_WITHDRAWN]


def test_incoming_request_expires(make_session, clock) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    b.poll()
    clock.advance(31)
    events = b.poll()
    assert kinds(events) == [K.REQUEST_WITHDRAWN]
    assert events[0].detail == "expired"
    assert b.incoming_requests() == []


def test_guest_gives_up_without_game_start(make_session, clock) -> None:
    _, b = _connected_guest(make_session)
    clock.advance(31)
    assert kinds(b.poll()) == [K.ERROR, K.DISCONNECTED]
    assert b.state == SessionState.DISCONNECTED


def test_expired_request_cannot_be_accepted(make_session, clock) -> None:
    a = make_session("Ana")
    b = make_session("Ben")
    a.request_game(b.transport.self_id)
    b.poll()
    clock.advance(31)
    a.poll()
    assert a.state == SessionState.DISCOVERING
    assert kinds(b.poll()) == [K.REQUEST_WITHDRAWN]
    with pytest.raises(SessionStateError):
        b.accept_request(a.transport.self_id)
    assert a.poll() == []

"""Messages exchanged between two peers.

Every message travels as a JSON object with a ``type`` field::

    {"type": "game_request", "sender_id": "10.0.0.5:47800", "sender_name": "Ana"}
    {"type": "game_accept", "sender_id": "10.0.0.7:47800"}
    {"type": "game_decline", "sender_id": "10.0.0.7:47800"}
    {"type": "game_start", "dimension": 4, "board": [...16 ints], "epoch": 1, "resync": false}
    {"type": "move_made", "row": 3, "col": 0, "epoch": 1, "ply": 12}
    {"type": "win_achieved", "player_name": "Ana", "moves": 87, "time_seconds": 64.2}
    {"type": "reset_game"}
    {"type": "resync_request", "epoch": 1}
"""

from __future__ import annotations

import json
from dataclasses import MISSING, asdict, dataclass, fields
from enum import StrEnum
from typing import Any, Union

from backend.models.errors import ProtocolError


class MessageType(StrEnum):
    GAME_REQUEST = "game_request"
    GAME_ACCEPT = "game_accept"
    GAME_DECLINE = "game_decline"
    GAME_START = "game_start"
    MOVE_MADE = "move_made"
    WIN_ACHIEVED = "win_achieved"
    RESET_GAME = "reset_game"
    RESYNC_REQUEST = "resync_request"


@dataclass(frozen=True, slots=True)
class GameRequest:
    """Requester → target: would you like to play?"""
    sender_id: str
    sender_name: str
    TYPE = MessageType.GAME_REQUEST


@dataclass(frozen=True, slots=True)
class GameAccept:
    sender_id: str
    TYPE = MessageType.GAME_ACCEPT


@dataclass(frozen=True, slots=True)
class GameDecline:
    sender_id: str
    TYPE = MessageType.GAME_DECLINE


@dataclass(frozen=True, slots=True)
class GameStart:
    """Host → guest: the authoritative board to play from.

    ``resync`` marks a re-sent snapshot of a game already in progress
    rather than a new game.
    """
    dimension: int
    board: tuple[int, ...]
    epoch: int = 0
    resync: bool = False
    TYPE = MessageType.GAME_START


@dataclass(frozen=True, slots=True)
class MoveMade:
    """Either → either. ``ply`` is the sender's move count before this move."""
    row: int
    col: int
    epoch: int | None = None
    ply: int | None = None
    TYPE = MessageType.MOVE_MADE


@dataclass(frozen=True, slots=True)
class WinAchieved:
    player_name: str
    moves: int = 0
    time_seconds: float = 0.0
    TYPE = MessageType.WIN_ACHIEVED


@dataclass(frozen=True, slots=True)
class ResetGame:
    """Host → guest: advisory; guest → host: please deal a new board."""
    TYPE = MessageType.RESET_GAME


@dataclass(frozen=True, slots=True)
class ResyncRequest:
    """Guest → host: re-send the current board.

    ``epoch`` is the last snapshot the guest saw; the host skips the
    request if it has already sent a newer one.
    """
    epoch: int | None = None
    TYPE = MessageType.RESYNC_REQUEST


Message = Union[
    GameRequest,
    GameAccept,
    GameDecline,
    GameStart,
    MoveMade,
    WinAchieved,
    ResetGame,
    ResyncRequest,
]

_CLASSES: dict[str, type] = {
    cls.TYPE.value: cls
    for cls in (
        GameRequest,
        GameAccept,
        GameDecline,
        GameStart,
        MoveMade,
        WinAchieved,
        ResetGame,
        ResyncRequest,
    )
}

# -- field checks -------------------------------------------------------------


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


_CHECKS: dict[str, Any] = {
    "str": lambda v: isinstance(v, str),
    "int": _is_int,
    "int | None": lambda v: v is None or _is_int(v),
    "bool": lambda v: isinstance(v, bool),
    "float": lambda v: _is_int(v) or isinstance(v, float),
    "tuple[int, ...]": lambda v: isinstance(v, (list, tuple)) and all(_is_int(x) for x in v),
}


# -- public API ---------------------------------------------------------------


def to_dict(message: Message) -> dict[str, Any]:
    data = asdict(message)
    if isinstance(message, GameStart):
        data["board"] = list(message.board)
    return {"type": message.TYPE.value, **data}


def from_dict(data: Any) -> Message:
    """Validate a decoded JSON object and build the matching message."""
    if not isinstance(data, dict):
        raise ProtocolError(f"Message must be a JSON object, got {type(data).__name__}.")
    kind = data.get("type")
    cls = _CLASSES.get(kind) if isinstance(kind, str) else None
    if cls is None:
        raise ProtocolError(f"Unknown message type {kind!r}.")

    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in data:
            if f.default is not MISSING or f.default_factory is not MISSING:
                continue
            raise ProtocolError(f"{kind}: missing field {f.name!r}.")
        value = data[f.name]
        if not _CHECKS[str(f.type)](value):
            raise ProtocolError(f"{kind}: field {f.name!r} has bad value {value!r}.")
        if f.name == "board":
            value = tuple(value)
        elif str(f.type) == "float":
            value = float(value)
        kwargs[f.name] = value
    return cls(**kwargs)


def encode(message: Message) -> bytes:
    return json.dumps(to_dict(message), separators=(",", ":")).encode("utf-8")


def decode(payload: bytes | str | dict[str, Any]) -> Message:
    if isinstance(payload, dict):
        return from_dict(payload)
    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        data = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"Undecodable message: {exc}") from exc
    return from_dict(data)

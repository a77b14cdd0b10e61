from backend.models.board import MAX_SIZE, MIN_SIZE, Board, Direction, Position
from backend.models.errors import (
    MalformedStateError,
    ProtocolDesyncError,
    ProtocolError,
    SessionStateError,
    TransportError,
)
from backend.models.highscore import HighScoreEntry, HighScoreManager

__all__ = [
    "MAX_SIZE",
    "MIN_SIZE",
    "Board",
    "Direction",
    "Position",
    "HighScoreEntry",
    "HighScoreManager",
    "MalformedStateError",
    "ProtocolDesyncError",
    "ProtocolError",
    "SessionStateError",
    "TransportError",
]

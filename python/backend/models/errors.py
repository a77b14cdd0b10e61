"""Exception types shared by the engine and the sync layer."""

from __future__ import annotations


class MalformedStateError(ValueError):
    """A board snapshot violates the single-blank permutation invariant."""


class ProtocolError(ValueError):
    """A frame or message could not be decoded."""


class ProtocolDesyncError(RuntimeError):
    """A peer message cannot be applied against the local board."""


class TransportError(ConnectionError):
    """The message channel or the discovery facility failed."""


class SessionStateError(RuntimeError):
    """A session operation was invoked in a state that does not allow it."""

"""Exception hierarchy for peerplay."""

from __future__ import annotations


class PeerPlayError(Exception):
    """Base class for every error raised by peerplay."""


class TransportError(PeerPlayError):
    """The transport could not be set up or a link could not be opened."""


class PeerNotInitializedError(TransportError):
    def __init__(self) -> None:
        super().__init__("Peer not initialized")


class JoinError(PeerPlayError):
    """The join handshake did not admit us into the room."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class JoinRejectedError(JoinError):
    """The host answered the join request with ``join_rejected``."""


class JoinTimeoutError(JoinError):
    """No answer to the join request arrived in time."""

"""Peer transports: the contract plus in-memory and WebSocket links."""

from .base import ConnectionState, Link, MessageHandler, PeerEventHandlers, PeerTransport
from .memory import MemoryNetwork, MemoryTransport
from .websocket import WebSocketTransport, build_peer_app

__all__ = [
    "ConnectionState",
    "Link",
    "MemoryNetwork",
    "MemoryTransport",
    "MessageHandler",
    "PeerEventHandlers",
    "PeerTransport",
    "WebSocketTransport",
    "build_peer_app",
]

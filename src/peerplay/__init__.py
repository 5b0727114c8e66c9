"""peerplay: host-authoritative room and game-state sync between peers."""

from .controller import PeerSession
from .errors import (
    JoinError,
    JoinRejectedError,
    JoinTimeoutError,
    PeerNotInitializedError,
    PeerPlayError,
    TransportError,
)
from .health import ConnectionMonitor, ConnectionQuality, ConnectionStatus, calculate_quality
from .models import Room, RoomConfig, RoomPlayer, RoomStatus, UserProfile
from .rooms import RoomEvent, RoomManager
from .session import GameSynchronizer
from .settings import Settings

__all__ = [
    "ConnectionMonitor",
    "ConnectionQuality",
    "ConnectionStatus",
    "GameSynchronizer",
    "JoinError",
    "JoinRejectedError",
    "JoinTimeoutError",
    "PeerNotInitializedError",
    "PeerPlayError",
    "PeerSession",
    "Room",
    "RoomConfig",
    "RoomEvent",
    "RoomManager",
    "RoomPlayer",
    "RoomStatus",
    "Settings",
    "TransportError",
    "UserProfile",
    "calculate_quality",
]

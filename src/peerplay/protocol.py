"""Wire protocol: the message envelope and the typed payloads it carries.

Every frame on a peer link is a JSON object
``{"type", "senderId", "timestamp", "payload"}``.

Room membership:

- join_request:  guest -> host     ``{odId, nickname, avatar}``
- join_accepted: host -> guest     ``{success: true, room}``
- join_rejected: host -> guest     ``{success: false, reason}``
- player_joined: host -> guests    ``{player}``
- player_left:   any -> host, host -> guests  ``{odId}``
- player_ready:  guest -> host, host -> guests  ``{odId, ready}``
- kick:          host -> target    ``{odId}``
- room_update:   host -> guests    partial room
- game_start:    host -> guests    ``{}``

Game session:

- game_state:    host -> guests    ``{state}``
- game_action:   guest -> host ``{action}``, host -> guests ``{action, newState}``

Heartbeat:

- ping: host -> guest ``{timestamp}``
- pong: guest -> host ``{timestamp}`` (echoes the ping's timestamp)

Misc:

- chat: any -> any ``{text, senderName, senderAvatar}``
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from .clock import now_ms
from .models import Room, RoomPlayer, WireModel

PROTO_VERSION = 1


class MessageType(str, Enum):
    JOIN_REQUEST = "join_request"
    JOIN_ACCEPTED = "join_accepted"
    JOIN_REJECTED = "join_rejected"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    PLAYER_READY = "player_ready"
    KICK = "kick"
    ROOM_UPDATE = "room_update"
    GAME_START = "game_start"
    GAME_STATE = "game_state"
    GAME_ACTION = "game_action"
    PING = "ping"
    PONG = "pong"
    CHAT = "chat"


class Envelope(WireModel):
    type: MessageType
    sender_id: str
    timestamp: int = Field(default_factory=now_ms)
    payload: Dict[str, Any] = Field(default_factory=dict)


def make_envelope(
    type: MessageType | str,
    sender_id: str,
    payload: Any = None,
    timestamp: Optional[int] = None,
) -> Envelope:
    if isinstance(payload, WireModel):
        payload = payload.to_wire()
    return Envelope(
        type=MessageType(type),
        sender_id=sender_id,
        timestamp=now_ms() if timestamp is None else timestamp,
        payload=payload or {},
    )


class JoinRequestPayload(WireModel):
    od_id: str
    nickname: str
    avatar: str


class JoinResponsePayload(WireModel):
    success: bool
    room: Optional[Room] = None
    reason: Optional[str] = None


class PlayerUpdatePayload(WireModel):
    player: RoomPlayer


class PlayerRefPayload(WireModel):
    """Payload of ``player_left`` and ``kick``."""

    od_id: str


class PlayerReadyPayload(WireModel):
    od_id: str
    ready: bool


class HeartbeatPayload(WireModel):
    """Payload of both ``ping`` and ``pong``."""

    timestamp: int


class ChatPayload(WireModel):
    text: str
    sender_name: str
    sender_avatar: str


class GameAction(WireModel):
    type: str
    player_id: str
    timestamp: int = Field(default_factory=now_ms)
    data: Dict[str, Any] = Field(default_factory=dict)


class GameStatePayload(WireModel):
    state: Dict[str, Any]


class GameActionPayload(WireModel):
    action: GameAction
    new_state: Optional[Dict[str, Any]] = None

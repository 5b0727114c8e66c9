"""Room, player and profile models shared by every peer."""

from __future__ import annotations

import random
import string
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .clock import now_ms

ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6

DEFAULT_MAX_PLAYERS = 4
DEFAULT_MIN_PLAYERS = 2

DEFAULT_AVATARS = (
    "🎮", "🎲", "🃏", "🎯", "🏆", "⚡", "🔥", "💎",
    "🌟", "🎪", "🦊", "🐼", "🦁", "🐯", "🐸", "🦄",
)

AI_AVATARS = {"easy": "🤖", "medium": "🧠", "hard": "👾"}
AI_NAMES = {"easy": "AI ง่าย", "medium": "AI ปานกลาง", "hard": "AI ยาก"}


class WireModel(BaseModel):
    """Base model whose JSON form uses camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class RoomStatus(str, Enum):
    WAITING = "waiting"
    STARTING = "starting"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"


class RoomConfig(WireModel):
    max_players: int = Field(default=DEFAULT_MAX_PLAYERS, ge=1)
    min_players: int = Field(default=DEFAULT_MIN_PLAYERS, ge=1)
    is_private: bool = False
    game_slug: str = ""


class RoomPlayer(WireModel):
    od_id: str
    peer_id: str
    nickname: str
    avatar: str
    is_host: bool = False
    is_ready: bool = False
    is_connected: bool = True
    joined_at: int = Field(default_factory=now_ms)


class Room(WireModel):
    """The membership container mirrored from the host onto every guest."""

    id: str
    code: str
    host_od_id: str
    host_peer_id: str
    game_slug: str
    game_name: str = ""
    status: RoomStatus = RoomStatus.WAITING
    players: List[RoomPlayer] = Field(default_factory=list)
    config: RoomConfig = Field(default_factory=RoomConfig)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def get_player(self, od_id: str) -> Optional[RoomPlayer]:
        return next((p for p in self.players if p.od_id == od_id), None)

    def player_by_peer(self, peer_id: str) -> Optional[RoomPlayer]:
        return next((p for p in self.players if p.peer_id == peer_id), None)

    @property
    def is_full(self) -> bool:
        return len(self.players) >= self.config.max_players

    @property
    def available_slots(self) -> int:
        return max(0, self.config.max_players - len(self.players))

    def touch(self, at: Optional[int] = None) -> None:
        self.updated_at = now_ms() if at is None else at


class UserProfile(WireModel):
    """The local player's identity; storing it is the caller's business."""

    id: str
    nickname: str
    avatar: str = DEFAULT_AVATARS[0]


class AIPlayer(WireModel):
    id: str
    nickname: str
    avatar: str
    is_ai: bool = Field(default=True, alias="isAI")
    difficulty: str = "medium"


class ChatMessage(WireModel):
    id: str
    sender_id: str
    sender_name: str
    sender_avatar: str
    text: str
    timestamp: int
    is_me: bool = False


def generate_room_code(rng: Optional[random.Random] = None) -> str:
    chooser = rng or random
    return "".join(chooser.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def generate_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"{now_ms()}_{suffix}"


def generate_user_id() -> str:
    return f"user_{generate_id()}"


def random_avatar() -> str:
    return random.choice(DEFAULT_AVATARS)


def create_ai_player(difficulty: str = "medium") -> AIPlayer:
    if difficulty not in AI_NAMES:
        raise ValueError(
            f"Unsupported AI difficulty {difficulty!r}. "
            f"Choose one of {', '.join(AI_NAMES)}."
        )
    # Stable id per difficulty so a rematch keeps the same AI seat.
    return AIPlayer(
        id=f"ai-player-{difficulty}",
        nickname=AI_NAMES[difficulty],
        avatar=AI_AVATARS[difficulty],
        difficulty=difficulty,
    )

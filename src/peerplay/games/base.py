"""Contract every game rule engine implements, plus the engine registry.

A game snapshot is a plain JSON-compatible ``dict``. The synchronizer only
ever reads ``status``, ``currentTurn`` and ``winner``; the rest belongs to
the engine. ``apply_action`` must be total: an action it does not accept
returns the very same ``state`` object, which callers treat as "no change".
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import Field

from ..clock import now_ms
from ..models import AIPlayer, RoomPlayer, WireModel
from ..protocol import GameAction

GameSnapshot = Dict[str, Any]


class GamePlayer(WireModel):
    od_id: str
    nickname: str
    avatar: str
    score: int = 0
    is_active: bool = False
    is_ai: bool = Field(default=False, alias="isAI")

    @classmethod
    def from_room_player(cls, player: RoomPlayer) -> "GamePlayer":
        return cls(od_id=player.od_id, nickname=player.nickname, avatar=player.avatar)

    @classmethod
    def from_ai(cls, ai: AIPlayer) -> "GamePlayer":
        return cls(od_id=ai.id, nickname=ai.nickname, avatar=ai.avatar, is_ai=True)


CreateState = Callable[..., GameSnapshot]
ApplyAction = Callable[[GameSnapshot, GameAction], GameSnapshot]


@dataclass(frozen=True)
class GameEngine:
    slug: str
    name: str
    min_players: int
    max_players: int
    create_state: CreateState
    apply_action: ApplyAction


def seat_players(
    players: Sequence[GamePlayer],
    ai_player: Optional[GamePlayer],
    minimum: int,
    game_name: str,
) -> List[GamePlayer]:
    """Add the AI only when the humans alone are too few."""

    seated = list(players)
    if ai_player is not None and len(seated) < minimum:
        seated.append(ai_player)
    if len(seated) < minimum:
        raise ValueError(f"Need at least {minimum} players to start {game_name}")
    return seated


def shuffled(players: Sequence[GamePlayer], rng: Optional[random.Random]) -> List[GamePlayer]:
    order = list(players)
    (rng or random).shuffle(order)
    return order


def base_state(
    prefix: str,
    room_id: str,
    players: Sequence[GamePlayer],
    first_turn: str,
    now: Optional[int] = None,
) -> GameSnapshot:
    started = now_ms() if now is None else now
    state: GameSnapshot = {
        "gameId": f"{prefix}_{started}",
        "roomId": room_id,
        "status": "playing",
        "currentTurn": first_turn,
        "turnNumber": 1,
        "winner": None,
        "players": [p.to_wire() for p in players],
        "startedAt": started,
        "lastActionAt": started,
    }
    return mark_active(state)


def mark_active(state: GameSnapshot) -> GameSnapshot:
    """Flag ``isActive`` on whoever holds the turn; mutates and returns ``state``."""

    turn = state.get("currentTurn")
    finished = state.get("status") == "finished"
    state["players"] = [
        {**p, "isActive": not finished and p.get("odId") == turn}
        for p in state.get("players", [])
    ]
    return state


def award_point(players: List[Dict[str, Any]], winner_id: str) -> List[Dict[str, Any]]:
    return [
        {**p, "score": p.get("score", 0) + (1 if p.get("odId") == winner_id else 0)}
        for p in players
    ]


def int_field(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


_ENGINES: Dict[str, GameEngine] = {}


def register_engine(engine: GameEngine) -> GameEngine:
    _ENGINES[engine.slug] = engine
    return engine


def get_engine(slug: Optional[str], default: Optional[str] = None) -> Optional[GameEngine]:
    if slug and slug in _ENGINES:
        return _ENGINES[slug]
    if default is not None:
        return _ENGINES.get(default)
    return None


def available_engines() -> List[GameEngine]:
    return sorted(_ENGINES.values(), key=lambda e: e.slug)

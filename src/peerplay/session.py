"""Host-authoritative game session synchronization.

Only the host ever runs an engine's ``apply_action``. Guests forward their
actions to the host and adopt whatever snapshot the host publishes, so every
peer converges on the host's sequence of states.
"""

from __future__ import annotations

import random
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .clock import Clock, now_ms
from .games import DEFAULT_ENGINE, GameEngine, GamePlayer, GameSnapshot, get_engine
from .logging_config import get_logger
from .models import AIPlayer, RoomStatus, create_ai_player
from .protocol import Envelope, GameAction, GameActionPayload, GameStatePayload, MessageType
from .rooms import RoomManager
from .transport.base import PeerTransport

logger = get_logger(__name__)

StateListener = Callable[[Optional[GameSnapshot]], None]


class GameSynchronizer:
    def __init__(
        self,
        transport: PeerTransport,
        rooms: RoomManager,
        *,
        clock: Clock = now_ms,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.transport = transport
        self.rooms = rooms
        self.clock = clock
        self.rng = rng

        self.state: Optional[GameSnapshot] = None
        self.is_playing = False
        self.show_result = False
        self.ai_enabled = False
        self.ai_player: Optional[AIPlayer] = None

        self._listeners: List[StateListener] = []
        self._unsubscribers = [
            transport.on_message(MessageType.GAME_STATE, self.handle_game_message),
            transport.on_message(MessageType.GAME_ACTION, self.handle_game_message),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    @property
    def engine(self) -> GameEngine:
        room = self.rooms.room
        return get_engine(room.game_slug if room else None) or DEFAULT_ENGINE

    @property
    def is_my_turn(self) -> bool:
        user = self.rooms.user
        return (
            self.state is not None
            and self.is_playing
            and user is not None
            and self.state.get("currentTurn") == user.id
        )

    def set_ai(self, enabled: bool, difficulty: str = "medium") -> None:
        self.ai_player = create_ai_player(difficulty) if enabled else None
        self.ai_enabled = enabled

    # ---- lifecycle ----

    def init_game(self) -> Optional[GameSnapshot]:
        """Build the opening snapshot from the room roster and publish it.

        Host only. Raises ``ValueError`` when the engine cannot seat the
        roster.
        """

        room = self.rooms.room
        if room is None or not self.rooms.is_host:
            return None
        players = [GamePlayer.from_room_player(p) for p in room.players]
        return self._start(room.id, players)

    def reset_game(self) -> Optional[GameSnapshot]:
        """Rematch with the same human players; scores carry over."""

        room = self.rooms.room
        if self.state is None or room is None or not self.rooms.is_host:
            return None
        humans = [
            GamePlayer.model_validate({**p, "isActive": False})
            for p in self.state.get("players", [])
            if not p.get("isAI")
        ]
        return self._start(room.id, humans)

    def _start(self, room_id: str, players: List[GamePlayer]) -> GameSnapshot:
        ai = None
        if self.ai_enabled and self.ai_player is not None:
            ai = GamePlayer.from_ai(self.ai_player)
        state = self.engine.create_state(room_id, players, ai, rng=self.rng, now=self.clock())
        self._set_state(state)
        self.transport.broadcast(MessageType.GAME_STATE, GameStatePayload(state=state))
        logger.info("Game %s started with %d players", state.get("gameId"), len(state["players"]))
        return state

    def send_state_to(self, peer_id: str) -> bool:
        """Hand the current snapshot to one guest, e.g. one rejoining mid-game."""

        if self.state is None or not self.rooms.is_host:
            return False
        return self.transport.send(peer_id, MessageType.GAME_STATE, GameStatePayload(state=self.state))

    def end_game(self) -> None:
        self.is_playing = False
        self.show_result = True
        self._notify()

    def set_show_result(self, show: bool) -> None:
        self.show_result = show
        self._notify()

    def clear_game(self) -> None:
        self.state = None
        self.is_playing = False
        self.show_result = False
        self._notify()

    # ---- actions ----

    def submit_action(
        self,
        type: str,
        data: Optional[Dict[str, Any]] = None,
        for_player_id: Optional[str] = None,
    ) -> bool:
        """Submit a move for the local player, or for the AI with ``for_player_id``.

        On the host the move is applied and broadcast immediately. A guest
        only forwards it; its own snapshot changes when the host answers.
        """

        user = self.rooms.user
        player_id = for_player_id or (user.id if user else None)
        room = self.rooms.room
        if self.state is None or not self.is_playing or player_id is None or room is None:
            return False
        action = GameAction(
            type=type, player_id=player_id, timestamp=self.clock(), data=data or {}
        )
        if self.rooms.is_host:
            return self._apply_authoritative(action)
        return self.transport.send(
            room.host_peer_id, MessageType.GAME_ACTION, GameActionPayload(action=action)
        )

    def _apply_authoritative(self, action: GameAction) -> bool:
        state = self.state
        if state is None:
            return False
        room = self.rooms.room
        if room is not None and room.status == RoomStatus.PAUSED:
            logger.debug("Action %s ignored while paused", action.type)
            return False
        if action.player_id != state.get("currentTurn"):
            logger.debug("Out-of-turn %s from %s dropped", action.type, action.player_id)
            return False
        new_state = self.engine.apply_action(state, action)
        if new_state is state:
            logger.debug("Engine rejected %s from %s", action.type, action.player_id)
            return False
        self._set_state(new_state)
        self.transport.broadcast(
            MessageType.GAME_ACTION, GameActionPayload(action=action, new_state=new_state)
        )
        return True

    def handle_game_message(self, envelope: Envelope, sender_id: str) -> None:
        room = self.rooms.room
        if room is None:
            return
        try:
            if envelope.type == MessageType.GAME_STATE:
                if self.rooms.is_host or sender_id != room.host_peer_id:
                    return
                self._set_state(GameStatePayload.model_validate(envelope.payload).state)
                return

            payload = GameActionPayload.model_validate(envelope.payload)
        except ValidationError:
            logger.warning("Malformed %s from %s dropped", envelope.type.value, sender_id)
            return

        if self.rooms.is_host:
            # A guest may only move for itself.
            player = room.player_by_peer(sender_id)
            if player is None or player.od_id != payload.action.player_id:
                logger.debug("Action for %s from %s dropped", payload.action.player_id, sender_id)
                return
            self._apply_authoritative(payload.action)
        elif sender_id == room.host_peer_id and payload.new_state is not None:
            self._set_state(payload.new_state)

    def _set_state(self, state: GameSnapshot) -> None:
        self.state = state
        status = state.get("status")
        self.is_playing = status == "playing"
        self.show_result = status == "finished"
        if self.show_result:
            logger.info("Game over, winner: %s", state.get("winner") or "draw")
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:
                logger.exception("Game state listener failed")

"""Composes transport, heartbeat, room and game services for one peer."""

from __future__ import annotations

import random
from typing import Any, Dict, Optional

from .api import install_room_routes
from .clock import Clock, now_ms
from .health import ConnectionMonitor
from .logging_config import get_logger
from .models import Room, RoomConfig, RoomStatus, UserProfile
from .rooms import RoomEvent, RoomManager
from .session import GameSynchronizer
from .settings import Settings
from .storage import FileSessionStorage, MemorySessionStorage, SessionStorage
from .transport.base import PeerTransport
from .transport.websocket import WebSocketTransport

logger = get_logger(__name__)


class PeerSession:
    """Everything one peer needs to host or join a room and play in it."""

    def __init__(
        self,
        transport: PeerTransport,
        user: UserProfile,
        *,
        settings: Optional[Settings] = None,
        storage: Optional[SessionStorage] = None,
        clock: Clock = now_ms,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.transport = transport
        self.user = user
        self.monitor = ConnectionMonitor(
            transport,
            ping_interval_ms=self.settings.ping_interval_ms,
            timeout_ms=self.settings.timeout_ms,
            clock=clock,
        )
        self.rooms = RoomManager(
            transport,
            user,
            monitor=self.monitor,
            storage=storage,
            settings=self.settings,
            clock=clock,
        )
        self.game = GameSynchronizer(transport, self.rooms, clock=clock, rng=rng)
        self.rooms.add_listener(self._on_room_event)

        app = getattr(transport, "app", None)
        if app is not None:
            install_room_routes(app, self)

    @classmethod
    def from_settings(cls, user: UserProfile, settings: Settings) -> "PeerSession":
        transport = WebSocketTransport(
            host=settings.host,
            port=settings.port,
            advertise_host=settings.advertise_host,
            connect_timeout=settings.connect_timeout_ms / 1000,
        )
        storage: SessionStorage
        if settings.session_file:
            storage = FileSessionStorage(settings.session_file)
        else:
            storage = MemorySessionStorage()
        return cls(transport, user, settings=settings, storage=storage)

    # ---- delegation ----

    async def host(
        self,
        game_slug: str,
        game_name: str = "",
        config: Optional[RoomConfig] = None,
    ) -> Room:
        return await self.rooms.create_room(game_slug, game_name, config)

    async def join(self, host_peer_id: str) -> Room:
        return await self.rooms.join_room(host_peer_id)

    async def resume(self) -> bool:
        return await self.rooms.reconnect()

    def start_game(self, ai_enabled: Optional[bool] = None) -> bool:
        if ai_enabled is None:
            ai_enabled = self.game.ai_enabled
        return self.rooms.start_game(ai_enabled)

    def submit_action(
        self,
        type: str,
        data: Optional[Dict[str, Any]] = None,
        for_player_id: Optional[str] = None,
    ) -> bool:
        return self.game.submit_action(type, data, for_player_id)

    def leave(self) -> None:
        self.rooms.leave_room()

    async def close(self) -> None:
        self.game.close()
        await self.rooms.disconnect()

    # ---- wiring ----

    def _on_room_event(self, event: RoomEvent, data: Any) -> None:
        if event == RoomEvent.CREATED:
            self.game.clear_game()
        elif event == RoomEvent.JOINED and not self.rooms.is_host:
            self.game.clear_game()
        elif event == RoomEvent.PLAYER_JOINED and self.rooms.is_host:
            # join_accepted has already gone out on the same link.
            self.game.send_state_to(data.peer_id)
        elif event in (RoomEvent.LEFT, RoomEvent.CLOSED, RoomEvent.KICKED):
            self.game.clear_game()
            self.game.set_ai(False)
        elif (
            event == RoomEvent.STATUS_CHANGED
            and data == RoomStatus.PLAYING
            and self.rooms.is_host
            and self.game.state is None
        ):
            try:
                self.game.init_game()
            except ValueError as exc:
                logger.error("Cannot start game: %s", exc)

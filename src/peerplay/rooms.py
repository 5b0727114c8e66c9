"""Room membership: create, join, ready, kick, leave, start and chat.

The host owns the authoritative :class:`~peerplay.models.Room`; every guest
keeps a mirror that only changes in response to messages from the host. All
message handlers run synchronously on the event loop, so the room is never
mutated from two places at once.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from .clock import Clock, now_ms
from .errors import JoinError, JoinRejectedError, JoinTimeoutError, TransportError
from .games import get_engine
from .health import ConnectionMonitor, ConnectionStatus
from .logging_config import get_logger
from .models import (
    ChatMessage,
    Room,
    RoomConfig,
    RoomPlayer,
    RoomStatus,
    UserProfile,
    WireModel,
    generate_id,
    generate_room_code,
)
from .protocol import (
    ChatPayload,
    Envelope,
    JoinRequestPayload,
    JoinResponsePayload,
    MessageType,
    PlayerReadyPayload,
    PlayerRefPayload,
    PlayerUpdatePayload,
)
from .settings import Settings
from .storage import MemorySessionStorage, PersistedRoom, SessionStorage
from .transport.base import ConnectionState, PeerEventHandlers, PeerTransport

logger = get_logger(__name__)

ROOM_FULL = "ห้องเต็มแล้ว"
GAME_ALREADY_STARTED = "เกมเริ่มไปแล้ว"
JOIN_TIMED_OUT = "การเชื่อมต่อหมดเวลา"
JOIN_FAILED = "ไม่สามารถเข้าห้องได้"
CONNECT_FAILED = "ไม่สามารถเชื่อมต่อได้"
KICKED = "คุณถูกเตะออกจากห้อง"
NOT_ENOUGH_PLAYERS = "ต้องมีผู้เล่นอย่างน้อย {count} คน"
PLAYERS_NOT_READY = "ผู้เล่นทุกคนต้องพร้อม"
HOST_LOST = "ขาดการเชื่อมต่อกับ Host"
ROOM_CLOSED = "Host ปิดห้องแล้ว"

P = TypeVar("P", bound=WireModel)


class RoomEvent(str, Enum):
    CREATED = "created"
    JOINED = "joined"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    PLAYER_READY = "player_ready"
    STATUS_CHANGED = "status_changed"
    ROOM_UPDATED = "room_updated"
    KICKED = "kicked"
    CLOSED = "closed"
    LEFT = "left"
    CHAT = "chat"
    ERROR = "error"


RoomListener = Callable[[RoomEvent, Any], None]


def default_config(game_slug: str) -> RoomConfig:
    """Player limits of the engine behind ``game_slug``, or the generic defaults."""

    engine = get_engine(game_slug)
    if engine is None:
        return RoomConfig()
    return RoomConfig(min_players=engine.min_players, max_players=engine.max_players)


# Messages only the host may send; a guest drops them from anyone else.
_HOST_ONLY = {
    MessageType.PLAYER_JOINED,
    MessageType.ROOM_UPDATE,
    MessageType.GAME_START,
    MessageType.KICK,
}


class RoomManager:
    """One peer's view of room membership, as host or as guest."""

    def __init__(
        self,
        transport: PeerTransport,
        user: Optional[UserProfile] = None,
        *,
        monitor: Optional[ConnectionMonitor] = None,
        storage: Optional[SessionStorage] = None,
        settings: Optional[Settings] = None,
        clock: Clock = now_ms,
    ) -> None:
        self.transport = transport
        self.user = user
        self.settings = settings or Settings()
        self.clock = clock
        self.monitor = monitor or ConnectionMonitor(
            transport,
            ping_interval_ms=self.settings.ping_interval_ms,
            timeout_ms=self.settings.timeout_ms,
            clock=clock,
        )
        self.storage = storage or MemorySessionStorage()

        self.peer_id: Optional[str] = None
        self.is_connecting = False
        self.is_connected = False
        self.connection_error: Optional[str] = None

        self.room: Optional[Room] = None
        self.is_host = False
        self.is_in_room = False
        self.is_joining = False
        self.join_error: Optional[str] = None
        self.closed_reason: Optional[str] = None
        self.messages: List[ChatMessage] = []

        self._listeners: List[RoomListener] = []
        self._pending_join: Optional[Tuple[str, asyncio.Future]] = None
        self._start_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None

        self._handlers: Dict[MessageType, Callable[[Envelope, str], None]] = {
            MessageType.JOIN_REQUEST: self._on_join_request,
            MessageType.JOIN_ACCEPTED: self._on_join_accepted,
            MessageType.JOIN_REJECTED: self._on_join_rejected,
            MessageType.PLAYER_JOINED: self._on_player_joined,
            MessageType.PLAYER_LEFT: self._on_player_left,
            MessageType.PLAYER_READY: self._on_player_ready,
            MessageType.ROOM_UPDATE: self._on_room_update,
            MessageType.GAME_START: self._on_game_start,
            MessageType.KICK: self._on_kick,
            MessageType.CHAT: self._on_chat,
        }
        self.monitor.add_listener(self._on_connection_status)

    # ---- listeners ----

    def add_listener(self, listener: RoomListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self, event: RoomEvent, data: Any = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logger.exception("Room listener failed on %s", event.value)

    # ---- convenience ----

    @property
    def local_player(self) -> Optional[RoomPlayer]:
        if self.room is None or self.user is None:
            return None
        return self.room.get_player(self.user.id)

    def _require_user(self) -> UserProfile:
        if self.user is None:
            raise ValueError("User not found")
        return self.user

    def _touch(self) -> None:
        if self.room is not None:
            self.room.touch(self.clock())

    def _persist(self) -> None:
        if self.room is None or not self.is_in_room:
            return
        self.storage.save(
            PersistedRoom(room=self.room, is_host=self.is_host, is_in_room=True)
        )

    @staticmethod
    def _parse(model: Type[P], envelope: Envelope, sender_id: str) -> Optional[P]:
        try:
            return model.model_validate(envelope.payload)
        except ValidationError:
            logger.warning("Malformed %s from %s dropped", envelope.type.value, sender_id)
            return None

    # ---- transport wiring ----

    async def initialize_peer(self) -> str:
        if self.transport.peer_id and self.transport.state == ConnectionState.CONNECTED:
            self.peer_id = self.transport.peer_id
            self.is_connected = True
            return self.peer_id

        self.is_connecting = True
        self.connection_error = None
        handlers = PeerEventHandlers(
            on_open=self._on_open,
            on_close=self._on_close,
            on_error=self._on_error,
            on_connection=self._on_connection,
            on_disconnection=self._on_disconnection,
            on_message=self.handle_message,
        )
        try:
            peer_id = await self.transport.initialize(handlers)
        except TransportError as exc:
            self.is_connecting = False
            self.is_connected = False
            self.connection_error = str(exc)
            raise
        self.is_connecting = False
        self.is_connected = True
        self.peer_id = peer_id
        return peer_id

    def _on_open(self, peer_id: str) -> None:
        self.peer_id = peer_id
        self.is_connected = True

    def _on_close(self) -> None:
        self.is_connected = False

    def _on_error(self, error: Exception) -> None:
        self.connection_error = str(error)
        self._emit(RoomEvent.ERROR, str(error))

    def _on_connection(self, peer_id: str) -> None:
        logger.debug("Peer %s connected", peer_id)

    def _on_disconnection(self, peer_id: str) -> None:
        if not self.is_host or self.room is None:
            return
        player = self.room.player_by_peer(peer_id)
        if player is not None and not player.is_host:
            logger.info("Player %s (%s) disconnected", player.nickname, peer_id)
            self._set_player_connected(player, False)

    def handle_message(self, envelope: Envelope, sender_id: str) -> None:
        handler = self._handlers.get(envelope.type)
        if handler is None:
            return
        if (
            envelope.type in _HOST_ONLY
            and not self.is_host
            and (self.room is None or sender_id != self.room.host_peer_id)
        ):
            logger.debug("Ignoring %s from non-host %s", envelope.type.value, sender_id)
            return
        handler(envelope, sender_id)

    # ---- create / join ----

    async def create_room(
        self,
        game_slug: str,
        game_name: str = "",
        config: Optional[RoomConfig] = None,
    ) -> Room:
        user = self._require_user()
        if config is None:
            config = default_config(game_slug)
        config = config.model_copy(update={"game_slug": game_slug})
        if config.min_players > config.max_players:
            raise ValueError(
                f"min_players ({config.min_players}) exceeds max_players ({config.max_players})"
            )
        if self.room is not None:
            self.leave_room()

        peer_id = await self.initialize_peer()
        now = self.clock()
        room = Room(
            id=generate_id(),
            code=generate_room_code(),
            host_od_id=user.id,
            host_peer_id=peer_id,
            game_slug=game_slug,
            game_name=game_name,
            status=RoomStatus.WAITING,
            players=[
                RoomPlayer(
                    od_id=user.id,
                    peer_id=peer_id,
                    nickname=user.nickname,
                    avatar=user.avatar,
                    is_host=True,
                    is_ready=True,
                    is_connected=True,
                    joined_at=now,
                )
            ],
            config=config,
            created_at=now,
            updated_at=now,
        )
        self.room = room
        self.is_host = True
        self.is_in_room = True
        self.join_error = None
        self.closed_reason = None
        self.messages = []
        self._persist()
        self.monitor.start(is_host=True)
        logger.info("Room %s created for %s", room.code, game_slug)
        self._emit(RoomEvent.CREATED, room)
        return room

    async def join_room(self, host_peer_id: str) -> Room:
        """Join the room hosted at ``host_peer_id``.

        Raises :class:`JoinRejectedError` with the host's reason, or
        :class:`JoinTimeoutError` when no answer arrives in time.
        """

        self._require_user()
        if self.room is not None:
            self.leave_room()
        self.closed_reason = None
        self.messages = []
        return await self._handshake(host_peer_id)

    async def _handshake(self, host_peer_id: str) -> Room:
        user = self._require_user()
        self.is_joining = True
        self.join_error = None
        try:
            await self.initialize_peer()
            await self.transport.connect_to_peer(host_peer_id)
        except TransportError as exc:
            logger.warning("Could not reach host %s: %s", host_peer_id, exc)
            self._fail_join(CONNECT_FAILED)
            raise JoinError(CONNECT_FAILED) from exc

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_join = (host_peer_id, future)
        self.transport.send(
            host_peer_id,
            MessageType.JOIN_REQUEST,
            JoinRequestPayload(od_id=user.id, nickname=user.nickname, avatar=user.avatar),
        )
        try:
            return await asyncio.wait_for(
                future, timeout=self.settings.join_timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            self._fail_join(JOIN_TIMED_OUT)
            self.transport.disconnect_peer(host_peer_id)
            raise JoinTimeoutError(JOIN_TIMED_OUT) from None
        except JoinRejectedError as exc:
            self._fail_join(exc.reason)
            self.transport.disconnect_peer(host_peer_id)
            raise
        finally:
            if self._pending_join is not None and self._pending_join[1] is future:
                self._pending_join = None

    def _fail_join(self, reason: str) -> None:
        self.is_joining = False
        self.join_error = reason
        logger.info("Join failed: %s", reason)
        self._emit(RoomEvent.ERROR, reason)

    def _take_pending_join(self, sender_id: str) -> Optional[asyncio.Future]:
        if self._pending_join is None:
            return None
        host_peer_id, future = self._pending_join
        if host_peer_id != sender_id or future.done():
            return None
        return future

    def _on_join_request(self, envelope: Envelope, sender_id: str) -> None:
        if not self.is_host or self.room is None:
            return
        payload = self._parse(JoinRequestPayload, envelope, sender_id)
        if payload is None:
            return
        room = self.room

        existing = room.get_player(payload.od_id)
        if existing is not None and existing.is_host:
            self._reject(sender_id, JOIN_FAILED)
            return

        if existing is not None:
            # Same identity coming back: replace the slot instead of duplicating it.
            old_peer_id = existing.peer_id
            existing.peer_id = sender_id
            existing.nickname = payload.nickname
            existing.avatar = payload.avatar
            existing.is_connected = True
            player = existing
            if old_peer_id != sender_id:
                self.monitor.forget(old_peer_id)
                self.transport.disconnect_peer(old_peer_id)
            logger.info("Player %s rejoined from %s", player.nickname, sender_id)
        else:
            if room.is_full:
                self._reject(sender_id, ROOM_FULL)
                return
            if room.status != RoomStatus.WAITING:
                self._reject(sender_id, GAME_ALREADY_STARTED)
                return
            player = RoomPlayer(
                od_id=payload.od_id,
                peer_id=sender_id,
                nickname=payload.nickname,
                avatar=payload.avatar,
                is_host=False,
                is_ready=False,
                is_connected=True,
                joined_at=self.clock(),
            )
            room.players.append(player)
            logger.info("Player %s joined room %s", player.nickname, room.code)

        self._touch()
        self._persist()
        self.transport.send(
            sender_id,
            MessageType.JOIN_ACCEPTED,
            JoinResponsePayload(success=True, room=room),
        )
        self.transport.broadcast(
            MessageType.PLAYER_JOINED, PlayerUpdatePayload(player=player), exclude=sender_id
        )
        self._emit(RoomEvent.PLAYER_JOINED, player)

    def _reject(self, peer_id: str, reason: str) -> None:
        logger.info("Rejecting join from %s: %s", peer_id, reason)
        self.transport.send(
            peer_id,
            MessageType.JOIN_REJECTED,
            JoinResponsePayload(success=False, reason=reason),
        )

    def _on_join_accepted(self, envelope: Envelope, sender_id: str) -> None:
        future = self._take_pending_join(sender_id)
        if future is None:
            logger.debug("Unexpected join_accepted from %s ignored", sender_id)
            return
        payload = self._parse(JoinResponsePayload, envelope, sender_id)
        if payload is None or not payload.success or payload.room is None:
            return
        self.room = payload.room
        self.is_host = False
        self.is_in_room = True
        self.is_joining = False
        self.join_error = None
        self._persist()
        self.monitor.start(is_host=False)
        logger.info("Joined room %s", self.room.code)
        self._emit(RoomEvent.JOINED, self.room)
        future.set_result(self.room)

    def _on_join_rejected(self, envelope: Envelope, sender_id: str) -> None:
        future = self._take_pending_join(sender_id)
        if future is None:
            return
        payload = self._parse(JoinResponsePayload, envelope, sender_id)
        reason = (payload.reason if payload else None) or JOIN_FAILED
        future.set_exception(JoinRejectedError(reason))

    # ---- membership updates ----

    def _on_player_joined(self, envelope: Envelope, sender_id: str) -> None:
        if self.room is None or self.is_host:
            return
        payload = self._parse(PlayerUpdatePayload, envelope, sender_id)
        if payload is None:
            return
        players = self.room.players
        for index, player in enumerate(players):
            if player.od_id == payload.player.od_id:
                players[index] = payload.player
                break
        else:
            players.append(payload.player)
        self._touch()
        self._persist()
        self._emit(RoomEvent.PLAYER_JOINED, payload.player)

    def _on_player_left(self, envelope: Envelope, sender_id: str) -> None:
        if self.room is None:
            return
        payload = self._parse(PlayerRefPayload, envelope, sender_id)
        if payload is None:
            return
        player = self.room.get_player(payload.od_id)
        if player is None or player.is_host:
            return

        if self.is_host:
            # Guests may only announce their own departure.
            if player.peer_id != sender_id:
                logger.warning("%s tried to remove %s", sender_id, payload.od_id)
                return
            self._remove_player(player.od_id)
            self.monitor.forget(sender_id)
            self.transport.broadcast(
                MessageType.PLAYER_LEFT, PlayerRefPayload(od_id=player.od_id), exclude=sender_id
            )
            logger.info("Player %s left room %s", player.nickname, self.room.code)
        elif sender_id == self.room.host_peer_id:
            self._remove_player(player.od_id)
        else:
            return
        self._emit(RoomEvent.PLAYER_LEFT, player)

    def _remove_player(self, od_id: str) -> None:
        if self.room is None:
            return
        self.room.players = [p for p in self.room.players if p.od_id != od_id]
        self._touch()
        self._persist()

    def _on_player_ready(self, envelope: Envelope, sender_id: str) -> None:
        if self.room is None:
            return
        payload = self._parse(PlayerReadyPayload, envelope, sender_id)
        if payload is None:
            return
        player = self.room.get_player(payload.od_id)
        if player is None:
            return
        if self.is_host:
            if player.peer_id != sender_id:
                logger.warning("%s tried to change readiness of %s", sender_id, payload.od_id)
                return
            player.is_ready = payload.ready
            self.transport.broadcast(MessageType.PLAYER_READY, payload, exclude=sender_id)
        elif sender_id == self.room.host_peer_id:
            player.is_ready = payload.ready
        else:
            return
        self._touch()
        self._persist()
        self._emit(RoomEvent.PLAYER_READY, player)

    def _on_room_update(self, envelope: Envelope, sender_id: str) -> None:
        if self.room is None or self.is_host:
            return
        merged = self.room.to_wire()
        merged.update(envelope.payload)
        try:
            updated = Room.model_validate(merged)
        except ValidationError:
            logger.warning("Malformed room_update from %s dropped", sender_id)
            return
        previous_status = self.room.status
        self.room = updated
        self._touch()

        if updated.status == RoomStatus.FINISHED:
            logger.info("Host closed room %s", updated.code)
            self._drop_links()
            self._close_room()
            self.closed_reason = ROOM_CLOSED
            self._emit(RoomEvent.CLOSED, ROOM_CLOSED)
            return

        self._persist()
        self._emit(RoomEvent.ROOM_UPDATED, envelope.payload)
        if updated.status != previous_status:
            self._emit(RoomEvent.STATUS_CHANGED, updated.status)

    def _on_game_start(self, envelope: Envelope, sender_id: str) -> None:
        if self.room is None or self.is_host:
            return
        self._set_status(RoomStatus.PLAYING)

    def _on_kick(self, envelope: Envelope, sender_id: str) -> None:
        if self.room is None or self.is_host or self.user is None:
            return
        payload = self._parse(PlayerRefPayload, envelope, sender_id)
        if payload is None or payload.od_id != self.user.id:
            return
        logger.info("Kicked from room %s", self.room.code)
        self._leave(notify=False)
        self.join_error = KICKED
        self._emit(RoomEvent.KICKED, KICKED)

    def _set_status(self, status: RoomStatus) -> None:
        if self.room is None or self.room.status == status:
            return
        self.room.status = status
        self._touch()
        self._persist()
        logger.info("Room %s is now %s", self.room.code, status.value)
        self._emit(RoomEvent.STATUS_CHANGED, status)

    def _set_player_connected(self, player: RoomPlayer, connected: bool) -> None:
        if player.is_connected == connected or self.room is None:
            return
        player.is_connected = connected
        self._touch()
        self._persist()
        self.transport.broadcast(
            MessageType.ROOM_UPDATE,
            {"players": [p.to_wire() for p in self.room.players]},
        )
        self._emit(RoomEvent.ROOM_UPDATED, {"players": self.room.players})

    # ---- player actions ----

    def set_ready(self, ready: bool) -> None:
        user = self.user
        if self.room is None or user is None:
            return
        player = self.room.get_player(user.id)
        if player is None:
            return
        player.is_ready = ready
        self._touch()
        self._persist()
        payload = PlayerReadyPayload(od_id=user.id, ready=ready)
        if self.is_host:
            self.transport.broadcast(MessageType.PLAYER_READY, payload)
        else:
            self.transport.send(self.room.host_peer_id, MessageType.PLAYER_READY, payload)
        self._emit(RoomEvent.PLAYER_READY, player)

    def kick_player(self, od_id: str) -> bool:
        if self.room is None or not self.is_host:
            return False
        player = self.room.get_player(od_id)
        if player is None or player.is_host:
            return False

        self.transport.send(player.peer_id, MessageType.KICK, PlayerRefPayload(od_id=od_id))
        self._remove_player(od_id)
        self.monitor.forget(player.peer_id)
        self.transport.disconnect_peer(player.peer_id)
        self.transport.broadcast(MessageType.PLAYER_LEFT, PlayerRefPayload(od_id=od_id))
        logger.info("Kicked %s from room %s", player.nickname, self.room.code)
        self._emit(RoomEvent.PLAYER_LEFT, player)
        return True

    def start_game(self, ai_enabled: bool = False) -> bool:
        room = self.room
        if room is None or not self.is_host or room.status != RoomStatus.WAITING:
            return False

        effective = len(room.players) + (1 if ai_enabled else 0)
        if effective < room.config.min_players:
            self.join_error = NOT_ENOUGH_PLAYERS.format(count=room.config.min_players)
            self._emit(RoomEvent.ERROR, self.join_error)
            return False

        # A lone host with the AI filling in has nobody to wait for.
        if not ai_enabled or len(room.players) > 1:
            if not all(p.is_ready for p in room.players):
                self.join_error = PLAYERS_NOT_READY
                self._emit(RoomEvent.ERROR, self.join_error)
                return False

        self.join_error = None
        self._set_status(RoomStatus.STARTING)
        self.transport.broadcast(MessageType.GAME_START, {})
        self._start_task = asyncio.get_running_loop().create_task(self._finish_start())
        return True

    async def _finish_start(self) -> None:
        await asyncio.sleep(self.settings.start_delay_ms / 1000)
        self._start_task = None
        if self.room is not None and self.room.status == RoomStatus.STARTING:
            self._set_status(RoomStatus.PLAYING)

    def set_paused(self, paused: bool) -> bool:
        room = self.room
        if room is None or not self.is_host:
            return False
        source, target = (
            (RoomStatus.PLAYING, RoomStatus.PAUSED)
            if paused
            else (RoomStatus.PAUSED, RoomStatus.PLAYING)
        )
        if room.status != source:
            return False
        self._set_status(target)
        self.transport.broadcast(MessageType.ROOM_UPDATE, {"status": target.value})
        return True

    def finish_room(self) -> None:
        """Mark the room finished without closing it; host only."""

        if self.room is None or not self.is_host:
            return
        self._set_status(RoomStatus.FINISHED)

    def send_chat(self, text: str) -> Optional[ChatMessage]:
        user = self.user
        text = text.strip()
        if not text or self.room is None or user is None:
            return None
        message = ChatMessage(
            id=generate_id(),
            sender_id=user.id,
            sender_name=user.nickname,
            sender_avatar=user.avatar,
            text=text,
            timestamp=self.clock(),
            is_me=True,
        )
        self.messages.append(message)
        self.transport.broadcast(
            MessageType.CHAT,
            ChatPayload(text=text, sender_name=user.nickname, sender_avatar=user.avatar),
        )
        self._emit(RoomEvent.CHAT, message)
        return message

    def _on_chat(self, envelope: Envelope, sender_id: str) -> None:
        if self.room is None:
            return
        payload = self._parse(ChatPayload, envelope, sender_id)
        if payload is None or not payload.text.strip():
            return
        message = ChatMessage(
            id=generate_id(),
            sender_id=envelope.sender_id,
            sender_name=payload.sender_name,
            sender_avatar=payload.sender_avatar,
            text=payload.text,
            timestamp=envelope.timestamp,
            is_me=False,
        )
        self.messages.append(message)
        if self.is_host:
            logger.info("[chat] %s: %s", payload.sender_name, payload.text)
            self.transport.broadcast(MessageType.CHAT, payload, exclude=sender_id)
        self._emit(RoomEvent.CHAT, message)

    # ---- leaving ----

    def leave_room(self) -> None:
        self._leave(notify=True)

    def _leave(self, notify: bool) -> None:
        room = self.room
        if room is None:
            self.storage.clear()
            return
        if notify and self.transport.peer_id is not None:
            if self.is_host:
                self.transport.broadcast(
                    MessageType.ROOM_UPDATE, {"status": RoomStatus.FINISHED.value}
                )
            elif self.user is not None:
                self.transport.send(
                    room.host_peer_id,
                    MessageType.PLAYER_LEFT,
                    PlayerRefPayload(od_id=self.user.id),
                )
        self._drop_links()
        self._close_room()
        logger.info("Left room %s", room.code)
        self._emit(RoomEvent.LEFT, room)

    def _drop_links(self) -> None:
        for peer_id in self.transport.connected_peers:
            self.transport.disconnect_peer(peer_id)

    def _close_room(self) -> None:
        self._cancel_tasks()
        self.monitor.reset()
        self.storage.clear()
        self.room = None
        self.is_host = False
        self.is_in_room = False
        self.is_joining = False
        self.messages = []

    def _cancel_tasks(self) -> None:
        for task in (self._start_task, self._watchdog):
            if task is not None and not task.done():
                task.cancel()
        self._start_task = None
        self._watchdog = None

    async def disconnect(self) -> None:
        """Tear down the transport; the persisted triple survives for ``reconnect``."""

        self._cancel_tasks()
        self.monitor.reset()
        await self.transport.cleanup()
        self.room = None
        self.is_host = False
        self.is_in_room = False
        self.is_joining = False
        self.is_connected = False
        self.peer_id = None
        self.messages = []

    async def reset(self) -> None:
        await self.disconnect()
        self.storage.clear()
        self.join_error = None
        self.connection_error = None
        self.closed_reason = None

    # ---- reconnection ----

    async def reconnect(self) -> bool:
        """Restore the persisted room after a restart."""

        saved = self.storage.load()
        if saved is None or not saved.is_in_room or saved.room is None:
            return False
        user = self._require_user()
        room = saved.room

        try:
            peer_id = await self.initialize_peer()
        except TransportError:
            logger.warning("Reconnect failed: transport unavailable")
            self.storage.clear()
            return False

        if saved.is_host:
            host = room.get_player(user.id)
            if room.host_od_id != user.id or host is None:
                self.storage.clear()
                return False
            if peer_id != room.host_peer_id:
                logger.info("Host identity changed from %s to %s", room.host_peer_id, peer_id)
                room.host_peer_id = peer_id
                host.peer_id = peer_id
            for player in room.players:
                if not player.is_host:
                    player.is_connected = False
            self.room = room
            self.is_host = True
            self.is_in_room = True
            self._touch()
            self._persist()
            self.monitor.start(is_host=True)
            logger.info("Resumed hosting room %s", room.code)
            self._emit(RoomEvent.JOINED, room)
            return True

        try:
            await self._handshake(room.host_peer_id)
        except JoinError as exc:
            logger.warning("Reconnect to %s failed: %s", room.host_peer_id, exc.reason)
            self.storage.clear()
            return False
        return True

    def _on_connection_status(self, peer_id: str, status: ConnectionStatus) -> None:
        if self.room is None:
            return
        if self.is_host:
            player = self.room.player_by_peer(peer_id)
            if player is not None and not player.is_host:
                self._set_player_connected(player, status.is_connected)
            return

        if peer_id != self.room.host_peer_id:
            return
        if not status.is_connected:
            if self._watchdog is None:
                logger.warning("Lost heartbeat from host; waiting before leaving")
                self._watchdog = asyncio.get_running_loop().create_task(self._host_watchdog())
        elif self._watchdog is not None:
            logger.info("Host heartbeat recovered")
            self._watchdog.cancel()
            self._watchdog = None

    async def _host_watchdog(self) -> None:
        await asyncio.sleep(self.settings.reconnect_grace_ms / 1000)
        self._watchdog = None
        self.leave_room()
        self.join_error = HOST_LOST
        self._emit(RoomEvent.ERROR, HOST_LOST)

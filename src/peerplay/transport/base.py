"""Transport contract shared by every peer link implementation."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from ..errors import PeerNotInitializedError
from ..logging_config import get_logger
from ..protocol import Envelope, MessageType, make_envelope

logger = get_logger(__name__)

MessageHandler = Callable[[Envelope, str], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class PeerEventHandlers:
    on_open: Optional[Callable[[str], None]] = None
    on_close: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
    on_connection: Optional[Callable[[str], None]] = None
    on_disconnection: Optional[Callable[[str], None]] = None
    on_message: Optional[MessageHandler] = None


class Link(abc.ABC):
    """One open, reliable and ordered channel to a remote peer."""

    @property
    @abc.abstractmethod
    def open(self) -> bool:
        ...

    @abc.abstractmethod
    def send(self, frame: Dict[str, Any]) -> None:
        """Queue ``frame`` for delivery without waiting."""

    @abc.abstractmethod
    def close(self) -> None:
        ...


class PeerTransport(abc.ABC):
    """Direct peer links with no knowledge of rooms or games.

    Delivery is reliable and ordered per pair of peers only. A broadcast is
    a series of independent sends. A link that dies silently raises no event
    here; the heartbeat has to notice it.
    """

    def __init__(self) -> None:
        self._peer_id: Optional[str] = None
        self._state = ConnectionState.DISCONNECTED
        self._links: Dict[str, Link] = {}
        self._handlers = PeerEventHandlers()
        self._message_handlers: Dict[MessageType, Set[MessageHandler]] = {}

    @property
    def peer_id(self) -> Optional[str]:
        return self._peer_id

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected_peers(self) -> List[str]:
        return [peer_id for peer_id, link in self._links.items() if link.open]

    @abc.abstractmethod
    async def initialize(self, handlers: Optional[PeerEventHandlers] = None) -> str:
        ...

    @abc.abstractmethod
    async def connect_to_peer(self, remote_peer_id: str) -> None:
        ...

    async def cleanup(self) -> None:
        for link in list(self._links.values()):
            link.close()
        self._links.clear()
        was_open = self._peer_id is not None
        self._peer_id = None
        self._state = ConnectionState.DISCONNECTED
        if was_open and self._handlers.on_close:
            self._handlers.on_close()

    async def destroy(self) -> None:
        await self.cleanup()
        self._message_handlers.clear()
        self._handlers = PeerEventHandlers()

    def send(self, peer_id: str, type: MessageType | str, payload: Any = None) -> bool:
        link = self._links.get(peer_id)
        if link is None or not link.open:
            logger.warning("Cannot send %s - not connected to %s", type, peer_id)
            return False
        link.send(self._frame(type, payload))
        return True

    def broadcast(
        self,
        type: MessageType | str,
        payload: Any = None,
        exclude: Optional[str] = None,
    ) -> None:
        frame = self._frame(type, payload)
        for peer_id, link in list(self._links.items()):
            if link.open and peer_id != exclude:
                link.send(frame)

    def on_message(self, type: MessageType | str, handler: MessageHandler) -> Callable[[], None]:
        """Register ``handler`` for one message type; returns an unsubscriber."""

        key = MessageType(type)
        self._message_handlers.setdefault(key, set()).add(handler)

        def unsubscribe() -> None:
            self._message_handlers.get(key, set()).discard(handler)

        return unsubscribe

    def disconnect_peer(self, peer_id: str) -> None:
        link = self._links.pop(peer_id, None)
        if link is not None:
            link.close()
            self._notify_disconnection(peer_id)

    # ---- helpers for implementations ----

    def _require_initialized(self) -> str:
        if self._peer_id is None or self._state != ConnectionState.CONNECTED:
            raise PeerNotInitializedError()
        return self._peer_id

    def _frame(self, type: MessageType | str, payload: Any) -> Dict[str, Any]:
        if self._peer_id is None:
            raise PeerNotInitializedError()
        return make_envelope(type, self._peer_id, payload).to_wire()

    def _opened(self, peer_id: str, link: Link, *, inbound: bool) -> None:
        previous = self._links.get(peer_id)
        if previous is not None and previous is not link:
            previous.close()
        self._links[peer_id] = link
        logger.info(
            "%s link with %s open", "Inbound" if inbound else "Outbound", peer_id
        )
        if inbound and self._handlers.on_connection:
            self._handlers.on_connection(peer_id)

    def _closed(self, peer_id: str, link: Link) -> None:
        # Only the link currently registered for the peer may report its loss.
        if self._links.get(peer_id) is not link:
            return
        del self._links[peer_id]
        logger.info("Link with %s closed", peer_id)
        self._notify_disconnection(peer_id)

    def _notify_disconnection(self, peer_id: str) -> None:
        if self._handlers.on_disconnection:
            self._handlers.on_disconnection(peer_id)

    def _deliver(self, frame: Dict[str, Any], peer_id: str) -> None:
        try:
            envelope = Envelope.model_validate(frame)
        except ValidationError:
            logger.warning("Dropping malformed frame from %s", peer_id, exc_info=True)
            return

        if self._handlers.on_message:
            self._call(self._handlers.on_message, envelope, peer_id)
        for handler in list(self._message_handlers.get(envelope.type, ())):
            self._call(handler, envelope, peer_id)

    @staticmethod
    def _call(handler: MessageHandler, envelope: Envelope, peer_id: str) -> None:
        try:
            handler(envelope, peer_id)
        except Exception:
            logger.exception("Handler failed for %s from %s", envelope.type.value, peer_id)

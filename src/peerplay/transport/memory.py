"""In-process peer network for tests and simulation harnesses."""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional, Tuple

from ..errors import TransportError
from ..logging_config import get_logger
from .base import ConnectionState, Link, PeerEventHandlers, PeerTransport

logger = get_logger(__name__)


class _Channel:
    """One direction of a memory link, drained in order by a single task."""

    def __init__(self, source_id: str, target: "MemoryTransport") -> None:
        self.source_id = source_id
        self.target = target
        self.severed = False
        self.pending = 0
        self.queue: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()
        self.task = asyncio.get_running_loop().create_task(self._pump())

    @property
    def busy(self) -> bool:
        return self.pending > 0

    def put(self, kind: str, item: Any) -> None:
        self.pending += 1
        self.queue.put_nowait((kind, item))

    async def _pump(self) -> None:
        while True:
            kind, item = await self.queue.get()
            try:
                if self.severed or self.target.peer_id is None:
                    continue
                if kind == "open":
                    self.target._opened(self.source_id, item, inbound=True)
                elif kind == "frame":
                    self.target._deliver(json.loads(item), self.source_id)
                elif kind == "close":
                    item._open = False
                    self.target._closed(self.source_id, item)
            except Exception:
                logger.exception("Memory channel %s -> %s failed", self.source_id, self.target.peer_id)
            finally:
                self.pending -= 1


class _MemoryLink(Link):
    def __init__(self, channel: _Channel) -> None:
        self._channel = channel
        self._open = True
        self.counterpart: Optional["_MemoryLink"] = None

    @property
    def open(self) -> bool:
        return self._open

    def send(self, frame: Dict[str, Any]) -> None:
        # Frames go through JSON so peers never share objects.
        self._channel.put("frame", json.dumps(frame))

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self._channel.put("close", self.counterpart)


class MemoryNetwork:
    """A switchboard connecting :class:`MemoryTransport` instances."""

    def __init__(self) -> None:
        self.online = True
        self._peers: Dict[str, "MemoryTransport"] = {}
        self._channels: Dict[Tuple[str, str], _Channel] = {}
        self._retired: List[_Channel] = []

    def lookup(self, peer_id: str) -> Optional["MemoryTransport"]:
        return self._peers.get(peer_id)

    def _register(self, transport: "MemoryTransport", peer_id: str) -> None:
        if peer_id in self._peers and self._peers[peer_id] is not transport:
            raise TransportError(f"ID {peer_id} is taken")
        self._peers[peer_id] = transport

    def _unregister(self, peer_id: str) -> None:
        self._peers.pop(peer_id, None)

    def _channel(self, source_id: str, target_id: str, target: "MemoryTransport") -> _Channel:
        key = (source_id, target_id)
        channel = self._channels.get(key)
        if channel is None or channel.target is not target:
            if channel is not None:
                self._retired.append(channel)
            channel = _Channel(source_id, target)
            self._channels[key] = channel
        return channel

    def sever(self, a: str, b: str) -> None:
        """Silently drop all traffic between ``a`` and ``b``; no close events fire."""

        for key in ((a, b), (b, a)):
            if key in self._channels:
                self._channels[key].severed = True

    def heal(self, a: str, b: str) -> None:
        for key in ((a, b), (b, a)):
            if key in self._channels:
                self._channels[key].severed = False

    async def drain(self) -> None:
        """Wait until every queued frame, including follow-ups, has been handled."""

        while any(c.busy for c in self._all_channels()):
            await asyncio.sleep(0)

    async def shutdown(self) -> None:
        tasks = [c.task for c in self._all_channels()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._channels.clear()
        self._retired.clear()

    def _all_channels(self) -> List[_Channel]:
        return [*self._channels.values(), *self._retired]


class MemoryTransport(PeerTransport):
    def __init__(self, network: MemoryNetwork, peer_id: Optional[str] = None) -> None:
        super().__init__()
        self.network = network
        self._preferred_id = peer_id

    async def initialize(self, handlers: Optional[PeerEventHandlers] = None) -> str:
        if handlers is not None:
            self._handlers = handlers
        if self._peer_id and self._state == ConnectionState.CONNECTED:
            return self._peer_id

        await self.cleanup()
        self._state = ConnectionState.CONNECTING
        try:
            if not self.network.online:
                raise TransportError("Peer network unavailable")
            peer_id = self._preferred_id or f"peer-{uuid.uuid4().hex[:12]}"
            self.network._register(self, peer_id)
        except TransportError as exc:
            self._state = ConnectionState.ERROR
            logger.error("Peer setup failed: %s", exc)
            if self._handlers.on_error:
                self._handlers.on_error(exc)
            raise

        self._peer_id = peer_id
        self._state = ConnectionState.CONNECTED
        logger.info("Connected with ID: %s", peer_id)
        if self._handlers.on_open:
            self._handlers.on_open(peer_id)
        return peer_id

    async def connect_to_peer(self, remote_peer_id: str) -> None:
        self_id = self._require_initialized()
        existing = self._links.get(remote_peer_id)
        if existing is not None and existing.open:
            return

        remote = self.network.lookup(remote_peer_id)
        if remote is None or remote.state != ConnectionState.CONNECTED:
            raise TransportError(f"Could not connect to peer {remote_peer_id}")

        local = _MemoryLink(self.network._channel(self_id, remote_peer_id, remote))
        incoming = _MemoryLink(self.network._channel(remote_peer_id, self_id, self))
        local.counterpart = incoming
        incoming.counterpart = local
        self._opened(remote_peer_id, local, inbound=False)
        local._channel.put("open", incoming)

    async def cleanup(self) -> None:
        if self._peer_id is not None:
            self.network._unregister(self._peer_id)
        await super().cleanup()

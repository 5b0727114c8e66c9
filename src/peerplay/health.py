"""Heartbeat-based connection health monitoring.

The host pings every connected guest once per interval. Each guest answers
with a pong that echoes the host's timestamp, which gives the host a
round-trip time measured on its own clock. A guest has no ping of its own: it
treats the arrival of the host's pings as the host's pulse.

A link that dies silently produces no transport event. The timeout check is
the only thing that notices it, and the result is a local inference. Nothing
is sent to the remote side, which reaches the same conclusion from its own
missed heartbeats.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError, computed_field

from .clock import Clock, now_ms
from .logging_config import get_logger
from .models import WireModel
from .protocol import Envelope, HeartbeatPayload, MessageType
from .settings import PING_INTERVAL_MS, TIMEOUT_MS
from .transport.base import PeerTransport

logger = get_logger(__name__)

EXCELLENT_BELOW_MS = 100
GOOD_BELOW_MS = 300
CHECK_INTERVAL_MS = 1000


class ConnectionQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"
    DISCONNECTED = "disconnected"


QUALITY_LABELS: Dict[ConnectionQuality, str] = {
    ConnectionQuality.EXCELLENT: "ดีมาก",
    ConnectionQuality.GOOD: "ดี",
    ConnectionQuality.POOR: "ไม่เสถียร",
    ConnectionQuality.DISCONNECTED: "ขาดการเชื่อมต่อ",
}


def calculate_quality(latency_ms: float, is_connected: bool) -> ConnectionQuality:
    if not is_connected:
        return ConnectionQuality.DISCONNECTED
    if latency_ms < EXCELLENT_BELOW_MS:
        return ConnectionQuality.EXCELLENT
    if latency_ms < GOOD_BELOW_MS:
        return ConnectionQuality.GOOD
    return ConnectionQuality.POOR


class ConnectionStatus(WireModel):
    """One observer's view of one remote peer."""

    peer_id: str
    last_ping_at: int = 0
    last_pong_at: int = 0
    latency_ms: int = 0
    is_connected: bool = True

    @computed_field  # type: ignore[prop-decorator]
    @property
    def quality(self) -> ConnectionQuality:
        return calculate_quality(self.latency_ms, self.is_connected)


@dataclass(frozen=True)
class HealthSummary:
    is_connected: bool
    quality: ConnectionQuality
    latency_ms: int


StatusListener = Callable[[str, ConnectionStatus], None]


class ConnectionMonitor:
    def __init__(
        self,
        transport: PeerTransport,
        *,
        ping_interval_ms: int = PING_INTERVAL_MS,
        timeout_ms: int = TIMEOUT_MS,
        check_interval_ms: int = CHECK_INTERVAL_MS,
        clock: Clock = now_ms,
    ) -> None:
        self.transport = transport
        self.ping_interval_ms = ping_interval_ms
        self.timeout_ms = timeout_ms
        self.check_interval_ms = check_interval_ms
        self.clock = clock

        self.is_host = False
        # Guest view of the host.
        self.host_status: Optional[ConnectionStatus] = None
        # Host view of every guest, keyed by peer id.
        self.peer_statuses: Dict[str, ConnectionStatus] = {}

        self._listeners: List[StatusListener] = []
        self._unsubscribers: List[Callable[[], None]] = []
        self._ping_task: Optional[asyncio.Task] = None
        self._timeout_task: Optional[asyncio.Task] = None

    # ---- lifecycle ----

    @property
    def running(self) -> bool:
        return self._ping_task is not None or self._timeout_task is not None

    def attach(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.transport.on_message(MessageType.PING, self._on_ping),
            self.transport.on_message(MessageType.PONG, self._on_pong),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def start(self, is_host: bool) -> None:
        """Start heartbeating in the given role; a no-op if already running."""

        self.attach()
        if self.running and self.is_host == is_host:
            return
        self.stop()
        self.is_host = is_host
        loop = asyncio.get_running_loop()
        if is_host:
            self._ping_task = loop.create_task(self._ping_loop())
        else:
            self._timeout_task = loop.create_task(self._timeout_loop())
        logger.debug("Heartbeat started as %s", "host" if is_host else "guest")

    def stop(self) -> None:
        for task in (self._ping_task, self._timeout_task):
            if task is not None:
                task.cancel()
        self._ping_task = None
        self._timeout_task = None

    def reset(self) -> None:
        self.stop()
        self.detach()
        self.host_status = None
        self.peer_statuses = {}

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval_ms / 1000)
            self.ping_peers()

    async def _timeout_loop(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval_ms / 1000)
            self.check_timeouts()

    # ---- host side ----

    def ping_peers(self) -> None:
        """One host tick: ping every connected peer, then look for timeouts."""

        timestamp = self.clock()
        for peer_id in self.transport.connected_peers:
            self.transport.send(peer_id, MessageType.PING, {"timestamp": timestamp})
            existing = self.peer_statuses.get(peer_id)
            if existing is None:
                # First contact gets a full timeout window before a pong is due.
                self.peer_statuses[peer_id] = ConnectionStatus(
                    peer_id=peer_id, last_ping_at=timestamp, last_pong_at=timestamp
                )
            else:
                self.peer_statuses[peer_id] = existing.model_copy(
                    update={"last_ping_at": timestamp}
                )
        self.check_timeouts()

    def handle_pong(self, peer_id: str, timestamp: int) -> ConnectionStatus:
        now = self.clock()
        existing = self.peer_statuses.get(peer_id)
        status = ConnectionStatus(
            peer_id=peer_id,
            last_ping_at=existing.last_ping_at if existing else now,
            last_pong_at=now,
            latency_ms=max(0, now - timestamp),
            is_connected=True,
        )
        self.peer_statuses[peer_id] = status
        self._notify_if_changed(peer_id, existing, status)
        return status

    def forget(self, peer_id: str) -> None:
        self.peer_statuses.pop(peer_id, None)

    # ---- guest side ----

    def handle_ping(self, host_peer_id: str, timestamp: int) -> ConnectionStatus:
        now = self.clock()
        previous = self.host_status
        status = ConnectionStatus(
            peer_id=host_peer_id,
            last_ping_at=now,
            last_pong_at=now,
            latency_ms=max(0, now - timestamp),
            is_connected=True,
        )
        self.host_status = status
        # Echo the host's own timestamp so its RTT maths stays on one clock.
        self.transport.send(host_peer_id, MessageType.PONG, {"timestamp": timestamp})
        self._notify_if_changed(host_peer_id, previous, status)
        return status

    # ---- both ----

    def check_timeouts(self) -> None:
        now = self.clock()

        host = self.host_status
        if host is not None and host.is_connected and now - host.last_ping_at > self.timeout_ms:
            self.host_status = host.model_copy(update={"is_connected": False})
            logger.info("No heartbeat from host %s for %d ms", host.peer_id, now - host.last_ping_at)
            self._notify(host.peer_id, self.host_status)

        for peer_id, status in list(self.peer_statuses.items()):
            if status.is_connected and now - status.last_pong_at > self.timeout_ms:
                lost = status.model_copy(update={"is_connected": False})
                self.peer_statuses[peer_id] = lost
                logger.info("No pong from %s for %d ms", peer_id, now - status.last_pong_at)
                self._notify(peer_id, lost)

    def status_for(self, peer_id: str) -> Optional[ConnectionStatus]:
        if self.is_host:
            return self.peer_statuses.get(peer_id)
        if self.host_status is not None and self.host_status.peer_id == peer_id:
            return self.host_status
        return None

    @property
    def has_disconnected_peers(self) -> bool:
        return any(not s.is_connected for s in self.peer_statuses.values())

    def summary(self, is_host: bool, in_room: bool = True) -> HealthSummary:
        if not in_room:
            return HealthSummary(False, ConnectionQuality.DISCONNECTED, 0)
        if is_host:
            return HealthSummary(True, ConnectionQuality.EXCELLENT, 0)
        if self.host_status is not None:
            return HealthSummary(
                self.host_status.is_connected,
                self.host_status.quality,
                self.host_status.latency_ms,
            )
        # No ping yet: assume connected until proven otherwise.
        return HealthSummary(True, ConnectionQuality.GOOD, 0)

    # ---- internals ----

    def _on_ping(self, envelope: Envelope, sender_id: str) -> None:
        if self.is_host:
            return
        try:
            payload = HeartbeatPayload.model_validate(envelope.payload)
        except ValidationError:
            logger.warning("Bad ping payload from %s", sender_id)
            return
        self.handle_ping(sender_id, payload.timestamp)

    def _on_pong(self, envelope: Envelope, sender_id: str) -> None:
        if not self.is_host:
            return
        try:
            payload = HeartbeatPayload.model_validate(envelope.payload)
        except ValidationError:
            logger.warning("Bad pong payload from %s", sender_id)
            return
        self.handle_pong(sender_id, payload.timestamp)

    def _notify_if_changed(
        self,
        peer_id: str,
        previous: Optional[ConnectionStatus],
        current: ConnectionStatus,
    ) -> None:
        if (
            previous is None
            or previous.is_connected != current.is_connected
            or previous.quality != current.quality
        ):
            self._notify(peer_id, current)

    def _notify(self, peer_id: str, status: ConnectionStatus) -> None:
        for listener in list(self._listeners):
            listener(peer_id, status)

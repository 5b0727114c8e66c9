"""Shared fixtures: an in-memory peer network and peer session factory."""

from __future__ import annotations

import random
from typing import Callable, List, Optional

import pytest

from peerplay.controller import PeerSession
from peerplay.models import UserProfile
from peerplay.settings import Settings
from peerplay.storage import MemorySessionStorage, SessionStorage
from peerplay.transport import MemoryNetwork, MemoryTransport

# Heartbeat loops are driven by hand in tests, so their real intervals are huge.
FAST = Settings(
    ping_interval_ms=600_000,
    timeout_ms=3000,
    join_timeout_ms=200,
    connect_timeout_ms=200,
    start_delay_ms=10,
    reconnect_grace_ms=50,
)


class FakeClock:
    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_000)


@pytest.fixture
async def network():
    net = MemoryNetwork()
    yield net
    await net.shutdown()


PeerFactory = Callable[..., PeerSession]


@pytest.fixture
async def make_peer(network):
    sessions: List[PeerSession] = []

    def factory(
        name: str,
        *,
        clock: Optional[Callable[[], int]] = None,
        storage: Optional[SessionStorage] = None,
        settings: Settings = FAST,
        user_id: Optional[str] = None,
        peer_id: Optional[str] = None,
    ) -> PeerSession:
        transport = MemoryTransport(network, peer_id=peer_id or f"peer-{name}")
        user = UserProfile(id=user_id or f"user-{name}", nickname=name, avatar="🎮")
        kwargs = {"clock": clock} if clock is not None else {}
        session = PeerSession(
            transport,
            user,
            settings=settings,
            storage=storage or MemorySessionStorage(),
            rng=random.Random(7),
            **kwargs,
        )
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        await session.close()

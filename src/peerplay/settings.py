"""Runtime configuration read from ``PEERPLAY_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

PING_INTERVAL_MS = 1000
TIMEOUT_MS = 3000
JOIN_TIMEOUT_MS = 10_000
CONNECT_TIMEOUT_MS = 10_000
START_DELAY_MS = 1000
RECONNECT_GRACE_MS = 10_000


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8765
    # Address other peers dial; defaults to ``host`` unless that is a wildcard.
    advertise_host: Optional[str] = None
    ping_interval_ms: int = PING_INTERVAL_MS
    timeout_ms: int = TIMEOUT_MS
    join_timeout_ms: int = JOIN_TIMEOUT_MS
    connect_timeout_ms: int = CONNECT_TIMEOUT_MS
    start_delay_ms: int = START_DELAY_MS
    reconnect_grace_ms: int = RECONNECT_GRACE_MS
    session_file: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("PEERPLAY_HOST", "0.0.0.0"),
            port=int(env.get("PEERPLAY_PORT", "8765")),
            advertise_host=env.get("PEERPLAY_ADVERTISE_HOST") or None,
            ping_interval_ms=int(env.get("PEERPLAY_PING_INTERVAL_MS", PING_INTERVAL_MS)),
            timeout_ms=int(env.get("PEERPLAY_TIMEOUT_MS", TIMEOUT_MS)),
            join_timeout_ms=int(env.get("PEERPLAY_JOIN_TIMEOUT_MS", JOIN_TIMEOUT_MS)),
            connect_timeout_ms=int(
                env.get("PEERPLAY_CONNECT_TIMEOUT_MS", CONNECT_TIMEOUT_MS)
            ),
            start_delay_ms=int(env.get("PEERPLAY_START_DELAY_MS", START_DELAY_MS)),
            reconnect_grace_ms=int(
                env.get("PEERPLAY_RECONNECT_GRACE_MS", RECONNECT_GRACE_MS)
            ),
            session_file=env.get("PEERPLAY_SESSION_FILE") or None,
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_file=env.get("LOG_FILE") or None,
        )

    def with_overrides(self, **changes: object) -> "Settings":
        """Return a copy with every non-``None`` override applied."""

        return replace(self, **{k: v for k, v in changes.items() if v is not None})

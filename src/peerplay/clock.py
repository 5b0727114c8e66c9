"""Millisecond wall-clock helpers shared by every service."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Return the current epoch time in whole milliseconds."""

    return int(time.time() * 1000)

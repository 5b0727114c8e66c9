"""Game rule engines and their registry."""

from .base import (
    GameEngine,
    GamePlayer,
    GameSnapshot,
    available_engines,
    base_state,
    get_engine,
    mark_active,
    register_engine,
)
from . import connect_four, tictactoe

DEFAULT_GAME = tictactoe.SLUG
DEFAULT_ENGINE = tictactoe.ENGINE

__all__ = [
    "DEFAULT_ENGINE",
    "DEFAULT_GAME",
    "GameEngine",
    "GamePlayer",
    "GameSnapshot",
    "available_engines",
    "base_state",
    "connect_four",
    "get_engine",
    "mark_active",
    "register_engine",
    "tictactoe",
]

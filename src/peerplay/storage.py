"""Persistence of the ``{room, isHost, isInRoom}`` triple across restarts."""

from __future__ import annotations

import abc
import json
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .logging_config import get_logger
from .models import Room, WireModel

logger = get_logger(__name__)


class PersistedRoom(WireModel):
    room: Optional[Room] = None
    is_host: bool = False
    is_in_room: bool = False


class SessionStorage(abc.ABC):
    @abc.abstractmethod
    def load(self) -> Optional[PersistedRoom]:
        ...

    @abc.abstractmethod
    def save(self, state: PersistedRoom) -> None:
        ...

    @abc.abstractmethod
    def clear(self) -> None:
        ...


class MemorySessionStorage(SessionStorage):
    def __init__(self) -> None:
        self._data: Optional[str] = None

    def load(self) -> Optional[PersistedRoom]:
        if self._data is None:
            return None
        return PersistedRoom.model_validate_json(self._data)

    def save(self, state: PersistedRoom) -> None:
        # Stored serialized so later mutations of the live room do not leak in.
        self._data = state.model_dump_json(by_alias=True)

    def clear(self) -> None:
        self._data = None


class FileSessionStorage(SessionStorage):
    """Keeps the triple in a JSON file; a corrupt file reads as empty."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)

    def load(self) -> Optional[PersistedRoom]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return PersistedRoom.model_validate(json.loads(text))
        except (ValueError, ValidationError):
            logger.warning("Ignoring unreadable session file %s", self.path)
            return None

    def save(self, state: PersistedRoom) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(state.to_wire(), ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

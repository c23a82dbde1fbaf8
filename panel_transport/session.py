"""Session Store: holds the current credential pair over a pluggable key-value backend."""
from __future__ import annotations

import json
import os
import platform
from collections.abc import Iterator, MutableMapping
from pathlib import Path

from pydantic import ValidationError

from .logging_conf import get_logger
from .types import CredentialPair

__all__ = ["SessionStore", "JsonFileBackend", "SESSION_KEY"]

SESSION_KEY = "panel.session"

logger = get_logger("panel_transport.session")


class JsonFileBackend(MutableMapping[str, str]):
    """Key-value backend persisted as one JSON object on disk.

    The parent directory is created 0700 and the file written 0600 on
    POSIX systems. A missing or unreadable file reads as empty.
    """

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)
        parent = self.path.parent
        if not parent.exists():
            parent.mkdir(parents=True, exist_ok=True)
            if platform.system() != "Windows":
                os.chmod(parent, 0o700)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, data: dict[str, str]) -> None:
        self.path.write_text(json.dumps(data, indent=2))
        if platform.system() != "Windows":
            os.chmod(self.path, 0o600)

    def __getitem__(self, key: str) -> str:
        return self._load()[key]

    def __setitem__(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def __delitem__(self, key: str) -> None:
        data = self._load()
        del data[key]
        self._dump(data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._load())

    def __len__(self) -> int:
        return len(self._load())


class SessionStore:
    """get/set/clear for the single current CredentialPair.

    Only the transport client mutates it; any MutableMapping works as backend.
    """

    def __init__(self, backend: MutableMapping[str, str] | None = None, key: str = SESSION_KEY):
        self._backend = backend if backend is not None else {}
        self._key = key

    def get(self) -> CredentialPair | None:
        raw = self._backend.get(self._key)
        if raw is None:
            return None
        try:
            return CredentialPair.model_validate_json(raw)
        except ValidationError:
            logger.warning("session.unreadable", extra={"event": "session_unreadable"})
            return None

    def set(self, pair: CredentialPair) -> None:
        self._backend[self._key] = pair.model_dump_json()

    def clear(self) -> None:
        self._backend.pop(self._key, None)

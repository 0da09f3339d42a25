"""
Durable key/value storage for wizard progress.

Progress (visited steps, sticky completion flags) must survive client
restarts, so it is kept behind a small get/set/delete capability that
can be backed by a JSON file or, in tests, an in-memory dict.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class PersistentStore(Protocol):
    """Minimal durable string store."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


def get_bool(store: PersistentStore, key: str) -> bool:
    """Read a boolean flag. Anything but "1" is False."""
    return store.get(key) == "1"


def set_bool(store: PersistentStore, key: str, value: bool) -> None:
    """Write a boolean flag. False removes the key."""
    if value:
        store.set(key, "1")
    else:
        store.delete(key)


class MemoryStore:
    """In-memory store, used for tests and dry runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def to_dict(self) -> dict[str, str]:
        return dict(self._data)


class FileStore:
    """
    JSON-file backed store.

    The whole file is rewritten atomically on every change. A missing or
    unreadable file starts an empty store instead of failing.
    """

    def __init__(self, path: Path):
        self._path = Path(path).expanduser()
        self._data: dict[str, str] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._data.get(key) == value:
            return
        self._data[key] = value
        self._save()

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        del self._data[key]
        self._save()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        try:
            raw = json.loads(self._path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read wizard state {self._path}: {e}")
            return {}

        if not isinstance(raw, dict):
            logger.warning(f"Ignoring malformed wizard state in {self._path}")
            return {}

        return {str(k): str(v) for k, v in raw.items()}

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        # Write atomically
        temp_path = self._path.with_suffix(".json.tmp")
        temp_path.write_text(json.dumps(self._data, indent=2, sort_keys=True))
        temp_path.replace(self._path)

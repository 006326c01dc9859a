"""Key-value persistence port with in-memory and JSON-file implementations.

History, session and settings data are stored through this interface
instead of touching a global store directly, so every consumer can be
tested against ``InMemoryStore``.
"""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal key-value store holding JSON-compatible values."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def clear(self) -> None: ...

    def keys(self) -> Iterator[str]: ...


class InMemoryStore:
    """Dict-backed store. Values are deep-copied in and out like a real store."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


class JsonFileStore:
    """Persistent store kept as a single JSON object on disk.

    The file is loaded once at construction; every mutation rewrites it
    atomically (temporary file in the same directory, then replace).
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, Any] = {}

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.debug("Could not ensure directory for store: %s", self._path.parent)

        self.load()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load JSON from disk (if it exists). Corrupt files start empty."""
        with self._lock:
            if not self._path.exists():
                logger.debug("Store file not found; starting empty: %s", self._path)
                self._data = {}
                return

            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to read store %s: %s", self._path, exc)
                self._data = {}
                return

            if not isinstance(data, dict):
                logger.warning("Store %s root is not an object; starting empty", self._path)
                self._data = {}
                return

            self._data = data
            logger.debug("Loaded store %s (%d keys)", self._path, len(self._data))

    def _persist(self) -> None:
        """Write the current data atomically. Called with the lock held."""
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(self._data, tf, ensure_ascii=False)
                tf.flush()
                with contextlib.suppress(OSError):
                    os.fsync(tf.fileno())
            tmp_path.replace(self._path)
        except OSError:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            previous = self._data.get(key)
            had_key = key in self._data
            self._data[key] = copy.deepcopy(value)
            try:
                self._persist()
            except OSError:
                # Keep memory consistent with disk
                if had_key:
                    self._data[key] = previous
                else:
                    self._data.pop(key, None)
                logger.warning("Failed to persist key %s to %s", key, self._path)
                raise

    def delete(self, key: str) -> None:
        with self._lock:
            if key not in self._data:
                return
            del self._data[key]
            self._persist()

    def clear(self) -> None:
        with self._lock:
            self._data = {}
            self._persist()
            logger.info("Cleared store %s", self._path)

    def keys(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._data))

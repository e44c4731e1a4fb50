from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Flat key-value persistence used for timetables and cache metadata."""

    def get_string(self, key: str, default: str | None = None) -> str | None: ...

    def get_int(self, key: str, default: int = 0) -> int: ...

    def get_bool(self, key: str, default: bool = False) -> bool: ...

    def get_string_set(self, key: str) -> set[str] | None: ...

    def put_string(self, key: str, value: str) -> None: ...

    def put_int(self, key: str, value: int) -> None: ...

    def put_bool(self, key: str, value: bool) -> None: ...

    def put_string_set(self, key: str, value: set[str]) -> None: ...

    def remove(self, key: str) -> None: ...

    def contains(self, key: str) -> bool: ...

    def batch(self) -> AbstractContextManager[None]: ...


class MemoryKeyValueStore:
    """In-process store. Values are kept as the plain types they were put as."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()
        self._batch_depth = 0
        self._dirty = False

    def get_string(self, key: str, default: str | None = None) -> str | None:
        value = self._data.get(key)
        return value if isinstance(value, str) else default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._data.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            return default
        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._data.get(key)
        return value if isinstance(value, bool) else default

    def get_string_set(self, key: str) -> set[str] | None:
        value = self._data.get(key)
        if isinstance(value, (set, frozenset, list)):
            return set(value)
        return None

    def put_string(self, key: str, value: str) -> None:
        self._put(key, value)

    def put_int(self, key: str, value: int) -> None:
        self._put(key, int(value))

    def put_bool(self, key: str, value: bool) -> None:
        self._put(key, bool(value))

    def put_string_set(self, key: str, value: set[str]) -> None:
        self._put(key, set(value))

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._mark_changed()

    def contains(self, key: str) -> bool:
        return key in self._data

    def keys(self) -> list[str]:
        return sorted(self._data)

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON-serialisable copy (string sets become sorted lists)."""
        with self._lock:
            return {
                k: sorted(v) if isinstance(v, (set, frozenset)) else v
                for k, v in self._data.items()
            }

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Group changes so persistent subclasses write them once, on exit."""
        with self._lock:
            self._batch_depth += 1
        try:
            yield
        finally:
            with self._lock:
                self._batch_depth -= 1
                if self._batch_depth == 0 and self._dirty:
                    self._dirty = False
                    self._changed()

    def _put(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._mark_changed()

    def _mark_changed(self) -> None:
        if self._batch_depth:
            self._dirty = True
        else:
            self._changed()

    def _changed(self) -> None:
        """Hook for persistent subclasses, called with the lock held."""


class JsonFileKeyValueStore(MemoryKeyValueStore):
    """MemoryKeyValueStore written through to a JSON file on every change or batch.

    String sets are stored as ``{"__set__": [...]}`` so they round-trip.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        super().__init__(self._read())

    def _read(self) -> dict[str, Any]:
        if not self._path.is_file():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable key-value file %s: %s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {
            k: set(v["__set__"]) if isinstance(v, dict) and "__set__" in v else v
            for k, v in raw.items()
        }

    def _changed(self) -> None:
        encoded = {
            k: {"__set__": sorted(v)} if isinstance(v, (set, frozenset)) else v
            for k, v in self._data.items()
        }
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(encoded, ensure_ascii=False, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            logger.warning("Failed to persist key-value file %s: %s", self._path, exc)

from __future__ import annotations

import logging
import os
import shutil
import uuid
from pathlib import Path

from transit_mcp.domain.exceptions import CacheIOError

logger = logging.getLogger(__name__)

CACHE_DIR_NAME = "ODPTCache"


class BlobCache:
    """Durable key -> bytes and key -> directory store.

    Values are replaced atomically (write to ``<key>.tmp`` then rename), so a
    reader never observes a partially written value. There is no eviction:
    entries live until overwritten or the storage is cleared externally.
    I/O failures are logged and reported as a miss, never raised.
    """

    def __init__(self, root: Path, name: str = CACHE_DIR_NAME) -> None:
        self._dir = Path(root) / name

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        # Keys are flat file names inside the cache directory
        return self._dir / key.replace("/", "_")

    def load(self, key: str) -> bytes | None:
        """Return cached bytes for key, or None when missing or unreadable."""
        try:
            return self._read(self._path(key))
        except CacheIOError as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    def save(self, data: bytes, key: str) -> bool:
        """Atomically store data under key. Returns False when the write failed."""
        target = self._path(key)
        tmp = target.with_name(target.name + ".tmp")
        try:
            self._write_replace(data, tmp, target)
        except CacheIOError as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)
            tmp.unlink(missing_ok=True)
            return False
        logger.debug("Cached %d bytes under %s", len(data), key)
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def directory_path(self, name: str) -> Path:
        return self._path(name)

    def directory_exists(self, name: str) -> bool:
        return self._path(name).is_dir()

    def save_directory(self, source: Path, name: str) -> bool:
        """Replace the cached directory name with a copy of source.

        The copy is staged next to the target and renamed into place, so the
        old tree is removed before the new one becomes visible and contents
        are never merged. Not safe for two writers on the same name.
        """
        target = self._path(name)
        staging = target.with_name(f"{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            self._copy_replace(Path(source), staging, target)
        except CacheIOError as exc:
            logger.warning("Cache directory write failed for %s: %s", name, exc)
            shutil.rmtree(staging, ignore_errors=True)
            return False
        logger.debug("Cached directory %s", name)
        return True

    def load_directory_path(self, name: str) -> Path | None:
        target = self._path(name)
        return target if target.is_dir() else None

    def remove(self, key: str) -> None:
        """Delete a cached file or directory; missing entries are ignored."""
        target = self._path(key)
        try:
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Cache remove failed for %s: %s", key, exc)

    # ------------------------------------------------------------------

    def _read(self, path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheIOError(str(exc)) from exc

    def _write_replace(self, data: bytes, tmp: Path, target: Path) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, target)
        except OSError as exc:
            raise CacheIOError(str(exc)) from exc

    def _copy_replace(self, source: Path, staging: Path, target: Path) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, staging)
            if target.exists():
                shutil.rmtree(target)
            os.replace(staging, target)
        except OSError as exc:
            raise CacheIOError(str(exc)) from exc

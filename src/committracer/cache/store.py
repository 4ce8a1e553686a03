"""Persistent key -> boolean store backed by diskcache."""

import shutil
import sqlite3
import threading
from pathlib import Path
from typing import Optional, Set

import structlog
from diskcache import Cache, Timeout

from committracer.exceptions import StoreCorruptedError, StoreError, StoreInUseError

logger = structlog.get_logger(__name__)

# Directories currently held open in this process.
_open_paths: Set[Path] = set()
_open_paths_lock = threading.Lock()


class PersistentFlagStore:
    """On-disk map of string keys to booleans.

    Each ``put`` is committed as its own SQLite transaction, so an abrupt exit
    can lose recent writes but never leaves a half-written entry. A directory
    may only be opened by one instance at a time.
    """

    def __init__(self, path: Path, cache: Cache) -> None:
        """Initialize the store. Use :meth:`open` instead of calling directly.

        Args:
            path: Store directory
            cache: Opened diskcache instance
        """
        self.path = path
        self._cache: Optional[Cache] = cache

    @classmethod
    def open(cls, path: Path) -> "PersistentFlagStore":
        """Open (or create) the store at ``path``.

        Args:
            path: Store directory

        Returns:
            Opened store

        Raises:
            StoreInUseError: If another instance holds the directory
            StoreCorruptedError: If the store files cannot be opened or read
        """
        path = Path(path).resolve()
        with _open_paths_lock:
            if path in _open_paths:
                raise StoreInUseError(f"Store already open: {path}")
            _open_paths.add(path)

        cache = None
        try:
            cache = Cache(str(path))
            # Touch the table so a damaged database fails here, not on first use
            len(cache)
        except (sqlite3.DatabaseError, OSError) as e:
            if cache is not None:
                cache.close()
            cls._release(path)
            raise StoreCorruptedError(f"Cannot open store at {path}: {e}") from e

        logger.debug("store_opened", path=str(path))
        return cls(path, cache)

    @staticmethod
    def delete_files(path: Path) -> None:
        """Remove all files of the store at ``path``.

        Raises:
            StoreInUseError: If the store is currently open
        """
        path = Path(path).resolve()
        with _open_paths_lock:
            if path in _open_paths:
                raise StoreInUseError(f"Cannot delete an open store: {path}")
        if path.exists():
            shutil.rmtree(path)
            logger.info("store_deleted", path=str(path))

    @property
    def is_open(self) -> bool:
        return self._cache is not None

    def get(self, key: str) -> Optional[bool]:
        """Get the stored flag for ``key``.

        Returns:
            The flag, or None if the key is absent

        Raises:
            StoreError: If the store is closed or cannot be read
        """
        cache = self._require_open()
        try:
            value = cache.get(key, default=None)
        except (sqlite3.Error, Timeout) as e:
            raise StoreError(f"Read failed for {key}: {e}") from e
        return None if value is None else bool(value)

    def put(self, key: str, value: bool) -> None:
        """Store the flag for ``key``.

        Raises:
            StoreError: If the store is closed or cannot be written
        """
        cache = self._require_open()
        try:
            cache.set(key, bool(value))
        except (sqlite3.Error, Timeout) as e:
            raise StoreError(f"Write failed for {key}: {e}") from e

    def clear(self) -> int:
        """Remove all entries.

        Returns:
            Number of removed entries
        """
        cache = self._require_open()
        try:
            return cache.clear()
        except (sqlite3.Error, Timeout) as e:
            raise StoreError(f"Clear failed: {e}") from e

    def __len__(self) -> int:
        cache = self._require_open()
        try:
            return len(cache)
        except (sqlite3.Error, Timeout) as e:
            raise StoreError(f"Count failed: {e}") from e

    def flush(self) -> None:
        """Force pending writes into the main database file.

        Closing the connection checkpoints the write-ahead log; diskcache
        reconnects lazily on the next operation.
        """
        if self._cache is not None:
            self._cache.close()

    def close(self) -> None:
        """Flush and release the store directory."""
        if self._cache is None:
            return
        self._cache.close()
        self._cache = None
        self._release(self.path)
        logger.debug("store_closed", path=str(self.path))

    def _require_open(self) -> Cache:
        if self._cache is None:
            raise StoreError(f"Store is closed: {self.path}")
        return self._cache

    @staticmethod
    def _release(path: Path) -> None:
        with _open_paths_lock:
            _open_paths.discard(path)

    def __enter__(self) -> "PersistentFlagStore":
        return self

    def __exit__(self, *args) -> None:
        self.close()

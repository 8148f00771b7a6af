"""Pluggable key/value storage backends.

Pending requests and issued tokens must survive the full navigation
boundary between initiating a flow and processing its redirect, so both
stores sit on top of a string key/value collaborator. Provides the
StorageBackend ABC and in-memory, JSON-file and Redis implementations.
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
import threading

from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from .exceptions import StorageError
from .log import module_logger


if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

if TYPE_CHECKING:
    from collections.abc import Iterator


logger = module_logger("storage")


class StorageBackend(ABC):
    """Abstract string key/value store.

    Implementations must make ``take`` a single atomic read-and-delete so
    a redirect can never be replayed against the same pending request.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Get the value stored under ``key``.

        Parameters
        ----------
        key : str
            The storage key.

        Returns
        -------
        str or None
            The stored value, or None if absent.
        """

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value.

        Parameters
        ----------
        key : str
            The storage key.
        value : str
            The value to persist.
        """

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove ``key``. Removing a missing key is not an error.

        Parameters
        ----------
        key : str
            The storage key.
        """

    @abstractmethod
    def enumerate(self, prefix: str) -> list[str]:
        """List all keys starting with ``prefix``.

        Parameters
        ----------
        prefix : str
            Key namespace to enumerate.

        Returns
        -------
        list[str]
            Matching keys, sorted.
        """

    @abstractmethod
    def take(self, key: str) -> str | None:
        """Atomically get and remove ``key``.

        Parameters
        ----------
        key : str
            The storage key.

        Returns
        -------
        str or None
            The value that was stored, or None if absent.
        """

    def add(self, key: str, value: str) -> bool:
        """Store ``value`` only if ``key`` is absent.

        Returns
        -------
        bool
            True if the value was written.
        """
        if self.get(key) is not None:
            return False
        self.set(key, value)
        return True


class MemoryStorage(StorageBackend):
    """In-memory storage for tests and single-process hosts.

    Does not survive a process restart; use FileStorage or RedisStorage
    when the redirect may land in a new process.
    """

    def __init__(self) -> None:
        """Initialize the memory storage."""
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        """Get a value from memory."""
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        """Store a value in memory."""
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        """Remove a value from memory."""
        with self._lock:
            self._data.pop(key, None)

    def enumerate(self, prefix: str) -> list[str]:
        """List keys in memory with the given prefix."""
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def take(self, key: str) -> str | None:
        """Pop a value from memory."""
        with self._lock:
            return self._data.pop(key, None)

    def add(self, key: str, value: str) -> bool:
        """Store a value in memory if the key is free."""
        with self._lock:
            if key in self._data:
                return False
            self._data[key] = value
            return True


def _lock_exclusive(fh: IO[bytes]) -> None:
    """Block until this process holds the OS lock on ``fh``."""
    if sys.platform == "win32":
        fh.seek(0)
        msvcrt.locking(fh.fileno(), msvcrt.LK_LOCK, 1)
    else:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX)


def _unlock(fh: IO[bytes]) -> None:
    if sys.platform == "win32":
        fh.seek(0)
        msvcrt.locking(fh.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


class FileStorage(StorageBackend):
    """JSON-file storage that survives process restarts.

    The whole file is re-read for every operation so that separate
    processes sharing the file observe each other's writes. Writes go to
    a temporary file that atomically replaces the original, and every
    read-modify-write (``set``, ``remove``, ``take``, ``add``) holds an
    exclusive OS lock on a ``<name>.lock`` file next to it, so a pending
    request taken by one process is never seen by another.

    Parameters
    ----------
    path : str or Path
        Location of the JSON file (created on first write).
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the file storage."""
        self._path = Path(path).expanduser()
        self._lock_path = self._path.with_name(f"{self._path.name}.lock")
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        """The backing file."""
        return self._path

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the thread lock and the inter-process file lock."""
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                fh = self._lock_path.open("a+b")
            except OSError as exc:
                msg = f"Could not open storage lock file: {exc}"
                raise StorageError(msg, path=str(self._lock_path)) from exc
            with fh:
                _lock_exclusive(fh)
                try:
                    yield
                finally:
                    _unlock(fh)

    def _read(self) -> dict[str, str]:
        """Load the backing file (empty when it does not exist yet)."""
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            msg = f"Could not read storage file: {exc}"
            raise StorageError(msg, path=str(self._path)) from exc
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            msg = "Storage file is not valid JSON"
            raise StorageError(msg, path=str(self._path)) from exc
        if not isinstance(data, dict):
            msg = "Storage file must contain a JSON object"
            raise StorageError(msg, path=str(self._path))
        return data

    def _write(self, data: dict[str, str]) -> None:
        """Atomically replace the backing file."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        except OSError as exc:
            Path(tmp).unlink(missing_ok=True)
            msg = f"Could not write storage file: {exc}"
            raise StorageError(msg, path=str(self._path)) from exc

    def get(self, key: str) -> str | None:
        """Get a value from the file."""
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        """Store a value in the file."""
        with self._exclusive():
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        """Remove a value from the file."""
        with self._exclusive():
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def enumerate(self, prefix: str) -> list[str]:
        """List keys in the file with the given prefix."""
        with self._lock:
            return sorted(k for k in self._read() if k.startswith(prefix))

    def take(self, key: str) -> str | None:
        """Pop a value from the file."""
        with self._exclusive():
            data = self._read()
            value = data.pop(key, None)
            if value is not None:
                self._write(data)
            return value

    def add(self, key: str, value: str) -> bool:
        """Store a value in the file if the key is free."""
        with self._exclusive():
            data = self._read()
            if key in data:
                return False
            data[key] = value
            self._write(data)
            return True


class RedisStorage(StorageBackend):
    """Redis-backed storage for hosts sharing state across processes.

    ``take`` uses ``GETDEL`` (Redis 6.2+), so read-once semantics hold
    even when several workers process redirects concurrently.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "tokenflow").
    pool_size : int
        Connection pool size (default 10).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "tokenflow",
        pool_size: int = 10,
    ) -> None:
        """Initialize the Redis storage."""
        try:
            from redis import Redis as RedisClient
        except ImportError:
            msg = "Redis backend requires the 'redis' package. Install with: pip install tokenflow[redis]"
            raise ImportError(msg) from None

        self._prefix = f"{prefix}:"
        self._redis: Any = RedisClient.from_url(
            redis_url,
            max_connections=pool_size,
            decode_responses=True,
        )

    def _key(self, key: str) -> str:
        """Build a Redis key with prefix."""
        return f"{self._prefix}{key}"

    def get(self, key: str) -> str | None:
        """Get a value from Redis."""
        return self._redis.get(self._key(key))  # type: ignore[no-any-return]

    def set(self, key: str, value: str) -> None:
        """Store a value in Redis."""
        self._redis.set(self._key(key), value)

    def remove(self, key: str) -> None:
        """Delete a value from Redis."""
        self._redis.delete(self._key(key))

    def enumerate(self, prefix: str) -> list[str]:
        """List keys in Redis with the given prefix."""
        pattern = _escape_glob(self._key(prefix)) + "*"
        prefix_len = len(self._prefix)
        return sorted(k[prefix_len:] for k in self._redis.scan_iter(match=pattern))

    def take(self, key: str) -> str | None:
        """Atomically get and delete a value in Redis."""
        return self._redis.getdel(self._key(key))  # type: ignore[no-any-return]

    def add(self, key: str, value: str) -> bool:
        """Store a value in Redis if the key is free (``SET NX``)."""
        return bool(self._redis.set(self._key(key), value, nx=True))


def _escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters in a literal key prefix."""
    return "".join(f"\\{c}" if c in "*?[]\\" else c for c in value)


def create_storage(backend: str = "memory", **kwargs: Any) -> StorageBackend:
    """Build a new storage backend.

    Parameters
    ----------
    backend : str
        Storage backend: "memory", "file", or "redis".
    **kwargs : Any
        Backend options (``path`` for file; ``redis_url``, ``prefix`` and
        ``pool_size`` for redis).

    Returns
    -------
    StorageBackend
        A configured storage backend.
    """
    logger.debug("Creating %s storage backend", backend)
    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        path = kwargs.get("path") or "~/.config/tokenflow/storage.json"
        return FileStorage(path)
    if backend == "redis":
        return RedisStorage(
            redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
            prefix=kwargs.get("prefix", "tokenflow"),
            pool_size=kwargs.get("pool_size", 10),
        )
    msg = f"Unknown storage backend: {backend}"
    raise ValueError(msg)

"""Physical key/value storage backends.

A backend is a flat string-to-string store. Backends are synchronous; the
storage engine moves calls off the event loop with asyncio.to_thread.

Backends:
- MemoryBackend: dict-backed, with an optional byte quota
- FileBackend: one file per key, written atomically via temp file + rename
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import errno
import fcntl
import os
from pathlib import Path
from threading import RLock
from typing import Protocol, runtime_checkable
from urllib.parse import quote, unquote

from statevault.core.errors import PersistenceError, StorageQuotaExceeded
from statevault.observability.logging import get_logger

log = get_logger(__name__)

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


@runtime_checkable
class StorageBackend(Protocol):
    """Flat key/value medium consumed by DurableStorageEngine."""

    def get_item(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        ...

    def set_item(self, key: str, value: str) -> None:
        """Store a value. Raises StorageQuotaExceeded when out of space."""
        ...

    def remove_item(self, key: str) -> None:
        """Remove a key. Removing an absent key is not an error."""
        ...

    def keys(self) -> list[str]:
        """Return all stored keys."""
        ...

    def size_of(self, key: str) -> int:
        """Return the stored size of a key in bytes, 0 if absent."""
        ...


def _encoded_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class MemoryBackend:
    """In-process backend holding values in a dict.

    Args:
        quota_bytes: Optional capacity; writes that would exceed it raise
            StorageQuotaExceeded and leave the store unchanged.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self._quota_bytes = quota_bytes
        self._lock = RLock()

    @property
    def quota_bytes(self) -> int | None:
        return self._quota_bytes

    def used_bytes(self) -> int:
        with self._lock:
            return sum(_encoded_size(k, v) for k, v in self._items.items())

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            if self._quota_bytes is not None:
                current = self._items.get(key)
                used = self.used_bytes()
                if current is not None:
                    used -= _encoded_size(key, current)
                if used + _encoded_size(key, value) > self._quota_bytes:
                    raise StorageQuotaExceeded(
                        "Storage quota exceeded",
                        operation="set_item",
                        key=key,
                        details={"quota_bytes": self._quota_bytes, "used_bytes": used},
                    )
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def size_of(self, key: str) -> int:
        with self._lock:
            value = self._items.get(key)
            return 0 if value is None else len(value.encode("utf-8"))


@contextmanager
def _file_lock(lock_path: Path, exclusive: bool = True) -> Iterator[None]:
    """Hold an flock on ``lock_path`` for the duration of the block."""
    with open(lock_path, "a") as lock_file:
        lock_type = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        try:
            fcntl.flock(lock_file.fileno(), lock_type)
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


class FileBackend:
    """Directory-backed store with one file per key.

    Keys are percent-encoded into file names. Writes go to a temp file that is
    fsynced and then renamed over the target, so a reader sees either the old
    or the new value, never a torn one.

    Example:
        backend = FileBackend(Path("~/.statevault/data").expanduser())
        backend.set_item("statevault_main", record_json)
    """

    SUFFIX = ".rec"
    LOCK_NAME = ".lock"

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._lock_path = self._directory / self.LOCK_NAME
        self._lock = RLock()

    @property
    def directory(self) -> Path:
        return self._directory

    def _path_for(self, key: str) -> Path:
        return self._directory / f"{quote(key, safe='')}{self.SUFFIX}"

    def get_item(self, key: str) -> str | None:
        path = self._path_for(key)
        with self._lock, _file_lock(self._lock_path, exclusive=False):
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None

    def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        temp_path = path.with_name(path.name + ".tmp")
        with self._lock, _file_lock(self._lock_path):
            try:
                with open(temp_path, "w", encoding="utf-8") as f:
                    f.write(value)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, path)
            except OSError as e:
                temp_path.unlink(missing_ok=True)
                if e.errno in _QUOTA_ERRNOS:
                    raise StorageQuotaExceeded(
                        f"No space left for key: {key}",
                        operation="set_item",
                        key=key,
                        details={"errno": e.errno},
                    ) from e
                log.error("storage.backend.write_failed", key=key, error=str(e))
                raise PersistenceError(
                    f"Failed to write key: {key}",
                    operation="set_item",
                    key=key,
                    details={"error": str(e)},
                ) from e

    def remove_item(self, key: str) -> None:
        with self._lock, _file_lock(self._lock_path):
            self._path_for(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(
                unquote(path.name[: -len(self.SUFFIX)])
                for path in self._directory.glob(f"*{self.SUFFIX}")
            )

    def size_of(self, key: str) -> int:
        try:
            return self._path_for(key).stat().st_size
        except FileNotFoundError:
            return 0

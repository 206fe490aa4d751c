"""Persistent tier: one file per entry under a cache directory.

Each entry file is named by the SHA-256 hex digest of its key and holds a
fixed 16-byte header followed by the codec payload::

    [expiry: int64 big-endian, epoch milliseconds][cost: uint64][payload]

"Never" is stored as the maximum int64 so expiry comparisons need no special
case.  ``cost`` is the payload length and doubles as a truncation check.

Files are written atomically (temp file in the same directory, then
``os.replace``), so a crash mid-write leaves either the old entry or the new
one.  Reads refresh the file's modification time, which makes
oldest-modified-first eviction a least-recently-used policy.

The layout is an internal detail of this module, not an interchange format.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import struct
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from tiercache.codec import Codec
from tiercache.exceptions import StorageReadError, StorageWriteError
from tiercache.fileio import atomic_write
from tiercache.models import SweepReport

logger = logging.getLogger(__name__)

_HEADER = struct.Struct(">qQ")
_NEVER = 2**63 - 1
_ENTRY_NAME = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class StoredEntry:
    """A decoded disk entry."""

    value: Any
    expires_at: Optional[float]
    cost: int


@dataclass(frozen=True)
class DiskWrite:
    """Outcome of :meth:`DiskTier.set`.

    ``evicted`` holds the entry names (see :func:`entry_name`) removed to
    bring the directory back under its size limit.
    """

    cost: int
    evicted: tuple[str, ...] = ()


def entry_name(key: str) -> str:
    """File name of the entry for *key*."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _to_ms(expires_at: Optional[float]) -> int:
    if expires_at is None:
        return _NEVER
    return max(-_NEVER, min(_NEVER - 1, int(expires_at * 1000)))


def _from_ms(value: int) -> Optional[float]:
    if value == _NEVER:
        return None
    return value / 1000


class DiskTier:
    """Directory-backed cache with a size limit and per-entry expiry.

    The directory is created on the first write.  All operations on the
    directory are serialized by one lock.

    Args:
        directory: Directory holding the entry files.
        codec: Serializes values to the payload bytes.
        max_bytes: Maximum total size of entry files, ``0`` for unlimited.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        directory: Path,
        codec: Codec[Any],
        max_bytes: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._directory = Path(directory)
        self._codec = codec
        self._max_bytes = max_bytes
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    def __len__(self) -> int:
        with self._lock:
            return len(self._entry_paths())

    def total_size(self) -> int:
        """Sum of the sizes of all entry files, in bytes."""
        with self._lock:
            return sum(size for _, size, _ in self._scan())

    # ------------------------------------------------------------------ #
    # Single-entry operations
    # ------------------------------------------------------------------ #

    def set(self, key: str, value: Any, expires_at: Optional[float] = None) -> DiskWrite:
        """Encode and persist *value*.

        Returns:
            The payload size (the entry's cost) and the names of entries
            evicted by the size limit.

        Raises:
            EncodingError: The codec cannot represent *value*.
            StorageWriteError: The entry file could not be written.
        """
        payload = self._codec.encode(value)
        path = self._path(key)
        with self._lock:
            try:
                atomic_write(path, _HEADER.pack(_to_ms(expires_at), len(payload)) + payload)
            except OSError as exc:
                raise StorageWriteError(f"Cannot write cache entry for {key!r}: {exc}") from exc
            evicted = self._enforce_size_limit(keep=path) if self._max_bytes else ()
        return DiskWrite(cost=len(payload), evicted=evicted)

    def read(self, key: str) -> Optional[StoredEntry]:
        """Load the entry for *key*, or ``None`` when absent or expired.

        Expired entries are deleted on the way out.

        Raises:
            StorageReadError: The file cannot be read or is truncated.
            DecodingError: The payload does not decode.
        """
        path = self._path(key)
        with self._lock:
            try:
                with open(path, "rb") as fh:
                    data = fh.read()
            except FileNotFoundError:
                return None
            except OSError as exc:
                raise StorageReadError(f"Cannot read cache entry for {key!r}: {exc}") from exc

            if len(data) < _HEADER.size:
                raise StorageReadError(f"Cache entry for {key!r} has a truncated header")
            expiry_ms, cost = _HEADER.unpack_from(data)
            expires_at = _from_ms(expiry_ms)
            if expires_at is not None and expires_at <= self._clock():
                logger.debug("Disk entry %r expired", key)
                self._unlink_quietly(path)
                return None

            payload = data[_HEADER.size:]
            if len(payload) != cost:
                raise StorageReadError(
                    f"Cache entry for {key!r} is truncated ({len(payload)} of {cost} bytes)"
                )
            value = self._codec.decode(payload)
            self._touch(path)
        return StoredEntry(value=value, expires_at=expires_at, cost=cost)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.read(key)
        return default if entry is None else entry.value

    def exists(self, key: str) -> bool:
        """Whether an unexpired entry exists.  Reads only the header."""
        path = self._path(key)
        with self._lock:
            try:
                with open(path, "rb") as fh:
                    header = fh.read(_HEADER.size)
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise StorageReadError(f"Cannot read cache entry for {key!r}: {exc}") from exc
            if len(header) < _HEADER.size:
                raise StorageReadError(f"Cache entry for {key!r} has a truncated header")
            expires_at = _from_ms(_HEADER.unpack(header)[0])
            if expires_at is not None and expires_at <= self._clock():
                self._unlink_quietly(path)
                return False
        return True

    def remove(self, key: str) -> bool:
        """Delete the entry for *key*.  Returns whether a file was removed."""
        path = self._path(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise StorageWriteError(f"Cannot remove cache entry for {key!r}: {exc}") from exc
        return True

    # ------------------------------------------------------------------ #
    # Sweeps
    # ------------------------------------------------------------------ #

    def remove_all(self) -> SweepReport:
        """Delete every file in the cache directory, then the directory.

        Individual failures do not stop the sweep.  A missing directory is a
        no-op.

        Raises:
            StorageWriteError: At least one file (or the directory) could not
                be removed.  ``report`` holds the counts.
        """
        removed = failed = 0
        with self._lock:
            try:
                children = list(self._directory.iterdir())
            except FileNotFoundError:
                return SweepReport()
            except OSError as exc:
                raise StorageWriteError(
                    f"Cannot list cache directory {self._directory}: {exc}"
                ) from exc

            for child in children:
                try:
                    child.unlink()
                    removed += 1
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    failed += 1
                    logger.warning("Failed to remove %s: %s", child, exc)

            if not failed:
                try:
                    self._directory.rmdir()
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    failed += 1
                    logger.warning("Failed to remove cache directory %s: %s", self._directory, exc)

        report = SweepReport(removed=removed, failed=failed)
        if failed:
            raise StorageWriteError(
                f"Could not remove {failed} item(s) from {self._directory}", report=report
            )
        return report

    def remove_expired(self) -> SweepReport:
        """Delete expired entries and entries whose header is unreadable.

        Runs to completion; individual failures are counted in the report and
        logged.
        """
        removed = failed = 0
        with self._lock:
            now = self._clock()
            for path in self._entry_paths():
                try:
                    with open(path, "rb") as fh:
                        header = fh.read(_HEADER.size)
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    failed += 1
                    logger.warning("Failed to read %s during expiry sweep: %s", path, exc)
                    continue

                if len(header) == _HEADER.size:
                    expires_at = _from_ms(_HEADER.unpack(header)[0])
                    if expires_at is None or expires_at > now:
                        continue
                else:
                    logger.warning("Removing corrupt cache entry %s", path.name)

                try:
                    path.unlink()
                    removed += 1
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    failed += 1
                    logger.warning("Failed to remove expired entry %s: %s", path, exc)

        if removed or failed:
            logger.debug("Expiry sweep: %d removed, %d failed", removed, failed)
        return SweepReport(removed=removed, failed=failed)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _path(self, key: str) -> Path:
        return self._directory / entry_name(key)

    def _entry_paths(self) -> list[Path]:
        try:
            return [p for p in self._directory.iterdir() if _ENTRY_NAME.match(p.name)]
        except FileNotFoundError:
            return []

    def _scan(self) -> list[tuple[Path, int, int]]:
        """Return ``(path, size, mtime_ns)`` for every entry file."""
        result = []
        for path in self._entry_paths():
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            result.append((path, st.st_size, st.st_mtime_ns))
        return result

    def _enforce_size_limit(self, keep: Path) -> tuple[str, ...]:
        """Evict oldest-modified entries until the total fits ``max_bytes``."""
        entries = self._scan()
        total = sum(size for _, size, _ in entries)
        if total <= self._max_bytes:
            return ()
        evicted: list[str] = []
        for path, size, _ in sorted(entries, key=lambda e: (e[2], e[0].name)):
            if total <= self._max_bytes:
                break
            if path == keep:
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("Failed to evict %s: %s", path, exc)
                continue
            total -= size
            evicted.append(path.name)
            logger.debug("Evicted %s from disk", path.name)
        return tuple(evicted)

    def _touch(self, path: Path) -> None:
        try:
            os.utime(path, None)
        except OSError as exc:
            logger.debug("Could not refresh access time of %s: %s", path, exc)

    def _unlink_quietly(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove expired entry %s: %s", path, exc)

"""Two-tier cache engine: memory in front of disk.

:class:`CacheEngine` is the synchronous surface.  It composes a
:class:`~tiercache.tiers.MemoryTier` and a :class:`~tiercache.tiers.DiskTier`
and keeps them consistent:

- **Reads** check memory first.  On a memory miss the disk entry is read,
  promoted into memory with the same deadline, and returned.
- **Writes** go to disk first.  Only when the disk write succeeded is the
  value written through to memory; a memory failure at that point is logged
  and ignored because memory is only an accelerator.
- **Ordering** -- ``set``, ``remove`` and the disk-fallback path of ``get``
  hold a striped per-key lock, so a slow write or promotion can never
  overwrite a newer value for the same key.

Tier errors are chained into :class:`~tiercache.exceptions.CacheReadError`
and :class:`~tiercache.exceptions.CacheWriteError`.  A missing entry is not an
error: :meth:`CacheEngine.get` returns its ``default`` and
:meth:`CacheEngine.fetch` returns a ``MISSING`` result.

Values held in memory are the objects passed to :meth:`CacheEngine.set`
(or decoded on promotion), not copies.

See Also:
    :class:`~tiercache.async_cache.AsyncCache` for the non-blocking surface.
"""

from __future__ import annotations

import logging
import threading
import time
import zlib
from contextlib import ExitStack
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Generic, Iterable, Optional, TypeVar, Union

from pydantic import ValidationError

from tiercache.codec import Codec, JsonCodec
from tiercache.exceptions import (
    CacheReadError,
    CacheWriteError,
    CodecError,
    InvalidExpiryError,
    InvalidKeyError,
    StorageError,
    StorageWriteError,
    TierCacheError,
)
from tiercache.models import CacheConfig, Expiry, SweepReport
from tiercache.result import CacheResult
from tiercache.tiers import DiskTier, MemoryTier, entry_name

if TYPE_CHECKING:
    from tiercache.async_cache import AsyncCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

ExpiryLike = Union[Expiry, timedelta, datetime, float, int, str, None]

_STRIPES = 32
_DEFAULT_LANES = 4
_MISSING = object()


def _check_key(key: Any) -> None:
    if not isinstance(key, str) or not key:
        raise InvalidKeyError(f"Cache keys must be non-empty strings, got {key!r}")


class CacheEngine(Generic[T]):
    """Memory + disk cache for values of type ``T``.

    Args:
        config: Storage location, limits and default expiry.  Fixed for the
            lifetime of the engine.
        codec: Serializes values for the disk tier.  Defaults to
            :class:`~tiercache.codec.JsonCodec` over ``Any``.
        clock: Returns the current time in epoch seconds.  Expiry deadlines
            are computed and checked against it.

    Example::

        config = CacheConfig(storage_location="/tmp/cache", memory_count_limit=100)
        with CacheEngine(config, JsonCodec(dict)) as cache:
            cache.set("user:1", {"name": "Ada"}, expiry=Expiry.seconds(60))
            cache.get("user:1")
    """

    def __init__(
        self,
        config: CacheConfig,
        codec: Optional[Codec[T]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._codec: Codec[Any] = codec if codec is not None else JsonCodec()
        self._clock = clock
        self._memory = MemoryTier(
            count_limit=config.memory_count_limit,
            cost_limit=config.memory_cost_limit,
            clock=clock,
        )
        self._disk = DiskTier(
            config.directory,
            self._codec,
            max_bytes=config.max_disk_bytes,
            clock=clock,
        )
        self._stripes = [threading.Lock() for _ in range(_STRIPES)]
        self._async: Optional[AsyncCache[T]] = None
        logger.debug("Cache engine opened at %s", config.directory)

    @property
    def config(self) -> CacheConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def asynchronous(self, lanes: Optional[int] = None) -> AsyncCache[T]:
        """Return the engine's :class:`~tiercache.async_cache.AsyncCache`.

        Created on first use (with *lanes* lanes, default 4) and shut down by
        :meth:`close`.

        Raises:
            ValueError: *lanes* differs from the lane count of the existing
                instance.
        """
        if self._async is None:
            from tiercache.async_cache import AsyncCache

            self._async = AsyncCache(self, lanes=lanes or _DEFAULT_LANES)
        elif lanes is not None and lanes != self._async.lanes:
            raise ValueError(
                f"Asynchronous surface already running with {self._async.lanes} lanes, "
                f"cannot switch to {lanes}"
            )
        return self._async

    def close(self) -> None:
        """Wait for pending asynchronous operations and release the executor."""
        if self._async is not None:
            self._async.close()
            self._async = None

    def __enter__(self) -> CacheEngine[T]:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def set(self, key: str, value: T, expiry: ExpiryLike = None) -> None:
        """Store *value* under *key*.

        Args:
            key: Non-empty cache key.
            value: Value to store; must be representable by the codec.
            expiry: Lifetime of the entry.  ``None`` uses the configured
                ``default_expiry``.

        Raises:
            InvalidKeyError: *key* is empty or not a string.
            InvalidExpiryError: *expiry* is not a duration, date or never.
            CacheWriteError: The value could not be encoded or written to
                disk.  The memory tier is left untouched.
        """
        _check_key(key)
        expires_at = self._resolve_expiry(expiry).deadline(self._clock())
        with self._key_lock(key):
            try:
                written = self._disk.set(key, value, expires_at)
            except (StorageError, CodecError) as exc:
                raise CacheWriteError(f"Failed to store {key!r}: {exc}") from exc
            self._remember(key, value, expires_at, written.cost)
        if written.evicted:
            self._forget(written.evicted)

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for *key*, or *default* if there is no live entry.

        Raises:
            InvalidKeyError: *key* is empty or not a string.
            CacheReadError: The disk entry exists but cannot be read or
                decoded.
        """
        _check_key(key)
        value = self._memory.get(key, _MISSING)
        if value is not _MISSING:
            logger.debug("Memory hit for %r", key)
            return value

        with self._key_lock(key):
            try:
                entry = self._disk.read(key)
            except (StorageError, CodecError) as exc:
                raise CacheReadError(f"Failed to read {key!r}: {exc}") from exc
            if entry is None:
                logger.debug("Cache miss for %r", key)
                return default
            logger.debug("Disk hit for %r, promoting to memory", key)
            self._remember(key, entry.value, entry.expires_at, entry.cost)
        return entry.value

    def fetch(self, key: str) -> CacheResult[T]:
        """Like :meth:`get` but never raises; reports value, miss, or error."""
        try:
            value = self.get(key, _MISSING)
        except TierCacheError as exc:
            return CacheResult.failure(exc, key=key)
        if value is _MISSING:
            return CacheResult.missing(key=key)
        return CacheResult.ok(value, key=key)

    def exists(self, key: str) -> bool:
        """Whether an unexpired entry for *key* exists in either tier."""
        _check_key(key)
        if self._memory.exists(key):
            return True
        try:
            return self._disk.exists(key)
        except StorageError as exc:
            raise CacheReadError(f"Failed to check {key!r}: {exc}") from exc

    def remove(self, key: str) -> bool:
        """Remove *key* from both tiers.  Returns whether anything was removed.

        Raises:
            CacheWriteError: The disk entry could not be deleted.
        """
        _check_key(key)
        with self._key_lock(key):
            in_memory = self._memory.remove(key)
            try:
                on_disk = self._disk.remove(key)
            except StorageError as exc:
                raise CacheWriteError(f"Failed to remove {key!r}: {exc}") from exc
        return in_memory or on_disk

    def remove_all(self) -> SweepReport:
        """Clear memory, then delete the disk tier's directory.

        Not atomic across tiers.  Calling it on an empty cache is a no-op.

        Raises:
            CacheWriteError: Some disk entries could not be deleted.  The
                sweep still visited every entry; ``report`` holds the counts.
        """
        with ExitStack() as stack:
            for lock in self._stripes:
                stack.enter_context(lock)
            self._memory.remove_all()
            try:
                report = self._disk.remove_all()
            except StorageWriteError as exc:
                raise CacheWriteError(f"Failed to clear cache: {exc}", report=exc.report) from exc
        logger.info(
            "Cleared cache at %s (%d entries removed)", self._config.directory, report.removed
        )
        return report

    def remove_expired(self) -> SweepReport:
        """Delete expired disk entries.

        Memory entries expire lazily on access and need no sweep.
        """
        report = self._disk.remove_expired()
        if report.failed:
            logger.warning("Expiry sweep left %d entries that could not be removed", report.failed)
        return report

    def stats(self) -> dict[str, Any]:
        """Return entry counts and sizes for both tiers."""
        return {
            "directory": str(self._config.directory),
            "memory_entries": len(self._memory),
            "memory_cost": self._memory.total_cost,
            "memory_count_limit": self._config.memory_count_limit,
            "memory_cost_limit": self._config.memory_cost_limit,
            "disk_entries": len(self._disk),
            "disk_bytes": self._disk.total_size(),
            "max_disk_bytes": self._config.max_disk_bytes,
        }

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _key_lock(self, key: str) -> threading.Lock:
        return self._stripes[zlib.crc32(key.encode("utf-8")) % len(self._stripes)]

    def _resolve_expiry(self, expiry: ExpiryLike) -> Expiry:
        if expiry is None:
            return self._config.default_expiry
        if isinstance(expiry, Expiry):
            return expiry
        try:
            return Expiry.model_validate(expiry)
        except ValidationError as exc:
            raise InvalidExpiryError(f"Invalid expiry {expiry!r}: {exc}") from exc

    def _remember(self, key: str, value: Any, expires_at: Optional[float], cost: int) -> None:
        """Best-effort write-through into memory; never raises."""
        deadline = expires_at
        if self._config.memory_expiry is not None:
            memory_deadline = self._config.memory_expiry.deadline(self._clock())
            if memory_deadline is not None and (deadline is None or memory_deadline < deadline):
                deadline = memory_deadline
        try:
            self._memory.set(key, value, deadline, cost)
        except Exception as exc:
            logger.warning("Memory write-through failed for %r: %s", key, exc)

    def _forget(self, names: Iterable[str]) -> None:
        """Drop memory copies of entries the disk tier evicted."""
        evicted = set(names)
        for key in self._memory.keys():
            if entry_name(key) in evicted:
                self._memory.remove(key)
                logger.debug("Dropped %r from memory after disk eviction", key)


def new_cache_engine(config: CacheConfig, codec: Optional[Codec[T]] = None) -> CacheEngine[T]:
    """Construct a :class:`CacheEngine` for *config*."""
    return CacheEngine(config, codec)

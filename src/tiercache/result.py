"""Discriminated result type for cache operations.

A :class:`CacheResult` is one of three outcomes:

* ``VALUE`` -- the operation succeeded (``value`` holds its return value,
  which may legitimately be ``None``).
* ``MISSING`` -- no unexpired entry exists for the key.  This is a normal
  outcome, not an error.
* ``ERROR`` -- the operation failed; ``error`` holds the
  :class:`~tiercache.exceptions.TierCacheError`.

Returned by :meth:`~tiercache.engine.CacheEngine.fetch` and delivered by
every future of :class:`~tiercache.async_cache.AsyncCache`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from tiercache.exceptions import CacheMissError, TierCacheError

T = TypeVar("T")


class Outcome(str, enum.Enum):
    VALUE = "value"
    MISSING = "missing"
    ERROR = "error"


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    outcome: Outcome
    value: Optional[T] = None
    error: Optional[TierCacheError] = None
    key: Optional[str] = None

    @classmethod
    def ok(cls, value: T, key: Optional[str] = None) -> CacheResult[T]:
        return cls(Outcome.VALUE, value=value, key=key)

    @classmethod
    def missing(cls, key: Optional[str] = None) -> CacheResult[T]:
        return cls(Outcome.MISSING, key=key)

    @classmethod
    def failure(cls, error: TierCacheError, key: Optional[str] = None) -> CacheResult[T]:
        return cls(Outcome.ERROR, error=error, key=key)

    @property
    def is_ok(self) -> bool:
        return self.outcome == Outcome.VALUE

    @property
    def is_missing(self) -> bool:
        return self.outcome == Outcome.MISSING

    @property
    def is_error(self) -> bool:
        return self.outcome == Outcome.ERROR

    def unwrap(self) -> T:
        """Return the value, or raise the error / a :class:`CacheMissError`."""
        if self.outcome == Outcome.ERROR:
            assert self.error is not None
            raise self.error
        if self.outcome == Outcome.MISSING:
            raise CacheMissError(f"No entry for key {self.key!r}")
        return self.value  # type: ignore[return-value]


def capture(fn: Callable[..., Any], *args: Any, key: Optional[str] = None) -> CacheResult[Any]:
    """Call *fn* and wrap its return value or :class:`TierCacheError` in a result.

    Exceptions that are not :class:`TierCacheError` propagate; they indicate
    a bug rather than a cache failure.
    """
    try:
        return CacheResult.ok(fn(*args), key=key)
    except TierCacheError as exc:
        return CacheResult.failure(exc, key=key)

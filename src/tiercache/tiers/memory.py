"""In-process LRU tier with count, cost and expiry bounds.

Entries live in an :class:`collections.OrderedDict` ordered from least to
most recently used, so every operation is O(1) apart from the eviction loop,
which removes one entry per iteration.  A single lock guards the table; no
operation performs I/O.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class MemoryEntry:
    value: Any
    expires_at: Optional[float]
    cost: int


class MemoryTier:
    """Bounded in-memory cache keyed by string.

    Args:
        count_limit: Maximum number of entries, ``0`` for unlimited.
        cost_limit: Maximum sum of entry costs, ``0`` for unlimited.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        count_limit: int = 0,
        cost_limit: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._count_limit = count_limit
        self._cost_limit = cost_limit
        self._clock = clock
        self._entries: OrderedDict[str, MemoryEntry] = OrderedDict()
        self._total_cost = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_cost(self) -> int:
        return self._total_cost

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for *key*, or *default* when absent or expired.

        A hit marks the entry as most recently used.
        """
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return default
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: str, value: Any, expires_at: Optional[float] = None, cost: int = 1) -> bool:
        """Store *value*, evicting least recently used entries to make room.

        Returns:
            ``False`` when the entry was not stored because it is already
            expired or its cost alone exceeds the cost limit.
        """
        if expires_at is not None and expires_at <= self._clock():
            self.remove(key)
            return False
        if self._cost_limit and cost > self._cost_limit:
            logger.debug("Entry %r (cost %d) exceeds memory cost limit, not cached", key, cost)
            self.remove(key)
            return False

        with self._lock:
            self._discard(key)
            while self._entries and not self._fits(cost):
                evicted, old = self._entries.popitem(last=False)
                self._total_cost -= old.cost
                logger.debug("Evicted %r from memory", evicted)
            self._entries[key] = MemoryEntry(value=value, expires_at=expires_at, cost=cost)
            self._total_cost += cost
        return True

    def exists(self, key: str) -> bool:
        """Whether an unexpired entry exists.  Does not affect recency."""
        with self._lock:
            return self._live_entry(key) is not None

    def remove(self, key: str) -> bool:
        with self._lock:
            return self._discard(key)

    def keys(self) -> list[str]:
        """Snapshot of the stored keys, least recently used first."""
        with self._lock:
            return list(self._entries)

    def remove_all(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_cost = 0

    # ------------------------------------------------------------------ #
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------ #

    def _live_entry(self, key: str) -> Optional[MemoryEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            self._discard(key)
            logger.debug("Memory entry %r expired", key)
            return None
        return entry

    def _fits(self, cost: int) -> bool:
        if self._count_limit and len(self._entries) + 1 > self._count_limit:
            return False
        if self._cost_limit and self._total_cost + cost > self._cost_limit:
            return False
        return True

    def _discard(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._total_cost -= entry.cost
        return True

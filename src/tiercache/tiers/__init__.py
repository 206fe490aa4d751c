"""Storage tiers composed by :class:`~tiercache.engine.CacheEngine`.

* :class:`MemoryTier` -- bounded in-process LRU.
* :class:`DiskTier` -- one file per entry under a cache directory.
"""

from tiercache.tiers.disk import DiskTier, DiskWrite, StoredEntry, entry_name
from tiercache.tiers.memory import MemoryTier

__all__ = ["DiskTier", "DiskWrite", "MemoryTier", "StoredEntry", "entry_name"]

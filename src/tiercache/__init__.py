"""tiercache -- a two-tier (memory + disk) object cache.

Values are kept in a bounded in-process LRU in front of a directory of
entry files.  Reads fall back from memory to disk and promote disk hits;
writes go to disk first so the disk tier is always the source of truth.

Typical use::

    from tiercache import CacheConfig, Expiry, JsonCodec, new_cache_engine

    config = CacheConfig(storage_location="/var/cache/myapp", memory_count_limit=500)
    with new_cache_engine(config, JsonCodec(dict)) as cache:
        cache.set("user:1", {"name": "Ada"}, expiry=Expiry.seconds(300))
        user = cache.get("user:1")

        future = cache.asynchronous().get("user:1")
        print(future.result().unwrap())

Modules:
    engine: :class:`CacheEngine`, the synchronous surface.
    async_cache: :class:`AsyncCache`, the future/callback surface.
    executor: Lane-per-key background executor.
    tiers: Memory and disk tiers.
    codec: Value serialization.
    models: Pydantic configuration and expiry models.
    result: Discriminated :class:`CacheResult`.
    config: XDG-aware configuration resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    app: Typer command line.
"""

__version__ = "0.1.0"

from tiercache.async_cache import AsyncCache
from tiercache.codec import Codec, JsonCodec, PickleCodec
from tiercache.engine import CacheEngine, new_cache_engine
from tiercache.exceptions import (
    CacheError,
    CacheMissError,
    CacheReadError,
    CacheWriteError,
    DecodingError,
    EncodingError,
    InvalidExpiryError,
    InvalidKeyError,
    StorageReadError,
    StorageWriteError,
    TierCacheError,
)
from tiercache.models import CacheConfig, Expiry, SweepReport
from tiercache.result import CacheResult, Outcome

__all__ = [
    "AsyncCache",
    "CacheConfig",
    "CacheEngine",
    "CacheError",
    "CacheMissError",
    "CacheReadError",
    "CacheResult",
    "CacheWriteError",
    "Codec",
    "DecodingError",
    "EncodingError",
    "Expiry",
    "InvalidExpiryError",
    "InvalidKeyError",
    "JsonCodec",
    "Outcome",
    "PickleCodec",
    "StorageReadError",
    "StorageWriteError",
    "SweepReport",
    "TierCacheError",
    "new_cache_engine",
]

"""Asynchronous cache surface -- mirrors :class:`~tiercache.engine.CacheEngine`.

Every method submits the corresponding engine operation to an
:class:`~tiercache.executor.AsyncExecutor` and returns immediately with a
:class:`concurrent.futures.Future` resolving to a
:class:`~tiercache.result.CacheResult`.  Cache failures never raise through
the future; they arrive as results with outcome ``ERROR``.

Operations on the same key run in submission order.  ``remove_all`` and
``remove_expired`` are fenced: they see every operation submitted before them
and none submitted after.

From asyncio code, wrap the future::

    result = await asyncio.wrap_future(cache.get("user:1"))

Cancelling a future (:meth:`~concurrent.futures.Future.cancel`) prevents an
operation that has not started yet.  An operation already running on disk
completes and its result is discarded.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any, Callable, Generic, Optional, TypeVar

from tiercache.executor import AsyncExecutor
from tiercache.result import CacheResult, capture

if TYPE_CHECKING:
    from tiercache.engine import CacheEngine, ExpiryLike

logger = logging.getLogger(__name__)

T = TypeVar("T")

Callback = Callable[[CacheResult[Any]], None]


class AsyncCache(Generic[T]):
    """Non-blocking front end for a :class:`~tiercache.engine.CacheEngine`.

    Usually obtained from :meth:`CacheEngine.asynchronous
    <tiercache.engine.CacheEngine.asynchronous>`, which ties its lifetime to
    the engine.

    Args:
        engine: The engine that performs the operations.
        lanes: Number of background lanes (see
            :class:`~tiercache.executor.AsyncExecutor`).

    Example::

        with CacheEngine(config) as engine:
            cache = engine.asynchronous()
            cache.set("a", 1, callback=lambda r: print("stored", r.is_ok))
            print(cache.get("a").result().unwrap())
    """

    def __init__(self, engine: CacheEngine[T], lanes: int = 4) -> None:
        self._engine = engine
        self._executor = AsyncExecutor(lanes=lanes, name="tiercache")

    @property
    def lanes(self) -> int:
        return self._executor.lanes

    def set(
        self,
        key: str,
        value: T,
        expiry: ExpiryLike = None,
        callback: Optional[Callback] = None,
    ) -> Future:
        """Store *value*; resolves to ``VALUE`` (``None``) or ``ERROR``."""
        return self._submit(key, callback, self._engine.set, key, value, expiry)

    def get(self, key: str, callback: Optional[Callback] = None) -> Future:
        """Look up *key*; resolves to ``VALUE``, ``MISSING`` or ``ERROR``."""
        return self._watch(self._executor.submit(key, self._engine.fetch, key), callback)

    def exists(self, key: str, callback: Optional[Callback] = None) -> Future:
        return self._submit(key, callback, self._engine.exists, key)

    def remove(self, key: str, callback: Optional[Callback] = None) -> Future:
        return self._submit(key, callback, self._engine.remove, key)

    def remove_all(self, callback: Optional[Callback] = None) -> Future:
        """Clear both tiers once all previously submitted work has finished."""
        future = self._executor.submit_all(capture, self._engine.remove_all)
        return self._watch(future, callback)

    def remove_expired(self, callback: Optional[Callback] = None) -> Future:
        future = self._executor.submit_all(capture, self._engine.remove_expired)
        return self._watch(future, callback)

    def close(self, wait: bool = True) -> None:
        """Stop accepting work; by default wait for queued operations."""
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def __enter__(self) -> AsyncCache[T]:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _submit(
        self,
        key: str,
        callback: Optional[Callback],
        fn: Callable[..., Any],
        *args: Any,
    ) -> Future:
        future = self._executor.submit(key, _run, fn, args, key)
        return self._watch(future, callback)

    @staticmethod
    def _watch(future: Future, callback: Optional[Callback]) -> Future:
        if callback is not None:

            def _deliver(done: Future) -> None:
                if done.cancelled():
                    return
                exc = done.exception()
                if exc is not None:
                    logger.error(
                        "Cache operation failed outside the result protocol; callback skipped",
                        exc_info=exc,
                    )
                    return
                callback(done.result())

            future.add_done_callback(_deliver)
        return future


def _run(fn: Callable[..., Any], args: tuple, key: Any) -> CacheResult[Any]:
    return capture(fn, *args, key=key if isinstance(key, str) else None)

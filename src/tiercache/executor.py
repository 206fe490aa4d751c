"""Background execution with per-key ordering.

:class:`AsyncExecutor` owns a fixed number of *lanes*, each a
single-worker :class:`~concurrent.futures.ThreadPoolExecutor`.  A key is
always routed to the same lane, so operations on one key run in submission
order while different keys spread across lanes and run concurrently.

Store-wide operations (``remove_all``, ``remove_expired``) are submitted with
:meth:`AsyncExecutor.submit_all`, which places a fence on every lane: the
operation starts only after everything submitted before it has finished and
holds back everything submitted after it.
"""

from __future__ import annotations

import logging
import threading
import zlib
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)


class AsyncExecutor:
    """Lane-per-key thread executor.

    Args:
        lanes: Number of single-worker lanes (at least 1).
        name: Thread name prefix, useful in debuggers and log records.

    Example::

        with AsyncExecutor(lanes=4) as executor:
            future = executor.submit("user:1", engine.get, "user:1")
            print(future.result())
    """

    def __init__(self, lanes: int = 4, name: str = "tiercache") -> None:
        if lanes < 1:
            raise ValueError("lanes must be at least 1")
        self._lanes = [
            ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{name}-lane{i}")
            for i in range(lanes)
        ]
        self._submit_lock = threading.Lock()

    @property
    def lanes(self) -> int:
        return len(self._lanes)

    def lane_for(self, key: str) -> int:
        """Index of the lane that runs operations on *key*."""
        return zlib.crc32(str(key).encode("utf-8")) % len(self._lanes)

    def submit(self, key: str, fn: Callable[..., Any], *args: Any) -> Future:
        """Run ``fn(*args)`` on the lane owning *key*."""
        with self._submit_lock:
            return self._lanes[self.lane_for(key)].submit(fn, *args)

    def submit_all(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run ``fn(*args)`` once every lane has drained, blocking all lanes meanwhile."""
        with self._submit_lock:
            if len(self._lanes) == 1:
                return self._lanes[0].submit(fn, *args)

            arrived = threading.Barrier(len(self._lanes))
            released = threading.Event()

            def hold() -> None:
                try:
                    arrived.wait()
                except threading.BrokenBarrierError:
                    return
                released.wait()

            def run() -> Any:
                try:
                    arrived.wait()
                    return fn(*args)
                except threading.BrokenBarrierError:
                    raise RuntimeError("Store-wide operation abandoned during shutdown") from None
                finally:
                    released.set()

            def on_cancel(future: Future) -> None:
                if future.cancelled():
                    arrived.abort()
                    released.set()

            for lane in self._lanes[1:]:
                lane.submit(hold).add_done_callback(on_cancel)
            future = self._lanes[0].submit(run)
            future.add_done_callback(on_cancel)
            return future

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        """Stop accepting work.  In-flight operations always run to completion."""
        with self._submit_lock:
            for lane in self._lanes:
                lane.shutdown(wait=False, cancel_futures=cancel_futures)
        if wait:
            for lane in self._lanes:
                lane.shutdown(wait=True)
        logger.debug("Executor shut down (%d lanes)", len(self._lanes))

    def __enter__(self) -> AsyncExecutor:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown()

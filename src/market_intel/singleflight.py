"""Collapse concurrent identical calls into one shared execution.

同一 key 的并发调用只执行一次，所有调用方共享同一个结果（或同一个异常）。
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """Per-key registry of in-flight calls.

    The call runs on a small executor rather than in the first caller's
    thread, so every caller (including the first) waits with its own timeout.
    A caller that gives up leaves the shared call running for the others;
    the entry is dropped once the call completes, so the next caller starts a
    fresh one.
    """

    def __init__(self, max_workers: int = 2, name: str = "singleflight") -> None:
        self._lock = threading.RLock()
        self._calls: dict[str, Future] = {}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)

    def _forget(self, key: str, future: Future) -> None:
        with self._lock:
            if self._calls.get(key) is future:
                del self._calls[key]

    def do(self, key: str, fn: Callable[[], T], timeout: float | None = None) -> T:
        """Run fn once for all concurrent callers of key and return its result.

        Raises whatever fn raised, or TimeoutError if this caller's wait
        exceeds timeout.
        """
        with self._lock:
            future = self._calls.get(key)
            if future is None:
                future = self._executor.submit(fn)
                self._calls[key] = future
                future.add_done_callback(lambda f: self._forget(key, f))
                logger.debug("singleflight[%s]: started", key)
            else:
                logger.debug("singleflight[%s]: joined in-flight call", key)
        return future.result(timeout=timeout)

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._calls

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

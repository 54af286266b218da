"""Time-based cache with an injected clock"""

import threading
import time
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class TimedCache(Generic[T]):
    """
    Holds a single (value, fetched_at) pair and reloads it through `loader`
    once it is older than `ttl_seconds`.

    The clock is injected (monotonic seconds) so tests can advance time.
    Async callers skip the loader and use `fresh` / `put` around their own fetch.
    """

    def __init__(
        self,
        loader: Optional[Callable[[], T]],
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._value: Optional[T] = None
        self._fetched_at: Optional[float] = None
        self._lock = threading.Lock()

    def _is_fresh(self, now: float) -> bool:
        return self._fetched_at is not None and now - self._fetched_at < self.ttl_seconds

    def get(self) -> T:
        if self.loader is None:
            raise TypeError("TimedCache.get needs a loader; use fresh() and put()")
        with self._lock:
            now = self.clock()
            if not self._is_fresh(now):
                self._value = self.loader()
                self._fetched_at = now
            return self._value

    def fresh(self) -> Optional[T]:
        """The cached value while it is within the TTL, else None"""
        with self._lock:
            return self._value if self._is_fresh(self.clock()) else None

    def put(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._fetched_at = self.clock()

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._fetched_at = None

    @property
    def fetched_at(self) -> Optional[float]:
        return self._fetched_at

from __future__ import annotations
import time
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class CachedValue(Generic[T]):
    """A single cached value with an optional TTL.

    `ttl_seconds=None` keeps the value until `invalidate()` is called or the
    owning object is rebuilt. Concurrent misses may both recompute; the last
    `put()` wins.
    """

    def __init__(self, ttl_seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl_seconds
        self._clock = clock
        self._value: Optional[T] = None
        self._stored_at: Optional[float] = None

    def get(self) -> Optional[T]:
        if self._stored_at is None:
            return None
        if self.ttl is not None and \
                self._clock() - self._stored_at >= self.ttl:
            return None
        return self._value

    def put(self, value: T) -> T:
        self._value = value
        self._stored_at = self._clock()
        return value

    def invalidate(self) -> None:
        self._value = None
        self._stored_at = None

    @property
    def stored_at(self) -> Optional[float]:
        return self._stored_at

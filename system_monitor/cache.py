from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class ExternalSourceCache(Generic[T]):
    """Time-boxed memoization of an expensive external fetch.

    Failed fetches are cached as ``None`` for the same TTL as successful
    ones so that a source that is down is not polled on every tick. The
    lock is held while fetching; callers that arrive during a fetch wait
    for it and then read the fresh value instead of fetching again.
    """

    def __init__(
        self,
        ttl_ms: int,
        clock: Callable[[], float] = time.monotonic,
        name: str | None = None,
    ) -> None:
        self.ttl_ms = ttl_ms
        self.name = name or "source"
        self._clock = clock
        self._lock = threading.Lock()
        self._value: T | None = None
        self._fetched_ms: float | None = None
        self.logger = logging.getLogger(self.__class__.__name__)

    def is_fresh(self) -> bool:
        if self._fetched_ms is None:
            return False
        return self._clock() * 1000.0 - self._fetched_ms < self.ttl_ms

    def get_or_fetch(self, fetch: Callable[[], T | None]) -> T | None:
        with self._lock:
            if self.is_fresh():
                return self._value
            self._fetched_ms = self._clock() * 1000.0
            try:
                self._value = fetch()
            except Exception as exc:
                self.logger.debug("Fetch from %s failed: %s", self.name, exc)
                self._value = None
            return self._value

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class RateState:
    previous_total: int
    previous_ms: float


class RateSampler:
    """Converts a cumulative byte counter into bytes per second.

    The first call only records a baseline and returns 0. Later calls report
    the average rate since the previous call. A counter that went backwards
    (reset or wraparound) reports 0 for that interval and becomes the new
    baseline.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.state: RateState | None = None

    def sample(self, read_total: Callable[[], int]) -> int:
        total = int(read_total())
        now_ms = self._clock() * 1000.0
        state = self.state
        self.state = RateState(previous_total=total, previous_ms=now_ms)
        if state is None:
            return 0
        elapsed_ms = max(1.0, now_ms - state.previous_ms)
        rate = 1000.0 * (total - state.previous_total) / elapsed_ms
        return max(0, int(rate))

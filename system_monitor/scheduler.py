from __future__ import annotations

import logging
import threading
import time
from typing import Callable


class TickScheduler:
    """Fixed-rate runner that never overlaps ticks.

    A tick that runs past its slot causes the missed slots to be skipped
    rather than queued, and a call to :meth:`tick` while another tick is in
    flight returns immediately.
    """

    def __init__(
        self,
        interval_s: float,
        task: Callable[[], object],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval_s = max(0.1, interval_s)
        self.task = task
        self._clock = clock
        self._running = threading.Lock()
        self._stop = threading.Event()
        self.skipped = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    def tick(self) -> bool:
        if not self._running.acquire(blocking=False):
            self.skipped += 1
            self.logger.debug("Previous tick still running; skipping.")
            return False
        try:
            self.task()
        except Exception:
            self.logger.exception("Tick failed.")
        finally:
            self._running.release()
        return True

    def run_forever(self) -> None:
        next_run = self._clock()
        while not self._stop.is_set():
            self.tick()
            next_run += self.interval_s
            now = self._clock()
            if now > next_run:
                missed = int((now - next_run) // self.interval_s) + 1
                self.skipped += missed
                self.logger.debug("Tick overran; skipping %s slot(s).", missed)
                next_run += missed * self.interval_s
            self._stop.wait(max(0.0, next_run - now))

    def stop(self) -> None:
        self._stop.set()

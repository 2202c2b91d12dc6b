"""
Run-scoped request pacer.

Keeps outbound requests at least ``min_interval`` seconds apart, measured
between request *starts*. Each run owns its own pacer so concurrent runs never
share pacing state.
"""

from __future__ import annotations

import threading
import time
from typing import Callable


class RequestPacer:
    def __init__(self,
                 min_interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            min_interval: minimum seconds between two request starts
            clock: monotonic clock (injectable for tests)
            sleep: sleep function (injectable for tests)
        """
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._last_start = None
        self.lock = threading.Lock()

    def wait(self) -> float:
        """Block until the next request may start; returns the seconds slept."""
        slept = 0.0
        with self.lock:
            if self._last_start is not None:
                elapsed = self._clock() - self._last_start
                if elapsed < self.min_interval:
                    slept = self.min_interval - elapsed
                    self._sleep(slept)
            # Stamp the start of the request about to be dispatched
            self._last_start = self._clock()
        return slept

    def reset(self):
        with self.lock:
            self._last_start = None

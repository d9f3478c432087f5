# Stalesync Clocks
# Millisecond clocks that never run backwards

import threading
import time


class SystemClock:
    """Wall clock in epoch milliseconds, clamped to be non-decreasing."""

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        current = time.time_ns() // 1_000_000
        with self._lock:
            if current < self._last:
                current = self._last
            self._last = current
            return current


class ManualClock:
    """
    Clock moved explicitly by the caller.

    Used for simulations and tests; ``advance`` and ``set`` refuse to move
    time backwards.
    """

    def __init__(self, start: int = 0):
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def advance(self, millis: int) -> int:
        """Move forward and return the new time."""
        if millis < 0:
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._now += millis
            return self._now

    def set(self, timestamp: int) -> int:
        """Jump to an absolute time not earlier than the current one."""
        with self._lock:
            if timestamp < self._now:
                raise ValueError("Clock cannot move backwards")
            self._now = timestamp
            return self._now

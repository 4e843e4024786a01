"""Absolute tick schedule for the sampling loop.

Ticks are due on multiples of the interval counted from the Unix epoch.
The next due time is always the next aligned slot, never "now + interval",
so sleep jitter does not accumulate. A late wake-up fires a single tick and
moves on to the next aligned slot; slots it overran are never caught up. A
wake-up more than ``suspend_factor`` intervals late is treated as a system
suspend: no tick fires and the schedule resumes on the next aligned slot.
"""

import math
import threading
import time
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> float: ...

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if a stop was requested."""
        ...

    def request_stop(self) -> None: ...


class SystemClock:
    """Wall clock plus an interruptible sleep backed by ``threading.Event``."""

    def __init__(self) -> None:
        self._stop = threading.Event()

    def now(self) -> float:
        return time.time()

    def wait(self, seconds: float) -> bool:
        return self._stop.wait(max(0.0, seconds))

    def request_stop(self) -> None:
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()


def aligned_after(t: float, interval: float) -> float:
    """Smallest multiple of ``interval`` strictly greater than ``t``."""
    return (math.floor(t / interval) + 1) * interval


class TickSchedule:
    def __init__(self, interval: float, suspend_factor: float = 2.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = float(interval)
        self.suspend_factor = suspend_factor
        self.suspends = 0
        self._due: Optional[float] = None

    @property
    def next_due(self) -> float:
        if self._due is None:
            raise RuntimeError("schedule not started")
        return self._due

    def start(self, now: float) -> None:
        """First tick fires immediately."""
        self._due = now
        self.suspends = 0

    def delay(self, now: float) -> float:
        return max(0.0, self.next_due - now)

    def on_wake(self, now: float) -> bool:
        """
        Decide whether the tick due at ``next_due`` should fire now, and move
        the schedule forward. Returns False for early wake-ups and for
        wake-ups after a suspend.
        """
        due = self.next_due
        if now < due:
            return False
        if now - due > self.suspend_factor * self.interval:
            self.suspends += 1
            self._due = aligned_after(now, self.interval)
            return False
        # a late tick fires once; any slots it overran are not caught up
        self._due = aligned_after(now, self.interval)
        return True

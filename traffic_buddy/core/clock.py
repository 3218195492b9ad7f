"""Clock abstraction used for every time-based decision.

Window pruning, cache expiry and backoff sleeps all go through a clock so
tests can move time forward without sleeping.
"""

import threading
import time


class MonotonicClock:
    """Real clock backed by ``time.monotonic`` and ``time.sleep``."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class FakeClock:
    """Manually driven clock for deterministic tests.

    ``sleep`` advances the clock instead of blocking, and every requested
    sleep is recorded so tests can assert on backoff delays.

    Example:
        >>> clock = FakeClock()
        >>> clock.advance(5)
        >>> clock.now()
        5.0
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()
        self.sleeps = []

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            if seconds > 0:
                self._now += seconds

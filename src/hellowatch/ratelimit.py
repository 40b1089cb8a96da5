"""Token-bucket rate limiter used to pace outbound store polls."""

import threading
import time
from typing import Callable, Optional


class TokenBucket:
    """Thread-safe token bucket.

    Tokens refill continuously at *rate* per second up to *burst*; the
    bucket starts full so the first *burst* calls go through immediately.
    """

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if burst < 1:
            raise ValueError(f"burst must be at least 1, got {burst}")
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._last = now

    def try_acquire(self) -> bool:
        """Take a token if one is available, without blocking."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def delay(self) -> float:
        """Seconds until the next token will be available (0 if one is ready)."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                return 0.0
            return (1.0 - self._tokens) / self.rate

    def wait(self, stop: Optional[threading.Event] = None) -> bool:
        """Block until a token is taken.

        Returns False if *stop* is set before a token became available.
        """
        if stop is None:
            stop = threading.Event()
        while not stop.is_set():
            if self.try_acquire():
                return True
            stop.wait(self.delay())
        return False

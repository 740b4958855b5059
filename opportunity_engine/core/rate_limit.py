"""
Sliding-window rate limiter for outbound API calls.

A cooperative, single-flow throttle: recent request timestamps are kept in a
window, and when the window is full `acquire()` blocks until the oldest
timestamp leaves it. Not a distributed limiter; each client owns one.
"""

import time
from collections import deque
from threading import Lock
from typing import Callable, Deque


class SlidingWindowRateLimiter:
    """
    Usage:
        limiter = SlidingWindowRateLimiter(max_requests=12, window_seconds=60)
        limiter.acquire()  # blocks when 12 requests were issued in the last minute
        response = client.post(...)
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._requests: Deque[float] = deque()
        self._lock = Lock()

    def _cleanup_old_requests(self, now: float) -> None:
        """Remove requests older than the window."""
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()

    def acquire(self) -> float:
        """
        Reserve a slot, sleeping while the window is full.

        Returns the total time spent waiting (seconds).
        """
        waited = 0.0
        with self._lock:
            while True:
                now = self._clock()
                self._cleanup_old_requests(now)
                if len(self._requests) < self.max_requests:
                    self._requests.append(now)
                    return waited
                wait = self._requests[0] + self.window_seconds - now
                if wait > 0:
                    self._sleep(wait)
                    waited += wait

    @property
    def in_window(self) -> int:
        with self._lock:
            self._cleanup_old_requests(self._clock())
            return len(self._requests)

    def clear(self) -> None:
        """Forget all recorded requests (used by tests)."""
        with self._lock:
            self._requests.clear()

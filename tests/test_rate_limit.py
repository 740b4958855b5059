"""
Tests for the sliding-window rate limiter.

Tests cover:
- Initialization and argument validation
- Requests within the limit pass without waiting
- A full window blocks until the oldest request expires
- Window cleanup
"""

import pytest

from opportunity_engine.core.rate_limit import SlidingWindowRateLimiter


class FakeTime:
    """Clock whose sleep() advances time instead of blocking."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_time():
    return FakeTime()


def make_limiter(fake_time, max_requests=3, window=60.0):
    return SlidingWindowRateLimiter(max_requests, window, clock=fake_time.clock, sleep=fake_time.sleep)


class TestRateLimiterInitialization:
    def test_starts_empty(self, fake_time):
        limiter = make_limiter(fake_time)
        assert limiter.in_window == 0

    def test_rejects_zero_limit(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(0, 60)


class TestAcquire:
    def test_under_limit_does_not_wait(self, fake_time):
        limiter = make_limiter(fake_time)
        waits = [limiter.acquire() for _ in range(3)]

        assert waits == [0.0, 0.0, 0.0]
        assert fake_time.sleeps == []
        assert limiter.in_window == 3

    def test_full_window_waits_for_oldest(self, fake_time):
        limiter = make_limiter(fake_time)
        limiter.acquire()
        fake_time.now = 10.0
        limiter.acquire()
        limiter.acquire()

        waited = limiter.acquire()

        # Oldest request (t=0) leaves the window at t=60
        assert waited == pytest.approx(50.0)
        assert fake_time.now == pytest.approx(60.0)
        assert limiter.in_window == 3

    def test_old_requests_are_cleaned_up(self, fake_time):
        limiter = make_limiter(fake_time)
        for _ in range(3):
            limiter.acquire()

        fake_time.now = 60.0
        assert limiter.in_window == 0
        assert limiter.acquire() == 0.0

    def test_clear(self, fake_time):
        limiter = make_limiter(fake_time, max_requests=1)
        limiter.acquire()
        limiter.clear()
        assert limiter.acquire() == 0.0

import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from errors import RateLimited
from rate_limiter import SlidingWindowLimiter


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_limiter(max_attempts=3, window=5.0, max_tracked=100):
    clock = FakeClock()
    return SlidingWindowLimiter(max_attempts=max_attempts, window=window,
                                max_tracked=max_tracked, clock=clock), clock


class TestSlidingWindow:
    def test_allows_up_to_limit(self):
        limiter, _ = make_limiter()
        for _ in range(3):
            limiter.check("p1")
        with pytest.raises(RateLimited):
            limiter.check("p1")

    def test_rejected_attempts_are_not_logged(self):
        limiter, clock = make_limiter()
        for _ in range(3):
            limiter.check("p1")
        for _ in range(5):
            with pytest.raises(RateLimited):
                limiter.check("p1")
        clock.now = 5.0
        limiter.check("p1")

    def test_retry_after_counts_down(self):
        limiter, clock = make_limiter()
        for _ in range(3):
            limiter.check("p1")
        clock.now = 3.0
        with pytest.raises(RateLimited) as exc:
            limiter.check("p1")
        assert exc.value.retry_after == pytest.approx(2.0)

    def test_burst_across_boundary_is_bounded(self):
        """A fixed window would allow 6 attempts around t=5; a sliding one allows 3."""
        limiter, clock = make_limiter()
        clock.now = 4.9
        for _ in range(3):
            limiter.check("p1")
        clock.now = 5.1
        with pytest.raises(RateLimited):
            limiter.check("p1")

    def test_keys_are_independent(self):
        limiter, _ = make_limiter(max_attempts=1)
        limiter.check("a")
        limiter.check("b")
        with pytest.raises(RateLimited):
            limiter.check("a")

    def test_reset(self):
        limiter, _ = make_limiter(max_attempts=1)
        limiter.check("a")
        limiter.reset()
        limiter.check("a")


class TestEviction:
    def test_expired_keys_dropped_when_over_capacity(self):
        limiter, clock = make_limiter(max_tracked=3)
        for key in ("a", "b", "c"):
            limiter.check(key)
        clock.now = 10.0
        limiter.check("d")
        assert len(limiter) == 1

    def test_oldest_active_keys_evicted(self):
        limiter, clock = make_limiter(max_tracked=2)
        limiter.check("a")
        clock.now = 1.0
        limiter.check("b")
        clock.now = 2.0
        limiter.check("c")
        assert len(limiter) == 2
        # "a" was evicted, so it starts with a clean log
        for _ in range(3):
            limiter.check("a")

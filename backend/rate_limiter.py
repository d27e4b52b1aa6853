import time
import logging
from typing import Callable, Dict, List

import config
from errors import RateLimited

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """Per-key sliding-window limiter.

    Each key keeps a log of attempt timestamps. On every attempt, entries older
    than ``window`` seconds are pruned; if ``max_attempts`` remain the attempt is
    rejected and not logged. Otherwise it is logged. Bursts are therefore
    bounded over any ``window``-long interval, not just aligned ones.
    """

    def __init__(self, max_attempts: int = config.RATE_LIMIT_MAX_SUBMISSIONS,
                 window: float = config.RATE_LIMIT_WINDOW,
                 max_tracked: int = config.RATE_LIMIT_MAX_TRACKED,
                 clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max_attempts
        self.window = window
        self.max_tracked = max_tracked
        self._clock = clock
        self._attempts: Dict[str, List[float]] = {}

    def __len__(self) -> int:
        return len(self._attempts)

    def check(self, key: str):
        """Record an attempt for ``key`` or raise RateLimited."""
        now = self._clock()
        timestamps = [t for t in self._attempts.get(key, []) if now - t < self.window]
        if len(timestamps) >= self.max_attempts:
            self._attempts[key] = timestamps
            retry_after = round(self.window - (now - timestamps[0]), 2)
            raise RateLimited("Too many submissions. Please wait before trying again.",
                              retry_after=max(retry_after, 0.0))
        timestamps.append(now)
        self._attempts[key] = timestamps
        if len(self._attempts) > self.max_tracked:
            self._evict(now)

    def reset(self):
        self._attempts.clear()

    def _evict(self, now: float):
        """Drop expired keys, then the least recently active ones if still over the limit."""
        expired = [key for key, stamps in self._attempts.items()
                   if not stamps or now - stamps[-1] >= self.window]
        for key in expired:
            del self._attempts[key]
        overflow = len(self._attempts) - self.max_tracked
        if overflow > 0:
            oldest = sorted(self._attempts, key=lambda k: self._attempts[k][-1])[:overflow]
            for key in oldest:
                del self._attempts[key]
            logger.warning("Rate limit table full, evicted %d active entries", overflow)

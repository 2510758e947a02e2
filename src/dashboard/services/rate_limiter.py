from __future__ import annotations

import math
import time
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import SlidingWindowCounterRateLimiter


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one hit against the limiter."""

    allowed: bool
    limit: int
    remaining: int
    reset_after_sec: int


class RequestRateLimiter:
    """
    Sliding-window request limiter keyed by an arbitrary string (client IP here).

    The window is approximated from the current and previous fixed-window counters, weighted by how
    much of the previous window still overlaps. Counters live in a `limits` storage backend:
    ``memory://`` for a single process, or a shared backend such as ``redis://host:6379`` when several
    instances serve the API. Counters expire two windows after they open, so idle keys do not
    accumulate. Rejected hits are not counted.
    """

    def __init__(self, window_ms: int, max_requests: int, storage_uri: str = "memory://"):
        self.window_sec = max(1, math.ceil(window_ms / 1000))
        self.max_requests = max(1, int(max_requests))
        self.storage = storage_from_string(storage_uri)
        self._strategy = SlidingWindowCounterRateLimiter(self.storage)
        self._item = RateLimitItemPerSecond(self.max_requests, self.window_sec)

    def hit(self, key: str) -> RateLimitDecision:
        allowed = self._strategy.hit(self._item, key)
        stats = self._strategy.get_window_stats(self._item, key)
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, stats.remaining),
            reset_after_sec=max(0, math.ceil(stats.reset_time - time.time())),
        )

    def reset(self) -> None:
        self.storage.reset()

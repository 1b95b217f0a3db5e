"""Per-provider token buckets checked before a provider is called."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    capacity: float
    refill_per_min: float


DEFAULT_RATE_LIMITS: dict[str, RateLimit] = {
    "ZenQuotes": RateLimit(capacity=3, refill_per_min=6),
    "Quotable": RateLimit(capacity=5, refill_per_min=10),
    "FavQs": RateLimit(capacity=3, refill_per_min=6),
    "QuoteGarden": RateLimit(capacity=3, refill_per_min=6),
    "Stoic Quotes": RateLimit(capacity=4, refill_per_min=8),
    "Programming Quotes": RateLimit(capacity=4, refill_per_min=8),
    "DummyJSON": RateLimit(capacity=10, refill_per_min=20),
    "Type.fit": RateLimit(capacity=3, refill_per_min=6),
}


class TokenBucket:
    """
    Starts full at capacity; refills continuously at refill_per_min tokens
    per minute and never above capacity. Each allowed call takes one token.
    """

    def __init__(
        self,
        capacity: float,
        refill_per_min: float,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        self.capacity = max(float(capacity), 1.0)
        self.refill_per_min = max(float(refill_per_min), 0.0)
        self._time_fn = time_fn
        self._tokens = self.capacity
        self._updated = time_fn()

    @property
    def tokens(self) -> float:
        return self._tokens

    def _refill(self) -> None:
        now = self._time_fn()
        elapsed = max(0.0, now - self._updated)
        if elapsed > 0:
            self._tokens = min(
                self.capacity, self._tokens + (elapsed / 60.0) * self.refill_per_min
            )
        self._updated = now

    def allow(self) -> bool:
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False


class ProviderRateLimiter:
    """Token bucket per source; sources without a configured limit are never throttled."""

    def __init__(
        self,
        limits: Mapping[str, RateLimit] | None = None,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        self._buckets: dict[str, TokenBucket] = {
            source: TokenBucket(limit.capacity, limit.refill_per_min, time_fn)
            for source, limit in (limits or {}).items()
        }

    def allow(self, source: str) -> bool:
        bucket = self._buckets.get(source)
        if bucket is None:
            return True
        allowed = bucket.allow()
        if not allowed:
            logger.info("Provider %s is rate limited; skipping.", source)
        return allowed

    def limited_sources(self) -> list[str]:
        return sorted(self._buckets)

"""Single-entry quote pool cache on top of the injected storage."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from quote_formats import (
    CacheEntry,
    Quote,
    cache_entry_from_dict,
    cache_entry_to_dict,
)

logger = logging.getLogger(__name__)

CACHE_KEY = "quotes"


class QuoteCache:
    def __init__(
        self,
        storage,
        *,
        enabled: bool = True,
        key: str = CACHE_KEY,
        time_fn: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.enabled = enabled
        self.key = key
        self._time_fn = time_fn
        self._mirror: CacheEntry | None = None

    def peek(self) -> CacheEntry | None:
        """Last entry seen by read() or write(), without touching storage."""
        return self._mirror

    async def read(self) -> CacheEntry | None:
        try:
            raw = await self.storage.get(self.key)
        except Exception as exc:
            logger.warning("Cache read failed, treating as empty: %s", exc)
            return None

        if raw is None:
            return None
        entry = cache_entry_from_dict(raw)
        if entry is None:
            return None
        if self._mirror is None or entry.timestamp >= self._mirror.timestamp:
            self._mirror = entry
        return entry

    def is_stale(self, entry: CacheEntry | None, max_age: float) -> bool:
        if entry is None or not self.enabled:
            return True
        return (self._time_fn() - entry.timestamp) > max_age

    async def write(self, quotes: Iterable[Quote], source: str) -> bool:
        entry = CacheEntry(
            quotes=tuple(quotes),
            timestamp=self._time_fn(),
            source=source,
        )
        self._mirror = entry
        try:
            await self.storage.set(self.key, cache_entry_to_dict(entry))
        except Exception as exc:
            logger.warning("Cache write failed; keeping pool in memory only: %s", exc)
            return False
        logger.debug("Cached %s quotes from %s", len(entry.quotes), source)
        return True

    async def invalidate(self) -> None:
        self._mirror = None
        try:
            await self.storage.set(self.key, None)
        except Exception as exc:
            logger.warning("Cache invalidation failed: %s", exc)

"""Weighted, health-aware provider selection with per-attempt timeouts."""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Mapping

from provider_health import ProviderHealthTracker
from quote_errors import (
    AllProvidersFailed,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimited,
)
from quote_formats import DEGRADED, DOWN, Quote
from quote_providers import DEFAULT_TIMEOUT_SECONDS
from rate_limiter import ProviderRateLimiter

logger = logging.getLogger(__name__)

STATUS_MULTIPLIERS = {
    DOWN: 0.0,
    DEGRADED: 0.5,
}


@dataclass(frozen=True)
class FetchResult:
    source: str
    quotes: tuple[Quote, ...]


class ProviderOrchestrator:
    def __init__(
        self,
        providers: Mapping[str, object],
        health: ProviderHealthTracker,
        *,
        rng: random.Random | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        limiter: ProviderRateLimiter | None = None,
    ):
        self.providers = dict(providers)
        self.health = health
        self.rng = rng or random.Random()
        self.timeout = timeout
        self.limiter = limiter or ProviderRateLimiter()

    # ------------------------
    # Selection
    # ------------------------

    def candidates(self, weights: Mapping[str, float]) -> dict[str, float]:
        """Known providers with a positive configured weight."""
        selected = {}
        for source, weight in weights.items():
            if source not in self.providers:
                continue
            try:
                weight = float(weight)
            except (TypeError, ValueError):
                continue
            if weight > 0:
                selected[source] = weight
        return selected

    def effective_weights(self, weights: Mapping[str, float]) -> dict[str, float]:
        effective = {
            source: weight
            * STATUS_MULTIPLIERS.get(self.health.get_status(source), 1.0)
            for source, weight in weights.items()
        }
        if effective and not any(value > 0 for value in effective.values()):
            # every candidate is down; try them all rather than none
            return {source: 1.0 for source in effective}
        return effective

    def draw(self, weights: Mapping[str, float]) -> str | None:
        effective = self.effective_weights(weights)
        # sorted so a seeded generator always yields the same sequence
        ordered = sorted((s, w) for s, w in effective.items() if w > 0)
        if not ordered:
            return None

        total = sum(weight for _, weight in ordered)
        point = self.rng.random() * total
        cumulative = 0.0
        for source, weight in ordered:
            cumulative += weight
            if point < cumulative:
                return source
        return ordered[-1][0]

    # ------------------------
    # Fetching
    # ------------------------

    async def _call(self, source: str, method_name: str, *args, timeout: float):
        provider = self.providers[source]
        method = getattr(provider, method_name)
        if inspect.iscoroutinefunction(method):
            call = method(*args, timeout=timeout)
        else:
            call = asyncio.to_thread(method, *args, timeout=timeout)
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderNetworkError(source, f"timed out after {timeout}s") from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderNetworkError(source, f"{type(exc).__name__}: {exc}") from exc

    async def fetch_one(
        self, sources: Mapping[str, float], timeout: float | None = None
    ) -> FetchResult:
        timeout = self.timeout if timeout is None else timeout
        remaining = self.candidates(sources)
        errors: dict[str, Exception] = {}

        while remaining:
            source = self.draw(remaining)
            if source is None:
                break
            del remaining[source]

            if not self.limiter.allow(source):
                errors[source] = ProviderRateLimited(source, "token bucket empty")
                continue

            try:
                quotes = await self._call(source, "fetch_quotes", timeout=timeout)
                if not quotes:
                    raise ProviderNetworkError(source, "empty response")
            except ProviderError as exc:
                self.health.record_result(source, False)
                errors[source] = exc
                logger.warning("Provider %s failed, trying next: %s", source, exc)
                continue

            self.health.record_result(source, True)
            logger.debug("Provider %s returned %s quotes", source, len(quotes))
            return FetchResult(source=source, quotes=tuple(quotes))

        raise AllProvidersFailed(errors)

    async def search(
        self, source: str, query: str, timeout: float | None = None
    ) -> list[Quote]:
        provider = self.providers.get(source)
        if provider is None or not getattr(provider, "supports_search", False):
            return []
        if not self.limiter.allow(source):
            return []
        timeout = self.timeout if timeout is None else timeout
        try:
            results = await self._call(source, "search", query, timeout=timeout)
        except ProviderError as exc:
            self.health.record_result(source, False)
            logger.warning("Search on %s failed: %s", source, exc)
            return []
        self.health.record_result(source, True)
        return list(results or [])

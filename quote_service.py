"""Quote-of-the-day facade over providers, cache and the fallback pool."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from typing import Callable, Iterable, Mapping

import datetime_handler
from fallback_quotes import FALLBACK_QUOTES, HARD_FALLBACK_QUOTE
from provider_health import HEALTH_STORAGE_KEY, ProviderHealthTracker
from provider_orchestrator import ProviderOrchestrator
from quote_analytics import ANALYTICS_STORAGE_KEY, QuoteAnalytics
from quote_cache import QuoteCache
from quote_config import ServiceConfig, sanitize_weights, validate_service_config
from quote_errors import AllProvidersFailed
from quote_formats import Quote, dedupe_quotes
from quote_providers import build_default_providers
from rate_limiter import ProviderRateLimiter

logger = logging.getLogger(__name__)

WEIGHTS_STORAGE_KEY = "sourceWeights"


class QuoteService:
    """
    Produces a deterministic quote of the day and related lookups.

    All collaborators are injected: storage (required), provider adapters,
    a clock returning a datetime, and a random.Random used for weighted
    provider draws. Public methods never raise for missing network, cache
    or providers; they degrade to the cached pool and then the fallback pool.
    """

    def __init__(
        self,
        storage,
        config: ServiceConfig | None = None,
        *,
        providers: Mapping[str, object] | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ):
        if storage is None:
            raise ValueError("QuoteService requires a storage collaborator.")

        self.storage = storage
        self.config, self.config_warnings = validate_service_config(
            config or ServiceConfig()
        )
        self.tz = datetime_handler.resolve_timezone(self.config.timezone)
        self.clock = clock or self._system_clock
        self.providers = (
            build_default_providers() if providers is None else dict(providers)
        )

        self.health = ProviderHealthTracker(time_fn=self._timestamp)
        self.orchestrator = ProviderOrchestrator(
            self.providers,
            self.health,
            rng=rng,
            timeout=self.config.fetch_timeout,
            limiter=ProviderRateLimiter(
                self.config.rate_limits, time_fn=self._timestamp
            ),
        )
        self.cache = QuoteCache(
            storage, enabled=self.config.cache_enabled, time_fn=self._timestamp
        )
        self.analytics = QuoteAnalytics()

        self._source_weights: dict[str, float] = dict(self.config.source_weights)
        self._refresh_task: asyncio.Future | None = None

        logger.info(
            "Quote service ready with %s providers (cache %s, max age %ss).",
            len(self.providers),
            "on" if self.config.cache_enabled else "off",
            int(self.config.max_cache_age),
        )

    # ------------------------
    # Time helpers
    # ------------------------

    def _system_clock(self) -> datetime:
        return datetime.now(self.tz) if self.tz else datetime.now().astimezone()

    def _timestamp(self) -> float:
        return self.clock().timestamp()

    def _today_key(self) -> str:
        return datetime_handler.get_date_key(self.clock(), self.tz)

    # ------------------------
    # Deterministic selection
    # ------------------------

    def _allowed_pool(self, quotes: Iterable[Quote]) -> list[Quote]:
        quotes = list(quotes)
        allowed = set(self.config.categories)
        if not allowed:
            return quotes
        filtered = [
            q for q in quotes if not q.category or q.category.lower() in allowed
        ]
        return filtered or quotes

    def _select_for_day(self, pool: Iterable[Quote], date_key: str) -> Quote:
        quote = datetime_handler.pick_for_day(self._allowed_pool(pool), date_key)
        return quote or HARD_FALLBACK_QUOTE

    def _fresh_mirrored_pool(self):
        entry = self.cache.peek()
        if entry and entry.quotes and not self.cache.is_stale(
            entry, self.config.max_cache_age
        ):
            return entry.quotes
        return None

    def get_daily_quote(self) -> Quote:
        """Today's quote from the fresh cached pool, else the fallback pool. No I/O."""
        try:
            pool = self._fresh_mirrored_pool() or FALLBACK_QUOTES
            quote = self._select_for_day(pool, self._today_key())
        except Exception:
            logger.exception("Synchronous daily quote failed; using hard fallback.")
            quote = HARD_FALLBACK_QUOTE
        self.analytics.record_event(quote, "view")
        return quote

    async def get_daily_quote_async(self, force: bool = False) -> Quote:
        """
        Today's quote, refreshing the provider pool when the cache is stale
        (or when force is set). Concurrent callers share one refresh.
        """
        return await self._quote_for_key(self._today_key(), force)

    async def get_quote_by_day(self, day=None, force: bool = False) -> Quote:
        """
        Quote for an explicit day (date, datetime or 'YYYY-MM-DD').
        The same day and pool always give the same quote.
        """
        if day is None:
            date_key = self._today_key()
        else:
            date_key = datetime_handler.parse_date_key(day)
            if date_key is None:
                logger.warning("Unparsable day %r; using today instead.", day)
                date_key = self._today_key()
        return await self._quote_for_key(date_key, force)

    async def _quote_for_key(self, date_key: str, force: bool) -> Quote:
        try:
            pool = await self._resolve_pool(force)
            quote = self._select_for_day(pool, date_key)
        except Exception:
            logger.exception("Daily quote lookup failed; using fallback pool.")
            quote = self._select_for_day(FALLBACK_QUOTES, date_key)
        self.analytics.record_event(quote, "view")
        await self._persist_state()
        return quote

    async def _resolve_pool(self, force: bool):
        entry = await self.cache.read()
        if entry is None:
            entry = self.cache.peek()

        if (
            not force
            and entry is not None
            and entry.quotes
            and not self.cache.is_stale(entry, self.config.max_cache_age)
        ):
            return entry.quotes

        refreshed = await self._refresh_pool()
        if refreshed:
            return refreshed

        if entry is not None and entry.quotes:
            logger.warning(
                "Providers unavailable; serving cached pool from %s.", entry.source
            )
            return entry.quotes
        logger.warning("Providers and cache unavailable; serving fallback pool.")
        return FALLBACK_QUOTES

    # ------------------------
    # Refresh (de-duplicated)
    # ------------------------

    async def _refresh_pool(self):
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._run_refresh())
            self._refresh_task = task
            task.add_done_callback(self._clear_refresh_task)
        else:
            logger.debug("Joining in-flight quote refresh.")
        return await asyncio.shield(task)

    def _clear_refresh_task(self, task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _run_refresh(self):
        try:
            result = await self.orchestrator.fetch_one(dict(self._source_weights))
        except AllProvidersFailed as exc:
            logger.warning("Quote refresh failed: %s", exc)
            return None
        except Exception:
            logger.exception("Unexpected error while refreshing quotes.")
            return None

        pool = tuple(dedupe_quotes(result.quotes))
        await self.cache.write(pool, result.source)
        logger.info("Refreshed quote pool: %s quotes from %s.", len(pool), result.source)
        return pool

    # ------------------------
    # Search + bulk
    # ------------------------

    def _local_pool(self) -> list[Quote]:
        entry = self.cache.peek()
        cached = list(entry.quotes) if entry else []
        return dedupe_quotes(cached + list(FALLBACK_QUOTES))

    def _search_local(self, query: str) -> list[Quote]:
        needle = query.lower()
        return [
            q
            for q in self._local_pool()
            if needle in q.text.lower()
            or needle in q.author.lower()
            or (q.category and needle in q.category.lower())
            or any(needle in tag.lower() for tag in q.tags)
        ]

    def _search_targets(self, source: str | None) -> list[str]:
        if source is not None:
            return [source] if source in self.providers else []
        return [
            name
            for name, provider in sorted(self.providers.items())
            if getattr(provider, "supports_search", False)
            and self._source_weights.get(name, 0) > 0
        ]

    async def search_quotes(self, source: str | None, query: str) -> list[Quote]:
        """
        Provider search (one named source, or every weighted search-capable
        source when source is None) merged with local matches, unique by id.
        """
        query = (query or "").strip()
        if not query:
            return []

        results: list[Quote] = []
        try:
            self.analytics.record_search(query)
            targets = self._search_targets(source)
            batches = await asyncio.gather(
                *(self.orchestrator.search(name, query) for name in targets),
                return_exceptions=True,
            )
            for name, batch in zip(targets, batches):
                if isinstance(batch, Exception):
                    logger.warning("Search on %s failed: %s", name, batch)
                    continue
                results.extend(batch)
            results.extend(self._search_local(query))
        except Exception:
            logger.exception("Quote search failed for %r.", query)

        await self._persist_state()
        return dedupe_quotes(results)

    async def _lookup_by_field(
        self, term: str, limit, field_of: Callable[[Quote], str | None]
    ) -> list[Quote]:
        term = (term or "").strip()
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            logger.warning("Invalid lookup limit %r.", limit)
            return []
        if not term or limit <= 0:
            return []

        needle = term.lower()

        def matches(quote: Quote) -> bool:
            value = field_of(quote)
            return bool(value) and needle in value.lower()

        results: list[Quote] = []
        try:
            for name in self._search_targets(None):
                if len(results) >= limit:
                    break
                batch = await self.orchestrator.search(name, term)
                results = dedupe_quotes(results + [q for q in batch if matches(q)])
            local = [q for q in self._local_pool() if matches(q)]
            results = dedupe_quotes(results + local)
        except Exception:
            logger.exception("Quote lookup failed for %r.", term)

        await self._persist_state()
        return results[:limit]

    async def get_quotes_by_category(self, category: str, limit: int = 10) -> list[Quote]:
        """Provider search results and local quotes whose category contains the term."""
        return await self._lookup_by_field(category, limit, lambda q: q.category)

    async def get_quotes_by_author(self, author: str, limit: int = 10) -> list[Quote]:
        return await self._lookup_by_field(author, limit, lambda q: q.author)

    def _pick_random(self, quotes) -> Quote | None:
        quotes = list(quotes)
        if not quotes:
            return None
        index = int(self.orchestrator.rng.random() * len(quotes))
        return quotes[min(index, len(quotes) - 1)]

    async def get_random_quote(self, source: str | None = None) -> Quote:
        """
        One random quote. A named source is asked first, then a weighted draw
        over the other sources, then the local pool. Never raises.
        """
        quote = None
        try:
            attempts = []
            if source is not None and source in self.providers:
                attempts.append({source: self._source_weights.get(source) or 1.0})
            attempts.append(
                {name: w for name, w in self._source_weights.items() if name != source}
            )
            for weights in attempts:
                try:
                    result = await self.orchestrator.fetch_one(weights)
                except AllProvidersFailed as exc:
                    logger.info("Random quote attempt failed: %s", exc)
                    continue
                quote = self._pick_random(self._allowed_pool(result.quotes))
                break
        except Exception:
            logger.exception("Random quote lookup failed.")

        if quote is None:
            quote = (
                self._pick_random(self._allowed_pool(self._local_pool()))
                or HARD_FALLBACK_QUOTE
            )
        self.analytics.record_event(quote, "view")
        await self._persist_state()
        return quote

    def _bulk_weights(self, sources) -> dict[str, float]:
        if sources is None:
            return dict(self._source_weights)
        if isinstance(sources, Mapping):
            weights, _ = sanitize_weights(dict(sources), self._source_weights)
            return weights
        return {
            name: self._source_weights.get(name, 1.0) for name in sources
        }

    async def get_bulk_quotes(
        self,
        count: int,
        sources=None,
        categories: Iterable[str] | None = None,
        include_local: bool = False,
    ) -> list[Quote]:
        """Up to count unique quotes drawn from the given sources; never more."""
        try:
            count = int(count)
        except (TypeError, ValueError):
            logger.warning("Invalid bulk count %r.", count)
            return []
        if count <= 0:
            return []

        wanted = {c.lower() for c in categories} if categories else None

        def matches(quote: Quote) -> bool:
            return wanted is None or (
                quote.category is not None and quote.category.lower() in wanted
            )

        collected: list[Quote] = []
        seen: set[str] = set()

        def take(quotes: Iterable[Quote]) -> None:
            for quote in quotes:
                if len(collected) >= count:
                    return
                if quote.id in seen or not matches(quote):
                    continue
                seen.add(quote.id)
                collected.append(quote)

        try:
            weights = self.orchestrator.candidates(self._bulk_weights(sources))
            max_draws = len(weights) * self.config.bulk_attempt_factor
            fetched: set[str] = set()
            draws = 0
            while weights and len(collected) < count and draws < max_draws:
                draws += 1
                try:
                    result = await self.orchestrator.fetch_one(weights)
                except AllProvidersFailed as exc:
                    logger.warning("Bulk fetch stopped early: %s", exc)
                    break
                new_ids = {q.id for q in result.quotes} - fetched
                if not new_ids:
                    # the source keeps repeating itself; stop asking it
                    weights.pop(result.source, None)
                    continue
                fetched.update(new_ids)
                take(result.quotes)

            if include_local and len(collected) < count:
                take(self._local_pool())
        except Exception:
            logger.exception("Bulk quote retrieval failed.")

        collected = collected[:count]
        for quote in collected:
            self.analytics.record_event(quote, "view")
        await self._persist_state()
        return collected

    # ------------------------
    # Health, analytics, weights
    # ------------------------

    def get_health_status(self) -> list[dict]:
        return self.health.get_health_status()

    def get_analytics(self) -> dict:
        return self.analytics.snapshot()

    def find_quote(self, quote_id: str) -> Quote | None:
        return next((q for q in self._local_pool() if q.id == quote_id), None)

    async def record_event(self, quote: Quote, event: str) -> bool:
        recorded = self.analytics.record_event(quote, event)
        if recorded:
            await self._persist_state()
        return recorded

    def get_source_weights(self) -> dict[str, float]:
        return dict(self._source_weights)

    def update_source_weights(self, weights: Mapping[str, float]) -> dict[str, float]:
        """Merge new weights; used from the next fetch onwards."""
        if weights is None:
            weights = {}
        cleaned, warnings = sanitize_weights(weights, self._source_weights)
        for warning in warnings:
            logger.warning("Source weight warning: %s", warning)
        updated = dict(self._source_weights)
        updated.update(cleaned)
        self._source_weights = updated
        logger.info("Source weights updated: %s", updated)
        return dict(updated)

    # ------------------------
    # Persistence
    # ------------------------

    async def _persist_state(self) -> None:
        snapshots = {
            HEALTH_STORAGE_KEY: self.health.to_dict(),
            ANALYTICS_STORAGE_KEY: self.analytics.snapshot(),
            WEIGHTS_STORAGE_KEY: dict(self._source_weights),
        }
        for key, value in snapshots.items():
            try:
                await self.storage.set(key, value)
            except Exception as exc:
                logger.warning("Could not persist %s: %s", key, exc)

    async def save_state(self) -> None:
        """Write health, analytics and weights now instead of on the next lookup."""
        await self._persist_state()

    async def _load_key(self, key: str):
        try:
            return await self.storage.get(key)
        except Exception as exc:
            logger.warning("Could not load %s: %s", key, exc)
            return None

    async def load_state(self) -> None:
        """Reload health, analytics, weights and the cached pool from storage."""
        self.health.load_dict(await self._load_key(HEALTH_STORAGE_KEY))
        self.analytics.load_dict(await self._load_key(ANALYTICS_STORAGE_KEY))

        stored_weights = await self._load_key(WEIGHTS_STORAGE_KEY)
        if isinstance(stored_weights, dict):
            self.update_source_weights(stored_weights)

        entry = await self.cache.read()
        if entry is not None:
            logger.info(
                "Loaded cached pool of %s quotes from %s.", len(entry.quotes), entry.source
            )

    async def clear_cache(self) -> None:
        await self.cache.invalidate()

import asyncio
from datetime import date

import pytest

from conftest import BrokenStorage, FakeProvider, FixedRandom, make_quotes
from fallback_quotes import FALLBACK_QUOTES, FALLBACK_SOURCE, HARD_FALLBACK_QUOTE
from kv_storage import MemoryStorage
from quote_config import ServiceConfig
from quote_service import QuoteService
from rate_limiter import RateLimit


def _total_calls(providers):
    return sum(p.calls for p in providers.values())


def test_constructor_requires_storage():
    with pytest.raises(ValueError):
        QuoteService(None)


def test_first_call_fetches_and_caches_pool(service, providers, storage):
    quote = asyncio.run(service.get_daily_quote_async())

    assert _total_calls(providers) == 1
    chosen = "A" if providers["A"].calls else "B"
    assert quote.source == chosen
    cached = asyncio.run(storage.get("quotes"))
    assert cached["source"] == chosen
    assert len(cached["quotes"]) == 5


def test_second_call_same_day_uses_fresh_cache(service, providers):
    first = asyncio.run(service.get_daily_quote_async())
    second = asyncio.run(service.get_daily_quote_async())

    assert _total_calls(providers) == 1
    assert first == second
    assert first.text == second.text


def test_sync_daily_quote_matches_async_selection(service):
    async_quote = asyncio.run(service.get_daily_quote_async())
    assert service.get_daily_quote() == async_quote
    assert service.get_daily_quote() == service.get_daily_quote()


def test_sync_daily_quote_without_cache_uses_fallback_pool(service, providers):
    quote = service.get_daily_quote()
    assert quote in FALLBACK_QUOTES
    assert quote.source == FALLBACK_SOURCE
    assert _total_calls(providers) == 0


def test_stale_cache_triggers_refresh(service, providers, clock):
    asyncio.run(service.get_daily_quote_async())
    clock.advance(hours=23)
    asyncio.run(service.get_daily_quote_async())
    assert _total_calls(providers) == 1

    clock.advance(hours=2)
    asyncio.run(service.get_daily_quote_async())
    assert _total_calls(providers) == 2


def test_force_bypasses_fresh_cache(service, providers):
    asyncio.run(service.get_daily_quote_async())
    asyncio.run(service.get_daily_quote_async(force=True))
    assert _total_calls(providers) == 2


def test_all_sources_down_and_empty_cache_returns_fallback(make_service, providers):
    for provider in providers.values():
        provider.fail = True
    service = make_service()

    quote = asyncio.run(service.get_daily_quote_async())

    assert quote in FALLBACK_QUOTES
    assert quote.source == FALLBACK_SOURCE


def test_total_failure_serves_stale_cache_before_fallback(service, providers, clock):
    fresh = asyncio.run(service.get_daily_quote_async())
    for provider in providers.values():
        provider.fail = True
    clock.advance(days=2)

    quote = asyncio.run(service.get_daily_quote_async())

    assert quote.source == fresh.source
    assert quote not in FALLBACK_QUOTES


def test_broken_storage_still_returns_quotes(make_service, providers):
    service = make_service(store=BrokenStorage())
    quote = asyncio.run(service.get_daily_quote_async())
    assert quote.source in {"A", "B"}

    for provider in providers.values():
        provider.fail = True
    again = asyncio.run(service.get_daily_quote_async(force=True))
    assert again == quote


def test_no_providers_at_all_is_still_total(storage, clock):
    service = QuoteService(storage, ServiceConfig(), providers={}, clock=clock)
    quote = asyncio.run(service.get_daily_quote_async())
    assert quote in FALLBACK_QUOTES


def test_overlapping_calls_share_one_refresh(make_service, providers):
    providers["A"].delay = 0.05
    providers["B"].delay = 0.05
    service = make_service()

    async def overlapping():
        return await asyncio.gather(
            service.get_daily_quote_async(), service.get_daily_quote_async()
        )

    first, second = asyncio.run(overlapping())

    assert _total_calls(providers) == 1
    assert first == second


def test_quote_by_day_is_deterministic_and_varies_by_day(service, providers):
    asyncio.run(service.get_daily_quote_async())

    picks = [
        asyncio.run(service.get_quote_by_day("2026-01-01")) for _ in range(3)
    ]
    assert picks[0] == picks[1] == picks[2]
    assert asyncio.run(service.get_quote_by_day(date(2026, 1, 1))) == picks[0]

    days = {
        asyncio.run(service.get_quote_by_day(f"2026-01-{day:02d}")).id
        for day in range(1, 15)
    }
    assert len(days) > 1
    assert _total_calls(providers) == 1


def test_quote_by_day_with_bad_input_uses_today(service):
    today = asyncio.run(service.get_daily_quote_async())
    assert asyncio.run(service.get_quote_by_day("not-a-date")) == today


def test_daily_quote_is_stable_across_restarts(make_service, providers, storage):
    original = asyncio.run(make_service().get_daily_quote_async())

    for provider in providers.values():
        provider.fail = True
    restarted = make_service()
    asyncio.run(restarted.load_state())

    assert restarted.get_daily_quote() == original
    assert asyncio.run(restarted.get_daily_quote_async()) == original
    assert _total_calls(providers) == 1


def test_category_allow_list_filters_daily_pool(make_service, providers):
    providers["A"].quotes = make_quotes("A", 3, category="sports") + [
        q for q in make_quotes("A", 6)[3:]
    ]
    service = make_service(weights={"A": 1.0}, categories=("motivation",))
    quote = asyncio.run(service.get_daily_quote_async())
    assert quote.category == "motivation"


def test_empty_pool_returns_hard_fallback(service):
    assert service._select_for_day([], "2026-03-14") == HARD_FALLBACK_QUOTE


def test_search_merges_provider_and_local_results_without_duplicates(
    make_service, providers
):
    duplicate = providers["A"].quotes[0]
    providers["A"].search_results = [duplicate, duplicate, providers["A"].quotes[1]]
    service = make_service()
    asyncio.run(service.get_daily_quote_async())

    results = asyncio.run(service.search_quotes("A", "courage"))

    ids = [q.id for q in results]
    assert len(ids) == len(set(ids))
    assert duplicate.id in ids
    assert providers["A"].search_calls == 1


def test_search_all_sources_and_fallback_pool(service, providers):
    results = asyncio.run(service.search_quotes(None, "Twain"))
    assert any(q.author == "Mark Twain" for q in results)
    assert providers["A"].search_calls == 1
    assert providers["B"].search_calls == 1
    assert "Twain" in service.get_analytics()["search_history"]


def test_search_with_blank_query_returns_nothing(service, providers):
    assert asyncio.run(service.search_quotes("A", "   ")) == []
    assert providers["A"].search_calls == 0


def test_bulk_quotes_never_exceed_count(service):
    for count in (0, 1, 3, 7, 12):
        quotes = asyncio.run(service.get_bulk_quotes(count))
        assert len(quotes) <= count
        assert len({q.id for q in quotes}) == len(quotes)


def test_bulk_quotes_negative_or_invalid_count(service):
    assert asyncio.run(service.get_bulk_quotes(-2)) == []
    assert asyncio.run(service.get_bulk_quotes("many")) == []


def test_bulk_quotes_drop_sources_that_repeat_themselves(make_service, providers):
    service = make_service(rng=FixedRandom(0.0))
    quotes = asyncio.run(service.get_bulk_quotes(8, sources=["A", "B"]))
    # A is drawn until it has nothing new, then B tops up the rest
    assert len(quotes) == 8
    assert {q.source for q in quotes} == {"A", "B"}
    assert providers["A"].calls == 2
    assert providers["B"].calls == 1


def test_large_bulk_request_does_not_flood_providers(make_service, providers):
    service = make_service(rng=FixedRandom(0.0))
    quotes = asyncio.run(service.get_bulk_quotes(1000))
    assert len(quotes) == 10
    assert providers["A"].calls == 2
    assert providers["B"].calls == 2


class EndlessProvider(FakeProvider):
    """Hands out one never-seen quote per call."""

    def fetch_quotes(self, timeout=8):
        self.calls += 1
        return make_quotes(self.name, self.calls)[-1:]


def test_bulk_draws_are_bounded_per_candidate(make_service, providers):
    providers["A"] = EndlessProvider("A")
    service = make_service(weights={"A": 1.0, "B": 0.0})
    quotes = asyncio.run(service.get_bulk_quotes(100))
    assert len(quotes) == 3
    assert providers["A"].calls == 3


def test_bulk_quotes_respect_zero_weight(make_service, providers):
    service = make_service(weights={"A": 1.0, "B": 0.0})
    quotes = asyncio.run(service.get_bulk_quotes(10, sources=["B"]))
    assert quotes == []
    assert providers["B"].calls == 0


def test_bulk_quotes_fill_from_local_pool(make_service, providers):
    for provider in providers.values():
        provider.fail = True
    service = make_service()
    quotes = asyncio.run(service.get_bulk_quotes(4, include_local=True))
    assert len(quotes) == 4
    assert all(q.source == FALLBACK_SOURCE for q in quotes)


def test_bulk_quotes_category_filter(make_service, providers):
    providers["A"].quotes = make_quotes("A", 2, category="sports") + make_quotes(
        "A", 4
    )[2:]
    service = make_service(weights={"A": 1.0})
    quotes = asyncio.run(service.get_bulk_quotes(10, categories=["Sports"]))
    assert quotes
    assert all(q.category == "sports" for q in quotes)


def test_health_status_reports_down_after_three_failures(make_service, providers):
    providers["A"].fail = True
    service = make_service(rng=FixedRandom(0.0))
    for _ in range(3):
        asyncio.run(service.get_daily_quote_async(force=True))

    statuses = {row["source"]: row["status"] for row in service.get_health_status()}
    assert statuses["A"] == "down"
    assert statuses["B"] == "healthy"

    asyncio.run(service.get_daily_quote_async(force=True))
    assert providers["A"].calls == 3


def test_update_source_weights_applies_to_next_fetch(make_service, providers):
    service = make_service(rng=FixedRandom(0.0))
    weights = service.update_source_weights({"A": 0, "B": 1})
    assert weights["A"] == 0
    asyncio.run(service.get_daily_quote_async())
    assert providers["A"].calls == 0
    assert providers["B"].calls == 1


def test_update_source_weights_corrects_invalid_values(service):
    before = service.get_source_weights()["A"]
    weights = service.update_source_weights({"A": "heavy", "B": -1})
    assert weights["A"] == before
    assert weights["B"] == 0.3


def test_analytics_counts_views_likes_and_categories(service):
    quote = asyncio.run(service.get_daily_quote_async())
    assert asyncio.run(service.record_event(quote, "like")) is True
    assert asyncio.run(service.record_event(quote, "save")) is True
    assert asyncio.run(service.record_event(quote, "share")) is False

    analytics = service.get_analytics()
    assert analytics["total_quotes"] == 1
    assert analytics["views"][quote.id] == 1
    assert analytics["likes"][quote.id] == 1
    assert analytics["saves"][quote.id] == 1
    assert analytics["category_distribution"] == {"motivation": 1}
    assert analytics["recently_viewed"] == [quote.id]

    analytics["views"].clear()
    assert service.get_analytics()["views"][quote.id] == 1


def test_state_is_persisted_and_reloaded(make_service, storage):
    service = make_service()
    quote = asyncio.run(service.get_daily_quote_async())
    service.update_source_weights({"B": 0.9})
    asyncio.run(service.record_event(quote, "like"))

    restored = make_service()
    asyncio.run(restored.load_state())

    assert restored.get_analytics()["likes"][quote.id] == 1
    assert restored.get_source_weights()["B"] == 0.9
    assert restored.get_health_status() == service.get_health_status()


def test_save_state_persists_weight_update(service, storage):
    service.update_source_weights({"A": 0.2})
    asyncio.run(service.save_state())
    assert asyncio.run(storage.get("sourceWeights")) == {"A": 0.2, "B": 0.3}


def test_invalid_config_is_corrected(storage, clock):
    service = QuoteService(
        storage,
        ServiceConfig(max_cache_age=-5, source_weights={"A": "x"}),
        providers={"A": FakeProvider("A", make_quotes("A", 1))},
        clock=clock,
    )
    assert service.config.max_cache_age == 24 * 60 * 60
    assert service.config_warnings
    assert asyncio.run(service.get_daily_quote_async()) is not None


def test_clear_cache_forces_refresh(service, providers):
    asyncio.run(service.get_daily_quote_async())
    asyncio.run(service.clear_cache())
    asyncio.run(service.get_daily_quote_async())
    assert _total_calls(providers) == 2


def test_memory_storage_isolated_between_services(make_service):
    other = MemoryStorage()
    service = make_service(store=other)
    asyncio.run(service.get_daily_quote_async())
    assert "quotes" in other.keys()


def test_update_source_weights_ignores_non_mapping(service):
    before = service.get_source_weights()
    assert service.update_source_weights(5) == before
    assert service.update_source_weights("x") == before
    assert service.update_source_weights(None) == before


def test_random_quote_prefers_named_source(make_service, providers):
    service = make_service(rng=FixedRandom(0.0))
    quote = asyncio.run(service.get_random_quote("B"))
    assert quote.source == "B"
    assert providers["A"].calls == 0
    assert service.get_analytics()["views"][quote.id] == 1


def test_random_quote_falls_back_to_other_sources(make_service, providers):
    providers["B"].fail = True
    service = make_service(rng=FixedRandom(0.0))
    quote = asyncio.run(service.get_random_quote("B"))
    assert quote.source == "A"
    assert providers["B"].calls == 1


def test_random_quote_without_providers_uses_local_pool(make_service, providers):
    for provider in providers.values():
        provider.fail = True
    service = make_service()
    assert asyncio.run(service.get_random_quote()) in FALLBACK_QUOTES
    assert asyncio.run(service.get_random_quote("Nowhere")) in FALLBACK_QUOTES


def test_quotes_by_category_filters_and_limits(make_service, providers):
    providers["A"].search_results = make_quotes("A", 3, category="sports")
    providers["B"].search_results = make_quotes("B", 2, category="motivation")
    service = make_service()

    quotes = asyncio.run(service.get_quotes_by_category("Sports"))
    assert len(quotes) == 3
    assert all(q.category == "sports" for q in quotes)

    limited = asyncio.run(service.get_quotes_by_category("sports", limit=2))
    assert len(limited) == 2
    # A already filled the limit, so B is not asked again
    assert providers["B"].search_calls == 1


def test_quotes_by_author_includes_local_matches(service):
    quotes = asyncio.run(service.get_quotes_by_author("twain"))
    assert [q.author for q in quotes] == ["Mark Twain"]
    assert asyncio.run(service.get_quotes_by_author("  ")) == []
    assert asyncio.run(service.get_quotes_by_author("twain", limit="x")) == []


def test_rate_limited_source_is_skipped_without_health_penalty(
    make_service, providers, clock
):
    service = make_service(
        rng=FixedRandom(0.0), rate_limits={"A": RateLimit(capacity=1, refill_per_min=6)}
    )
    asyncio.run(service.get_daily_quote_async(force=True))
    asyncio.run(service.get_daily_quote_async(force=True))
    assert providers["A"].calls == 1
    assert providers["B"].calls == 1

    clock.advance(seconds=20)
    asyncio.run(service.get_daily_quote_async(force=True))
    assert providers["A"].calls == 2

    statuses = {row["source"]: row for row in service.get_health_status()}
    assert statuses["A"]["failure_count"] == 0

import random
import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from kv_storage import MemoryStorage
from quote_config import ServiceConfig
from quote_errors import ProviderNetworkError
from quote_formats import build_quote
from quote_service import QuoteService


class FakeClock:
    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> None:
        self.moment = self.moment + timedelta(**kwargs)


class FixedRandom:
    """random.Random stand-in that always returns the same draw."""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


class FakeProvider:
    supports_search = True

    def __init__(self, name, quotes=None, fail=False, search_results=None, delay=0.0):
        self.name = name
        self.quotes = list(quotes or [])
        self.fail = fail
        self.search_results = search_results
        self.delay = delay
        self.calls = 0
        self.search_calls = 0

    def fetch_quotes(self, timeout=8):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ProviderNetworkError(self.name, "offline")
        return list(self.quotes)

    def search(self, query, timeout=8):
        self.search_calls += 1
        if self.fail:
            raise ProviderNetworkError(self.name, "offline")
        if self.search_results is not None:
            return list(self.search_results)
        return [q for q in self.quotes if query.lower() in q.text.lower()]


class BrokenStorage:
    async def get(self, key):
        raise OSError("storage unavailable")

    async def set(self, key, value):
        raise OSError("storage unavailable")


def make_quotes(source, count, category="motivation"):
    return [
        build_quote(
            f"{source} quote number {i} about courage",
            f"Author {i}",
            source=source,
            quote_id=i,
            category=category,
        )
        for i in range(1, count + 1)
    ]


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def providers():
    return {
        "A": FakeProvider("A", make_quotes("A", 5)),
        "B": FakeProvider("B", make_quotes("B", 5)),
    }


@pytest.fixture
def make_service(storage, clock, providers):
    def factory(weights=None, rng=None, store=None, **config_kwargs):
        config = ServiceConfig(
            source_weights=weights or {"A": 0.7, "B": 0.3}, **config_kwargs
        )
        return QuoteService(
            store if store is not None else storage,
            config,
            providers=providers,
            clock=clock,
            rng=rng or random.Random(7),
        )

    return factory


@pytest.fixture
def service(make_service):
    return make_service()

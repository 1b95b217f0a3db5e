"""Provider adapters: fetch quotes from public quote APIs over HTTP."""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from quote_errors import ProviderNetworkError, ProviderParseError
from quote_formats import Quote, build_quote, dedupe_quotes

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 8
USER_AGENT = "DailyQuoteService/1.0"


@dataclass
class ParseResult:
    quotes: List[Quote] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class QuoteProvider:
    """Base adapter. Subclasses set name/url and map one payload item to a Quote."""

    name = "provider"
    url = ""
    search_url: Optional[str] = None

    @property
    def supports_search(self) -> bool:
        return self.search_url is not None

    # ------------------------
    # Parsing (pure, never raises)
    # ------------------------

    def extract_items(self, payload):
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            return [payload]
        return None

    def quote_from_item(self, item: dict) -> Optional[Quote]:
        raise NotImplementedError

    def parse(self, payload) -> ParseResult:
        items = self.extract_items(payload)
        if items is None:
            return ParseResult(error=f"unexpected payload type {type(payload).__name__}")

        quotes = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                quote = self.quote_from_item(item)
            except (KeyError, TypeError, ValueError, AttributeError):
                quote = None
            if quote is not None:
                quotes.append(quote)

        if not quotes:
            return ParseResult(error="payload contained no usable quotes")
        return ParseResult(quotes=dedupe_quotes(quotes))

    # ------------------------
    # Transport
    # ------------------------

    def request_headers(self) -> Dict[str, str]:
        return {"User-Agent": USER_AGENT, "Accept": "application/json"}

    def _get_json(self, url: str, params: Optional[dict] = None, timeout=DEFAULT_TIMEOUT_SECONDS):
        if params:
            logger.info("Provider request: %s GET %s params=%s", self.name, url, params)
        else:
            logger.info("Provider request: %s GET %s", self.name, url)
        try:
            response = requests.get(
                url, params=params, headers=self.request_headers(), timeout=timeout
            )
        except requests.RequestException as exc:
            raise ProviderNetworkError(self.name, str(exc)) from exc

        if response.status_code >= 400:
            raise ProviderNetworkError(self.name, f"HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderParseError(self.name, f"invalid JSON: {exc}") from exc

    def _parsed_or_raise(self, payload) -> List[Quote]:
        result = self.parse(payload)
        if not result.ok:
            raise ProviderParseError(self.name, result.error)
        return result.quotes

    def fetch_quotes(self, timeout=DEFAULT_TIMEOUT_SECONDS) -> List[Quote]:
        return self._parsed_or_raise(self._get_json(self.url, timeout=timeout))

    def search_params(self, query: str) -> dict:
        return {"query": query}

    def search(self, query: str, timeout=DEFAULT_TIMEOUT_SECONDS) -> List[Quote]:
        if not self.supports_search:
            return []
        payload = self._get_json(
            self.search_url, params=self.search_params(query), timeout=timeout
        )
        result = self.parse(payload)
        # An empty search answer is a valid answer, not a broken provider.
        if not result.ok and self.extract_items(payload) is None:
            raise ProviderParseError(self.name, result.error)
        return result.quotes


class ZenQuotesProvider(QuoteProvider):
    name = "ZenQuotes"
    url = "https://zenquotes.io/api/quotes"

    def extract_items(self, payload):
        return payload if isinstance(payload, list) else None

    def quote_from_item(self, item):
        return build_quote(item.get("q"), item.get("a"), source=self.name)


class QuotableProvider(QuoteProvider):
    name = "Quotable"
    url = "https://api.quotable.io/quotes/random?limit=10"
    search_url = "https://api.quotable.io/search/quotes"

    def extract_items(self, payload):
        if isinstance(payload, dict) and isinstance(payload.get("results"), list):
            return payload["results"]
        return super().extract_items(payload)

    def search_params(self, query):
        return {"query": query, "limit": 10}

    def quote_from_item(self, item):
        return build_quote(
            item.get("content"),
            item.get("author"),
            source=self.name,
            quote_id=item.get("_id"),
            tags=item.get("tags"),
        )


class FavQsProvider(QuoteProvider):
    name = "FavQs"
    url = "https://favqs.com/api/qotd"
    search_url = "https://favqs.com/api/quotes"

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key

    def request_headers(self):
        headers = super().request_headers()
        if self.api_key:
            headers["Authorization"] = f'Token token="{self.api_key}"'
        return headers

    def extract_items(self, payload):
        if not isinstance(payload, dict):
            return None
        if isinstance(payload.get("quotes"), list):
            return payload["quotes"]
        if isinstance(payload.get("quote"), dict):
            return [payload["quote"]]
        return None

    def search_params(self, query):
        return {"filter": query}

    def quote_from_item(self, item):
        # FavQs answers empty searches with a placeholder body and no id
        if item.get("id") is None:
            return None
        return build_quote(
            item.get("body"),
            item.get("author"),
            source=self.name,
            quote_id=item.get("id"),
            tags=item.get("tags"),
        )


class QuoteGardenProvider(QuoteProvider):
    name = "QuoteGarden"
    url = "https://quote-garden.onrender.com/api/v3/quotes/random"

    def extract_items(self, payload):
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            return payload["data"]
        return None

    def quote_from_item(self, item):
        return build_quote(
            item.get("quoteText"),
            item.get("quoteAuthor"),
            source=self.name,
            quote_id=item.get("_id"),
            category=item.get("quoteGenre"),
        )


class StoicQuotesProvider(QuoteProvider):
    name = "Stoic Quotes"
    url = "https://stoic-quotes.com/api/quote"

    def quote_from_item(self, item):
        return build_quote(
            item.get("text") or item.get("quote"),
            item.get("author") or "Unknown Stoic",
            source=self.name,
            category="wisdom",
        )


class ProgrammingQuotesProvider(QuoteProvider):
    name = "Programming Quotes"
    url = "https://programming-quotesapi.vercel.app/api/random"

    def quote_from_item(self, item):
        return build_quote(
            item.get("quote") or item.get("en") or item.get("text"),
            item.get("author"),
            source=self.name,
            quote_id=item.get("id"),
            category="programming",
        )


class DummyJSONProvider(QuoteProvider):
    name = "DummyJSON"
    url = "https://dummyjson.com/quotes?limit=30"

    def extract_items(self, payload):
        if isinstance(payload, dict) and isinstance(payload.get("quotes"), list):
            return payload["quotes"]
        return super().extract_items(payload)

    def quote_from_item(self, item):
        return build_quote(
            item.get("quote"),
            item.get("author"),
            source=self.name,
            quote_id=item.get("id"),
        )


class TypeFitProvider(QuoteProvider):
    name = "Type.fit"
    url = "https://type.fit/api/quotes"

    def extract_items(self, payload):
        return payload if isinstance(payload, list) else None

    def quote_from_item(self, item):
        author = str(item.get("author") or "").replace(", type.fit", "").strip()
        return build_quote(item.get("text"), author, source=self.name)


def build_default_providers(favqs_api_key: Optional[str] = None) -> Dict[str, QuoteProvider]:
    if favqs_api_key is None:
        favqs_api_key = os.getenv("FAVQS_API_KEY", "").strip() or None
    providers = [
        ZenQuotesProvider(),
        QuotableProvider(),
        FavQsProvider(api_key=favqs_api_key),
        QuoteGardenProvider(),
        StoicQuotesProvider(),
        ProgrammingQuotesProvider(),
        DummyJSONProvider(),
        TypeFitProvider(),
    ]
    return {provider.name: provider for provider in providers}

"""View/like/save counters for quotes shown by the service."""

from __future__ import annotations

import copy
import logging
from collections import deque

from quote_formats import Quote

logger = logging.getLogger(__name__)

ANALYTICS_STORAGE_KEY = "quoteAnalytics"
EVENTS = ("view", "like", "save")
HISTORY_LIMIT = 20


class QuoteAnalytics:
    def __init__(self):
        self.views: dict[str, int] = {}
        self.likes: dict[str, int] = {}
        self.saves: dict[str, int] = {}
        self.category_distribution: dict[str, int] = {}
        self.source_distribution: dict[str, int] = {}
        self.recently_viewed: deque[str] = deque(maxlen=HISTORY_LIMIT)
        self.search_history: deque[str] = deque(maxlen=HISTORY_LIMIT)

    @property
    def total_quotes(self) -> int:
        return len(self.views)

    def record_event(self, quote: Quote, event: str) -> bool:
        if event not in EVENTS:
            logger.warning("Ignoring unknown analytics event '%s'", event)
            return False

        if event == "view":
            first_view = quote.id not in self.views
            self.views[quote.id] = self.views.get(quote.id, 0) + 1
            if quote.id in self.recently_viewed:
                self.recently_viewed.remove(quote.id)
            self.recently_viewed.append(quote.id)
            if first_view:
                category = quote.category or "uncategorized"
                source = quote.source or "unknown"
                self.category_distribution[category] = (
                    self.category_distribution.get(category, 0) + 1
                )
                self.source_distribution[source] = (
                    self.source_distribution.get(source, 0) + 1
                )
        elif event == "like":
            self.likes[quote.id] = self.likes.get(quote.id, 0) + 1
        else:
            self.saves[quote.id] = self.saves.get(quote.id, 0) + 1
        return True

    def record_search(self, query: str) -> None:
        query = (query or "").strip()
        if query:
            self.search_history.append(query)

    def snapshot(self) -> dict:
        return copy.deepcopy(
            {
                "total_quotes": self.total_quotes,
                "views": self.views,
                "likes": self.likes,
                "saves": self.saves,
                "category_distribution": self.category_distribution,
                "source_distribution": self.source_distribution,
                "recently_viewed": list(self.recently_viewed),
                "search_history": list(self.search_history),
            }
        )

    def load_dict(self, payload) -> bool:
        if not isinstance(payload, dict):
            return False
        try:
            views = {str(k): int(v) for k, v in (payload.get("views") or {}).items()}
            likes = {str(k): int(v) for k, v in (payload.get("likes") or {}).items()}
            saves = {str(k): int(v) for k, v in (payload.get("saves") or {}).items()}
            categories = {
                str(k): int(v)
                for k, v in (payload.get("category_distribution") or {}).items()
            }
            sources = {
                str(k): int(v)
                for k, v in (payload.get("source_distribution") or {}).items()
            }
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Discarding malformed analytics snapshot: %s", exc)
            return False

        self.views, self.likes, self.saves = views, likes, saves
        self.category_distribution = categories
        self.source_distribution = sources
        self.recently_viewed = deque(
            (str(i) for i in payload.get("recently_viewed") or []), maxlen=HISTORY_LIMIT
        )
        self.search_history = deque(
            (str(q) for q in payload.get("search_history") or []), maxlen=HISTORY_LIMIT
        )
        return True

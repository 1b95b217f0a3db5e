import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
DOWN = "down"


@dataclass(frozen=True, eq=False)
class Quote:
    id: str
    text: str
    author: str
    category: Optional[str] = None
    tags: Tuple[str, ...] = ()
    source: Optional[str] = None
    created_at: Optional[float] = None

    def __eq__(self, other):
        if not isinstance(other, Quote):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)


@dataclass(frozen=True)
class CacheEntry:
    quotes: Tuple[Quote, ...]
    timestamp: float
    source: str


@dataclass
class ProviderHealth:
    source: str
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    status: str = HEALTHY
    last_checked: Optional[float] = None

    @property
    def attempts(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        if not self.attempts:
            return 1.0
        return self.success_count / self.attempts


# ------------------------
# Construction helpers
# ------------------------


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or "quote"


def make_quote_id(source: Optional[str], text: str, author: str) -> str:
    """Stable id for providers that do not hand one out."""
    digest = hashlib.sha1(
        f"{source or ''}|{text}|{author}".encode("utf-8")
    ).hexdigest()[:12]
    return f"{slugify(source or 'quote')}-{digest}"


def build_quote(
    text,
    author,
    *,
    source: Optional[str] = None,
    quote_id=None,
    category=None,
    tags=None,
    created_at=None,
) -> Optional[Quote]:
    """
    Normalise raw provider fields into a Quote.
    Returns None when the text is empty, since a blank quote is never shown.
    """
    text = str(text or "").strip()
    if not text:
        return None
    author = str(author or "").strip() or "Unknown"

    tag_list: List[str] = []
    if isinstance(tags, (list, tuple)):
        tag_list = [str(t).strip() for t in tags if str(t).strip()]
    elif isinstance(tags, str) and tags.strip():
        tag_list = [tags.strip()]

    category = str(category).strip() if category else None
    if not category and tag_list:
        category = tag_list[0]

    if quote_id is None or str(quote_id).strip() == "":
        new_id = make_quote_id(source, text, author)
    else:
        new_id = f"{slugify(source or 'quote')}-{str(quote_id).strip()}"

    return Quote(
        id=new_id,
        text=text,
        author=author,
        category=category or None,
        tags=tuple(tag_list),
        source=source,
        created_at=float(created_at) if created_at is not None else None,
    )


# ------------------------
# Serialisation
# ------------------------


def quote_to_dict(quote: Quote) -> dict:
    return {
        "id": quote.id,
        "text": quote.text,
        "author": quote.author,
        "category": quote.category,
        "tags": list(quote.tags),
        "source": quote.source,
        "created_at": quote.created_at,
    }


def quote_from_dict(payload: dict) -> Quote:
    text = str(payload["text"]).strip()
    author = str(payload["author"]).strip()
    if not text or not author:
        raise ValueError("quote text and author must be non-empty")
    created_at = payload.get("created_at")
    return Quote(
        id=str(payload["id"]),
        text=text,
        author=author,
        category=payload.get("category") or None,
        tags=tuple(str(t) for t in payload.get("tags") or ()),
        source=payload.get("source") or None,
        created_at=float(created_at) if created_at is not None else None,
    )


def cache_entry_to_dict(entry: CacheEntry) -> dict:
    return {
        "quotes": [quote_to_dict(q) for q in entry.quotes],
        "timestamp": entry.timestamp,
        "source": entry.source,
    }


def cache_entry_from_dict(payload) -> Optional[CacheEntry]:
    if not isinstance(payload, dict):
        return None
    try:
        quotes = tuple(quote_from_dict(q) for q in payload.get("quotes") or [])
        return CacheEntry(
            quotes=quotes,
            timestamp=float(payload["timestamp"]),
            source=str(payload.get("source") or "unknown"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Discarding malformed cache entry: %s", exc)
        return None


def dedupe_quotes(quotes) -> List[Quote]:
    """Drop repeated ids, keeping first occurrence order."""
    seen: Dict[str, bool] = {}
    unique: List[Quote] = []
    for quote in quotes:
        if quote.id in seen:
            continue
        seen[quote.id] = True
        unique.append(quote)
    return unique

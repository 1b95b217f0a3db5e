import logging
import re
from datetime import date, datetime
from typing import Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DATE_KEY_FORMAT = "%Y-%m-%d"
_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

T = TypeVar("T")


def resolve_timezone(name: Optional[str]) -> Optional[ZoneInfo]:
    """Return a ZoneInfo for name, or None (local time) when unset or unknown."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s'; using local time.", name)
        return None


def get_date_key(moment=None, tz: Optional[ZoneInfo] = None) -> str:
    """
    Calendar-day key (YYYY-MM-DD) for a moment.

    Accepts a date, a datetime (converted into tz when it is aware and tz is
    given) or None for "now".
    """
    if moment is None:
        moment = datetime.now(tz) if tz else datetime.now()
    if isinstance(moment, datetime):
        if tz is not None and moment.tzinfo is not None:
            moment = moment.astimezone(tz)
        return moment.strftime(DATE_KEY_FORMAT)
    if isinstance(moment, date):
        return moment.strftime(DATE_KEY_FORMAT)
    raise TypeError(f"Unsupported moment type: {type(moment).__name__}")


def parse_date_key(value) -> Optional[str]:
    """Normalise a date, datetime or 'YYYY-MM-DD' string to a date key."""
    if isinstance(value, (date, datetime)):
        return get_date_key(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not _DATE_KEY_RE.match(text):
        return None
    try:
        return datetime.strptime(text, DATE_KEY_FORMAT).strftime(DATE_KEY_FORMAT)
    except ValueError:
        return None


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def djb2_hash(text: str) -> int:
    """djb2 with a 32-bit shift step, so seeds match across clients."""
    value = 5381
    for char in text:
        value = _to_int32(value << 5) + value + ord(char)
    return abs(value)


def pick_index(date_key: str, size: int) -> int:
    if size <= 0:
        raise ValueError("pool size must be positive")
    return djb2_hash(date_key) % size


def pick_for_day(pool: Sequence[T], date_key: str) -> Optional[T]:
    if not pool:
        return None
    return pool[pick_index(date_key, len(pool))]

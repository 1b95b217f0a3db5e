from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, replace
from typing import Mapping

from quote_errors import ConfigError
from quote_providers import DEFAULT_TIMEOUT_SECONDS
from rate_limiter import DEFAULT_RATE_LIMITS, RateLimit

logger = logging.getLogger(__name__)

DEFAULT_MAX_CACHE_AGE_SECONDS = 24 * 60 * 60
DEFAULT_BULK_ATTEMPT_FACTOR = 3

DEFAULT_SOURCE_WEIGHTS: dict[str, float] = {
    "ZenQuotes": 0.25,
    "Quotable": 0.2,
    "FavQs": 0.15,
    "Type.fit": 0.15,
    "Stoic Quotes": 0.15,
    "Programming Quotes": 0.1,
    "QuoteGarden": 0.1,
    "DummyJSON": 0.0,
}


@dataclass(frozen=True)
class ServiceConfig:
    cache_enabled: bool = True
    max_cache_age: float = DEFAULT_MAX_CACHE_AGE_SECONDS
    categories: tuple[str, ...] = ()
    source_weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_SOURCE_WEIGHTS)
    )
    fetch_timeout: float = DEFAULT_TIMEOUT_SECONDS
    timezone: str | None = None
    bulk_attempt_factor: int = DEFAULT_BULK_ATTEMPT_FACTOR
    rate_limits: dict[str, RateLimit] = field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMITS)
    )


def _positive_setting(name: str, value, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if not math.isfinite(number) or number <= 0:
        raise ConfigError(f"{name} must be positive; using {default}s.")
    return number


def _coerce_weight(name: str, raw, defaults: dict[str, float]) -> float:
    try:
        weight = float(raw)
    except (TypeError, ValueError):
        weight = math.nan
    if not math.isfinite(weight) or weight < 0:
        raise ConfigError(
            f"Invalid weight {raw!r} for {name}; using {defaults.get(name, 0.0)}."
        )
    return weight


def sanitize_weights(
    weights, defaults: dict[str, float] | None = None
) -> tuple[dict[str, float], list[str]]:
    """Coerce a weight mapping; bad entries fall back to the default weight (or 0)."""
    defaults = DEFAULT_SOURCE_WEIGHTS if defaults is None else defaults
    warnings: list[str] = []
    if not isinstance(weights, Mapping):
        warnings.append("Source weights must be a mapping; using defaults.")
        return dict(defaults), warnings

    cleaned: dict[str, float] = {}
    for source, raw in weights.items():
        name = str(source).strip()
        if not name:
            warnings.append("Ignoring source weight with an empty name.")
            continue
        try:
            cleaned[name] = _coerce_weight(name, raw, defaults)
        except ConfigError as exc:
            warnings.append(str(exc))
            cleaned[name] = defaults.get(name, 0.0)
    return cleaned, warnings


def sanitize_rate_limits(limits) -> tuple[dict[str, RateLimit], list[str]]:
    """Keep limits with a capacity of at least one token; drop the rest."""
    warnings: list[str] = []
    if not isinstance(limits, Mapping):
        warnings.append("Rate limits must be a mapping; using defaults.")
        return dict(DEFAULT_RATE_LIMITS), warnings

    cleaned: dict[str, RateLimit] = {}
    for source, limit in limits.items():
        try:
            capacity = float(limit.capacity)
            refill = float(limit.refill_per_min)
            if not (math.isfinite(capacity) and math.isfinite(refill)):
                raise ValueError("not finite")
            if capacity < 1 or refill < 0:
                raise ConfigError(
                    f"Rate limit for {source} needs capacity >= 1 and refill >= 0; "
                    "leaving it unlimited."
                )
        except ConfigError as exc:
            warnings.append(str(exc))
            continue
        except (AttributeError, TypeError, ValueError):
            warnings.append(f"Malformed rate limit for {source}; leaving it unlimited.")
            continue
        cleaned[str(source)] = RateLimit(capacity=capacity, refill_per_min=refill)
    return cleaned, warnings


def validate_service_config(config: ServiceConfig) -> tuple[ServiceConfig, list[str]]:
    """Return a corrected copy of config plus the warnings that were raised."""
    warnings: list[str] = []

    try:
        max_age = _positive_setting(
            "max_cache_age", config.max_cache_age, DEFAULT_MAX_CACHE_AGE_SECONDS
        )
    except ConfigError as exc:
        warnings.append(str(exc))
        max_age = DEFAULT_MAX_CACHE_AGE_SECONDS

    try:
        timeout = _positive_setting(
            "fetch_timeout", config.fetch_timeout, DEFAULT_TIMEOUT_SECONDS
        )
    except ConfigError as exc:
        warnings.append(str(exc))
        timeout = DEFAULT_TIMEOUT_SECONDS

    weights, weight_warnings = sanitize_weights(config.source_weights)
    warnings.extend(weight_warnings)
    if not any(w > 0 for w in weights.values()):
        warnings.append("No source has a positive weight; using default weights.")
        weights = dict(DEFAULT_SOURCE_WEIGHTS)

    try:
        attempt_factor = int(config.bulk_attempt_factor)
    except (TypeError, ValueError):
        attempt_factor = 0
    if attempt_factor < 1:
        warnings.append(
            f"bulk_attempt_factor must be >= 1; using {DEFAULT_BULK_ATTEMPT_FACTOR}."
        )
        attempt_factor = DEFAULT_BULK_ATTEMPT_FACTOR

    rate_limits, limit_warnings = sanitize_rate_limits(config.rate_limits)
    warnings.extend(limit_warnings)

    categories = tuple(
        str(c).strip().lower() for c in (config.categories or ()) if str(c).strip()
    )

    for warning in warnings:
        logger.warning("Config warning: %s", warning)

    corrected = replace(
        config,
        cache_enabled=bool(config.cache_enabled),
        max_cache_age=max_age,
        categories=categories,
        source_weights=weights,
        fetch_timeout=timeout,
        timezone=(config.timezone or None),
        bulk_attempt_factor=attempt_factor,
        rate_limits=rate_limits,
    )
    return corrected, warnings


# ------------------------
# Environment loading
# ------------------------


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "t"}


def parse_weights(raw: str) -> dict[str, str]:
    """Parse 'ZenQuotes=0.3,Quotable=0.2' (values are validated later)."""
    weights: dict[str, str] = {}
    for chunk in (raw or "").split(","):
        if "=" not in chunk:
            continue
        name, _, value = chunk.partition("=")
        if name.strip():
            weights[name.strip()] = value.strip()
    return weights


def load_config_from_env() -> ServiceConfig:
    weights = dict(DEFAULT_SOURCE_WEIGHTS)
    weights.update(parse_weights(os.getenv("QUOTE_SOURCE_WEIGHTS", "")))
    categories = tuple(
        c.strip() for c in os.getenv("QUOTE_CATEGORIES", "").split(",") if c.strip()
    )
    return ServiceConfig(
        cache_enabled=_env_bool("QUOTE_CACHE_ENABLED", True),
        max_cache_age=os.getenv("QUOTE_MAX_CACHE_AGE", DEFAULT_MAX_CACHE_AGE_SECONDS),
        categories=categories,
        source_weights=weights,
        fetch_timeout=os.getenv("QUOTE_FETCH_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
        timezone=os.getenv("QUOTE_TIMEZONE", "").strip() or None,
        rate_limits=(
            dict(DEFAULT_RATE_LIMITS) if _env_bool("QUOTE_RATE_LIMITS_ENABLED", True) else {}
        ),
    )

"""Per-provider success/failure bookkeeping and derived health status."""

from __future__ import annotations

import logging
import time
from typing import Callable

from quote_formats import DEGRADED, DOWN, HEALTHY, ProviderHealth

logger = logging.getLogger(__name__)

CONSECUTIVE_FAILURE_THRESHOLD = 3
MIN_ATTEMPTS_FOR_RATE = 5
DOWN_SUCCESS_RATE = 0.20
DEGRADED_SUCCESS_RATE = 0.80

HEALTH_STORAGE_KEY = "providerHealth"


class ProviderHealthTracker:
    def __init__(self, time_fn: Callable[[], float] = time.time):
        self._time_fn = time_fn
        self._records: dict[str, ProviderHealth] = {}

    def _record_for(self, source: str) -> ProviderHealth:
        record = self._records.get(source)
        if record is None:
            record = ProviderHealth(source=source)
            self._records[source] = record
        return record

    def record_result(self, source: str, success: bool) -> None:
        record = self._record_for(source)
        previous = record.status
        if success:
            record.success_count += 1
            record.consecutive_failures = 0
        else:
            record.failure_count += 1
            record.consecutive_failures += 1
        record.last_checked = self._time_fn()
        record.status = self._derive_status(record)

        if record.status != previous:
            logger.info(
                "Provider %s health changed: %s -> %s", source, previous, record.status
            )

    @staticmethod
    def _derive_status(record: ProviderHealth) -> str:
        rate = record.success_rate
        if record.consecutive_failures >= CONSECUTIVE_FAILURE_THRESHOLD:
            return DOWN
        if record.attempts >= MIN_ATTEMPTS_FOR_RATE and rate < DOWN_SUCCESS_RATE:
            return DOWN
        if rate < DEGRADED_SUCCESS_RATE:
            return DEGRADED
        return HEALTHY

    def get_status(self, source: str) -> str:
        record = self._records.get(source)
        if record is None:
            return HEALTHY
        return self._derive_status(record)

    def get_health_status(self) -> list[dict]:
        return [
            {
                "source": name,
                "status": self._derive_status(record),
                "success_count": record.success_count,
                "failure_count": record.failure_count,
                "consecutive_failures": record.consecutive_failures,
                "success_rate": round(record.success_rate, 4),
                "last_checked": record.last_checked,
            }
            for name, record in sorted(self._records.items())
        ]

    def reset(self, source: str) -> None:
        if source in self._records:
            self._records[source] = ProviderHealth(source=source)
            logger.info("Provider %s health reset.", source)

    # ------------------------
    # Persistence snapshots
    # ------------------------

    def to_dict(self) -> dict:
        return {
            name: {
                "success_count": record.success_count,
                "failure_count": record.failure_count,
                "consecutive_failures": record.consecutive_failures,
                "last_checked": record.last_checked,
            }
            for name, record in self._records.items()
        }

    def load_dict(self, payload) -> int:
        """Replace counters from a snapshot; malformed rows are skipped."""
        if not isinstance(payload, dict):
            return 0
        loaded = 0
        for name, row in payload.items():
            try:
                record = ProviderHealth(
                    source=str(name),
                    success_count=max(0, int(row.get("success_count", 0))),
                    failure_count=max(0, int(row.get("failure_count", 0))),
                    consecutive_failures=max(0, int(row.get("consecutive_failures", 0))),
                    last_checked=row.get("last_checked"),
                )
            except (AttributeError, TypeError, ValueError):
                logger.warning("Skipping malformed health row for %s", name)
                continue
            record.status = self._derive_status(record)
            self._records[record.source] = record
            loaded += 1
        return loaded

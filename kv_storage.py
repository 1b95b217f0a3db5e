"""Key/value persistence used by the quote core (memory or SQLite backed)."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
from typing import Any, Protocol

from quote_errors import PersistenceError

logger = logging.getLogger(__name__)


class Storage(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...


class MemoryStorage:
    """Process-local storage. Values round-trip through JSON like on disk."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    async def get(self, key: str) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SQLiteStorage:
    def __init__(self, filepath: str = "quotes.db"):
        self.filepath = filepath
        self._ensure_schema()

    # ------------------------
    # Internal helpers
    # ------------------------

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.filepath)

    def _ensure_schema(self) -> None:
        os.makedirs(os.path.dirname(self.filepath) or ".", exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def _get_sync(self, key: str) -> Any:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM kv WHERE key = ?", (key,)
                ).fetchone()
            if row is None:
                return None
            return json.loads(row[0])
        except (sqlite3.Error, ValueError) as exc:
            raise PersistenceError(f"Could not read {key} from {self.filepath}: {exc}") from exc

    def _set_sync(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False)
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                    (key, payload),
                )
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not write {key} to {self.filepath}: {exc}") from exc
        logger.debug("Stored key %s in %s", key, self.filepath)

    # ------------------------
    # Storage contract
    # ------------------------

    async def get(self, key: str) -> Any:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._set_sync, key, value)

"""
Key/value persistence for the canonical collections.

Values are JSON-serializable; the on-disk format is opaque to callers.
SQLite backend uses one table; the in-memory backend is for tests and
ephemeral contexts. No cross-key transactionality.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from proton_wallet.wallet_logging import get_logger

logger = get_logger(__name__)

SCHEMA_KV = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at INTEGER
);
"""


class KeyValueStore(ABC):
    """Abstract get/set store for persisted wallet state."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store value; None deletes the key."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        if value is None:
            self.delete(key)
            return
        raw = json.dumps(value)
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SqliteKeyValueStore(KeyValueStore):
    """One row per key; JSON text values."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        with self._cursor() as cur:
            cur.executescript(SCHEMA_KV)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _cursor(self):
        conn = self._connect()
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str) -> Any | None:
        with self._lock, self._cursor() as cur:
            row = cur.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except (json.JSONDecodeError, TypeError):
            logger.warning("kv_value_corrupt", key=key)
            return None

    def set(self, key: str, value: Any) -> None:
        if value is None:
            self.delete(key)
            return
        raw = json.dumps(value)
        with self._lock, self._cursor() as cur:
            cur.execute(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                (key, raw, int(time.time())),
            )

    def delete(self, key: str) -> None:
        with self._lock, self._cursor() as cur:
            cur.execute("DELETE FROM kv WHERE key = ?", (key,))

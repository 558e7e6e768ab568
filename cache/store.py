"""
cache/store.py -- SQLite-backed keyed TTL cache for one-time codes and counters.

Stores JSON values under string keys with a per-entry expiry. Shared by the
password-reset and reactivation flows (code records) and the daily attempt
limiter (integer counters).

Expiry is lazy: get() treats an expired row as missing and deletes it;
purge_expired() trims the table in bulk and runs from a background task.

incr() is a single INSERT ... ON CONFLICT statement, so concurrent increments
of the same key never lose an update.

Usage:
    cache = KeyedCache()
    cache.set("otc:reset:42", {"code": "ABC234"}, ttl=1800)
    data = cache.get("otc:reset:42")      # returns value or None
    cache.incr("otc-attempts:reset:42:2026-10-18", ttl=86400)
    cache.delete("otc:reset:42")
    cache.purge_expired()
"""

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable

_DEFAULT_DB = Path(__file__).parent.parent / "eventara_cache.db"

_DDL = """
CREATE TABLE IF NOT EXISTS kv_cache (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


class KeyedCache:
    def __init__(self, db_path: Path | str = _DEFAULT_DB, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for key if it exists and hasn't expired."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value, expires_at FROM kv_cache WHERE key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return default
            value, expires_at = row
            if self._clock() >= expires_at:
                self._conn.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
                self._conn.commit()
                return default
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: int) -> None:
        """Store value for key for ttl seconds, replacing any existing entry."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv_cache (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value, default=str), self._clock() + ttl),
            )
            self._conn.commit()

    def incr(self, key: str, ttl: int) -> int:
        """Atomically increment an integer counter and return the new value.

        A missing or expired counter starts from zero with a fresh ttl. An
        existing live counter keeps its original expiry.
        """
        now = self._clock()
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO kv_cache (key, value, expires_at) VALUES (?, '1', ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = CASE WHEN kv_cache.expires_at <= ? THEN '1'
                                 ELSE CAST(CAST(kv_cache.value AS INTEGER) + 1 AS TEXT) END,
                    expires_at = CASE WHEN kv_cache.expires_at <= ? THEN excluded.expires_at
                                      ELSE kv_cache.expires_at END
                """,
                (key, now + ttl, now, now),
            )
            row = self._conn.execute("SELECT value FROM kv_cache WHERE key = ?", (key,)).fetchone()
            self._conn.commit()
        return int(row[0])

    def delete(self, key: str) -> bool:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
            self._conn.commit()
        return cursor.rowcount > 0

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM kv_cache WHERE expires_at <= ?", (self._clock(),))
            self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()

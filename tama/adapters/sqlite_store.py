"""
Tama Assistant — SQLite key-value adapter.

Local-development backend implementing KeyValueStore on a single SQLite
file, so the bot runs without a Redis server. Expiry is lazy: an expired
row is treated as absent and purged on the next read.

sqlite3 is blocking, so every operation runs in a worker thread via
asyncio.to_thread with its own short-lived connection.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from pathlib import Path

logger = logging.getLogger(__name__)


class SqliteStore:
    """SQLite-backed implementation of KeyValueStore."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from tama.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the kv and set tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key         TEXT PRIMARY KEY,
                    value       TEXT NOT NULL,
                    expires_at  REAL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_sets (
                    key     TEXT NOT NULL,
                    member  TEXT NOT NULL,
                    PRIMARY KEY (key, member)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_expiry (
                    key         TEXT PRIMARY KEY,
                    expires_at  REAL NOT NULL
                )
            """)
        logger.debug("Key-value tables initialized at %s", self._db_path)

    @staticmethod
    def _expiry(ttl_seconds: int | None) -> float | None:
        return time.time() + ttl_seconds if ttl_seconds else None

    def _purge_if_expired(self, conn: sqlite3.Connection, key: str) -> None:
        now = time.time()
        conn.execute(
            "DELETE FROM kv WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
            (key, now),
        )
        row = conn.execute(
            "SELECT expires_at FROM kv_expiry WHERE key = ?", (key,)
        ).fetchone()
        if row is not None and row["expires_at"] <= now:
            conn.execute("DELETE FROM kv_sets WHERE key = ?", (key,))
            conn.execute("DELETE FROM kv_expiry WHERE key = ?", (key,))

    # ------------------------------------------------------------------
    # KeyValueStore
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await asyncio.to_thread(self._set, key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def sadd(self, key: str, member: str) -> bool:
        return await asyncio.to_thread(self._sadd, key, member)

    async def srem(self, key: str, member: str) -> None:
        await asyncio.to_thread(self._srem, key, member)

    async def smembers(self, key: str) -> set[str]:
        return await asyncio.to_thread(self._smembers, key)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await asyncio.to_thread(self._expire, key, ttl_seconds)

    async def incr(self, key: str) -> int:
        return await asyncio.to_thread(self._incr, key)

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _get(self, key: str) -> str | None:
        with self._connect() as conn:
            self._purge_if_expired(conn, key)
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else row["value"]

    def _set(self, key: str, value: str, ttl_seconds: int | None) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._expiry(ttl_seconds)),
            )

    def _delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.execute("DELETE FROM kv_sets WHERE key = ?", (key,))
            conn.execute("DELETE FROM kv_expiry WHERE key = ?", (key,))

    def _sadd(self, key: str, member: str) -> bool:
        with self._connect() as conn:
            self._purge_if_expired(conn, key)
            cursor = conn.execute(
                "INSERT OR IGNORE INTO kv_sets (key, member) VALUES (?, ?)",
                (key, member),
            )
        return cursor.rowcount > 0

    def _srem(self, key: str, member: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM kv_sets WHERE key = ? AND member = ?", (key, member),
            )

    def _smembers(self, key: str) -> set[str]:
        with self._connect() as conn:
            self._purge_if_expired(conn, key)
            rows = conn.execute(
                "SELECT member FROM kv_sets WHERE key = ?", (key,)
            ).fetchall()
        return {r["member"] for r in rows}

    def _expire(self, key: str, ttl_seconds: int) -> None:
        expires_at = self._expiry(ttl_seconds)
        with self._connect() as conn:
            conn.execute("UPDATE kv SET expires_at = ? WHERE key = ?", (expires_at, key))
            has_set = conn.execute(
                "SELECT 1 FROM kv_sets WHERE key = ? LIMIT 1", (key,)
            ).fetchone()
            if has_set is not None:
                conn.execute(
                    "INSERT OR REPLACE INTO kv_expiry (key, expires_at) VALUES (?, ?)",
                    (key, expires_at),
                )

    def _incr(self, key: str) -> int:
        with self._connect() as conn:
            self._purge_if_expired(conn, key)
            row = conn.execute(
                "SELECT value, expires_at FROM kv WHERE key = ?", (key,)
            ).fetchone()
            if row is None:
                value, expires_at = 1, None
            else:
                value, expires_at = int(row["value"]) + 1, row["expires_at"]
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, str(value), expires_at),
            )
        return value

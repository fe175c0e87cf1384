from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import aiosqlite
from loguru import logger

from beetleboard.config import Settings, settings
from beetleboard.errors import StoreUnavailableError

SNAPSHOT_KEY = "leaderboard-snapshot"
META_KEY = "leaderboard-meta"
USER_LIST_KEY = "user-list-cache"
PARTIAL_KEY = "leaderboard-partial"
STATS_PREFIX = "leaderboard-stats:"
PROGRESS_PREFIX = "friends-progress:"


def stats_key(username: str) -> str:
    return f"{STATS_PREFIX}{username}"


def progress_key(seed: str) -> str:
    return f"{PROGRESS_PREFIX}{seed}"


class KeyValueStore:
    """Durable key-value cache with per-key TTL, backed by a sqlite file.

    Every operation opens its own connection, so single-key writes are atomic
    and ``set_many`` is all-or-nothing. Expired entries read as absent.
    """

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time) -> None:
        self._db_path = db_path
        self._clock = clock

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def init(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            await db.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                );

                CREATE INDEX IF NOT EXISTS idx_kv_expires
                ON kv_entries(expires_at);
                """
            )
            await db.commit()

    def _expiry(self, ttl: int | None) -> float | None:
        if ttl is None:
            return None
        return self._clock() + ttl

    async def get(self, key: str) -> str | None:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                """
                SELECT value FROM kv_entries
                WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, self._clock()),
            )
            row = await cursor.fetchone()
            return str(row[0]) if row else None

    async def get_json(self, key: str) -> Any | None:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable JSON under key {}", key)
            return None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        await self.set_many({key: value}, ttl)

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        await self.set(key, json.dumps(value, separators=(",", ":")), ttl)

    async def set_many(self, entries: Mapping[str, str], ttl: int | None = None) -> None:
        expires_at = self._expiry(ttl)
        async with aiosqlite.connect(self._db_path) as db:
            await db.executemany(
                """
                INSERT INTO kv_entries (key, value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                [(key, value, expires_at) for key, value in entries.items()],
            )
            await db.commit()

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        placeholders = ",".join("?" for _ in keys)
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                f"DELETE FROM kv_entries WHERE key IN ({placeholders})",
                keys,
            )
            await db.commit()
            return cursor.rowcount

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def scan(self, pattern: str = "*") -> list[str]:
        """Return unexpired keys matching a glob pattern such as ``leaderboard-stats:*``."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                """
                SELECT key FROM kv_entries
                WHERE key GLOB ? AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY key ASC
                """,
                (pattern, self._clock()),
            )
            rows = await cursor.fetchall()
        return [str(row[0]) for row in rows]

    async def purge_expired(self) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "DELETE FROM kv_entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._clock(),),
            )
            await db.commit()
            return cursor.rowcount


_store: KeyValueStore | None = None


async def get_store(config: Settings | None = None) -> KeyValueStore:
    """Return the process-wide store, opening a fresh one on first use.

    A store whose initialization failed is never cached.
    """
    global _store
    if _store is not None:
        return _store

    cfg = config or settings
    store = KeyValueStore(cfg.db_path)
    try:
        await store.init()
    except (OSError, sqlite3.Error) as exc:
        raise StoreUnavailableError(f"Failed to open store at {cfg.db_path}: {exc}") from exc

    _store = store
    logger.info("Store opened at {}", cfg.db_path)
    return store


def reset_store() -> None:
    global _store
    _store = None


async def disconnect_store() -> None:
    global _store
    store, _store = _store, None
    if store is None:
        return
    try:
        purged = await store.purge_expired()
    except sqlite3.Error as exc:
        logger.warning("Expired entry purge failed on disconnect: {}", exc)
        return
    logger.info("Store closed, purged {} expired entries", purged)

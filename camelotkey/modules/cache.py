"""
Persistent Key Cache Module

Resolved keys are stored in SQLite, keyed by the caller's cache key
(``ta:<title>|<artist>``). Both hits and misses are cached so repeated
misses do not re-query the providers:
- Hits: 30 days (configurable via CACHE_TTL_DAYS)
- Misses: 30 days (configurable via NEGATIVE_CACHE_TTL_DAYS)

Stale rows are not deleted; the next resolution overwrites them. The
same database holds a small key/value ``settings`` table used for the
GetSongBPM credential.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import aiosqlite

from .helperClasses import KeyMatch, KeyMiss, ResolvedKey

GETSONG_KEY_STORAGE = "getsongApiKey"


def make_cache_key(title: str, artist: str) -> str:
    return f"ta:{title.lower()}|{artist.lower()}"


def _parse_timestamp(value) -> datetime:
    cached_time = datetime.fromisoformat(value) if isinstance(value, str) else value
    if cached_time.tzinfo is None:
        cached_time = cached_time.replace(tzinfo=timezone.utc)
    return cached_time


def _record_from_row(row) -> ResolvedKey:
    camelot, musical_key, mode, provider, provider_id, mbid, score, cached_at = row
    cached_time = _parse_timestamp(cached_at)
    if musical_key:
        return KeyMatch(
            key=musical_key,
            mode=mode,
            camelot=camelot,
            provider=provider,
            provider_id=provider_id,
            mbid=mbid,
            score=score,
            cached_at=cached_time,
        )
    return KeyMiss(mbid=mbid, score=score, cached_at=cached_time)


class CacheStore:
    """SQLite-backed map of cache key -> resolved key record."""

    def __init__(
        self,
        db_path: str,
        ttl_days: int = 30,
        negative_ttl_days: int = 30,
    ):
        self.db_path = db_path
        self.ttl = timedelta(days=ttl_days)
        self.negative_ttl = timedelta(days=negative_ttl_days)

    async def initialize_db(self) -> None:
        async with aiosqlite.connect(self.db_path) as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS resolved_keys (
                    cache_key TEXT PRIMARY KEY,
                    camelot TEXT,
                    musical_key TEXT,
                    mode TEXT,
                    provider TEXT,
                    provider_id TEXT,
                    mbid TEXT,
                    score INTEGER,
                    cached_at TIMESTAMP NOT NULL
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    name TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            await conn.commit()
            logging.info("Key cache tables initialized")

    def is_fresh(self, record: Optional[ResolvedKey], now: Optional[datetime] = None) -> bool:
        if record is None:
            return False
        now = now or datetime.now(timezone.utc)
        ttl = self.ttl if record.is_hit else self.negative_ttl
        return (now - record.cached_at) < ttl

    async def get(self, cache_key: str) -> Optional[ResolvedKey]:
        """Return the stored record for a cache key, fresh or not."""
        async with aiosqlite.connect(self.db_path) as conn:
            async with conn.execute("""
                SELECT camelot, musical_key, mode, provider, provider_id, mbid, score, cached_at
                FROM resolved_keys WHERE cache_key = ?
            """, (cache_key,)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return _record_from_row(row)

    async def set(self, cache_key: str, record: ResolvedKey) -> None:
        """Store a record, replacing whatever was there (last writer wins)."""
        async with aiosqlite.connect(self.db_path) as conn:
            await conn.execute("""
                INSERT OR REPLACE INTO resolved_keys
                    (cache_key, camelot, musical_key, mode, provider, provider_id, mbid, score, cached_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                cache_key,
                record.camelot,
                record.key,
                record.mode,
                record.provider,
                record.provider_id,
                record.mbid,
                record.score,
                record.cached_at.isoformat(),
            ))
            await conn.commit()

    async def get_setting(self, name: str) -> Optional[str]:
        async with aiosqlite.connect(self.db_path) as conn:
            async with conn.execute(
                "SELECT value FROM settings WHERE name = ?", (name,)
            ) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else None

    async def set_setting(self, name: str, value: str) -> None:
        async with aiosqlite.connect(self.db_path) as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO settings (name, value) VALUES (?, ?)",
                (name, value),
            )
            await conn.commit()

    async def get_cache_stats(self) -> dict:
        """
        Get statistics about the key cache.

        Returns:
            Dict with total, hit, miss and fresh entry counts
        """
        now = datetime.now(timezone.utc)
        async with aiosqlite.connect(self.db_path) as conn:
            async with conn.execute("""
                SELECT
                    COUNT(*) as total,
                    SUM(CASE WHEN musical_key IS NOT NULL THEN 1 ELSE 0 END) as hits,
                    SUM(CASE WHEN musical_key IS NULL THEN 1 ELSE 0 END) as misses,
                    SUM(CASE WHEN musical_key IS NOT NULL AND cached_at >= ? THEN 1
                             WHEN musical_key IS NULL AND cached_at >= ? THEN 1
                             ELSE 0 END) as fresh
                FROM resolved_keys
            """, ((now - self.ttl).isoformat(), (now - self.negative_ttl).isoformat())) as cursor:
                row = await cursor.fetchone()

        return {
            "total_entries": row[0] or 0,
            "hit_entries": row[1] or 0,
            "miss_entries": row[2] or 0,
            "fresh_entries": row[3] or 0,
            "cache_ttl_days": self.ttl.days,
            "negative_cache_ttl_days": self.negative_ttl.days,
        }

"""Resolution Orchestrator for title/artist -> Camelot key lookups.

This module provides the KeyOrchestrator class that turns one lookup
into a cached result.

The orchestrator handles:
- Returning a fresh cached record without any network I/O
- Trying GetSongBPM first, then MusicBrainz + AcousticBrainz
- Caching every terminal outcome, misses included
"""
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Sequence

from .base import KeyProvider
from .cache import CacheStore
from .helperClasses import KeyMiss, ResolvedKey


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyOrchestrator:
    """Resolves keys through a fixed, ordered list of providers.

    Providers that return None are skipped. The first provider that
    returns a record ends the chain; if every provider returns None the
    result is an empty ``KeyMiss``.
    """

    def __init__(
        self,
        cache: CacheStore,
        providers: Sequence[KeyProvider],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cache = cache
        self.providers = list(providers)
        self._clock = clock

    async def _run_providers(self, title: str, artist: str) -> ResolvedKey:
        for provider in self.providers:
            if not await provider.is_configured():
                logging.warning(f"{provider.name} is not configured, skipping")
                continue
            result = await provider.lookup(title, artist)
            if result is not None:
                logging.debug(
                    f"{provider.name} resolved '{title}' by '{artist}' to {result.camelot}"
                )
                return result
            logging.debug(
                f"{provider.name} had no key for '{title}' by '{artist}', trying next provider"
            )
        return KeyMiss()

    async def resolve(self, cache_key: str, title: str, artist: str) -> ResolvedKey:
        """Resolve one lookup, using and refreshing the cache.

        Args:
            cache_key: Stable identifier for the title/artist pair
            title: Song title
            artist: Artist name

        Returns:
            The cached record if still fresh, otherwise the newly resolved
            record (which has been written to the cache)

        Raises:
            Whatever a provider raises; nothing is cached in that case
        """
        now = self._clock()
        cached = await self.cache.get(cache_key)
        if self.cache.is_fresh(cached, now=now):
            logging.debug(f"Cache hit for {cache_key}")
            return cached

        logging.debug(f"Cache {'stale' if cached else 'miss'} for {cache_key}, resolving")
        result = await self._run_providers(title, artist)

        # Every outcome, misses included, gets a fresh TTL from now
        record = replace(result, cached_at=now)
        await self.cache.set(cache_key, record)

        if record.is_hit:
            logging.info(
                f"Resolved '{title}' by '{artist}' to {record.camelot} "
                f"({record.key} {record.mode}) via {record.provider}"
            )
        else:
            logging.info(f"No key found for '{title}' by '{artist}'")
        return record

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()

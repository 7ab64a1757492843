"""Process-level entry point for Camelot key lookups.

``CamelotEngine`` wires the cache, the two providers, the orchestrator
and the serial queue together, and exposes the message contract used by
the page overlay:

    request:  {"type": "LOOKUP_CAMELOT", "cacheKey": ..., "title": ..., "artist": ...}
    response: {"ok": True, "data": <record or None>} | {"ok": False, "error": "..."}
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from . import musicbrainz
from .cache import GETSONG_KEY_STORAGE, CacheStore, make_cache_key
from .getsongbpm import GetSongBPMProvider
from .helperClasses import LookupRequest, ResolvedKey, UserInputs
from .matching import normalize_whitespace
from .orchestrator import KeyOrchestrator
from .serial_queue import SerialRequestQueue

LOOKUP_MESSAGE_TYPE = "LOOKUP_CAMELOT"


class CamelotEngine:
    def __init__(
        self,
        user_inputs: UserInputs,
        orchestrator: Optional[KeyOrchestrator] = None,
    ):
        self.user_inputs = user_inputs
        self.cache = CacheStore(
            user_inputs.db_path,
            ttl_days=user_inputs.cache_ttl_days,
            negative_ttl_days=user_inputs.negative_cache_ttl_days,
        )
        if orchestrator is None:
            musicbrainz.configure(
                user_agent=user_inputs.musicbrainz_user_agent,
                min_interval_ms=user_inputs.musicbrainz_min_interval_ms,
                request_timeout_seconds=user_inputs.request_timeout_seconds,
            )
            orchestrator = KeyOrchestrator(
                self.cache,
                [
                    GetSongBPMProvider(
                        self.get_api_key,
                        request_timeout_seconds=user_inputs.request_timeout_seconds,
                    ),
                    musicbrainz.MusicBrainzProvider(),
                ],
            )
        self.orchestrator = orchestrator
        self.queue = SerialRequestQueue()

    async def initialize(self) -> None:
        await self.cache.initialize_db()

    async def get_api_key(self) -> Optional[str]:
        """Stored GetSongBPM key, falling back to the environment setting."""
        stored = (await self.cache.get_setting(GETSONG_KEY_STORAGE) or "").strip()
        return stored or self.user_inputs.getsongbpm_api_key

    async def set_api_key(self, api_key: str) -> None:
        await self.cache.set_setting(GETSONG_KEY_STORAGE, api_key.strip())

    async def lookup(
        self, title: str, artist: str, cache_key: Optional[str] = None
    ) -> ResolvedKey:
        """Resolve a title/artist pair through the serial queue."""
        request = LookupRequest(
            cache_key=cache_key or make_cache_key(title, artist),
            title=title,
            artist=artist,
        )
        if self.queue.pending:
            logging.debug(f"Lookup for {request.cache_key} queued behind {self.queue.pending} others")
        return await self.queue.submit(
            lambda: self.orchestrator.resolve(request.cache_key, request.title, request.artist)
        )

    async def handle_message(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Answer one overlay request. Returns None for unrelated message types."""
        if not isinstance(message, dict) or message.get("type") != LOOKUP_MESSAGE_TYPE:
            return None

        title = normalize_whitespace(message.get("title"))
        artist = normalize_whitespace(message.get("artist"))
        cache_key = message.get("cacheKey")
        if not title or not artist or not cache_key:
            return {"ok": True, "data": None}

        try:
            record = await self.lookup(title, artist, cache_key)
        except Exception as e:
            logging.error(f"Lookup failed for '{title}' by '{artist}': {e}")
            return {"ok": False, "error": str(e) or e.__class__.__name__}
        return {"ok": True, "data": record.to_dict()}

    async def get_cache_stats(self) -> dict:
        return await self.cache.get_cache_stats()

    async def close(self) -> None:
        await self.orchestrator.close()

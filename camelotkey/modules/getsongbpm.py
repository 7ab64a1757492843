"""GetSongBPM provider for CamelotKey.

Primary key source. Uses the GetSongBPM/GetSongKey search API, which
requires an API key sent in the ``X-API-KEY`` header. The key is read
from the settings table on every lookup so it can be changed while the
process runs; ``GETSONGBPM_API_KEY`` is used when nothing is stored.

Search results are ranked by fuzzy title/artist overlap and the first
of the top five with a parseable ``key_of`` wins.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from .base import KeyProvider
from .helperClasses import KeyMatch
from .keys import key_to_camelot, parse_provider_key_string
from .matching import normalize_whitespace, token_overlap_score


GETSONG_API_BASE = "https://api.getsong.co/"

SEARCH_LIMIT = 10
CANDIDATES_TO_EXAMINE = 5
TITLE_WEIGHT = 0.7
ARTIST_WEIGHT = 0.3


def score_search_result(item: Dict[str, Any], title: str, artist: str) -> float:
    """Weighted token overlap; titles count more than noisy artist credits."""
    artist_info = item.get("artist") or {}
    artist_name = artist_info.get("name", "") if isinstance(artist_info, dict) else ""
    title_score = token_overlap_score(item.get("title") or "", title)
    artist_score = token_overlap_score(artist_name, artist)
    return TITLE_WEIGHT * title_score + ARTIST_WEIGHT * artist_score


def pick_best_result(items: List[Dict[str, Any]], title: str, artist: str) -> Optional[KeyMatch]:
    """Return a KeyMatch for the best-ranked result with a usable key string.

    A lower-ranked result with a well-formed key beats a higher-ranked one
    without. Only the top five results are examined.
    """
    ranked = sorted(
        items,
        key=lambda item: score_search_result(item, title, artist),
        reverse=True,
    )
    for item in ranked[:CANDIDATES_TO_EXAMINE]:
        parsed = parse_provider_key_string(item.get("key_of"))
        if parsed is None:
            continue
        song_id = item.get("id")
        return KeyMatch(
            key=parsed.key,
            mode=parsed.scale,
            camelot=key_to_camelot(parsed.key, parsed.scale),
            provider="getsongbpm",
            provider_id=str(song_id) if song_id else None,
        )
    return None


class GetSongBPMClient:
    """Async client for the GetSongBPM search API."""

    def __init__(
        self,
        api_key: str,
        request_timeout_seconds: Optional[int] = 30,
        base_url: str = GETSONG_API_BASE,
    ):
        self.api_key = api_key
        self.request_timeout_seconds = request_timeout_seconds
        self.base_url = base_url
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def search(self, title: str, artist: str) -> List[Dict[str, Any]]:
        """Search songs by title and artist. Returns [] on any failure."""
        session = await self._get_session()
        lookup = f"song:{normalize_whitespace(title)} artist:{normalize_whitespace(artist)}"
        params = {"type": "both", "lookup": lookup, "limit": str(SEARCH_LIMIT)}
        headers = {"Accept": "application/json", "X-API-KEY": self.api_key}

        try:
            async with session.get(
                f"{self.base_url}search/", params=params, headers=headers
            ) as response:
                if response.status != 200:
                    logging.warning(
                        f"GetSongBPM search failed with status {response.status} "
                        f"for '{title}' by '{artist}'"
                    )
                    return []
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            logging.warning(f"GetSongBPM API timeout for '{title}' by '{artist}'")
            return []
        except aiohttp.ClientError as e:
            logging.error(f"GetSongBPM API error for '{title}' by '{artist}': {e}")
            return []
        except ValueError as e:
            logging.error(f"GetSongBPM returned invalid JSON for '{title}' by '{artist}': {e}")
            return []

        items = data.get("search") if isinstance(data, dict) else None
        # The API answers {"search": {"error": "no result"}} when nothing matches
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    async def lookup(self, title: str, artist: str) -> Optional[KeyMatch]:
        items = await self.search(title, artist)
        if not items:
            logging.debug(f"GetSongBPM has no results for '{title}' by '{artist}'")
            return None
        match = pick_best_result(items, title, artist)
        if match is None:
            logging.debug(
                f"GetSongBPM returned {len(items)} results for '{title}' by '{artist}' "
                "but none had a usable key"
            )
        return match


class GetSongBPMProvider(KeyProvider):
    """Primary provider. Skipped when no API key is configured."""
    name = "getsongbpm"

    def __init__(
        self,
        api_key_source: Callable[[], Awaitable[Optional[str]]],
        request_timeout_seconds: Optional[int] = 30,
    ):
        self._api_key_source = api_key_source
        self.request_timeout_seconds = request_timeout_seconds
        self._client: Optional[GetSongBPMClient] = None

    async def _api_key(self) -> str:
        return (await self._api_key_source() or "").strip()

    async def is_configured(self) -> bool:
        return bool(await self._api_key())

    async def _get_client(self, api_key: str) -> GetSongBPMClient:
        if self._client is None or self._client.api_key != api_key:
            if self._client is not None:
                await self._client.close()
            self._client = GetSongBPMClient(
                api_key=api_key,
                request_timeout_seconds=self.request_timeout_seconds,
            )
        return self._client

    async def lookup(self, title: str, artist: str) -> Optional[KeyMatch]:
        api_key = await self._api_key()
        if not api_key:
            logging.warning(
                "Missing GetSongBPM API key; run 'camelotkey set-api-key' or set "
                "GETSONGBPM_API_KEY. Falling back to MusicBrainz."
            )
            return None
        client = await self._get_client(api_key)
        return await client.lookup(title, artist)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

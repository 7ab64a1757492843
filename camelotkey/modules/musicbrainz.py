"""
MusicBrainz + AcousticBrainz Key Resolver Module

Fallback key source used when GetSongBPM has nothing. Resolution runs in
two stages:
1. Search MusicBrainz recordings by title/artist, trying progressively
   looser Lucene queries until one returns candidates scoring >= 60.
2. For each candidate MBID, ask AcousticBrainz for low-level tonal data,
   trying up to three submission indices per recording.

Both services share one process-wide rate limiter that keeps requests
at least 1.1s apart (MusicBrainz allows 1 request per second).
"""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from aiolimiter import AsyncLimiter

from .base import KeyProvider
from .helperClasses import KeyMatch, KeyMiss, RecordingCandidate, ResolvedKey, TonalData
from .keys import key_to_camelot, normalize_note_name
from .matching import escape_search_phrase

MUSICBRAINZ_USER_AGENT = os.getenv(
    "MUSICBRAINZ_USER_AGENT",
    "CamelotKey/1.0 (https://github.com/camelotkey/camelotkey)"
)
MUSICBRAINZ_MIN_INTERVAL_MS = int(os.getenv("MUSICBRAINZ_MIN_INTERVAL_MS", "1100"))
REQUEST_TIMEOUT_SECONDS = int(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

MUSICBRAINZ_SEARCH_URL = "https://musicbrainz.org/ws/2/recording/"
ACOUSTICBRAINZ_LOW_LEVEL_URL = "https://acousticbrainz.org/api/v1/{mbid}/low-level"

# Search results below this score are too unreliable to use
MUSICBRAINZ_MIN_SCORE = 60
MUSICBRAINZ_SEARCH_LIMIT = 10
MAX_CANDIDATES = 6

ACOUSTICBRAINZ_SUBMISSION_INDICES = (0, 1, 2)

# Both naming conventions found in AcousticBrainz tonal data, in order of preference
TONAL_FIELD_PAIRS = (
    ("key_key", "key_scale"),
    ("chords_key", "chords_scale"),
)


class MusicBrainzUnavailableError(Exception):
    """Every recording search failed, so no miss can be concluded."""
    pass


def _build_rate_limiter(min_interval_ms: int) -> AsyncLimiter:
    # One request per period, no burst capacity
    return AsyncLimiter(1, max(min_interval_ms, 1) / 1000)


# Shared by MusicBrainz and AcousticBrainz requests, process-wide
mb_rate_limiter = _build_rate_limiter(MUSICBRAINZ_MIN_INTERVAL_MS)

# Module-level HTTP session (reused for connection pooling)
_http_session: Optional[aiohttp.ClientSession] = None
_session_lock = asyncio.Lock()


async def _get_http_session() -> aiohttp.ClientSession:
    """Get or create the shared HTTP session with proper headers."""
    global _http_session
    async with _session_lock:
        if _http_session is None or _http_session.closed:
            headers = {
                "User-Agent": MUSICBRAINZ_USER_AGENT,
                "Accept": "application/json",
            }
            _http_session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS),
            )
        return _http_session


def configure(
    user_agent: Optional[str] = None,
    min_interval_ms: Optional[int] = None,
    request_timeout_seconds: Optional[int] = None,
) -> None:
    """Apply settings to the module-level state. Call once at startup."""
    global MUSICBRAINZ_USER_AGENT, MUSICBRAINZ_MIN_INTERVAL_MS, REQUEST_TIMEOUT_SECONDS
    global mb_rate_limiter
    if user_agent:
        MUSICBRAINZ_USER_AGENT = user_agent
    if min_interval_ms is not None and min_interval_ms != MUSICBRAINZ_MIN_INTERVAL_MS:
        MUSICBRAINZ_MIN_INTERVAL_MS = min_interval_ms
        mb_rate_limiter = _build_rate_limiter(min_interval_ms)
    if request_timeout_seconds is not None:
        REQUEST_TIMEOUT_SECONDS = request_timeout_seconds


async def close_http_session() -> None:
    """Close the HTTP session. Call this during application shutdown."""
    global _http_session
    async with _session_lock:
        if _http_session and not _http_session.closed:
            await _http_session.close()
            _http_session = None


def build_search_queries(title: str, artist: str) -> List[str]:
    """
    Build the recording search queries, strictest first.

    The search backend penalizes exact artist phrases for recordings with
    messy featured-artist credits, so looser queries follow.
    """
    t = escape_search_phrase(title)
    a = escape_search_phrase(artist)
    return [
        f'recording:"{t}" AND artist:"{a}"',
        f'recording:"{t}" AND artist:{a}',
        f'recording:"{t}"',
    ]


def rank_recordings(recordings: Sequence[Dict[str, Any]]) -> List[RecordingCandidate]:
    """Keep recordings with an id and score >= 60, best first, at most six."""
    candidates = []
    for recording in recordings:
        mbid = recording.get("id")
        if not mbid:
            continue
        try:
            score = int(recording.get("score") or 0)
        except (TypeError, ValueError):
            score = 0
        if score >= MUSICBRAINZ_MIN_SCORE:
            candidates.append(RecordingCandidate(mbid=mbid, score=score))
    candidates.sort(key=lambda c: c.score, reverse=True)
    return candidates[:MAX_CANDIDATES]


def extract_tonal_data(data: Dict[str, Any]) -> Optional[TonalData]:
    """Pull key and scale out of an AcousticBrainz low-level document."""
    tonal = data.get("tonal") if isinstance(data, dict) else None
    if not isinstance(tonal, dict):
        return None
    for key_field, scale_field in TONAL_FIELD_PAIRS:
        key = tonal.get(key_field)
        scale = tonal.get(scale_field)
        if key and scale:
            return TonalData(key=key, scale=scale)
    return None


async def query_recordings(query: str) -> Optional[List[Dict[str, Any]]]:
    """
    Run one MusicBrainz recording search.

    Args:
        query: Lucene query string

    Returns:
        Raw recording dicts (possibly empty), or None if the request failed
    """
    async with mb_rate_limiter:
        session = await _get_http_session()
        params = {
            "query": query,
            "limit": str(MUSICBRAINZ_SEARCH_LIMIT),
            "fmt": "json",
        }

        try:
            async with session.get(MUSICBRAINZ_SEARCH_URL, params=params) as response:
                if response.status != 200:
                    logging.warning(
                        f"MusicBrainz search returned HTTP {response.status} for query {query}"
                    )
                    return None
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            logging.warning(f"MusicBrainz API timeout for query {query}")
            return None
        except aiohttp.ClientError as e:
            logging.error(f"MusicBrainz API error for query {query}: {e}")
            return None
        except ValueError as e:
            logging.error(f"MusicBrainz returned invalid JSON for query {query}: {e}")
            return None

    recordings = data.get("recordings") if isinstance(data, dict) else None
    return recordings if isinstance(recordings, list) else []


async def search_recordings(title: str, artist: str) -> List[RecordingCandidate]:
    """
    Find candidate recordings for a title/artist pair.

    Tries each query from build_search_queries in turn and stops at the
    first one that yields any candidate above the score floor.

    Returns:
        Up to six candidates sorted by score (highest first), possibly empty

    Raises:
        MusicBrainzUnavailableError: if none of the queries got an answer
    """
    answered = False
    for query in build_search_queries(title, artist):
        recordings = await query_recordings(query)
        if recordings is None:
            continue
        answered = True
        candidates = rank_recordings(recordings)
        if candidates:
            logging.debug(
                f"MusicBrainz query {query} gave {len(candidates)} candidates "
                f"(top score {candidates[0].score})"
            )
            return candidates

    if not answered:
        raise MusicBrainzUnavailableError(
            f"MusicBrainz search failed for '{title}' by '{artist}'"
        )
    logging.debug(f"MusicBrainz has no candidates for '{title}' by '{artist}'")
    return []


async def fetch_tonal_data(mbid: str) -> Optional[TonalData]:
    """
    Fetch key and scale for a recording from AcousticBrainz.

    Submission indices are tried in order until one carries tonal data.
    A 404 (or any non-success status) means the recording has no usable
    analysis and stops the search for this MBID.

    Args:
        mbid: MusicBrainz recording ID

    Returns:
        TonalData if any submission has both key and scale, None otherwise
    """
    url = ACOUSTICBRAINZ_LOW_LEVEL_URL.format(mbid=mbid)
    for n in ACOUSTICBRAINZ_SUBMISSION_INDICES:
        async with mb_rate_limiter:
            session = await _get_http_session()
            try:
                async with session.get(url, params={"n": str(n)}) as response:
                    if response.status == 404:
                        logging.debug(f"No AcousticBrainz analysis for recording {mbid}")
                        return None
                    if response.status != 200:
                        logging.warning(
                            f"AcousticBrainz returned HTTP {response.status} for {mbid} (n={n})"
                        )
                        return None
                    data = await response.json(content_type=None)
            except asyncio.TimeoutError:
                logging.warning(f"AcousticBrainz API timeout for {mbid} (n={n})")
                return None
            except aiohttp.ClientError as e:
                logging.error(f"AcousticBrainz API error for {mbid} (n={n}): {e}")
                return None
            except ValueError as e:
                logging.error(f"AcousticBrainz returned invalid JSON for {mbid} (n={n}): {e}")
                return None

        tonal = extract_tonal_data(data)
        if tonal:
            return tonal
    return None


async def lookup(title: str, artist: str) -> ResolvedKey:
    """
    Resolve a key through MusicBrainz and AcousticBrainz.

    This is the fallback entry point. It always returns a record: a
    KeyMatch for the first candidate with tonal data, otherwise a KeyMiss
    that carries the top candidate's MBID and score (if any) for diagnostics.
    Raises MusicBrainzUnavailableError when the search itself is down, so
    an outage is never cached as a miss.
    """
    candidates = await search_recordings(title, artist)
    for candidate in candidates:
        tonal = await fetch_tonal_data(candidate.mbid)
        if tonal is None:
            continue
        mode = tonal.scale.strip().lower()
        return KeyMatch(
            key=normalize_note_name(tonal.key),
            mode=mode,
            camelot=key_to_camelot(tonal.key, mode),
            provider="musicbrainz",
            mbid=candidate.mbid,
            score=candidate.score,
        )

    if candidates:
        logging.debug(
            f"No tonal data for any of {len(candidates)} MusicBrainz candidates "
            f"for '{title}' by '{artist}'"
        )
        return KeyMiss(mbid=candidates[0].mbid, score=candidates[0].score)
    return KeyMiss()


class MusicBrainzProvider(KeyProvider):
    """Fallback provider. Always configured; returns a record unless the search is down."""
    name = "musicbrainz"

    async def is_configured(self) -> bool:
        return True

    async def lookup(self, title: str, artist: str) -> ResolvedKey:
        return await lookup(title, artist)

    async def close(self) -> None:
        await close_http_session()

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class LookupRequest:
    cache_key: str
    title: str
    artist: str


@dataclass(frozen=True)
class RecordingCandidate:
    mbid: str
    score: int


@dataclass(frozen=True)
class TonalData:
    key: str
    scale: str


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@dataclass(frozen=True)
class KeyMatch:
    """A positive key resolution from one of the providers."""
    key: str
    mode: str
    camelot: Optional[str]
    provider: str  # "getsongbpm" or "musicbrainz"
    provider_id: Optional[str] = None
    mbid: Optional[str] = None
    score: Optional[int] = None
    cached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    is_hit = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "camelot": self.camelot,
            "key": self.key,
            "mode": self.mode,
            "provider": self.provider,
            "providerId": self.provider_id,
            "mbid": self.mbid,
            "score": self.score,
            "cachedAt": _epoch_ms(self.cached_at),
        }


@dataclass(frozen=True)
class KeyMiss:
    """No usable key data. mbid/score carry the top candidate for diagnostics."""
    mbid: Optional[str] = None
    score: Optional[int] = None
    cached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    is_hit = False
    camelot = None
    key = None
    mode = None
    provider = None
    provider_id = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "camelot": None,
            "key": None,
            "mode": None,
            "provider": None,
            "providerId": None,
            "mbid": self.mbid,
            "score": self.score,
            "cachedAt": _epoch_ms(self.cached_at),
        }


ResolvedKey = Union[KeyMatch, KeyMiss]


@dataclass
class UserInputs:
    db_path: str = "camelotkey.db"

    # Fallback credential when none is stored in the settings table
    getsongbpm_api_key: Optional[str] = None

    cache_ttl_days: int = 30
    negative_cache_ttl_days: int = 30

    musicbrainz_user_agent: str = "CamelotKey/1.0 (https://github.com/camelotkey/camelotkey)"
    musicbrainz_min_interval_ms: int = 1100

    request_timeout_seconds: Optional[int] = 30

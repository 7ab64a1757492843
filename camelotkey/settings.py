from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from modules.helperClasses import UserInputs


class CamelotSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    db_path: str = Field(default="camelotkey.db", validation_alias="DB_PATH")

    getsongbpm_api_key: Optional[str] = Field(
        default=None, validation_alias="GETSONGBPM_API_KEY"
    )

    cache_ttl_days: int = Field(default=30, validation_alias="CACHE_TTL_DAYS")
    negative_cache_ttl_days: int = Field(
        default=30, validation_alias="NEGATIVE_CACHE_TTL_DAYS"
    )

    musicbrainz_user_agent: str = Field(
        default="CamelotKey/1.0 (https://github.com/camelotkey/camelotkey)",
        validation_alias="MUSICBRAINZ_USER_AGENT",
    )
    musicbrainz_min_interval_ms: int = Field(
        default=1100, validation_alias="MUSICBRAINZ_MIN_INTERVAL_MS"
    )

    request_timeout_seconds: Optional[int] = Field(
        default=30, validation_alias="REQUEST_TIMEOUT_SECONDS"
    )

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @field_validator("getsongbpm_api_key", mode="before")
    @classmethod
    def _blank_key_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


def build_user_inputs(settings: CamelotSettings) -> UserInputs:
    return UserInputs(
        db_path=settings.db_path,
        getsongbpm_api_key=settings.getsongbpm_api_key,
        cache_ttl_days=settings.cache_ttl_days,
        negative_cache_ttl_days=settings.negative_cache_ttl_days,
        musicbrainz_user_agent=settings.musicbrainz_user_agent,
        musicbrainz_min_interval_ms=settings.musicbrainz_min_interval_ms,
        request_timeout_seconds=settings.request_timeout_seconds,
    )

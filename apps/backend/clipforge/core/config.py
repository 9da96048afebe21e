"""Application settings loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from clipforge.core.constants import (
    DEFAULT_ALLOWED_FORMATS,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_OUTBOUND_CHUNK_SIZE,
    DEFAULT_REAP_INTERVAL_SECONDS,
    DEFAULT_STALE_TIMEOUT_SECONDS,
    DEFAULT_UPLOAD_CHUNK_SIZE,
)


class Settings(BaseSettings):
    """
    Configuration loaded from environment variables.

    Only secrets and deployment-specific values belong here.
    Protocol constants live in their respective modules.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ---------------------------------------------------------------------------
    # Supabase (persistence sink, token provider, auth)
    # ---------------------------------------------------------------------------
    supabase_url: str | None = Field(default=None, validation_alias="SUPABASE_URL")
    supabase_publishable_key: str | None = Field(default=None, validation_alias="SUPABASE_PUBLISHABLE_KEY")
    supabase_secret_key: str | None = Field(default=None, validation_alias="SUPABASE_SECRET_KEY")
    supabase_jwt_secret: str | None = Field(default=None, validation_alias="SUPABASE_JWT_SECRET")
    supabase_jwt_audience: str | None = Field(default=None, validation_alias="SUPABASE_JWT_AUDIENCE")
    supabase_auth_mode: str = Field(default="remote", validation_alias="SUPABASE_AUTH_MODE")

    # ---------------------------------------------------------------------------
    # Inbound uploads
    # ---------------------------------------------------------------------------
    upload_dir: str = Field(default="./data/uploads", validation_alias="UPLOAD_DIR")
    completed_dir: str = Field(default="./data/completed", validation_alias="COMPLETED_DIR")
    upload_chunk_size: int = Field(default=DEFAULT_UPLOAD_CHUNK_SIZE, validation_alias="UPLOAD_CHUNK_SIZE")
    upload_max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, validation_alias="UPLOAD_MAX_FILE_SIZE")
    upload_stale_timeout_seconds: float = Field(
        default=DEFAULT_STALE_TIMEOUT_SECONDS,
        validation_alias="UPLOAD_STALE_TIMEOUT_SECONDS",
    )
    upload_reap_interval_seconds: float = Field(
        default=DEFAULT_REAP_INTERVAL_SECONDS,
        validation_alias="UPLOAD_REAP_INTERVAL_SECONDS",
    )
    upload_allowed_formats: dict[str, list[str]] = Field(
        default_factory=lambda: {category: list(exts) for category, exts in DEFAULT_ALLOWED_FORMATS.items()},
        validation_alias="UPLOAD_ALLOWED_FORMATS",
    )

    # ---------------------------------------------------------------------------
    # Outbound platform transfers
    # ---------------------------------------------------------------------------
    outbound_chunk_size: int = Field(default=DEFAULT_OUTBOUND_CHUNK_SIZE, validation_alias="OUTBOUND_CHUNK_SIZE")
    outbound_http_timeout_seconds: float = Field(default=120.0, validation_alias="OUTBOUND_HTTP_TIMEOUT_SECONDS")
    youtube_upload_url: str = Field(
        default="https://www.googleapis.com/upload",
        validation_alias="YOUTUBE_UPLOAD_URL",
    )
    twitter_upload_url: str = Field(
        default="https://upload.twitter.com/1.1/media/upload.json",
        validation_alias="TWITTER_UPLOAD_URL",
    )
    tiktok_api_url: str = Field(default="https://open-api.tiktok.com", validation_alias="TIKTOK_API_URL")

    # ---------------------------------------------------------------------------
    # Deployment config (optional)
    # ---------------------------------------------------------------------------
    app_env: str = Field(default="local", validation_alias="APP_ENV")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        validation_alias="CORS_ALLOW_ORIGINS",
    )

    @field_validator(
        "supabase_url",
        "supabase_publishable_key",
        "supabase_secret_key",
        "supabase_jwt_secret",
        "supabase_jwt_audience",
        "supabase_auth_mode",
        "upload_dir",
        "completed_dir",
        "youtube_upload_url",
        "twitter_upload_url",
        "tiktok_api_url",
        "app_env",
        mode="before",
    )
    @classmethod
    def _strip_strings(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _parse_list(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            items = [item.strip() for item in value.split(",")]
            return [item for item in items if item]
        return value

    @field_validator("upload_allowed_formats", mode="after")
    @classmethod
    def _normalize_extensions(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        normalized: dict[str, list[str]] = {}
        for category, extensions in value.items():
            items = [ext.strip().lower() for ext in extensions if ext.strip()]
            normalized[category] = [ext if ext.startswith(".") else f".{ext}" for ext in items]
        return normalized

    @field_validator("upload_chunk_size", "upload_max_file_size", "outbound_chunk_size", mode="after")
    @classmethod
    def _clamp_sizes(cls, value: int) -> int:
        return max(1, value)

    @field_validator(
        "upload_stale_timeout_seconds",
        "upload_reap_interval_seconds",
        "outbound_http_timeout_seconds",
        mode="after",
    )
    @classmethod
    def _clamp_intervals(cls, value: float) -> float:
        return max(1.0, value)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

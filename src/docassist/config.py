"""Runtime configuration for the docassist services."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="docassist_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Remote provider credentials; the plain OpenAI variable names are accepted too
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("docassist_openai_api_key", "openai_api_key"),
    )
    openai_base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("docassist_openai_base_url", "openai_base_url"),
    )
    openai_timeout_seconds: float = 60.0

    # Agent
    assistant_name: str = "Education Automation Assistant"
    assistant_model: str = "gpt-4o-mini"
    assistant_temperature: float = 0.3

    # Index provisioning
    index_name: str = "docassist Document Store"
    index_expiry_days: int = 7
    index_poll_interval_seconds: float = 1.0
    index_poll_max_attempts: int = 60

    # Query orchestration
    run_poll_interval_seconds: float = 1.0
    run_poll_max_attempts: int = 300
    max_retries: int = 5
    run_rate_limit_backoff_seconds: float = 30.0
    error_rate_limit_backoff_seconds: float = 35.0
    cancel_grace_seconds: float = 1.0
    repost_message_on_retry: bool = False
    history_limit: int = 20
    default_language: str = "english"

    # API & upload safety
    allowed_extensions: tuple[str, ...] | str = (".pdf",)
    max_upload_size_mb: int = 10

    # CORS
    cors_allow_origins: tuple[str, ...] = ()  # e.g., ("*") to allow all
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "DELETE", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header
    rate_limit_requests: int = 60  # per window per client
    rate_limit_window_seconds: int = 60

    @property
    def has_credentials(self) -> bool:
        return bool((self.openai_api_key or "").strip())

    @property
    def allowed_extensions_tuple(self) -> tuple[str, ...]:
        value = self.allowed_extensions
        if isinstance(value, tuple):
            return value
        if isinstance(value, str):
            parts = [p.strip().lower() for p in value.split(",") if p.strip()]
            return tuple(parts) if parts else (".pdf",)
        return (".pdf",)


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()

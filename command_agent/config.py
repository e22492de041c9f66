"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    gemini_api_key: str = Field(..., alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash-lite", alias="GEMINI_MODEL")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_BASE_URL",
    )
    database_path: Path = Field(default=Path("command_agent.db"), alias="DATABASE_PATH")
    timezone: str = Field(default="UTC", alias="AGENT_TIMEZONE")
    locale: str = Field(default="en", alias="AGENT_LOCALE")
    request_timeout_seconds: float = Field(default=60.0, alias="REQUEST_TIMEOUT_SECONDS")

    max_turns: int = Field(default=15, alias="MAX_TURNS")
    history_max_turns: int = Field(default=30, alias="HISTORY_MAX_TURNS")

    cache_ttl_seconds: int = Field(default=3600, alias="CACHE_TTL_SECONDS")
    cache_safety_margin_seconds: int = Field(default=300, alias="CACHE_SAFETY_MARGIN_SECONDS")

    retry_max_attempts: int = Field(default=4, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay_seconds: float = Field(default=2.0, alias="RETRY_BASE_DELAY_SECONDS")
    # A suggested wait above this is quota exhaustion rather than a transient limit.
    retry_max_single_wait_seconds: float = Field(default=15.0, alias="RETRY_MAX_SINGLE_WAIT_SECONDS")
    # Must stay well under request_timeout_seconds.
    retry_max_total_wait_seconds: float = Field(default=40.0, alias="RETRY_MAX_TOTAL_WAIT_SECONDS")

    schedule_precise_threshold_hours: float = Field(default=24.0, alias="SCHEDULE_PRECISE_THRESHOLD_HOURS")
    schedule_sweep_interval_minutes: float = Field(default=10.0, alias="SCHEDULE_SWEEP_INTERVAL_MINUTES")
    schedule_max_days: int = Field(default=365, alias="SCHEDULE_MAX_DAYS")
    schedule_past_tolerance_seconds: float = Field(default=60.0, alias="SCHEDULE_PAST_TOLERANCE_SECONDS")

    host_api_url: str | None = Field(default=None, alias="HOST_API_URL")
    host_api_token: str | None = Field(default=None, alias="HOST_API_TOKEN")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()

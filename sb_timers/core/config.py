from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Environment-driven application configuration."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    APP_NAME: str = "SB Timers"
    DATA_DIR: Path = Field(default_factory=lambda: Path(__file__).resolve().parents[2] / "data")

    DB_URL: str | None = Field(default=None, validation_alias=AliasChoices("DATABASE_URL", "DB_URL"))

    HOST: str = "0.0.0.0"
    PORT: int = 3000
    ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # ---- Sessions
    SESSION_TTL_HOURS: int = 24
    SESSION_SWEEP_INTERVAL_SECONDS: float = 60 * 60 * 24
    SESSION_HEADER_NAME: str = "X-Session-Id"
    SESSION_QUERY_PARAM: str = "sessionId"
    SESSION_COOKIE_NAME: str = "sessionId"
    SESSION_COOKIE_SECURE: bool = False

    # ---- Push channel
    BROADCAST_INTERVAL_SECONDS: float = 1.0
    PUSH_SEND_TIMEOUT_SECONDS: float = 5.0
    PUSH_AUTH_TIMEOUT_SECONDS: float = 10.0

    DESCRIPTION_MAX_LENGTH: int = 255

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    METRICS_ENABLED: bool = True

    @property
    def database_url(self) -> str:
        return self.DB_URL or f"sqlite:///{self.DATA_DIR / 'timers.db'}"

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(hours=self.SESSION_TTL_HOURS)

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, Iterable):
            return [str(item).strip() for item in value if str(item).strip()]
        raise TypeError("ALLOWED_ORIGINS must be a comma separated string or list")


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    settings = AppSettings()
    if settings.DB_URL is None:
        settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    return settings

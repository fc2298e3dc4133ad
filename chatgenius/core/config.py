"""Application configuration settings."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, PostgresDsn, RedisDsn, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _find_env_file() -> str | None:
    """Find .env file in common locations.

    Checks (in order):
    1. .env (running from the project root)
    2. ~/.chatgenius/.env (per-user install)
    3. None (rely on environment variables)
    """
    candidates = [
        Path(".env"),
        Path.home() / ".chatgenius" / ".env",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class Settings(BaseSettings):
    """Client settings loaded from environment variables.

    DATABASE_URL and REDIS_URL have no defaults: a client started without
    them fails with a ValidationError before any connection is attempted.
    """

    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str | None = None

    # Relational store
    database_url: PostgresDsn
    database_echo: bool = False

    # Change feed
    redis_url: RedisDsn
    change_feed_prefix: str = "changes:"

    # AI assistant (external POST /chat endpoint)
    assistant_api_url: str = ""
    assistant_timeout_seconds: float = 30.0

    # Durable local identity
    identity_file: Path = Field(
        default_factory=lambda: Path.home() / ".chatgenius" / "chatgenius_user.json"
    )

    # Timers
    presence_online_delay_seconds: float = 2.0
    presence_away_delay_seconds: float = 5.0
    persist_debounce_seconds: float = 1.0

    @model_validator(mode="after")
    def validate_client_settings(self) -> "Settings":
        """Validate settings that depend on the environment.

        In production the assistant endpoint must be configured; elsewhere a
        missing endpoint only disables the assistant.
        """
        if self.log_level is None:
            self.log_level = "DEBUG" if self.app_env == "development" else "WARNING"

        if not self.assistant_api_url:
            msg = "ASSISTANT_API_URL is not set. The AI assistant will be unavailable."
            if self.app_env == "production":
                raise ValueError(f"Configuration errors:\n  - {msg}")
            logger.warning(f"CONFIG WARNING: {msg}")

        return self

    @property
    def database_url_async(self) -> str:
        """Get async database URL."""
        return str(self.database_url).replace(
            "postgresql://", "postgresql+asyncpg://"
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

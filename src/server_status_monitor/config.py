"""Configuration management service with Pydantic Settings.

This module provides centralized process configuration for the Server
Status Monitor, loading and validating environment variables at startup.
Operator-tunable values that live in the database (notification gating,
channel toggles, recipients) are handled by ``runtime_config``.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./server_status_monitor.db"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="")

    url: str = Field(
        default=DEFAULT_DATABASE_URL,
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string"
            )
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings for mirroring live updates."""

    model_config = SettingsConfigDict(env_prefix="")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Optional Redis connection string",
    )
    channel: str = Field(
        default="server-status-monitor:updates",
        alias="REDIS_CHANNEL",
        description="Pub/sub channel live updates are mirrored to",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        """Check if the Redis mirror is enabled."""
        return self.url is not None


class ProbeSettings(BaseSettings):
    """Status API settings used by the probe."""

    model_config = SettingsConfigDict(env_prefix="PROBE_")

    api_url: str = Field(
        default="https://api.mcstatus.io/v2",
        alias="PROBE_API_URL",
        description="Base URL of the server status API",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="PROBE_TIMEOUT_SECONDS",
        description="Upper bound for a single probe",
        gt=0,
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Validate status API URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Status API URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class TelegramSettings(BaseSettings):
    """Telegram bot settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    poll_commands: bool = Field(
        default=True,
        alias="TELEGRAM_POLL_COMMANDS",
        description="Long-poll the Bot API for subscriber commands",
    )

    @property
    def enabled(self) -> bool:
        """Check if the Telegram channel can be constructed."""
        return self.bot_token is not None


class WhatsAppSettings(BaseSettings):
    """WhatsApp gateway settings."""

    model_config = SettingsConfigDict(env_prefix="WHATSAPP_")

    gateway_url: str | None = Field(
        default=None,
        alias="WHATSAPP_GATEWAY_URL",
        description="Base URL of the WhatsApp REST gateway",
    )
    gateway_token: SecretStr | None = Field(
        default=None,
        alias="WHATSAPP_GATEWAY_TOKEN",
        description="Bearer token for the gateway",
    )
    country_code: str = Field(
        default="62",
        alias="WHATSAPP_COUNTRY_CODE",
        description="Country code substituted for a leading 0 in phone numbers",
    )

    @field_validator("gateway_url")
    @classmethod
    def validate_gateway_url(cls, v: str | None) -> str | None:
        """Validate gateway URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("WhatsApp gateway URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @property
    def enabled(self) -> bool:
        """Check if the WhatsApp channel can be constructed."""
        return self.gateway_url is not None


class EmailSettings(BaseSettings):
    """SMTP settings for email delivery."""

    model_config = SettingsConfigDict(env_prefix="SMTP_")

    host: str | None = Field(default=None, alias="SMTP_HOST")
    port: int = Field(default=587, alias="SMTP_PORT", ge=1, le=65535)
    user: str | None = Field(default=None, alias="SMTP_USER")
    password: SecretStr | None = Field(default=None, alias="SMTP_PASSWORD")
    sender: str | None = Field(
        default=None,
        alias="SMTP_FROM",
        description="From address (defaults to SMTP_USER)",
    )

    @property
    def enabled(self) -> bool:
        """Check if the email channel can be constructed."""
        return self.host is not None and self.user is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from server_status_monitor.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    probe: ProbeSettings = Field(default_factory=ProbeSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    whatsapp: WhatsAppSettings = Field(default_factory=WhatsAppSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    http_port: int = Field(
        default=8080,
        alias="HTTP_PORT",
        description="HTTP port for status, health and metrics endpoints",
        ge=1,
        le=65535,
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual notifications",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "probe_api_url": self.probe.api_url,
            "telegram_enabled": str(self.telegram.enabled),
            "whatsapp_enabled": str(self.whatsapp.enabled),
            "email_enabled": str(self.email.enabled),
            "log_level": self.log_level,
            "http_port": str(self.http_port),
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()

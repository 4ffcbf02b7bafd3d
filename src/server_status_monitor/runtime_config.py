"""Typed runtime configuration backed by the settings table.

Operators change these values while the monitor runs (notification
gating, channel toggles, recipients). They are loaded once, cached, and
refreshed on demand instead of being queried field by field.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from server_status_monitor.storage.repos import SettingRepository

if TYPE_CHECKING:
    from server_status_monitor.storage.database import Database

logger = logging.getLogger(__name__)


class RuntimeConfig(BaseModel):
    """Operator settings with their defaults."""

    email_enabled: bool = False
    telegram_enabled: bool = True
    whatsapp_enabled: bool = False
    notify_critical: bool = True
    notify_warning: bool = True
    notify_info: bool = False
    check_interval: int = Field(default=10, ge=1)
    admin_email: str = ""
    admin_phone: str = ""
    min_protocol_version: int = 671
    high_latency_ms: int = Field(default=1000, ge=1)

    def channel_enabled(self, channel: str) -> bool:
        """Return the enable flag for a channel name."""
        return bool(getattr(self, f"{channel}_enabled", False))

    def severity_enabled(self, severity: str) -> bool:
        """Return whether notifications of ``severity`` should be sent."""
        return bool(getattr(self, f"notify_{severity}", False))


class RuntimeConfigStore:
    """Loads, caches and updates RuntimeConfig in the settings table.

    Example:
        ```python
        store = RuntimeConfigStore(db)
        await store.seed_defaults()
        config = await store.get()

        await store.update(notify_info=True)
        ```
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._cached: RuntimeConfig | None = None
        self._lock = asyncio.Lock()

    async def seed_defaults(self) -> int:
        """Write every default that is not yet stored.

        Returns:
            Number of keys written.
        """
        written = 0
        async with self._db.session() as session:
            repo = SettingRepository(session)
            for key, value in RuntimeConfig().model_dump().items():
                if await repo.set_default(key, value):
                    written += 1
        if written:
            logger.info("Seeded %d default settings", written)
        return written

    async def get(self) -> RuntimeConfig:
        """Return the cached config, loading it on first use."""
        if self._cached is None:
            return await self.refresh()
        return self._cached

    async def refresh(self) -> RuntimeConfig:
        """Reload the config from the settings table."""
        async with self._lock:
            async with self._db.session() as session:
                stored = await SettingRepository(session).get_all()

            fields = RuntimeConfig.model_fields
            known = {key: value for key, value in stored.items() if key in fields}
            try:
                config = RuntimeConfig(**known)
            except ValidationError as e:
                logger.error("Invalid stored settings, falling back to defaults: %s", e)
                config = RuntimeConfig()
            self._cached = config
            return config

    async def update(self, **changes: Any) -> RuntimeConfig:
        """Validate and persist changes, then refresh the cache.

        Raises:
            ValueError: If a key is unknown.
            ValidationError: If a value has the wrong type.
        """
        unknown = set(changes) - set(RuntimeConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        current = await self.get()
        validated = RuntimeConfig(**{**current.model_dump(), **changes})

        async with self._db.session() as session:
            repo = SettingRepository(session)
            for key in changes:
                await repo.set(key, getattr(validated, key))

        logger.info("Settings updated: %s", ", ".join(sorted(changes)))
        return await self.refresh()

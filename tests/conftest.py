"""Shared fixtures: a temporary SQLite store and scriptable channels."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from server_status_monitor.alerter.models import DeliveryReceipt, SenderStatus
from server_status_monitor.errors import ChannelSendError
from server_status_monitor.runtime_config import RuntimeConfigStore
from server_status_monitor.storage.database import Database
from server_status_monitor.storage.repos import TargetDTO, TargetRepository

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from pathlib import Path

    from server_status_monitor.alerter.models import NotificationMessage


class FakeChannel:
    """In-memory channel recording every delivery."""

    def __init__(
        self,
        name: str,
        *,
        status: SenderStatus = SenderStatus.READY,
        fail: bool = False,
    ) -> None:
        self.name = name
        self._status = status
        self.fail = fail
        self.sent: list[tuple[str, NotificationMessage]] = []
        self.closed = False

    def status(self) -> SenderStatus:
        return self._status

    async def start(self) -> SenderStatus:
        return self._status

    async def send(self, recipient: str, message: NotificationMessage) -> DeliveryReceipt:
        if self.fail:
            raise ChannelSendError(self.name, f"{self.name} rejected the message")
        self.sent.append((recipient, message))
        return DeliveryReceipt(channel=self.name, recipient=recipient, message_id="1")

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_channel() -> type[FakeChannel]:
    """Return the FakeChannel class."""
    return FakeChannel


@pytest.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    """Connected database backed by a temporary SQLite file."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'monitor.db'}")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
async def config_store(db: Database) -> RuntimeConfigStore:
    """Runtime config store with defaults seeded."""
    store = RuntimeConfigStore(db)
    await store.seed_defaults()
    return store


@pytest.fixture
def make_target(db: Database) -> Callable[..., Awaitable[TargetDTO]]:
    """Factory inserting a target into the database."""

    async def _make(**overrides: Any) -> TargetDTO:
        fields: dict[str, Any] = {
            "name": "Lobby",
            "address": "play.example.net",
            "port": 19132,
            "variant": "bedrock",
            "poll_interval": 10,
        }
        fields.update(overrides)
        async with db.session() as session:
            return await TargetRepository(session).create(**fields)

    return _make

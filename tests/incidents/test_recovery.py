"""Tests for the recovery watcher."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from server_status_monitor.errors import StoreError
from server_status_monitor.events import INCIDENT_RESOLVED, LiveUpdateBus
from server_status_monitor.incidents.recovery import RecoveryWatcher
from server_status_monitor.prober.models import ProbeResult
from server_status_monitor.storage.repos import IncidentRepository, TargetRepository


@pytest.fixture
def dispatcher() -> MagicMock:
    mock = MagicMock()
    mock.notify_recovery = AsyncMock()
    return mock


@pytest.fixture
def bus() -> LiveUpdateBus:
    return LiveUpdateBus()


@pytest.fixture
async def watcher(db, dispatcher, bus):
    recovery = RecoveryWatcher(db, dispatcher, bus, interval=0.01)
    yield recovery
    await recovery.cancel_all()


@pytest.fixture
async def offline(db, make_target):
    """An offline target with an open offline incident."""
    target = await make_target()
    async with db.session() as session:
        await TargetRepository(session).record_check(
            target.id,
            status=ProbeResult.failed("Connection timeout").to_dict(),
            healthy=False,
            downtime_seconds=10,
        )
        incident = await IncidentRepository(session).create(
            target_id=target.id,
            kind="target_offline",
            title="Server Offline",
            description="Server Lobby is not responding",
            severity="critical",
        )
    return incident, target


async def mark_healthy(db, target_id: int) -> None:
    async with db.session() as session:
        await TargetRepository(session).record_check(
            target_id,
            status=ProbeResult(healthy=True, latency_ms=40).to_dict(),
            healthy=True,
            downtime_seconds=10,
        )


async def get_incident(db, incident_id: int):
    async with db.session() as session:
        return await IncidentRepository(session).get(incident_id)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


class TestCheckOnce:
    """Tests for a single recovery check."""

    async def test_still_offline_keeps_watching(self, watcher, offline, dispatcher):
        incident, target = offline

        assert await watcher.check_once(incident.id, target.id) is False
        dispatcher.notify_recovery.assert_not_awaited()

    async def test_recovered_resolves_and_notifies(self, watcher, db, offline, dispatcher, bus):
        incident, target = offline
        await mark_healthy(db, target.id)
        queue = bus.subscribe()

        assert await watcher.check_once(incident.id, target.id) is True

        stored = await get_incident(db, incident.id)
        assert stored.status == "resolved"
        assert stored.resolved_at is not None
        dispatcher.notify_recovery.assert_awaited_once()
        resolved_arg, target_arg = dispatcher.notify_recovery.await_args.args
        assert resolved_arg.status == "resolved"
        assert target_arg.id == target.id
        event = queue.get_nowait()
        assert event.type == INCIDENT_RESOLVED
        assert event.payload["source"] == "recovery"

    async def test_externally_resolved_stops_without_notice(
        self, watcher, db, offline, dispatcher
    ):
        incident, target = offline
        async with db.session() as session:
            await IncidentRepository(session).resolve(incident.id)
        await mark_healthy(db, target.id)

        assert await watcher.check_once(incident.id, target.id) is True
        dispatcher.notify_recovery.assert_not_awaited()

    async def test_removed_target_stops(self, watcher, db, offline, dispatcher):
        incident, target = offline
        async with db.session() as session:
            await TargetRepository(session).delete(target.id)

        assert await watcher.check_once(incident.id, target.id) is True
        dispatcher.notify_recovery.assert_not_awaited()

    async def test_missing_incident_stops(self, watcher, offline):
        _, target = offline
        assert await watcher.check_once(999, target.id) is True


class TestWatch:
    """Tests for the watch task lifecycle."""

    async def test_resolves_exactly_once(self, watcher, db, offline, dispatcher):
        incident, target = offline
        watcher.watch(incident, target)
        assert watcher.is_watching(incident.id)

        await asyncio.sleep(0.05)
        assert watcher.is_watching(incident.id)

        await mark_healthy(db, target.id)
        await wait_until(lambda: not watcher.is_watching(incident.id))
        await asyncio.sleep(0.05)

        dispatcher.notify_recovery.assert_awaited_once()
        assert (await get_incident(db, incident.id)).status == "resolved"

    async def test_rewatch_keeps_single_task(self, watcher, offline):
        incident, target = offline

        watcher.watch(incident, target)
        watcher.watch(incident, target)

        assert watcher.watching() == [incident.id]

    async def test_cancel(self, watcher, offline):
        incident, target = offline
        watcher.watch(incident, target)

        assert await watcher.cancel(incident.id) is True
        assert await watcher.cancel(incident.id) is False
        assert not watcher.is_watching(incident.id)

    async def test_store_error_keeps_watching(self, db, dispatcher, bus, offline):
        incident, target = offline
        recovery = RecoveryWatcher(db, dispatcher, bus, interval=0.01)
        recovery.check_once = AsyncMock(side_effect=[StoreError("db"), True])

        recovery.watch(incident, target)
        await wait_until(lambda: not recovery.is_watching(incident.id))

        assert recovery.check_once.await_count == 2

"""Tests for the engine wiring and administrative commands."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from server_status_monitor.alerter.channels import EmailChannel, TelegramChannel, WhatsAppChannel
from server_status_monitor.config import Settings
from server_status_monitor.engine import MonitorEngine, build_channels
from server_status_monitor.errors import TransientProbeError
from server_status_monitor.prober.models import Occupancy, ProbeResult

CHANNEL_ENV = (
    "TELEGRAM_BOT_TOKEN",
    "WHATSAPP_GATEWAY_URL",
    "WHATSAPP_GATEWAY_TOKEN",
    "SMTP_HOST",
    "SMTP_USER",
    "SMTP_PASSWORD",
    "SMTP_FROM",
    "REDIS_URL",
    "DRY_RUN",
)

HEALTHY = ProbeResult(
    healthy=True, latency_ms=40, occupancy=Occupancy(3, 20), protocol_version=671
)


class SwitchableProbe:
    """Probe whose outcome the test flips between healthy and failing."""

    def __init__(self) -> None:
        self.healthy = True
        self.closed = False

    async def probe(self, endpoint: str, variant: str) -> ProbeResult:
        if not self.healthy:
            raise TransientProbeError("Transport error: refused")
        return HEALTHY

    async def close(self) -> None:
        self.closed = True


async def settled(engine, predicate, timeout: float = 3.0) -> None:
    """Wait until an async predicate over the engine holds."""

    async def _poll() -> None:
        while not await predicate(engine):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


async def checked(engine) -> bool:
    targets = await engine.list_targets()
    return bool(targets) and all(t.total_checks >= 1 for t in targets)


async def notified(engine) -> bool:
    incidents = await engine.list_incidents()
    return bool(incidents) and all(i.notifications_sent for i in incidents)


@pytest.fixture
def settings(monkeypatch, tmp_path) -> Settings:
    for name in CHANNEL_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    return Settings()


@pytest.fixture
def probe() -> SwitchableProbe:
    return SwitchableProbe()


@pytest.fixture
async def engine(settings, probe, fake_channel):
    monitor = MonitorEngine(
        settings,
        probe=probe,
        channels=[fake_channel("telegram")],
        recovery_interval=0.02,
    )
    await monitor.start(start_http=False)
    yield monitor
    await monitor.stop()


class TestBuildChannels:
    """Tests for channel construction from settings."""

    def test_no_credentials_no_channels(self, settings) -> None:
        assert build_channels(settings) == []

    def test_all_channels(self, monkeypatch, settings) -> None:
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        monkeypatch.setenv("WHATSAPP_GATEWAY_URL", "http://wa-gateway:3000")
        monkeypatch.setenv("SMTP_HOST", "smtp.example.net")
        monkeypatch.setenv("SMTP_USER", "monitor@example.net")

        channels = build_channels(Settings())

        assert [type(c) for c in channels] == [TelegramChannel, WhatsAppChannel, EmailChannel]
        assert [c.name for c in channels] == ["telegram", "whatsapp", "email"]


class TestLifecycle:
    """Tests for start and stop."""

    async def test_start_and_stop(self, settings, probe, fake_channel) -> None:
        channel = fake_channel("telegram")
        monitor = MonitorEngine(settings, probe=probe, channels=[channel])

        await monitor.start(start_http=False)
        assert monitor.is_running
        assert monitor.bot is None

        await monitor.stop()
        assert not monitor.is_running
        assert channel.closed
        assert probe.closed

    async def test_start_monitors_active_targets(self, settings, probe, fake_channel) -> None:
        monitor = MonitorEngine(settings, probe=probe, channels=[fake_channel("telegram")])
        await monitor.db.connect()
        await monitor.config_store.seed_defaults()
        target = await monitor.add_target("Lobby", "play.example.net", 19132, poll_interval=3600)

        await monitor.start(start_http=False)
        try:
            assert monitor.poller.monitored_ids() == [target.id]
        finally:
            await monitor.stop()

    async def test_channel_start_error_does_not_abort_startup(
        self, settings, probe, fake_channel, caplog
    ) -> None:
        telegram = fake_channel("telegram")
        whatsapp = fake_channel("whatsapp")
        whatsapp.start = AsyncMock(side_effect=ValueError("Expecting value"))
        monitor = MonitorEngine(settings, probe=probe, channels=[telegram, whatsapp])

        await monitor.start(start_http=False)
        try:
            assert monitor.is_running
            assert "Channel whatsapp failed to start" in caplog.text
        finally:
            await monitor.stop()

    async def test_stop_without_start(self, settings, probe) -> None:
        monitor = MonitorEngine(settings, probe=probe, channels=[])
        await monitor.stop()


class TestTargets:
    """Tests for target administration."""

    async def test_add_target_uses_default_interval(self, engine) -> None:
        target = await engine.add_target("Lobby", "play.example.net", 19132)

        assert target.poll_interval == 10
        assert engine.poller.is_monitoring(target.id)

    async def test_add_target_validation(self, engine) -> None:
        with pytest.raises(ValueError, match="variant"):
            await engine.add_target("Lobby", "play.example.net", 19132, variant="quake")
        with pytest.raises(ValueError, match="Port"):
            await engine.add_target("Lobby", "play.example.net", 0)
        with pytest.raises(ValueError, match="interval"):
            await engine.add_target("Lobby", "play.example.net", 19132, poll_interval=0)

    async def test_inactive_target_not_monitored(self, engine) -> None:
        target = await engine.add_target("Lobby", "play.example.net", 19132, is_active=False)
        assert not engine.poller.is_monitoring(target.id)

    async def test_update_target_pauses_and_resumes(self, engine) -> None:
        target = await engine.add_target("Lobby", "play.example.net", 19132, poll_interval=3600)

        paused = await engine.update_target(target.id, is_active=False)
        assert paused is not None
        assert not engine.poller.is_monitoring(target.id)

        resumed = await engine.update_target(target.id, is_active=True, name="Hub")
        assert resumed.name == "Hub"
        assert engine.poller.is_monitoring(target.id)

    async def test_update_unknown_target(self, engine) -> None:
        assert await engine.update_target(999, name="Nope") is None

    async def test_remove_target_cancels_watches(self, engine, probe) -> None:
        probe.healthy = False
        target = await engine.add_target("Lobby", "play.example.net", 19132, poll_interval=3600)
        await settled(engine, notified)
        assert len(engine.recovery.watching()) == 1

        assert await engine.remove_target(target.id) is True

        assert not engine.poller.is_monitoring(target.id)
        assert engine.recovery.watching() == []
        assert await engine.list_targets() == []
        assert len(await engine.list_incidents()) == 1

    async def test_check_now_unknown(self, engine) -> None:
        assert await engine.check_now(999) is None


class TestIncidentsAndStats:
    """Tests for incident commands, snapshots and stats."""

    async def test_outage_and_recovery(self, engine, probe) -> None:
        await engine.subscribe("telegram", "100")
        probe.healthy = False
        target = await engine.add_target("Lobby", "play.example.net", 19132, poll_interval=3600)
        await settled(engine, notified)

        incidents = await engine.list_incidents(status="active")
        assert [i.kind for i in incidents] == ["target_offline"]

        probe.healthy = True
        await engine.check_now(target.id)

        async def recovered() -> None:
            while await engine.list_incidents(status="active") or (
                len(await engine.list_notifications()) < 2
            ):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(recovered(), timeout=3.0)

        records = await engine.list_notifications()
        assert sorted(r.purpose for r in records) == ["incident", "recovery"]
        telegram = engine.dispatcher.channels["telegram"]
        assert [recipient for recipient, _ in telegram.sent] == ["100", "100"]

    async def test_resolve_incident(self, engine, probe) -> None:
        probe.healthy = False
        await engine.add_target("Lobby", "play.example.net", 19132, poll_interval=3600)
        await settled(engine, notified)
        incident = (await engine.list_incidents())[0]

        assert await engine.resolve_incident(incident.id) is True
        assert await engine.resolve_incident(incident.id) is False
        assert engine.recovery.watching() == []

    async def test_status_snapshot(self, engine) -> None:
        assert await engine.get_status_snapshot() is None

        target = await engine.add_target("Lobby", "play.example.net", 19132, poll_interval=3600)
        await settled(engine, checked)

        snapshot = await engine.get_status_snapshot()
        assert snapshot["online"] is True
        assert snapshot["target"]["id"] == target.id
        assert snapshot["diagnostics"]["version_compatibility"] == "compatible"
        assert await engine.get_status_snapshot(999) is None

    async def test_check_all_once(self, engine) -> None:
        await engine.add_target("Lobby", "play.example.net", 19132, poll_interval=3600)
        await engine.add_target("Arena", "arena.example.net", 25565, variant="java")
        await settled(engine, checked)

        snapshots = await engine.check_all_once()

        assert [s["target"]["name"] for s in snapshots] == ["Lobby", "Arena"]
        assert all(s["stats"]["total_checks"] == 2 for s in snapshots)

    async def test_stats(self, engine) -> None:
        await engine.add_target("Lobby", "play.example.net", 19132, poll_interval=3600)
        await settled(engine, checked)

        stats = await engine.get_stats()

        assert stats["targets"] == 1
        assert stats["active_targets"] == 1
        assert stats["monitored_targets"] == 1
        assert stats["active_incidents"] == 0
        assert stats["uptime_percent"] == 100.0
        assert stats["channels"] == {"telegram": "ready"}


class TestSettingsAndNotifications:
    """Tests for runtime settings and test notifications."""

    async def test_update_settings(self, engine) -> None:
        config = await engine.update_settings(notify_info=True)
        assert config.notify_info is True

    async def test_send_test_notification_to_admin(self, settings, probe, fake_channel) -> None:
        email = fake_channel("email")
        monitor = MonitorEngine(settings, probe=probe, channels=[email])
        await monitor.start(monitor=False, start_http=False)
        try:
            with pytest.raises(ValueError, match="No recipient"):
                await monitor.send_test_notification("email")

            await monitor.update_settings(admin_email="ops@example.net")
            record = await monitor.send_test_notification("email")
        finally:
            await monitor.stop()

        assert record.status == "sent"
        assert email.sent[0][0] == "ops@example.net"

    async def test_unsubscribe(self, engine) -> None:
        await engine.subscribe("telegram", "100")
        await engine.unsubscribe("telegram", "100")
        await engine.add_target("Lobby", "play.example.net", 19132, poll_interval=3600)

        telegram = engine.dispatcher.channels["telegram"]
        assert telegram.sent == []

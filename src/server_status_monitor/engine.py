"""Application wiring: builds the object graph and runs its lifecycle."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from server_status_monitor.alerter.bot import TelegramCommandBot
from server_status_monitor.alerter.channels import EmailChannel, TelegramChannel, WhatsAppChannel
from server_status_monitor.alerter.dispatcher import NotificationDispatcher
from server_status_monitor.alerter.formatter import NotificationFormatter
from server_status_monitor.detector.models import IssueKind
from server_status_monitor.events import LiveUpdateBus
from server_status_monitor.incidents.ledger import IncidentLedger
from server_status_monitor.incidents.recovery import RECOVERY_POLL_SECONDS, RecoveryWatcher
from server_status_monitor.prober.client import SUPPORTED_VARIANTS, StatusProbe
from server_status_monitor.runtime_config import RuntimeConfigStore
from server_status_monitor.scheduler.poller import Poller
from server_status_monitor.status import build_snapshot
from server_status_monitor.storage.database import Database
from server_status_monitor.storage.repos import (
    INCIDENT_ACTIVE,
    IncidentRepository,
    NotificationRepository,
    SubscriptionRepository,
    TargetRepository,
)
from server_status_monitor.web import StatusServer

if TYPE_CHECKING:
    from server_status_monitor.alerter.dispatcher import Sender
    from server_status_monitor.config import Settings
    from server_status_monitor.prober.models import ProbeResult
    from server_status_monitor.runtime_config import RuntimeConfig
    from server_status_monitor.scheduler.poller import Probe
    from server_status_monitor.storage.repos import IncidentDTO, NotificationDTO, TargetDTO

logger = logging.getLogger(__name__)

STATS_LOOKBACK = timedelta(hours=24)


def build_channels(settings: Settings) -> list[Sender]:
    """Construct every channel whose credentials are configured."""
    channels: list[Sender] = []
    if settings.telegram.bot_token is not None:
        channels.append(TelegramChannel(settings.telegram.bot_token.get_secret_value()))
    if settings.whatsapp.gateway_url is not None:
        token = settings.whatsapp.gateway_token
        channels.append(
            WhatsAppChannel(
                settings.whatsapp.gateway_url,
                token=token.get_secret_value() if token else None,
                country_code=settings.whatsapp.country_code,
            )
        )
    if settings.email.enabled and settings.email.host is not None:
        password = settings.email.password
        channels.append(
            EmailChannel(
                settings.email.host,
                settings.email.port,
                user=settings.email.user,
                password=password.get_secret_value() if password else None,
                sender=settings.email.sender,
            )
        )
    return channels


class MonitorEngine:
    """The monitoring engine and its administrative commands.

    Example:
        ```python
        engine = MonitorEngine(get_settings())
        await engine.start()
        target = await engine.add_target("Lobby", "play.example.net", 19132)
        ...
        await engine.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings,
        *,
        db: Database | None = None,
        probe: Probe | None = None,
        channels: list[Sender] | None = None,
        redis: Redis | None = None,
        recovery_interval: float = RECOVERY_POLL_SECONDS,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Process settings.
            db: Database override (defaults to ``settings.database.url``).
            probe: Probe override (defaults to the status API client).
            channels: Channel override (defaults to the configured ones).
            redis: Redis client for mirroring live updates.
            recovery_interval: Seconds between recovery checks.
        """
        self.settings = settings
        self.db = db or Database(settings.database.url)
        self.config_store = RuntimeConfigStore(self.db)
        self.probe: Probe = probe or StatusProbe(
            settings.probe.api_url, timeout=settings.probe.timeout_seconds
        )
        self.channels = channels if channels is not None else build_channels(settings)

        if redis is None and settings.redis.url is not None:
            redis = Redis.from_url(settings.redis.url)
        self.bus = LiveUpdateBus(redis=redis, redis_channel=settings.redis.channel)

        self.dispatcher = NotificationDispatcher(
            self.channels,
            self.db,
            self.config_store,
            NotificationFormatter(),
            dry_run=settings.dry_run,
        )
        self.recovery = RecoveryWatcher(
            self.db, self.dispatcher, self.bus, interval=recovery_interval
        )
        self.ledger = IncidentLedger(self.db, self.dispatcher, self.bus, self.recovery)
        self.poller = Poller(
            self.db,
            self.probe,
            self.ledger,
            self.bus,
            self.config_store,
            probe_timeout=settings.probe.timeout_seconds,
        )

        telegram = next((c for c in self.channels if isinstance(c, TelegramChannel)), None)
        self.bot = (
            TelegramCommandBot(telegram, self.db)
            if telegram is not None and settings.telegram.poll_commands
            else None
        )

        self.web: StatusServer | None = None
        self._running = False
        self._started_at: float | None = None

    @property
    def is_running(self) -> bool:
        """Return True between a successful start() and stop()."""
        return self._running

    @property
    def uptime_seconds(self) -> float:
        """Seconds since start()."""
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    async def start(self, *, monitor: bool = True, start_http: bool = True) -> None:
        """Start every component.

        Args:
            monitor: Arm poll tasks for the active targets.
            start_http: Serve the status, health and metrics endpoints.

        Raises:
            StoreError: If the database cannot be reached. This is the only
                fatal startup error.
        """
        if self._running:
            return

        await self.db.connect()
        await self.config_store.seed_defaults()
        await self.config_store.refresh()

        # A channel that cannot start stays not-ready; it never aborts startup
        statuses = await asyncio.gather(
            *(channel.start() for channel in self.channels), return_exceptions=True
        )
        for channel, status in zip(self.channels, statuses, strict=True):
            if isinstance(status, Exception):
                logger.error(
                    "Channel %s failed to start: %s",
                    channel.name,
                    status,
                    exc_info=status,
                    extra={"channel": channel.name},
                )
            elif isinstance(status, BaseException):
                raise status
            else:
                logger.info("Channel %s: %s", channel.name, status.value)

        if self.bot is not None:
            await self.bot.start()

        await self.ledger.resume_watches()

        if monitor:
            await self.poller.load_and_start()

        if start_http:
            self.web = StatusServer(self)
            await self.web.start(port=self.settings.http_port)

        self._running = True
        self._started_at = time.monotonic()
        logger.info("Monitor engine started")

    async def stop(self) -> None:
        """Tear down in order: timers, channel clients, store."""
        await self.stop_timers()
        await self.stop_clients()
        await self.close_store()

    async def stop_timers(self) -> None:
        """Cancel every poll task and recovery watch."""
        polls = await self.poller.stop_all()
        watches = await self.recovery.cancel_all()
        self._running = False
        logger.info("Stopped %d poll task(s) and %d recovery watch(es)", polls, watches)

    async def stop_clients(self) -> None:
        """Close the HTTP server, command bot, channels, event bus and probe."""
        if self.web is not None:
            await self.web.stop()
            self.web = None
        if self.bot is not None:
            await self.bot.stop()
        for channel in self.channels:
            await channel.close()

        await self.bus.close()
        close_probe = getattr(self.probe, "close", None)
        if close_probe is not None:
            await close_probe()

    async def close_store(self) -> None:
        """Release the database connection pool."""
        await self.db.close()
        logger.info("Monitor engine stopped")

    # Administrative commands

    async def list_targets(self) -> list[TargetDTO]:
        """Return every target."""
        async with self.db.session() as session:
            return await TargetRepository(session).list_all()

    async def add_target(
        self,
        name: str,
        address: str,
        port: int,
        *,
        variant: str = "bedrock",
        poll_interval: int | None = None,
        is_active: bool = True,
    ) -> TargetDTO:
        """Register a target and start polling it if the engine runs.

        Raises:
            ValueError: On an unsupported variant, port or interval.
        """
        _validate_target_fields(variant=variant, port=port, poll_interval=poll_interval)
        if poll_interval is None:
            poll_interval = (await self.config_store.get()).check_interval

        async with self.db.session() as session:
            target = await TargetRepository(session).create(
                name=name,
                address=address,
                port=port,
                variant=variant,
                poll_interval=poll_interval,
                is_active=is_active,
            )
        logger.info("Added target %d: %s (%s)", target.id, target.name, target.endpoint)

        if self._running and target.is_active:
            self.poller.start_monitoring(target)
        return target

    async def update_target(self, target_id: int, **changes: Any) -> TargetDTO | None:
        """Edit a target and re-arm (or stop) its poll task.

        Raises:
            ValueError: On an unknown field or invalid value.
        """
        _validate_target_fields(**{k: v for k, v in changes.items() if k in _VALIDATED_FIELDS})
        async with self.db.session() as session:
            target = await TargetRepository(session).update(target_id, **changes)
        if target is None:
            return None

        if self._running:
            if target.is_active:
                self.poller.start_monitoring(target)
            else:
                await self.poller.stop_monitoring(target_id)
        return target

    async def remove_target(self, target_id: int) -> bool:
        """Stop polling a target, drop its recovery watches and delete it.

        Incident history is kept.
        """
        await self.poller.stop_monitoring(target_id)
        async with self.db.session() as session:
            open_offline = await IncidentRepository(session).find(
                status=INCIDENT_ACTIVE,
                target_id=target_id,
                kind=IssueKind.TARGET_OFFLINE.value,
                limit=1000,
            )
            deleted = await TargetRepository(session).delete(target_id)
        for incident in open_offline:
            await self.recovery.cancel(incident.id)
        self.ledger.forget_target(target_id)
        if deleted:
            logger.info("Removed target %d", target_id)
        return deleted

    async def check_now(self, target_id: int) -> ProbeResult | None:
        """Force an immediate check. Returns None for an unknown target."""
        async with self.db.session() as session:
            target = await TargetRepository(session).get(target_id)
        if target is None:
            return None
        return await self.poller.check_now(target)

    async def check_all_once(self) -> list[dict[str, Any]]:
        """Check every active target once and return fresh snapshots."""
        async with self.db.session() as session:
            targets = await TargetRepository(session).list_active()
        await asyncio.gather(*(self.poller.check_target(t) for t in targets))

        snapshots = []
        for target in targets:
            snapshot = await self.get_status_snapshot(target.id)
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    async def resolve_incident(self, incident_id: int) -> bool:
        """Resolve an incident on operator request."""
        return await self.ledger.resolve(incident_id)

    async def update_settings(self, **changes: Any) -> RuntimeConfig:
        """Change runtime settings (toggles, gating, recipients, thresholds)."""
        return await self.config_store.update(**changes)

    async def subscribe(self, channel: str, recipient_id: str) -> None:
        """Opt a recipient in to notifications on a broadcast channel."""
        async with self.db.session() as session:
            await SubscriptionRepository(session).set_subscribed(channel, recipient_id, True)

    async def unsubscribe(self, channel: str, recipient_id: str) -> None:
        """Opt a recipient out of notifications on a broadcast channel."""
        async with self.db.session() as session:
            await SubscriptionRepository(session).set_subscribed(channel, recipient_id, False)

    async def send_test_notification(
        self, channel: str, recipient: str | None = None, text: str | None = None
    ) -> NotificationDTO:
        """Send a test message, defaulting to the configured admin recipient.

        Raises:
            ValueError: If the channel is unknown or no recipient is known.
        """
        if recipient is None:
            config = await self.config_store.get()
            recipient = {"email": config.admin_email, "whatsapp": config.admin_phone}.get(channel)
        if not recipient:
            raise ValueError(f"No recipient given for {channel} test notification")
        return await self.dispatcher.send_test(channel, recipient, text)

    async def list_incidents(self, **filters: Any) -> list[IncidentDTO]:
        """List incidents newest first (status, severity, target_id, kind, since, limit)."""
        async with self.db.session() as session:
            return await IncidentRepository(session).find(**filters)

    async def list_notifications(self, **filters: Any) -> list[NotificationDTO]:
        """List notification records newest first (channel, status, incident_id, limit)."""
        async with self.db.session() as session:
            return await NotificationRepository(session).find(**filters)

    async def get_status_snapshot(self, target_id: int | None = None) -> dict[str, Any] | None:
        """Return the snapshot of a target, or of the first active one."""
        async with self.db.session() as session:
            repo = TargetRepository(session)
            target = await (repo.get(target_id) if target_id is not None else repo.first_active())
        if target is None:
            return None
        config = await self.config_store.get()
        return build_snapshot(target, compatible_protocol=config.min_protocol_version)

    async def get_stats(self) -> dict[str, Any]:
        """Summarize targets, incidents, notifications and channels."""
        since = datetime.now(UTC) - STATS_LOOKBACK
        async with self.db.session() as session:
            incidents = IncidentRepository(session)
            targets = await TargetRepository(session).list_all()
            active_incidents = await incidents.count(status=INCIDENT_ACTIVE)
            incidents_24h = await incidents.count(since=since)
            notifications = await NotificationRepository(session).count()

        total_checks = sum(t.total_checks for t in targets)
        uptime_checks = sum(t.uptime_checks for t in targets)
        return {
            "targets": len(targets),
            "active_targets": sum(1 for t in targets if t.is_active),
            "monitored_targets": len(self.poller.monitored_ids()),
            "active_incidents": active_incidents,
            "incidents_24h": incidents_24h,
            "notifications_total": notifications,
            "recovery_watches": len(self.recovery.watching()),
            "uptime_percent": round(uptime_checks / total_checks * 100, 2) if total_checks else 0.0,
            "channels": self.dispatcher.channel_status(),
            "uptime_seconds": round(self.uptime_seconds, 1),
        }


_VALIDATED_FIELDS = ("variant", "port", "poll_interval")


def _validate_target_fields(
    *, variant: str | None = None, port: int | None = None, poll_interval: int | None = None
) -> None:
    if variant is not None and variant not in SUPPORTED_VARIANTS:
        raise ValueError(f"Unsupported variant {variant!r}, expected one of {SUPPORTED_VARIANTS}")
    if port is not None and not 1 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    if poll_interval is not None and poll_interval < 1:
        raise ValueError(f"Poll interval must be at least 1 second, got {poll_interval}")

"""Notification dispatcher for multi-channel delivery."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

from server_status_monitor.alerter.models import (
    DeliveryReceipt,
    DispatchResult,
    NotificationMessage,
    NotificationPurpose,
    SenderStatus,
)
from server_status_monitor.errors import MonitorError, StoreError
from server_status_monitor.metrics import NOTIFICATIONS_TOTAL
from server_status_monitor.storage.repos import (
    NOTIFICATION_FAILED,
    NOTIFICATION_SENT,
    IncidentRepository,
    NotificationDTO,
    NotificationRepository,
    SubscriptionRepository,
)

if TYPE_CHECKING:
    from server_status_monitor.alerter.formatter import NotificationFormatter
    from server_status_monitor.runtime_config import RuntimeConfig, RuntimeConfigStore
    from server_status_monitor.storage.database import Database
    from server_status_monitor.storage.repos import IncidentDTO, TargetDTO

logger = logging.getLogger(__name__)

BROADCAST_CHANNELS = frozenset({"telegram"})


class Sender(Protocol):
    """Protocol for notification delivery channels."""

    name: str

    def status(self) -> SenderStatus:
        """Return the channel's lifecycle state."""
        ...

    async def start(self) -> SenderStatus:
        """Initialize the channel."""
        ...

    async def send(self, recipient: str, message: NotificationMessage) -> DeliveryReceipt:
        """Deliver to one recipient or raise ChannelSendError."""
        ...

    async def close(self) -> None:
        """Release the channel."""
        ...


class NotificationDispatcher:
    """Fans notifications out to every enabled, ready channel.

    Each (channel, recipient) attempt runs concurrently and is isolated:
    a failure is caught, logged and written to the audit trail without
    affecting the other attempts. Channels that are disabled or not ready
    are skipped without a record since no attempt was made.

    Example:
        ```python
        dispatcher = NotificationDispatcher(
            [telegram, whatsapp, email], db, config_store, NotificationFormatter()
        )
        result = await dispatcher.notify(incident, target)
        ```
    """

    def __init__(
        self,
        channels: list[Sender],
        db: Database,
        config_store: RuntimeConfigStore,
        formatter: NotificationFormatter,
        *,
        dry_run: bool = False,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            channels: Notification channels to fan out to.
            db: Database used for recipients and the audit trail.
            config_store: Runtime configuration (toggles, gating, recipients).
            formatter: Message formatter.
            dry_run: Log instead of sending, and write no records.
        """
        self.channels = {channel.name: channel for channel in channels}
        self.db = db
        self.config_store = config_store
        self.formatter = formatter
        self.dry_run = dry_run

    def channel_status(self) -> dict[str, str]:
        """Return the lifecycle state of every channel."""
        return {name: ch.status().value for name, ch in self.channels.items()}

    async def notify(self, incident: IncidentDTO, target: TargetDTO) -> DispatchResult:
        """Send the notification for a newly opened incident."""
        message = self.formatter.format_incident(incident, target)
        return await self._fan_out(incident, message)

    async def notify_recovery(self, incident: IncidentDTO, target: TargetDTO) -> DispatchResult:
        """Send the recovery notice for a resolved incident."""
        message = self.formatter.format_recovery(incident, target)
        return await self._fan_out(incident, message)

    async def send_test(
        self, channel_name: str, recipient: str, text: str | None = None
    ) -> NotificationDTO:
        """Send a test message through one channel, bypassing gating.

        Raises:
            ValueError: If the channel is unknown.
        """
        channel = self.channels.get(channel_name)
        if channel is None:
            raise ValueError(f"Unknown channel: {channel_name}")

        message = self.formatter.format_test(text)
        record = await self._attempt(channel, recipient, message, incident_id=None)
        await self._write_records([record])
        return record

    async def _fan_out(self, incident: IncidentDTO, message: NotificationMessage) -> DispatchResult:
        config = await self.config_store.get()

        if not config.severity_enabled(incident.severity):
            logger.info(
                "Notifications for %s severity are disabled, skipping incident %d",
                incident.severity,
                incident.id,
                extra={"incident_id": incident.id},
            )
            return DispatchResult(gated=True)

        result = DispatchResult()
        try:
            pairs = await self._resolve_recipients(config, result)
        except StoreError as e:
            logger.error(
                "Could not resolve recipients for incident %d: %s",
                incident.id,
                e,
                extra={"incident_id": incident.id},
            )
            return result

        if self.dry_run:
            for channel, recipient in pairs:
                logger.info(
                    "[dry-run] Would send %r to %s:%s", message.title, channel.name, recipient
                )
            return result

        if not pairs:
            logger.warning(
                "No ready channel with recipients for incident %d",
                incident.id,
                extra={"incident_id": incident.id},
            )

        tasks = [
            self._attempt(channel, recipient, message, incident_id=incident.id)
            for channel, recipient in pairs
        ]
        records = list(await asyncio.gather(*tasks))

        result.success_count = sum(1 for r in records if r.status == NOTIFICATION_SENT)
        result.failure_count = len(records) - result.success_count

        # notifications_sent is best-effort and only tracks the opening notice
        mark = incident.id if message.purpose == NotificationPurpose.INCIDENT else None
        await self._write_records(records, mark_notified=mark)

        logger.info(
            "Dispatch complete for incident %d (%s): %d/%d succeeded",
            incident.id,
            message.purpose.value,
            result.success_count,
            result.attempted,
            extra={"incident_id": incident.id},
        )
        return result

    async def _resolve_recipients(
        self, config: RuntimeConfig, result: DispatchResult
    ) -> list[tuple[Sender, str]]:
        pairs: list[tuple[Sender, str]] = []
        for name, channel in self.channels.items():
            if not config.channel_enabled(name):
                logger.debug("Channel %s disabled, skipping", name)
                result.skipped_channels.append(name)
                continue

            status = channel.status()
            if status != SenderStatus.READY:
                logger.warning(
                    "Channel %s not ready (%s), skipping",
                    name,
                    status.value,
                    extra={"channel": name},
                )
                result.skipped_channels.append(name)
                continue

            if name in BROADCAST_CHANNELS:
                # One read so the whole fan-out sees a consistent subscriber set
                async with self.db.session() as session:
                    subscribers = await SubscriptionRepository(session).list_subscribed(name)
                pairs.extend((channel, s.recipient_id) for s in subscribers)
                continue

            recipient = config.admin_email if name == "email" else config.admin_phone
            if not recipient:
                logger.warning("No recipient configured for %s, skipping", name)
                result.skipped_channels.append(name)
                continue
            pairs.append((channel, recipient))
        return pairs

    async def _attempt(
        self,
        channel: Sender,
        recipient: str,
        message: NotificationMessage,
        *,
        incident_id: int | None,
    ) -> NotificationDTO:
        record = NotificationDTO(
            incident_id=incident_id,
            channel=channel.name,
            purpose=message.purpose.value,
            title=message.title,
            message=message.plain_text,
            recipient=recipient,
            status=NOTIFICATION_SENT,
        )
        try:
            await channel.send(recipient, message)
        except MonitorError as e:
            logger.error(
                "Error sending to %s:%s: %s",
                channel.name,
                recipient,
                e,
                extra={"channel": channel.name, "recipient": recipient, "incident_id": incident_id},
            )
            record.status = NOTIFICATION_FAILED
            record.error = str(e)
        except Exception as e:
            logger.exception(
                "Unexpected error sending to %s:%s",
                channel.name,
                recipient,
                extra={"channel": channel.name, "recipient": recipient, "incident_id": incident_id},
            )
            record.status = NOTIFICATION_FAILED
            record.error = str(e) or type(e).__name__

        NOTIFICATIONS_TOTAL.labels(channel=channel.name, status=record.status).inc()
        return record

    async def _write_records(
        self, records: list[NotificationDTO], *, mark_notified: int | None = None
    ) -> None:
        try:
            async with self.db.session() as session:
                if records:
                    await NotificationRepository(session).add_many(records)
                if mark_notified is not None:
                    await IncidentRepository(session).mark_notified(mark_notified)
        except StoreError as e:
            logger.error(
                "Failed to store notification records: %s",
                e,
                extra={"incident_id": mark_notified},
            )

"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class SenderStatus(str, Enum):
    """Lifecycle state of a notification channel."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"


class NotificationPurpose(str, Enum):
    """Why a notification is being sent."""

    INCIDENT = "incident"
    RECOVERY = "recovery"
    TEST = "test"


@dataclass(frozen=True)
class NotificationMessage:
    """A notification rendered for every channel format.

    Attributes:
        title: Short headline stored in the audit trail.
        subject: Email subject line.
        plain_text: Plain text body (WhatsApp, audit trail).
        telegram_markdown: Telegram Markdown body.
        html: HTML body for email.
        severity: Severity of the underlying incident.
        purpose: Incident, recovery or test.
    """

    title: str
    subject: str
    plain_text: str
    telegram_markdown: str
    html: str
    severity: str = "info"
    purpose: NotificationPurpose = NotificationPurpose.INCIDENT


@dataclass(frozen=True)
class DeliveryReceipt:
    """Proof of a successful delivery returned by a channel."""

    channel: str
    recipient: str
    message_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class DispatchResult:
    """Result of fanning one notification out to all channels."""

    success_count: int = 0
    failure_count: int = 0
    skipped_channels: list[str] = field(default_factory=list)
    gated: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def attempted(self) -> int:
        """Number of delivery attempts that were actually made."""
        return self.success_count + self.failure_count

    @property
    def all_succeeded(self) -> bool:
        """Return True if every attempt succeeded."""
        return self.failure_count == 0 and self.success_count > 0

"""Repository pattern implementations for data access.

This module provides clean data access abstractions for targets,
incidents, notification records, settings and subscriptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from server_status_monitor.storage.models import (
    IncidentModel,
    NotificationModel,
    SettingModel,
    SubscriptionModel,
    TargetModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

INCIDENT_ACTIVE = "active"
INCIDENT_RESOLVED = "resolved"

NOTIFICATION_SENT = "sent"
NOTIFICATION_FAILED = "failed"


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _insert_for(session: AsyncSession) -> Any:
    """Pick the dialect-specific INSERT construct supporting ON CONFLICT."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


@dataclass
class TargetDTO:
    """Data transfer object for monitored targets."""

    id: int
    name: str
    address: str
    port: int
    variant: str = "bedrock"
    poll_interval: int = 10
    is_active: bool = True
    total_checks: int = 0
    uptime_checks: int = 0
    total_downtime: float = 0.0
    last_status: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def endpoint(self) -> str:
        """Return ``address:port`` as passed to the status API."""
        return f"{self.address}:{self.port}"

    @property
    def uptime_percent(self) -> float:
        """Return the share of healthy checks as a percentage."""
        if self.total_checks == 0:
            return 0.0
        return self.uptime_checks / self.total_checks * 100

    @classmethod
    def from_model(cls, model: TargetModel) -> TargetDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            name=model.name,
            address=model.address,
            port=model.port,
            variant=model.variant,
            poll_interval=model.poll_interval,
            is_active=model.is_active,
            total_checks=model.total_checks,
            uptime_checks=model.uptime_checks,
            total_downtime=model.total_downtime,
            last_status=model.last_status,
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
        )


@dataclass
class IncidentDTO:
    """Data transfer object for incidents."""

    id: int
    target_id: int
    kind: str
    title: str
    description: str
    severity: str
    status: str
    created_at: datetime
    updated_at: datetime
    resolved_at: datetime | None = None
    notifications_sent: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        """Return True while the incident has not been resolved."""
        return self.status == INCIDENT_ACTIVE

    @classmethod
    def from_model(cls, model: IncidentModel) -> IncidentDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            target_id=model.target_id,
            kind=model.kind,
            title=model.title,
            description=model.description,
            severity=model.severity,
            status=model.status,
            created_at=ensure_utc(model.created_at),  # type: ignore[arg-type]
            updated_at=ensure_utc(model.updated_at),  # type: ignore[arg-type]
            resolved_at=ensure_utc(model.resolved_at),
            notifications_sent=model.notifications_sent,
            data=model.data or {},
        )


@dataclass
class NotificationDTO:
    """Data transfer object for notification records."""

    channel: str
    title: str
    message: str
    recipient: str
    status: str
    incident_id: int | None = None
    purpose: str = "incident"
    error: str | None = None
    sent_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    id: int | None = None

    @classmethod
    def from_model(cls, model: NotificationModel) -> NotificationDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            incident_id=model.incident_id,
            channel=model.channel,
            purpose=model.purpose,
            title=model.title,
            message=model.message,
            recipient=model.recipient,
            status=model.status,
            error=model.error,
            sent_at=ensure_utc(model.sent_at),  # type: ignore[arg-type]
        )


@dataclass
class SubscriptionDTO:
    """Data transfer object for channel subscribers."""

    channel: str
    recipient_id: str
    wants_notifications: bool
    display_name: str | None = None
    last_seen_at: datetime | None = None

    @classmethod
    def from_model(cls, model: SubscriptionModel) -> SubscriptionDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            channel=model.channel,
            recipient_id=model.recipient_id,
            wants_notifications=model.wants_notifications,
            display_name=model.display_name,
            last_seen_at=ensure_utc(model.last_seen_at),
        )


class TargetRepository:
    """Repository for monitored target data access."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get(self, target_id: int) -> TargetDTO | None:
        """Get a target by id."""
        model = await self.session.get(TargetModel, target_id)
        return TargetDTO.from_model(model) if model else None

    async def list_active(self) -> list[TargetDTO]:
        """Get all targets flagged active."""
        result = await self.session.execute(
            select(TargetModel).where(TargetModel.is_active.is_(True)).order_by(TargetModel.id)
        )
        return [TargetDTO.from_model(m) for m in result.scalars().all()]

    async def list_all(self) -> list[TargetDTO]:
        """Get every target regardless of its active flag."""
        result = await self.session.execute(select(TargetModel).order_by(TargetModel.id))
        return [TargetDTO.from_model(m) for m in result.scalars().all()]

    async def first_active(self) -> TargetDTO | None:
        """Get the first active target (the public status page default)."""
        result = await self.session.execute(
            select(TargetModel)
            .where(TargetModel.is_active.is_(True))
            .order_by(TargetModel.id)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return TargetDTO.from_model(model) if model else None

    async def count(self) -> int:
        """Count all targets."""
        result = await self.session.execute(select(func.count()).select_from(TargetModel))
        return int(result.scalar_one())

    async def create(
        self,
        *,
        name: str,
        address: str,
        port: int,
        variant: str = "bedrock",
        poll_interval: int = 10,
        is_active: bool = True,
    ) -> TargetDTO:
        """Insert a new target.

        Returns:
            The stored TargetDTO with its assigned id.
        """
        model = TargetModel(
            name=name,
            address=address,
            port=port,
            variant=variant,
            poll_interval=poll_interval,
            is_active=is_active,
            total_checks=0,
            uptime_checks=0,
            total_downtime=0.0,
        )
        self.session.add(model)
        await self.session.flush()
        return TargetDTO.from_model(model)

    async def update(self, target_id: int, **changes: Any) -> TargetDTO | None:
        """Apply administrative edits (name, address, port, variant, interval, active).

        Returns:
            Updated TargetDTO, or None if the target does not exist.
        """
        allowed = {"name", "address", "port", "variant", "poll_interval", "is_active"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown target fields: {', '.join(sorted(unknown))}")

        model = await self.session.get(TargetModel, target_id)
        if model is None:
            return None
        for key, value in changes.items():
            setattr(model, key, value)
        await self.session.flush()
        return TargetDTO.from_model(model)

    async def delete(self, target_id: int) -> bool:
        """Delete a target.

        Returns:
            True if deleted, False if not found.
        """
        result = await self.session.execute(
            delete(TargetModel).where(TargetModel.id == target_id)
        )
        return result.rowcount > 0

    async def record_check(
        self,
        target_id: int,
        *,
        status: dict[str, Any],
        healthy: bool,
        downtime_seconds: float,
    ) -> TargetDTO | None:
        """Store the latest status and bump check statistics in place.

        Args:
            target_id: Target being checked.
            status: Serialized ProbeResult.
            healthy: Whether the check succeeded.
            downtime_seconds: Seconds to add to cumulative downtime when unhealthy.

        Returns:
            Updated TargetDTO, or None if the target was removed meanwhile.
        """
        values: dict[str, Any] = {
            "total_checks": TargetModel.total_checks + 1,
            "last_status": status,
            "updated_at": datetime.now(UTC),
        }
        if healthy:
            values["uptime_checks"] = TargetModel.uptime_checks + 1
        else:
            values["total_downtime"] = TargetModel.total_downtime + downtime_seconds

        result = await self.session.execute(
            update(TargetModel).where(TargetModel.id == target_id).values(**values)
        )
        if result.rowcount == 0:
            return None

        refreshed = await self.session.execute(
            select(TargetModel)
            .where(TargetModel.id == target_id)
            .execution_options(populate_existing=True)
        )
        return TargetDTO.from_model(refreshed.scalar_one())


class IncidentRepository:
    """Repository for incident data access.

    Status transitions are conditional updates so that a transition only
    applies to a row that is still ``active``.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get(self, incident_id: int) -> IncidentDTO | None:
        """Get an incident by id."""
        model = await self.session.get(IncidentModel, incident_id)
        return IncidentDTO.from_model(model) if model else None

    async def find_active_since(
        self, target_id: int, kind: str, since: datetime
    ) -> IncidentDTO | None:
        """Find the newest active incident of a kind created at or after ``since``."""
        result = await self.session.execute(
            select(IncidentModel)
            .where(
                IncidentModel.target_id == target_id,
                IncidentModel.kind == kind,
                IncidentModel.status == INCIDENT_ACTIVE,
                IncidentModel.created_at >= since,
            )
            .order_by(IncidentModel.created_at.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return IncidentDTO.from_model(model) if model else None

    async def create(
        self,
        *,
        target_id: int,
        kind: str,
        title: str,
        description: str,
        severity: str,
        data: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> IncidentDTO:
        """Insert a new active incident."""
        now = now or datetime.now(UTC)
        model = IncidentModel(
            target_id=target_id,
            kind=kind,
            title=title,
            description=description,
            severity=severity,
            status=INCIDENT_ACTIVE,
            notifications_sent=False,
            data=data or {},
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        await self.session.flush()
        return IncidentDTO.from_model(model)

    async def touch(self, incident_id: int, now: datetime | None = None) -> None:
        """Refresh ``updated_at`` on a re-detected incident."""
        await self.session.execute(
            update(IncidentModel)
            .where(IncidentModel.id == incident_id)
            .values(updated_at=now or datetime.now(UTC))
        )

    async def resolve(self, incident_id: int, now: datetime | None = None) -> bool:
        """Transition an incident from active to resolved.

        Returns:
            True if this call performed the transition, False if the incident
            was missing or already resolved.
        """
        now = now or datetime.now(UTC)
        result = await self.session.execute(
            update(IncidentModel)
            .where(IncidentModel.id == incident_id, IncidentModel.status == INCIDENT_ACTIVE)
            .values(status=INCIDENT_RESOLVED, resolved_at=now, updated_at=now)
        )
        return result.rowcount > 0

    async def mark_notified(self, incident_id: int) -> None:
        """Set the best-effort ``notifications_sent`` flag."""
        await self.session.execute(
            update(IncidentModel)
            .where(IncidentModel.id == incident_id)
            .values(notifications_sent=True)
        )

    async def find(
        self,
        *,
        status: str | None = None,
        severity: str | None = None,
        target_id: int | None = None,
        kind: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[IncidentDTO]:
        """List incidents newest first with optional filters."""
        stmt = select(IncidentModel)
        if status:
            stmt = stmt.where(IncidentModel.status == status)
        if severity:
            stmt = stmt.where(IncidentModel.severity == severity)
        if target_id is not None:
            stmt = stmt.where(IncidentModel.target_id == target_id)
        if kind:
            stmt = stmt.where(IncidentModel.kind == kind)
        if since is not None:
            stmt = stmt.where(IncidentModel.created_at >= since)
        stmt = stmt.order_by(IncidentModel.created_at.desc(), IncidentModel.id.desc()).limit(limit)

        result = await self.session.execute(stmt)
        return [IncidentDTO.from_model(m) for m in result.scalars().all()]

    async def count(self, *, status: str | None = None, since: datetime | None = None) -> int:
        """Count incidents with optional filters."""
        stmt = select(func.count()).select_from(IncidentModel)
        if status:
            stmt = stmt.where(IncidentModel.status == status)
        if since is not None:
            stmt = stmt.where(IncidentModel.created_at >= since)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())


class NotificationRepository:
    """Repository for the write-once notification audit trail."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def add_many(self, records: list[NotificationDTO]) -> int:
        """Insert notification records.

        Returns:
            Number of records inserted.
        """
        for record in records:
            self.session.add(
                NotificationModel(
                    incident_id=record.incident_id,
                    channel=record.channel,
                    purpose=record.purpose,
                    title=record.title,
                    message=record.message,
                    recipient=record.recipient,
                    status=record.status,
                    error=record.error,
                    sent_at=record.sent_at,
                )
            )
        await self.session.flush()
        return len(records)

    async def find(
        self,
        *,
        channel: str | None = None,
        status: str | None = None,
        incident_id: int | None = None,
        limit: int = 100,
    ) -> list[NotificationDTO]:
        """List notification records newest first with optional filters."""
        stmt = select(NotificationModel)
        if channel:
            stmt = stmt.where(NotificationModel.channel == channel)
        if status:
            stmt = stmt.where(NotificationModel.status == status)
        if incident_id is not None:
            stmt = stmt.where(NotificationModel.incident_id == incident_id)
        stmt = stmt.order_by(NotificationModel.id.desc()).limit(limit)

        result = await self.session.execute(stmt)
        return [NotificationDTO.from_model(m) for m in result.scalars().all()]

    async def count(self) -> int:
        """Count all notification records."""
        result = await self.session.execute(select(func.count()).select_from(NotificationModel))
        return int(result.scalar_one())


class SettingRepository:
    """Repository for key/value settings with upsert-by-key."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value, or ``default`` when the key is absent."""
        result = await self.session.execute(
            select(SettingModel.value).where(SettingModel.key == key)
        )
        row = result.first()
        return row[0] if row is not None else default

    async def get_all(self) -> dict[str, Any]:
        """Get every stored setting as a dict."""
        result = await self.session.execute(select(SettingModel.key, SettingModel.value))
        return {key: value for key, value in result.all()}

    async def set(self, key: str, value: Any, description: str | None = None) -> None:
        """Insert or update a setting by key."""
        now = datetime.now(UTC)
        insert = _insert_for(self.session)
        stmt = insert(SettingModel).values(
            key=key,
            value=value,
            description=description or f"Setting for {key}",
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        await self.session.execute(stmt)

    async def set_default(self, key: str, value: Any) -> bool:
        """Insert a setting only if the key is missing.

        Returns:
            True if the default was written.
        """
        insert = _insert_for(self.session)
        stmt = insert(SettingModel).values(
            key=key,
            value=value,
            description=f"Default setting for {key}",
            updated_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["key"])
        result = await self.session.execute(stmt)
        return result.rowcount > 0


class SubscriptionRepository:
    """Repository for channel subscribers."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get(self, channel: str, recipient_id: str) -> SubscriptionDTO | None:
        """Get a subscription by channel and recipient."""
        result = await self.session.execute(
            select(SubscriptionModel).where(
                SubscriptionModel.channel == channel,
                SubscriptionModel.recipient_id == recipient_id,
            )
        )
        model = result.scalar_one_or_none()
        return SubscriptionDTO.from_model(model) if model else None

    async def record_seen(
        self,
        channel: str,
        recipient_id: str,
        *,
        display_name: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Upsert channel-reported metadata without touching the subscribe flag."""
        now = now or datetime.now(UTC)
        insert = _insert_for(self.session)
        stmt = insert(SubscriptionModel).values(
            channel=channel,
            recipient_id=recipient_id,
            wants_notifications=False,
            display_name=display_name,
            last_seen_at=now,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["channel", "recipient_id"],
            set_={
                "display_name": stmt.excluded.display_name,
                "last_seen_at": stmt.excluded.last_seen_at,
            },
        )
        await self.session.execute(stmt)

    async def set_subscribed(self, channel: str, recipient_id: str, wants: bool) -> None:
        """Upsert the subscribe flag for a recipient."""
        now = datetime.now(UTC)
        insert = _insert_for(self.session)
        stmt = insert(SubscriptionModel).values(
            channel=channel,
            recipient_id=recipient_id,
            wants_notifications=wants,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["channel", "recipient_id"],
            set_={"wants_notifications": stmt.excluded.wants_notifications},
        )
        await self.session.execute(stmt)

    async def list_subscribed(self, channel: str) -> list[SubscriptionDTO]:
        """Get every recipient on a channel that wants notifications."""
        result = await self.session.execute(
            select(SubscriptionModel)
            .where(
                SubscriptionModel.channel == channel,
                SubscriptionModel.wants_notifications.is_(True),
            )
            .order_by(SubscriptionModel.id)
        )
        return [SubscriptionDTO.from_model(m) for m in result.scalars().all()]

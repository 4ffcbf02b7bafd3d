"""Incident ledger: deduplication and lifecycle of incidents.

A detected issue becomes an incident only if no active incident of the
same kind was opened for the same target within the dedup window.
Re-detections inside the window refresh ``updated_at`` and trigger no
notification, which keeps a flapping or stalled target from flooding
the channels.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from server_status_monitor.detector.models import IssueKind
from server_status_monitor.events import INCIDENT_OPENED, INCIDENT_RESOLVED
from server_status_monitor.metrics import INCIDENTS_OPENED, INCIDENTS_RESOLVED
from server_status_monitor.storage.repos import (
    INCIDENT_ACTIVE,
    IncidentRepository,
    TargetRepository,
)

if TYPE_CHECKING:
    from server_status_monitor.alerter.dispatcher import NotificationDispatcher
    from server_status_monitor.detector.models import Issue
    from server_status_monitor.events import LiveUpdateBus
    from server_status_monitor.incidents.recovery import RecoveryWatcher
    from server_status_monitor.storage.database import Database
    from server_status_monitor.storage.repos import IncidentDTO, TargetDTO

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(minutes=30)


class IncidentLedger:
    """Opens, deduplicates and resolves incidents.

    Dedup check-then-create runs under a per-(target, kind) lock, so two
    concurrent detections for the same pair cannot both create a row.

    Example:
        ```python
        ledger = IncidentLedger(db, dispatcher, bus, recovery)
        incident = await ledger.handle(target, issue)
        if incident is None:
            ...  # deduplicated into an existing incident
        ```
    """

    def __init__(
        self,
        db: Database,
        dispatcher: NotificationDispatcher,
        bus: LiveUpdateBus,
        recovery: RecoveryWatcher,
        *,
        dedup_window: timedelta = DEDUP_WINDOW,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.bus = bus
        self.recovery = recovery
        self.dedup_window = dedup_window
        self._locks: defaultdict[tuple[int, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def handle(self, target: TargetDTO, issue: Issue) -> IncidentDTO | None:
        """Record a detected issue.

        Returns:
            The newly created incident, or None if the issue was folded
            into an existing active incident.

        Raises:
            StoreError: If the dedup lookup or the insert failed.
        """
        kind = issue.kind.value
        now = datetime.now(UTC)

        async with self._locks[(target.id, kind)]:
            async with self.db.session() as session:
                repo = IncidentRepository(session)
                existing = await repo.find_active_since(target.id, kind, now - self.dedup_window)
                if existing is not None:
                    await repo.touch(existing.id, now)
                    incident = None
                else:
                    incident = await repo.create(
                        target_id=target.id,
                        kind=kind,
                        title=issue.title,
                        description=issue.description,
                        severity=issue.severity.value,
                        data={
                            "server_name": target.name,
                            "address": target.endpoint,
                            "timestamp": now.isoformat(),
                        },
                        now=now,
                    )

        if incident is None:
            logger.debug(
                "Issue %s on %s folded into an active incident",
                kind,
                target.name,
                extra={"target_id": target.id},
            )
            return None

        INCIDENTS_OPENED.labels(kind=kind, severity=incident.severity).inc()
        logger.warning(
            "Incident %d opened: %s on %s (%s)",
            incident.id,
            incident.title,
            target.name,
            incident.severity,
            extra={"target_id": target.id, "incident_id": incident.id},
        )

        if issue.kind == IssueKind.TARGET_OFFLINE:
            self.recovery.watch(incident, target)

        await self.bus.publish(
            INCIDENT_OPENED,
            {
                "incident_id": incident.id,
                "target_id": target.id,
                "kind": kind,
                "severity": incident.severity,
                "title": incident.title,
                "description": incident.description,
            },
        )
        await self.dispatcher.notify(incident, target)
        return incident

    async def resolve(self, incident_id: int) -> bool:
        """Resolve an incident on operator request.

        The recovery watch is cancelled first. No recovery notice is sent.

        Returns:
            True if this call resolved the incident, False if it was
            missing or already resolved.
        """
        await self.recovery.cancel(incident_id)

        async with self.db.session() as session:
            repo = IncidentRepository(session)
            resolved = await repo.resolve(incident_id)
            incident = await repo.get(incident_id) if resolved else None

        if incident is None:
            return False

        INCIDENTS_RESOLVED.labels(kind=incident.kind, source="manual").inc()
        logger.info(
            "Incident %d resolved by operator", incident_id, extra={"incident_id": incident_id}
        )
        await self.bus.publish(
            INCIDENT_RESOLVED,
            {"incident_id": incident_id, "target_id": incident.target_id, "source": "manual"},
        )
        return True

    async def resume_watches(self) -> int:
        """Re-arm recovery watches for offline incidents still open from a previous run.

        Returns:
            Number of watches armed.
        """
        async with self.db.session() as session:
            open_offline = await IncidentRepository(session).find(
                status=INCIDENT_ACTIVE, kind=IssueKind.TARGET_OFFLINE.value, limit=1000
            )
            targets = TargetRepository(session)
            pairs = []
            for incident in open_offline:
                target = await targets.get(incident.target_id)
                if target is not None:
                    pairs.append((incident, target))

        for incident, target in pairs:
            self.recovery.watch(incident, target)
        if pairs:
            logger.info("Resumed %d recovery watch(es)", len(pairs))
        return len(pairs)

    def forget_target(self, target_id: int) -> None:
        """Drop the dedup locks held for a removed target."""
        for key in [key for key in self._locks if key[0] == target_id]:
            lock = self._locks[key]
            if not lock.locked():
                del self._locks[key]

"""Recovery watch for open offline incidents."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from server_status_monitor.errors import StoreError
from server_status_monitor.events import INCIDENT_RESOLVED
from server_status_monitor.metrics import INCIDENTS_RESOLVED, RECOVERY_WATCHERS
from server_status_monitor.scheduler.registry import TaskRegistry
from server_status_monitor.storage.repos import IncidentRepository, TargetRepository

if TYPE_CHECKING:
    from server_status_monitor.alerter.dispatcher import NotificationDispatcher
    from server_status_monitor.events import LiveUpdateBus
    from server_status_monitor.storage.database import Database
    from server_status_monitor.storage.repos import IncidentDTO, TargetDTO

logger = logging.getLogger(__name__)

RECOVERY_POLL_SECONDS = 60.0


class RecoveryWatcher:
    """Polls the persisted status of offline targets until they recover.

    One task per open ``target_offline`` incident. The watcher reads the
    status the target's own poll task stores rather than probing again,
    so the check interval here is independent of the target's.

    Resolution is a conditional transition from ``active``; if an operator
    resolved the incident first, the watcher stops without notifying.
    """

    def __init__(
        self,
        db: Database,
        dispatcher: NotificationDispatcher,
        bus: LiveUpdateBus,
        *,
        interval: float = RECOVERY_POLL_SECONDS,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.bus = bus
        self.interval = interval
        self._watches = TaskRegistry("recovery")
        RECOVERY_WATCHERS.set_function(lambda: len(self._watches))

    def is_watching(self, incident_id: int) -> bool:
        """Return True if a watch is armed for the incident."""
        return self._watches.is_armed(incident_id)

    def watching(self) -> list[int]:
        """Return the ids of incidents being watched."""
        return [int(key) for key in self._watches.keys()]  # type: ignore[call-overload]

    def watch(self, incident: IncidentDTO, target: TargetDTO) -> None:
        """Arm (or re-arm) the watch for an incident."""
        self._watches.arm(incident.id, lambda: self._run(incident.id, target.id))
        logger.info(
            "Watching incident %d for recovery of %s",
            incident.id,
            target.name,
            extra={"incident_id": incident.id, "target_id": target.id},
        )

    async def cancel(self, incident_id: int) -> bool:
        """Stop watching an incident. Unknown ids are a no-op."""
        return await self._watches.cancel(incident_id)

    async def cancel_all(self) -> int:
        """Stop every watch."""
        return await self._watches.cancel_all()

    async def _run(self, incident_id: int, target_id: int) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                if await self.check_once(incident_id, target_id):
                    return
            except StoreError as e:
                logger.error(
                    "Recovery check for incident %d failed: %s",
                    incident_id,
                    e,
                    extra={"incident_id": incident_id, "target_id": target_id},
                )

    async def check_once(self, incident_id: int, target_id: int) -> bool:
        """Run one recovery check.

        Returns:
            True when watching should stop (recovered, already resolved, or
            the incident or target no longer exists).
        """
        now = datetime.now(UTC)
        async with self.db.session() as session:
            incidents = IncidentRepository(session)
            incident = await incidents.get(incident_id)
            if incident is None or not incident.is_active:
                logger.info("Incident %d no longer active, stopping recovery watch", incident_id)
                return True

            target = await TargetRepository(session).get(target_id)
            if target is None:
                logger.warning(
                    "Target %d removed, stopping recovery watch for incident %d",
                    target_id,
                    incident_id,
                )
                return True

            if not (target.last_status or {}).get("healthy"):
                return False

            if not await incidents.resolve(incident_id, now):
                return True
            resolved = await incidents.get(incident_id)

        if resolved is None:
            return True

        INCIDENTS_RESOLVED.labels(kind=resolved.kind, source="recovery").inc()
        logger.info(
            "Incident %d resolved: %s is back online",
            incident_id,
            target.name,
            extra={"incident_id": incident_id, "target_id": target_id},
        )
        await self.bus.publish(
            INCIDENT_RESOLVED,
            {"incident_id": incident_id, "target_id": target_id, "source": "recovery"},
        )
        await self.dispatcher.notify_recovery(resolved, target)
        return True

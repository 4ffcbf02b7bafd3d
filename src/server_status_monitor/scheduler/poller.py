"""Per-target polling: probe, record, detect, hand issues to the ledger."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Protocol

from server_status_monitor.detector.rules import detect
from server_status_monitor.errors import StoreError, TransientProbeError
from server_status_monitor.events import TARGET_UPDATED
from server_status_monitor.metrics import (
    CHECK_ERRORS,
    MONITORED_TARGETS,
    PROBE_LATENCY,
    PROBES_TOTAL,
)
from server_status_monitor.prober.client import DEFAULT_TIMEOUT_SECONDS
from server_status_monitor.prober.models import ProbeResult
from server_status_monitor.scheduler.registry import TaskRegistry
from server_status_monitor.storage.repos import TargetRepository

if TYPE_CHECKING:
    from server_status_monitor.events import LiveUpdateBus
    from server_status_monitor.incidents.ledger import IncidentLedger
    from server_status_monitor.runtime_config import RuntimeConfigStore
    from server_status_monitor.storage.database import Database
    from server_status_monitor.storage.repos import TargetDTO

logger = logging.getLogger(__name__)


class Probe(Protocol):
    """Anything that can query a target's status."""

    async def probe(self, endpoint: str, variant: str) -> ProbeResult:
        """Return the current status or raise TransientProbeError."""
        ...


class Poller:
    """Owns one independent poll task per monitored target.

    A check never raises out of the poll loop: probe failures become an
    unhealthy ProbeResult and store failures abort only that cycle.

    Example:
        ```python
        poller = Poller(db, probe, ledger, bus, config_store)
        await poller.load_and_start()
        ...
        await poller.stop_all()
        ```
    """

    def __init__(
        self,
        db: Database,
        probe: Probe,
        ledger: IncidentLedger,
        bus: LiveUpdateBus,
        config_store: RuntimeConfigStore,
        *,
        probe_timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the poller.

        Args:
            db: Database for target state.
            probe: Probe dependency.
            ledger: Incident ledger receiving detected issues.
            bus: Live-update stream.
            config_store: Runtime configuration (detection thresholds).
            probe_timeout: Upper bound in seconds for one probe.
        """
        self.db = db
        self.probe = probe
        self.ledger = ledger
        self.bus = bus
        self.config_store = config_store
        self.probe_timeout = probe_timeout
        self._timers = TaskRegistry("poll")
        MONITORED_TARGETS.set_function(lambda: len(self._timers))

    def is_monitoring(self, target_id: int) -> bool:
        """Return True if a poll task is armed for the target."""
        return self._timers.is_armed(target_id)

    def monitored_ids(self) -> list[int]:
        """Return the ids of targets being polled."""
        return sorted(int(key) for key in self._timers.keys())  # type: ignore[call-overload]

    def start_monitoring(self, target: TargetDTO, *, check_now: bool = True) -> None:
        """Arm the poll task for a target, replacing any existing one."""
        self._timers.arm(target.id, lambda: self._poll_loop(target, check_now))
        logger.info(
            "Monitoring %s (%s) every %ds",
            target.name,
            target.endpoint,
            target.poll_interval,
            extra={"target_id": target.id},
        )

    async def stop_monitoring(self, target_id: int) -> bool:
        """Cancel a target's poll task. Unknown ids are a no-op."""
        stopped = await self._timers.cancel(target_id)
        if stopped:
            logger.info("Stopped monitoring target %d", target_id, extra={"target_id": target_id})
        return stopped

    async def stop_all(self) -> int:
        """Cancel every poll task."""
        return await self._timers.cancel_all()

    async def load_and_start(self) -> int:
        """Arm a poll task for every active target, each checking immediately.

        Returns:
            Number of targets armed.
        """
        async with self.db.session() as session:
            targets = await TargetRepository(session).list_active()
        for target in targets:
            self.start_monitoring(target, check_now=True)
        logger.info("Loaded %d active target(s)", len(targets))
        return len(targets)

    async def check_now(self, target: TargetDTO) -> ProbeResult:
        """Run a check immediately, outside the regular interval.

        The target's poll task is paused for the duration so its stats
        still have a single writer, then re-armed from now.
        """
        was_monitoring = await self._timers.cancel(target.id)
        try:
            return await self.check_target(target)
        finally:
            if was_monitoring:
                self.start_monitoring(target, check_now=False)

    async def _poll_loop(self, target: TargetDTO, check_now: bool) -> None:
        if check_now:
            await self._guarded_check(target)
        while True:
            await asyncio.sleep(target.poll_interval)
            await self._guarded_check(target)

    async def _guarded_check(self, target: TargetDTO) -> None:
        # Cancelling the loop must not cut a check short between its
        # incident write and the notification fan-out
        check = asyncio.create_task(self.check_target(target), name=f"check:{target.id}")
        try:
            await asyncio.wait([check])
        except asyncio.CancelledError:
            logger.info(
                "Poll task for %s cancelled mid-check, finishing the check first",
                target.name,
                extra={"target_id": target.id},
            )
            await asyncio.wait([check])
            raise
        finally:
            if check.done() and not check.cancelled() and check.exception() is not None:
                CHECK_ERRORS.labels(stage="unexpected").inc()
                logger.error(
                    "Unexpected error checking %s",
                    target.name,
                    exc_info=check.exception(),
                    extra={"target_id": target.id},
                )

    async def _probe(self, target: TargetDTO) -> ProbeResult:
        started = time.monotonic()
        try:
            return await asyncio.wait_for(
                self.probe.probe(target.endpoint, target.variant),
                timeout=self.probe_timeout,
            )
        except TimeoutError:
            error = "Connection timeout"
        except TransientProbeError as e:
            error = str(e)
        except Exception as e:
            logger.exception(
                "Probe of %s raised unexpectedly", target.name, extra={"target_id": target.id}
            )
            error = str(e) or type(e).__name__
        latency_ms = round((time.monotonic() - started) * 1000, 1)
        logger.warning(
            "Probe of %s failed: %s", target.name, error, extra={"target_id": target.id}
        )
        return ProbeResult.failed(error, latency_ms)

    async def check_target(self, target: TargetDTO) -> ProbeResult:
        """Probe a target once and process the result.

        Stats update, status publish, issue detection and incident
        handling run strictly in that order.

        Returns:
            The ProbeResult, which is unhealthy if the probe failed.
        """
        result = await self._probe(target)
        PROBES_TOTAL.labels(result="healthy" if result.healthy else "unhealthy").inc()
        PROBE_LATENCY.observe(result.latency_ms / 1000)

        try:
            async with self.db.session() as session:
                updated = await TargetRepository(session).record_check(
                    target.id,
                    status=result.to_dict(),
                    healthy=result.healthy,
                    # A failed check counts the whole interval as down
                    downtime_seconds=float(target.poll_interval),
                )
            config = await self.config_store.get()
        except StoreError as e:
            CHECK_ERRORS.labels(stage="store").inc()
            logger.error(
                "Failed to record check for %s: %s", target.name, e, extra={"target_id": target.id}
            )
            return result

        if updated is None:
            logger.warning(
                "Target %d disappeared during check", target.id, extra={"target_id": target.id}
            )
            return result

        await self.bus.publish(
            TARGET_UPDATED,
            {
                "target_id": updated.id,
                "status": result.to_dict(),
                "stats": {
                    "total_checks": updated.total_checks,
                    "uptime_checks": updated.uptime_checks,
                    "total_downtime": updated.total_downtime,
                },
            },
        )

        issues = detect(
            updated,
            result,
            latency_threshold_ms=config.high_latency_ms,
            min_protocol_version=config.min_protocol_version,
        )
        for issue in issues:
            try:
                await self.ledger.handle(updated, issue)
            except StoreError as e:
                CHECK_ERRORS.labels(stage="incident").inc()
                logger.error(
                    "Failed to record %s incident for %s: %s",
                    issue.kind.value,
                    target.name,
                    e,
                    extra={"target_id": target.id},
                )
        return result

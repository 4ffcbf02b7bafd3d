"""Incident lifecycle - deduplication, resolution and recovery watch."""

from server_status_monitor.incidents.ledger import DEDUP_WINDOW, IncidentLedger
from server_status_monitor.incidents.recovery import RECOVERY_POLL_SECONDS, RecoveryWatcher

__all__ = [
    "DEDUP_WINDOW",
    "RECOVERY_POLL_SECONDS",
    "IncidentLedger",
    "RecoveryWatcher",
]

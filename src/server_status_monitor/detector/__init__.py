"""Issue detection layer - derive candidate problems from probe results."""

from server_status_monitor.detector.models import Issue, IssueKind, Severity
from server_status_monitor.detector.rules import (
    HIGH_LATENCY_THRESHOLD_MS,
    MIN_PROTOCOL_VERSION,
    detect,
)

__all__ = [
    "HIGH_LATENCY_THRESHOLD_MS",
    "MIN_PROTOCOL_VERSION",
    "Issue",
    "IssueKind",
    "Severity",
    "detect",
]

"""Stateless issue detection rules.

Every rule is evaluated independently against the latest ProbeResult, so a
single result may yield several issues. Nothing here reads or writes state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from server_status_monitor.detector.models import Issue, IssueKind, Severity

if TYPE_CHECKING:
    from server_status_monitor.prober.models import ProbeResult
    from server_status_monitor.storage.repos import TargetDTO

HIGH_LATENCY_THRESHOLD_MS = 1000
MIN_PROTOCOL_VERSION = 671


def detect(
    target: TargetDTO,
    result: ProbeResult,
    *,
    latency_threshold_ms: float = HIGH_LATENCY_THRESHOLD_MS,
    min_protocol_version: int = MIN_PROTOCOL_VERSION,
) -> list[Issue]:
    """Map a probe result to zero or more candidate issues.

    Args:
        target: The target that was probed (used for descriptions).
        result: Latest probe result.
        latency_threshold_ms: Latency above which ``high_latency`` fires.
        min_protocol_version: Protocol numbers below this raise ``version_mismatch``.

    Returns:
        All matching issues; empty for a healthy, fast, non-full, current result.
    """
    issues: list[Issue] = []

    if not result.healthy:
        issues.append(
            Issue(
                kind=IssueKind.TARGET_OFFLINE,
                severity=Severity.CRITICAL,
                title="Server Offline",
                description=(
                    f"Server {target.name} is not responding. "
                    f"Error: {result.error or 'Connection timeout'}"
                ),
            )
        )

    if result.latency_ms > latency_threshold_ms:
        issues.append(
            Issue(
                kind=IssueKind.HIGH_LATENCY,
                severity=Severity.WARNING,
                title="High Latency",
                description=(
                    f"Server {target.name} has high latency: {result.latency_ms:.0f}ms"
                ),
            )
        )

    if result.occupancy.is_full:
        issues.append(
            Issue(
                kind=IssueKind.FULL_CAPACITY,
                severity=Severity.WARNING,
                title="Server Full",
                description=(
                    f"Server {target.name} is at full capacity "
                    f"({result.occupancy.current}/{result.occupancy.max})"
                ),
            )
        )

    # Protocol 0 or negative means "unknown" on the status API
    if (
        result.protocol_version is not None
        and result.protocol_version > 0
        and result.protocol_version < min_protocol_version
    ):
        issues.append(
            Issue(
                kind=IssueKind.VERSION_MISMATCH,
                severity=Severity.INFO,
                title="Old Version",
                description=(
                    f"Server {target.name} is running an old version: "
                    f"{result.version_name or result.protocol_version}"
                ),
            )
        )

    return issues

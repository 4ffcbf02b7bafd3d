"""Read-only status snapshots with derived diagnostics."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from server_status_monitor.detector.rules import MIN_PROTOCOL_VERSION
from server_status_monitor.prober.models import ProbeResult

if TYPE_CHECKING:
    from server_status_monitor.storage.repos import TargetDTO

HIGH_LOAD_RATIO = 0.8


def latency_bucket(latency_ms: float) -> str:
    """Classify a round-trip time."""
    if latency_ms < 100:
        return "excellent"
    if latency_ms < 300:
        return "good"
    if latency_ms < 500:
        return "fair"
    return "poor"


def diagnostics(
    result: ProbeResult, *, compatible_protocol: int = MIN_PROTOCOL_VERSION
) -> dict[str, Any]:
    """Derive the diagnostics block for one probe result."""
    occupancy = result.occupancy
    high_load = occupancy.max > 0 and occupancy.current > occupancy.max * HIGH_LOAD_RATIO
    return {
        "network": "healthy" if result.healthy else "unhealthy",
        "latency": result.latency_ms,
        "latency_status": latency_bucket(result.latency_ms),
        "players_connected": occupancy.current,
        "server_load": "high" if high_load else "normal",
        "version_compatibility": (
            "compatible" if result.protocol_version == compatible_protocol else "check_version"
        ),
    }


def build_snapshot(
    target: TargetDTO, *, compatible_protocol: int = MIN_PROTOCOL_VERSION
) -> dict[str, Any]:
    """Project a target and its latest probe result for API consumers.

    A target that has never been checked is reported as offline with
    empty metadata.
    """
    if target.last_status:
        result = ProbeResult.from_dict(target.last_status)
        last_check = result.checked_at.isoformat()
    else:
        result = ProbeResult.failed("Not checked yet")
        last_check = None

    return {
        "target": {
            "id": target.id,
            "name": target.name,
            "address": target.endpoint,
            "variant": target.variant,
            "poll_interval": target.poll_interval,
            "is_active": target.is_active,
        },
        "online": result.healthy,
        "players": {"online": result.occupancy.current, "max": result.occupancy.max},
        "version": {"name": result.version_name or "Unknown", "protocol": result.protocol_version},
        "motd": result.motd or ("" if result.healthy else "Server Offline"),
        "latency_ms": result.latency_ms,
        "error": result.error,
        "last_check": last_check,
        "stats": {
            "uptime_percent": round(target.uptime_percent, 2),
            "total_checks": target.total_checks,
            "uptime_checks": target.uptime_checks,
            "total_downtime": target.total_downtime,
        },
        "diagnostics": diagnostics(result, compatible_protocol=compatible_protocol),
    }

"""Tests for status snapshots and diagnostics."""

from __future__ import annotations

import pytest

from server_status_monitor.prober.models import Occupancy, ProbeResult
from server_status_monitor.status import build_snapshot, diagnostics, latency_bucket
from server_status_monitor.storage.repos import TargetDTO


@pytest.mark.parametrize(
    ("latency", "bucket"),
    [(0, "excellent"), (99.9, "excellent"), (100, "good"), (299, "good"), (300, "fair"),
     (499, "fair"), (500, "poor"), (10000, "poor")],
)
def test_latency_bucket(latency: float, bucket: str) -> None:
    assert latency_bucket(latency) == bucket


class TestDiagnostics:
    """Tests for the diagnostics block."""

    def test_healthy_result(self) -> None:
        result = ProbeResult(
            healthy=True, latency_ms=42, occupancy=Occupancy(5, 20), protocol_version=671
        )

        assert diagnostics(result) == {
            "network": "healthy",
            "latency": 42,
            "latency_status": "excellent",
            "players_connected": 5,
            "server_load": "normal",
            "version_compatibility": "compatible",
        }

    def test_high_load_is_strictly_above_eighty_percent(self) -> None:
        at_limit = ProbeResult(healthy=True, occupancy=Occupancy(16, 20))
        above = ProbeResult(healthy=True, occupancy=Occupancy(17, 20))

        assert diagnostics(at_limit)["server_load"] == "normal"
        assert diagnostics(above)["server_load"] == "high"

    def test_unknown_capacity_is_normal_load(self) -> None:
        result = ProbeResult(healthy=True, occupancy=Occupancy(50, 0))
        assert diagnostics(result)["server_load"] == "normal"

    def test_version_check(self) -> None:
        result = ProbeResult(healthy=True, protocol_version=700)
        assert diagnostics(result)["version_compatibility"] == "check_version"
        assert (
            diagnostics(result, compatible_protocol=700)["version_compatibility"] == "compatible"
        )

    def test_unhealthy_network(self) -> None:
        assert diagnostics(ProbeResult.failed("down"))["network"] == "unhealthy"


class TestBuildSnapshot:
    """Tests for build_snapshot."""

    def test_never_checked(self) -> None:
        target = TargetDTO(id=1, name="Lobby", address="play.example.net", port=19132)

        snapshot = build_snapshot(target)

        assert snapshot["online"] is False
        assert snapshot["last_check"] is None
        assert snapshot["error"] == "Not checked yet"
        assert snapshot["motd"] == "Server Offline"
        assert snapshot["version"] == {"name": "Unknown", "protocol": None}
        assert snapshot["target"]["address"] == "play.example.net:19132"
        assert snapshot["stats"]["uptime_percent"] == 0.0

    def test_checked_target(self) -> None:
        result = ProbeResult(
            healthy=True,
            latency_ms=150,
            occupancy=Occupancy(3, 20),
            protocol_version=671,
            version_name="1.20.81",
            motd="Welcome",
        )
        target = TargetDTO(
            id=2,
            name="Arena",
            address="arena.example.net",
            port=25565,
            variant="java",
            total_checks=3,
            uptime_checks=2,
            total_downtime=10.0,
            last_status=result.to_dict(),
        )

        snapshot = build_snapshot(target)

        assert snapshot["online"] is True
        assert snapshot["players"] == {"online": 3, "max": 20}
        assert snapshot["version"] == {"name": "1.20.81", "protocol": 671}
        assert snapshot["motd"] == "Welcome"
        assert snapshot["last_check"] == result.checked_at.isoformat()
        assert snapshot["stats"] == {
            "uptime_percent": 66.67,
            "total_checks": 3,
            "uptime_checks": 2,
            "total_downtime": 10.0,
        }
        assert snapshot["diagnostics"]["latency_status"] == "good"
        assert snapshot["target"]["variant"] == "java"

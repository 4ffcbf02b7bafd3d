"""Tests for the issue detection rules."""

from __future__ import annotations

import pytest

from server_status_monitor.detector import IssueKind, Severity, detect
from server_status_monitor.prober.models import Occupancy, ProbeResult
from server_status_monitor.storage.repos import TargetDTO


@pytest.fixture
def target() -> TargetDTO:
    return TargetDTO(id=1, name="Lobby", address="play.example.net", port=19132)


def kinds(issues) -> list[IssueKind]:
    return [issue.kind for issue in issues]


class TestDetect:
    """Tests for detect()."""

    def test_healthy_result_has_no_issues(self, target: TargetDTO) -> None:
        result = ProbeResult(
            healthy=True, latency_ms=50, occupancy=Occupancy(3, 20), protocol_version=700
        )
        assert detect(target, result) == []

    def test_offline_is_critical(self, target: TargetDTO) -> None:
        issues = detect(target, ProbeResult.failed("Connection refused"))

        assert kinds(issues) == [IssueKind.TARGET_OFFLINE]
        assert issues[0].severity == Severity.CRITICAL
        assert issues[0].title == "Server Offline"
        assert "Lobby" in issues[0].description
        assert "Connection refused" in issues[0].description

    def test_offline_without_error_mentions_timeout(self, target: TargetDTO) -> None:
        issues = detect(target, ProbeResult(healthy=False))
        assert "Connection timeout" in issues[0].description

    def test_high_latency_is_strictly_greater(self, target: TargetDTO) -> None:
        at_threshold = ProbeResult(healthy=True, latency_ms=1000)
        above = ProbeResult(healthy=True, latency_ms=1000.5)

        assert detect(target, at_threshold) == []
        issues = detect(target, above)
        assert kinds(issues) == [IssueKind.HIGH_LATENCY]
        assert issues[0].severity == Severity.WARNING

    def test_custom_latency_threshold(self, target: TargetDTO) -> None:
        result = ProbeResult(healthy=True, latency_ms=400)
        assert kinds(detect(target, result, latency_threshold_ms=300)) == [
            IssueKind.HIGH_LATENCY
        ]

    def test_full_capacity(self, target: TargetDTO) -> None:
        issues = detect(target, ProbeResult(healthy=True, occupancy=Occupancy(20, 20)))

        assert kinds(issues) == [IssueKind.FULL_CAPACITY]
        assert "(20/20)" in issues[0].description

    def test_zero_slots_is_not_full(self, target: TargetDTO) -> None:
        assert detect(target, ProbeResult(healthy=True, occupancy=Occupancy(0, 0))) == []

    def test_old_version_is_info(self, target: TargetDTO) -> None:
        result = ProbeResult(healthy=True, protocol_version=600, version_name="1.19.0")
        issues = detect(target, result)

        assert kinds(issues) == [IssueKind.VERSION_MISMATCH]
        assert issues[0].severity == Severity.INFO
        assert "1.19.0" in issues[0].description

    @pytest.mark.parametrize("protocol", [None, 0, -1, 671, 800])
    def test_version_not_flagged(self, target: TargetDTO, protocol: int | None) -> None:
        result = ProbeResult(healthy=True, protocol_version=protocol)
        assert detect(target, result) == []

    def test_rules_are_independent(self, target: TargetDTO) -> None:
        result = ProbeResult(
            healthy=False,
            latency_ms=10000,
            occupancy=Occupancy(5, 5),
            protocol_version=500,
            error="Connection timeout",
        )

        assert kinds(detect(target, result)) == [
            IssueKind.TARGET_OFFLINE,
            IssueKind.HIGH_LATENCY,
            IssueKind.FULL_CAPACITY,
            IssueKind.VERSION_MISMATCH,
        ]

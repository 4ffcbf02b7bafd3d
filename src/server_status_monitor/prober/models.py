"""Data models for the prober module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class Occupancy:
    """Player slots reported by a target."""

    current: int = 0
    max: int = 0

    @property
    def is_full(self) -> bool:
        """Return True when every slot is taken on a target with slots."""
        return self.max > 0 and self.current == self.max

    @property
    def load_ratio(self) -> float:
        """Return current/max, or 0.0 when max is unknown."""
        if self.max <= 0:
            return 0.0
        return self.current / self.max


@dataclass(frozen=True)
class ProbeResult:
    """Point-in-time outcome of querying a target.

    Attributes:
        healthy: Whether the target answered and reported itself online.
        latency_ms: Round-trip time of the probe in milliseconds.
        occupancy: Current and maximum player counts.
        protocol_version: Remote protocol number, if reported.
        version_name: Human-readable version string, if reported.
        motd: Message of the day (clean text), if reported.
        error: Failure description when unhealthy.
        checked_at: When the probe completed.
        raw: Raw payload returned by the status API.
    """

    healthy: bool
    latency_ms: float = 0.0
    occupancy: Occupancy = field(default_factory=Occupancy)
    protocol_version: int | None = None
    version_name: str | None = None
    motd: str | None = None
    error: str | None = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, error: str, latency_ms: float = 0.0) -> ProbeResult:
        """Build the unhealthy result recorded when a probe raises."""
        return cls(healthy=False, latency_ms=latency_ms, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage as the target's last status."""
        return {
            "healthy": self.healthy,
            "latency_ms": self.latency_ms,
            "occupancy": {"current": self.occupancy.current, "max": self.occupancy.max},
            "protocol_version": self.protocol_version,
            "version_name": self.version_name,
            "motd": self.motd,
            "error": self.error,
            "checked_at": self.checked_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProbeResult:
        """Deserialize a stored status, tolerating missing fields."""
        checked_at = data.get("checked_at")
        if isinstance(checked_at, str):
            checked_at = datetime.fromisoformat(checked_at)
        elif not isinstance(checked_at, datetime):
            checked_at = datetime.now(UTC)

        occupancy = data.get("occupancy") or {}
        return cls(
            healthy=bool(data.get("healthy", False)),
            latency_ms=float(data.get("latency_ms") or 0.0),
            occupancy=Occupancy(
                current=int(occupancy.get("current") or 0),
                max=int(occupancy.get("max") or 0),
            ),
            protocol_version=data.get("protocol_version"),
            version_name=data.get("version_name"),
            motd=data.get("motd"),
            error=data.get("error"),
            checked_at=checked_at,
        )

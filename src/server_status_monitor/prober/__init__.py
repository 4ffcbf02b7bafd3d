"""Probing layer - query remote server status."""

from server_status_monitor.prober.client import StatusProbe, parse_status_payload
from server_status_monitor.prober.models import Occupancy, ProbeResult

__all__ = [
    "Occupancy",
    "ProbeResult",
    "StatusProbe",
    "parse_status_payload",
]

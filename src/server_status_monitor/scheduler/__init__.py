"""Scheduling layer - per-target poll tasks."""

from server_status_monitor.scheduler.poller import Poller, Probe
from server_status_monitor.scheduler.registry import TaskRegistry

__all__ = [
    "Poller",
    "Probe",
    "TaskRegistry",
]

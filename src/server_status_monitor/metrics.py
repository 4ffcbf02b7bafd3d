"""Prometheus metrics exposed on ``/metrics``."""

from prometheus_client import Counter, Gauge, Histogram

PROBES_TOTAL = Counter(
    "server_monitor_probes_total",
    "Total number of probes performed",
    ["result"],
)

PROBE_LATENCY = Histogram(
    "server_monitor_probe_latency_seconds",
    "Probe round-trip time in seconds",
    buckets=[0.05, 0.1, 0.3, 0.5, 1.0, 2.5, 5.0, 10.0],
)

CHECK_ERRORS = Counter(
    "server_monitor_check_errors_total",
    "Check cycles aborted by an unexpected error",
    ["stage"],
)

INCIDENTS_OPENED = Counter(
    "server_monitor_incidents_opened_total",
    "Incidents created",
    ["kind", "severity"],
)

INCIDENTS_RESOLVED = Counter(
    "server_monitor_incidents_resolved_total",
    "Incidents resolved",
    ["kind", "source"],
)

NOTIFICATIONS_TOTAL = Counter(
    "server_monitor_notifications_total",
    "Notification delivery attempts",
    ["channel", "status"],
)

MONITORED_TARGETS = Gauge(
    "server_monitor_monitored_targets",
    "Targets with an armed poll timer",
)

RECOVERY_WATCHERS = Gauge(
    "server_monitor_recovery_watchers",
    "Open offline incidents being watched for recovery",
)

"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Severity(str, Enum):
    """Issue severity, each gated by its own ``notify_*`` setting."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class IssueKind(str, Enum):
    """Kinds of problems the detector can raise."""

    TARGET_OFFLINE = "target_offline"
    HIGH_LATENCY = "high_latency"
    FULL_CAPACITY = "full_capacity"
    VERSION_MISMATCH = "version_mismatch"


@dataclass(frozen=True)
class Issue:
    """Candidate problem derived from one ProbeResult.

    Issues are never stored; the incident ledger turns them into incidents.

    Attributes:
        kind: What went wrong.
        severity: How urgent it is.
        title: Short headline.
        description: Human-readable detail including the target name.
    """

    kind: IssueKind
    severity: Severity
    title: str
    description: str

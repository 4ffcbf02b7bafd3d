"""Exception taxonomy for the monitoring engine.

None of these errors is allowed to stop the scheduler: probe errors become
unhealthy results, channel errors become failed notification records and
store errors abort only the check or notify cycle that raised them.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base exception for monitoring engine errors."""

    pass


class TransientProbeError(MonitorError):
    """Raised when a probe times out or the transport fails.

    The target is marked unhealthy and retried on its next tick.
    """

    pass


class MalformedProbeResponse(TransientProbeError):
    """Raised when the status API returns a payload that cannot be parsed."""

    pass


class ChannelUnavailableError(MonitorError):
    """Raised when a channel is not initialized or not ready."""

    def __init__(self, channel: str, status: str) -> None:
        super().__init__(f"{channel} channel not ready (status: {status})")
        self.channel = channel
        self.status = status


class ChannelSendError(MonitorError):
    """Raised when a provider rejects a delivery attempt."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(message)
        self.channel = channel


class StoreError(MonitorError):
    """Raised when a persistence operation fails."""

    pass

"""HTTP client for the remote server status API.

Queries an mcstatus.io-compatible endpoint
(``{api_url}/status/{variant}/{address}:{port}``) and normalizes the
payload into a ProbeResult.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from server_status_monitor.errors import MalformedProbeResponse, TransientProbeError
from server_status_monitor.prober.models import Occupancy, ProbeResult

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.mcstatus.io/v2"
DEFAULT_TIMEOUT_SECONDS = 10.0
SUPPORTED_VARIANTS = ("java", "bedrock")


def parse_status_payload(data: Any, latency_ms: float) -> ProbeResult:
    """Normalize a status API payload.

    Every metadata field is optional; missing values fall back to defaults.

    Raises:
        MalformedProbeResponse: If the payload is not a JSON object.
    """
    if not isinstance(data, dict):
        raise MalformedProbeResponse(f"Expected JSON object, got {type(data).__name__}")

    players = data.get("players") or {}
    version = data.get("version") or {}
    motd = data.get("motd") or {}

    try:
        occupancy = Occupancy(
            current=int(players.get("online") or 0),
            max=int(players.get("max") or 0),
        )
        protocol = version.get("protocol")
        protocol_version = int(protocol) if protocol is not None else None
    except (TypeError, ValueError, AttributeError) as e:
        raise MalformedProbeResponse(f"Invalid status payload: {e}") from e

    healthy = bool(data.get("online", False))
    return ProbeResult(
        healthy=healthy,
        latency_ms=latency_ms,
        occupancy=occupancy,
        protocol_version=protocol_version,
        version_name=version.get("name") or version.get("name_clean"),
        motd=motd.get("clean") if isinstance(motd, dict) else str(motd),
        error=None if healthy else "Server reported offline",
        raw=data,
    )


class StatusProbe:
    """Probe dependency: queries one target and returns a ProbeResult.

    Example:
        ```python
        probe = StatusProbe(api_url="https://api.mcstatus.io/v2")
        result = await probe.probe("play.example.net:19132", "bedrock")
        await probe.close()
        ```
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            api_url: Base URL of the status API.
            timeout: Upper bound in seconds for one probe.
            client: Optional shared HTTP client (created lazily otherwise).
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def probe(self, endpoint: str, variant: str) -> ProbeResult:
        """Query the status of ``endpoint`` using protocol ``variant``.

        Args:
            endpoint: ``address:port`` of the target.
            variant: Remote protocol flavour (``java`` or ``bedrock``).

        Returns:
            ProbeResult with the measured latency.

        Raises:
            TransientProbeError: On timeout, transport failure or HTTP error.
            MalformedProbeResponse: If the payload cannot be parsed.
        """
        if variant not in SUPPORTED_VARIANTS:
            raise MalformedProbeResponse(f"Unsupported server type: {variant}")

        url = f"{self.api_url}/status/{variant}/{endpoint}"
        started = time.monotonic()
        try:
            response = await self._get_client().get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise TransientProbeError(f"Timeout after {self.timeout:.0f}s") from e
        except httpx.HTTPStatusError as e:
            raise TransientProbeError(
                f"Status API returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise TransientProbeError(f"Transport error: {e}") from e
        except httpx.InvalidURL as e:
            raise TransientProbeError(f"Invalid endpoint {endpoint!r}: {e}") from e
        except ValueError as e:
            raise MalformedProbeResponse(f"Invalid JSON from status API: {e}") from e

        latency_ms = round((time.monotonic() - started) * 1000, 1)
        result = parse_status_payload(data, latency_ms)
        logger.debug(
            "Probed %s (%s): online=%s latency=%.0fms",
            endpoint,
            variant,
            result.healthy,
            latency_ms,
        )
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

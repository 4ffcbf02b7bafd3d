"""WhatsApp channel implementation via a REST gateway.

The gateway wraps a logged-in WhatsApp Web session and exposes
``GET /status`` (``{"ready": bool}``) and ``POST /send``
(``{"phone": ..., "message": ...}`` -> ``{"id": ...}``).
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING

import httpx

from server_status_monitor.alerter.models import DeliveryReceipt, SenderStatus
from server_status_monitor.errors import ChannelSendError, ChannelUnavailableError

if TYPE_CHECKING:
    from server_status_monitor.alerter.models import NotificationMessage

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def format_phone(phone: str, country_code: str = "62") -> str:
    """Normalize a phone number to a WhatsApp chat id.

    Non-digits are stripped and a leading ``0`` is replaced by the country code.
    """
    digits = _NON_DIGITS.sub("", phone)
    if digits.startswith("0") and not digits.startswith(country_code):
        digits = country_code + digits[1:]
    return f"{digits}@c.us"


class WhatsAppChannel:
    """WhatsApp channel delivering plain-text notifications to one phone."""

    def __init__(
        self,
        gateway_url: str,
        *,
        token: str | None = None,
        country_code: str = "62",
        max_retries: int = 2,
        retry_delay: float = 1.0,
        timeout: float = 15.0,
    ) -> None:
        """Initialize WhatsApp channel.

        Args:
            gateway_url: Base URL of the WhatsApp gateway.
            token: Optional bearer token for the gateway.
            country_code: Prefix substituted for a leading 0.
            max_retries: Maximum attempts per message.
            retry_delay: Base delay between retries (exponential backoff).
            timeout: HTTP request timeout in seconds.
        """
        self.gateway_url = gateway_url.rstrip("/")
        self.country_code = country_code
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.name = "whatsapp"

        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._status = SenderStatus.UNINITIALIZED

    def status(self) -> SenderStatus:
        """Return the channel's lifecycle state."""
        return self._status

    async def start(self) -> SenderStatus:
        """Ask the gateway whether its WhatsApp session is ready."""
        self._status = SenderStatus.CONNECTING
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.gateway_url}/status", headers=self._headers
                )
            ready = response.status_code == 200 and bool(response.json().get("ready"))
        except (httpx.HTTPError, ValueError) as e:
            logger.error("WhatsApp gateway unreachable: %s", e)
            self._status = SenderStatus.FAILED
            return self._status

        if ready:
            self._status = SenderStatus.READY
            logger.info("WhatsApp gateway ready")
        else:
            self._status = SenderStatus.FAILED
            logger.warning("WhatsApp gateway session not ready")
        return self._status

    async def send(self, recipient: str, message: NotificationMessage) -> DeliveryReceipt:
        """Send a notification to one phone number.

        Raises:
            ChannelUnavailableError: If the gateway session is not ready.
            ChannelSendError: If the gateway rejected the message.
        """
        if self._status != SenderStatus.READY:
            raise ChannelUnavailableError(self.name, self._status.value)

        payload = {
            "phone": format_phone(recipient, self.country_code),
            "message": message.plain_text,
        }

        last_error = "unknown error"
        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        f"{self.gateway_url}/send",
                        json=payload,
                        headers=self._headers,
                    )

                if response.status_code in (200, 201):
                    body = response.json() if response.content else {}
                    logger.info("WhatsApp message sent to %s", recipient)
                    return DeliveryReceipt(
                        channel=self.name,
                        recipient=recipient,
                        message_id=body.get("id"),
                    )

                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                logger.error(f"WhatsApp gateway error: {last_error}")
                if response.status_code < 500:
                    break

            except httpx.TimeoutException:
                last_error = "timeout"
                logger.warning(f"WhatsApp gateway timeout (attempt {attempt + 1})")
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.error(f"WhatsApp gateway error: {e}")

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.retry_delay * (2**attempt))

        raise ChannelSendError(self.name, f"WhatsApp delivery failed: {last_error}")

    async def close(self) -> None:
        """Mark the channel as no longer usable."""
        self._status = SenderStatus.UNINITIALIZED

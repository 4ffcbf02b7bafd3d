"""Telegram Bot API channel implementation."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from server_status_monitor.alerter.channels.base import SlidingWindowRateLimiter
from server_status_monitor.alerter.models import DeliveryReceipt, SenderStatus
from server_status_monitor.errors import ChannelSendError, ChannelUnavailableError

if TYPE_CHECKING:
    from server_status_monitor.alerter.models import NotificationMessage

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot{token}/{method}"


class TelegramChannel:
    """Telegram Bot API channel for sending notifications.

    Subscribers are addressed by chat id. Sends are rate limited and
    retried with exponential backoff.
    """

    def __init__(
        self,
        bot_token: str,
        *,
        rate_limit_per_minute: int = 20,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        """Initialize Telegram channel.

        Args:
            bot_token: Telegram bot token.
            rate_limit_per_minute: Maximum messages per minute.
            max_retries: Maximum retry attempts on failure.
            retry_delay: Base delay between retries (exponential backoff).
            timeout: HTTP request timeout in seconds.
        """
        self.bot_token = bot_token
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.name = "telegram"
        self.bot_username: str | None = None

        self._status = SenderStatus.UNINITIALIZED
        self._rate_limiter = SlidingWindowRateLimiter(rate_limit_per_minute, name="Telegram")

    def status(self) -> SenderStatus:
        """Return the channel's lifecycle state."""
        return self._status

    def _url(self, method: str) -> str:
        return TELEGRAM_API_BASE.format(token=self.bot_token, method=method)

    async def call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Call a Bot API method and return its decoded JSON body.

        Raises:
            httpx.HTTPError: On transport failure.
            ValueError: If the body is not JSON (an HTML error page from a proxy).
        """
        async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
            response = await client.post(self._url(method), json=payload or {})
            result: dict[str, Any] = response.json()
            return result

    async def start(self) -> SenderStatus:
        """Verify the bot token with ``getMe``."""
        self._status = SenderStatus.CONNECTING
        try:
            result = await self.call("getMe")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Telegram initialization failed: %s", e)
            self._status = SenderStatus.FAILED
            return self._status

        if result.get("ok"):
            self.bot_username = (result.get("result") or {}).get("username")
            self._status = SenderStatus.READY
            logger.info("Telegram bot ready (@%s)", self.bot_username)
        else:
            logger.error("Telegram rejected bot token: %s", result.get("description"))
            self._status = SenderStatus.FAILED
        return self._status

    async def send(self, recipient: str, message: NotificationMessage) -> DeliveryReceipt:
        """Send a notification to one chat.

        Args:
            recipient: Telegram chat id.
            message: Rendered notification.

        Returns:
            DeliveryReceipt with the Telegram message id.

        Raises:
            ChannelUnavailableError: If the bot is not ready.
            ChannelSendError: If delivery failed after all retries.
        """
        return await self.send_text(recipient, message.telegram_markdown)

    async def send_text(
        self, chat_id: str, text: str, *, parse_mode: str | None = "Markdown"
    ) -> DeliveryReceipt:
        """Send raw text to a chat (also used for bot command replies)."""
        if self._status != SenderStatus.READY:
            raise ChannelUnavailableError(self.name, self._status.value)

        await self._rate_limiter.wait()

        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        last_error = "unknown error"
        for attempt in range(self.max_retries):
            try:
                result = await self.call("sendMessage", payload)

                if result.get("ok"):
                    message_id = (result.get("result") or {}).get("message_id")
                    logger.info("Telegram message delivered to %s", chat_id)
                    return DeliveryReceipt(
                        channel=self.name,
                        recipient=chat_id,
                        message_id=str(message_id) if message_id is not None else None,
                    )

                error_code = result.get("error_code", 0)
                description = result.get("description", "Unknown error")
                last_error = f"{error_code} - {description}"

                if error_code == 429:
                    retry_after = result.get("parameters", {}).get("retry_after", 1)
                    logger.warning(f"Telegram rate limited, retry after {retry_after}s")
                    await asyncio.sleep(retry_after)
                    continue

                if 400 <= error_code < 500:
                    # Blocked bot, unknown chat, bad markup: retrying will not help
                    break

                logger.error(f"Telegram API error: {last_error}")

            except httpx.TimeoutException:
                last_error = "timeout"
                logger.warning(f"Telegram API timeout (attempt {attempt + 1})")
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.error(f"Telegram API error: {e}")
            except ValueError as e:
                last_error = f"invalid response: {e}"
                logger.error(f"Telegram API returned a non-JSON body: {e}")

            if attempt < self.max_retries - 1:
                delay = self.retry_delay * (2**attempt)
                await asyncio.sleep(delay)

        logger.error("Telegram delivery to %s failed: %s", chat_id, last_error)
        raise ChannelSendError(self.name, f"Telegram delivery failed: {last_error}")

    async def close(self) -> None:
        """Mark the channel as no longer usable."""
        self._status = SenderStatus.UNINITIALIZED

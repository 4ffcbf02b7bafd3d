"""SMTP email channel implementation.

smtplib is blocking, so every SMTP conversation runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import TYPE_CHECKING

from server_status_monitor.alerter.models import DeliveryReceipt, SenderStatus
from server_status_monitor.errors import ChannelSendError, ChannelUnavailableError

if TYPE_CHECKING:
    from server_status_monitor.alerter.models import NotificationMessage

logger = logging.getLogger(__name__)

SENDER_NAME = "Server Status Monitor"


class EmailChannel:
    """Email channel sending HTML notifications over SMTP with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        user: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        use_starttls: bool = True,
        timeout: float = 15.0,
    ) -> None:
        """Initialize email channel.

        Args:
            host: SMTP server host.
            port: SMTP server port.
            user: Login user (also the default From address).
            password: Login password.
            sender: From address override.
            use_starttls: Upgrade the connection with STARTTLS.
            timeout: Socket timeout in seconds.
        """
        self.host = host
        self.port = port
        self.user = user
        self.sender = sender or user or f"monitor@{host}"
        self.use_starttls = use_starttls
        self.timeout = timeout
        self.name = "email"

        self._password = password
        self._status = SenderStatus.UNINITIALIZED

    def status(self) -> SenderStatus:
        """Return the channel's lifecycle state."""
        return self._status

    def _connect(self) -> smtplib.SMTP:
        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            smtp.ehlo()
            if self.use_starttls:
                smtp.starttls()
                smtp.ehlo()
            if self.user and self._password:
                smtp.login(self.user, self._password)
        except BaseException:
            smtp.close()
            raise
        return smtp

    def _verify(self) -> None:
        smtp = self._connect()
        smtp.quit()

    def _deliver(self, recipient: str, message: NotificationMessage) -> str:
        msg = EmailMessage()
        msg["From"] = formataddr((SENDER_NAME, self.sender))
        msg["To"] = recipient
        msg["Subject"] = message.subject
        msg["Message-ID"] = make_msgid()
        msg.set_content(message.plain_text)
        msg.add_alternative(message.html, subtype="html")

        smtp = self._connect()
        try:
            smtp.send_message(msg)
        finally:
            smtp.quit()
        return str(msg["Message-ID"])

    async def start(self) -> SenderStatus:
        """Verify that the SMTP server accepts our credentials."""
        self._status = SenderStatus.CONNECTING
        try:
            await asyncio.to_thread(self._verify)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email initialization failed: %s", e)
            self._status = SenderStatus.FAILED
            return self._status

        self._status = SenderStatus.READY
        logger.info("Email transporter ready (%s:%d)", self.host, self.port)
        return self._status

    async def send(self, recipient: str, message: NotificationMessage) -> DeliveryReceipt:
        """Send a notification email to one address.

        Raises:
            ChannelUnavailableError: If the transporter was never verified.
            ChannelSendError: If the SMTP server rejected the message.
        """
        if self._status != SenderStatus.READY:
            raise ChannelUnavailableError(self.name, self._status.value)

        try:
            message_id = await asyncio.to_thread(self._deliver, recipient, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", recipient, e)
            raise ChannelSendError(self.name, f"SMTP delivery failed: {e}") from e

        logger.info("Email sent to %s", recipient)
        return DeliveryReceipt(channel=self.name, recipient=recipient, message_id=message_id)

    async def close(self) -> None:
        """Mark the channel as no longer usable."""
        self._status = SenderStatus.UNINITIALIZED

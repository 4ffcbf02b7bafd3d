"""Notification channel implementations for each delivery platform."""

from server_status_monitor.alerter.channels.email import EmailChannel
from server_status_monitor.alerter.channels.telegram import TelegramChannel
from server_status_monitor.alerter.channels.whatsapp import WhatsAppChannel

__all__ = [
    "EmailChannel",
    "TelegramChannel",
    "WhatsAppChannel",
]

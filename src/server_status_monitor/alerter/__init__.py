"""Alerting layer - Multi-channel notification delivery."""

from server_status_monitor.alerter.bot import TelegramCommandBot
from server_status_monitor.alerter.channels.email import EmailChannel
from server_status_monitor.alerter.channels.telegram import TelegramChannel
from server_status_monitor.alerter.channels.whatsapp import WhatsAppChannel
from server_status_monitor.alerter.dispatcher import NotificationDispatcher, Sender
from server_status_monitor.alerter.formatter import NotificationFormatter
from server_status_monitor.alerter.models import (
    DeliveryReceipt,
    DispatchResult,
    NotificationMessage,
    NotificationPurpose,
    SenderStatus,
)

__all__ = [
    "DeliveryReceipt",
    "DispatchResult",
    "EmailChannel",
    "NotificationDispatcher",
    "NotificationFormatter",
    "NotificationMessage",
    "NotificationPurpose",
    "Sender",
    "SenderStatus",
    "TelegramChannel",
    "TelegramCommandBot",
    "WhatsAppChannel",
]

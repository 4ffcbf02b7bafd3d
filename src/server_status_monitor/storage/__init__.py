"""Persistence layer - targets, incidents, notifications, settings, subscriptions."""

from server_status_monitor.storage.database import Database
from server_status_monitor.storage.repos import (
    IncidentDTO,
    IncidentRepository,
    NotificationDTO,
    NotificationRepository,
    SettingRepository,
    SubscriptionDTO,
    SubscriptionRepository,
    TargetDTO,
    TargetRepository,
)

__all__ = [
    "Database",
    "IncidentDTO",
    "IncidentRepository",
    "NotificationDTO",
    "NotificationRepository",
    "SettingRepository",
    "SubscriptionDTO",
    "SubscriptionRepository",
    "TargetDTO",
    "TargetRepository",
]

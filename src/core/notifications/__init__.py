# src/core/notifications/__init__.py
"""
Домен уведомлений.
"""

from src.core.notifications.service import (
    Notification,
    NotificationKind,
    NotificationService,
    route_label,
)

__all__ = ["Notification", "NotificationKind", "NotificationService", "route_label"]

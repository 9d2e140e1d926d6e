# src/core/notifications/__init__.py
"""
Домен уведомлений.
Сохранение уведомлений и рассылка через Redis pub/sub.
"""

from src.core.notifications.models import Notification, NotificationData

__all__ = [
    "Notification",
    "NotificationData",
]

# src/core/notifications/models.py
"""
Модели уведомлений.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.common.constants import NotificationType

NOTIFICATION_TITLES: dict[NotificationType, str] = {
    NotificationType.RIDE_ASSIGNED: "New Ride Assigned",
    NotificationType.RIDE_REASSIGNED: "Ride Reassigned",
    NotificationType.RIDE_STATUS: "Ride Status Updated",
    NotificationType.QUICK_TRIP_ASSIGNED: "Quick Trip Assigned",
    NotificationType.QUICK_TRIP_CREATED: "Quick Trip Created",
    NotificationType.SELF_ASSIGNED_RIDE: "Self-Assigned Ride Created",
    NotificationType.RIDE_ACCEPTED: "Ride Accepted",
    NotificationType.RIDE_REJECTED: "Ride Rejected",
    NotificationType.RIDE_STARTED: "Ride Started",
    NotificationType.RIDE_COMPLETED: "Ride Completed",
    NotificationType.RIDE_CANCELLED: "Ride Cancelled",
    NotificationType.RIDE_ABORTED: "Ride Aborted",
    NotificationType.RIDE_DESTINATION_UPDATED: "Ride Destination Updated",
    NotificationType.BOOKING_SCHEDULED: "Booking Scheduled",
    NotificationType.SHIFT_STARTED: "Shift Started",
    NotificationType.SHIFT_ENDED: "Shift Ended",
    NotificationType.REPORT_SUBMITTED: "Driver Report Submitted",
    NotificationType.REPORT_REVIEWED: "Driver Report Reviewed",
}


def title_for(notification_type: NotificationType) -> str:
    """Заголовок уведомления по типу."""
    return NOTIFICATION_TITLES.get(notification_type, "Notification")


@dataclass
class NotificationData:
    """Данные для уведомления."""
    type: NotificationType
    entity_id: str
    message: str
    # Часть ключа идемпотентности: одно уведомление на (user, type, entity, status)
    status: str = ""
    data: dict[str, Any] = field(default_factory=dict)


class Notification(BaseModel):
    """Сохранённое уведомление."""

    id: int = Field(..., description="ID уведомления")
    user_id: int = Field(..., description="Получатель")
    type: NotificationType = Field(..., description="Тип уведомления")
    title: str = Field(..., description="Заголовок")
    message: str = Field("", description="Текст")
    entity_id: str = Field(..., description="ID связанной сущности")
    status: str = Field("", description="Статус сущности")
    data: dict[str, Any] = Field(default_factory=dict, description="Данные")
    is_read: bool = Field(False, description="Прочитано")
    created_at: Optional[datetime] = Field(None, description="Время создания")

    class Config:
        from_attributes = True

    def to_push(self) -> dict[str, Any]:
        """Payload для push-канала."""
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "entity_id": self.entity_id,
            "status": self.status,
            "data": self.data,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

# src/core/rides/models.py
"""
Модели данных поездок.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.common.constants import ACTIVE_RIDE_STATUSES, BookingType, RideStatus
from src.common.utils import round2


class RideFare(BaseModel):
    """Разбивка стоимости поездки."""

    total: float = Field(0.0, ge=0.0, description="Итоговая стоимость")
    per_person: float = Field(0.0, description="Стоимость на одного клиента")
    half_fare: float = Field(0.0, description="Половина стоимости")
    gst: float = Field(0.0, description="GST с доли клиента")

    class Config:
        from_attributes = True


def compute_fare(total: float, client_count: int, gst_divisor: float) -> RideFare:
    """
    Пересчитывает разбивку стоимости.

    Args:
        total: Итоговая стоимость
        client_count: Количество клиентов (0 -> доля клиента 0)
        gst_divisor: Делитель GST (обычно 11)

    Returns:
        Разбивка стоимости
    """
    per_person = round2(total / client_count) if client_count > 0 else 0.0
    return RideFare(
        total=round2(total),
        per_person=per_person,
        half_fare=round2(total / 2),
        gst=round2(per_person / gst_divisor) if gst_divisor else 0.0,
    )


class Ride(BaseModel):
    """Модель поездки (бронирования)."""

    id: str = Field(..., description="UUID поездки")
    ride_code: str = Field(..., description="Код поездки RIDE-YYYYMMDD-XXXXXX")
    booking_type: BookingType = Field(..., description="Тип бронирования")
    is_quick_trip: bool = Field(False, description="Быстрая поездка")
    is_self_assigned: bool = Field(False, description="Водитель назначил себя сам")

    client_ids: list[str] = Field(default_factory=list, description="ID клиентов")
    driver_id: Optional[int] = Field(None, description="ID водителя")
    assigned_by: Optional[int] = Field(None, description="Кто назначил")
    from_destination_id: Optional[str] = Field(None, description="Точка подачи")
    to_destination_id: Optional[str] = Field(None, description="Точка назначения")

    scheduled_time: datetime = Field(..., description="Запланированное время")
    passengers: int = Field(1, ge=1, description="Количество пассажиров")
    fare: RideFare = Field(default_factory=RideFare, description="Стоимость")
    status: RideStatus = Field(..., description="Статус поездки")

    # Заметки
    notes: Optional[str] = Field(None, description="Заметки менеджера")
    driver_notes: Optional[str] = Field(None, description="Заметки водителя")
    cancellation_reason: Optional[str] = Field(None, description="Причина отмены")
    cancellation_note: Optional[str] = Field(None, description="Комментарий к отмене")
    abort_reason: Optional[str] = Field(None, description="Причина прерывания")
    abort_note: Optional[str] = Field(None, description="Комментарий к прерыванию")
    aborted_by: Optional[int] = Field(None, description="Кто прервал")

    shift_id: Optional[str] = Field(None, description="Смена водителя")

    # Временные метки
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    dropped_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    aborted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_active(self) -> bool:
        """Занимает ли поездка водителя."""
        return self.status in ACTIVE_RIDE_STATUSES

    def summary(self) -> dict[str, Any]:
        """Краткие данные для уведомлений и событий."""
        return {
            "ride_id": self.id,
            "ride_code": self.ride_code,
            "status": self.status.value,
            "driver_id": self.driver_id,
            "scheduled_time": self.scheduled_time.isoformat(),
            "fare_total": self.fare.total,
        }


# =============================================================================
# DTO ДИСПЕТЧЕРА
# =============================================================================

class AssignRideDTO(BaseModel):
    """DTO немедленного назначения поездки."""

    client_ids: list[str] = Field(..., min_length=1)
    from_destination_id: str
    to_destination_id: str
    scheduled_time: datetime
    driver_id: int
    notes: Optional[str] = None


class ScheduledBookingDTO(BaseModel):
    """DTO создания запланированного бронирования."""

    client_ids: list[str] = Field(..., min_length=1)
    from_destination_id: str
    to_destination_id: str
    scheduled_time: datetime
    notes: Optional[str] = None


class UpdateScheduledBookingDTO(BaseModel):
    """DTO изменения запланированного бронирования (все поля опциональны)."""

    client_ids: Optional[list[str]] = Field(None, min_length=1)
    from_destination_id: Optional[str] = None
    to_destination_id: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = None


class QuickTripDTO(BaseModel):
    """DTO быстрой поездки: только водитель, детали позже."""

    driver_id: int
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = None


class RideFilters(BaseModel):
    """Фильтры списка поездок."""

    status: Optional[RideStatus] = None
    driver_id: Optional[int] = None
    booking_type: Optional[BookingType] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    is_quick_trip: Optional[bool] = None


# =============================================================================
# DTO ВОДИТЕЛЯ
# =============================================================================

class CompleteRideDTO(BaseModel):
    """DTO завершения (высадки) поездки."""

    fare_total: Optional[float] = None
    additional_client_ids: list[str] = Field(default_factory=list)
    # Новые клиенты при высадке не принимаются
    additional_clients: list[dict[str, Any]] = Field(default_factory=list)
    from_destination_id: Optional[str] = None
    to_destination_id: Optional[str] = None
    driver_notes: Optional[str] = None


class CompleteQuickTripDTO(BaseModel):
    """DTO завершения быстрой поездки с деталями."""

    client_name: Optional[str] = None
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    fare_total: Optional[float] = None
    driver_notes: Optional[str] = None


class SelfAssignedRideDTO(BaseModel):
    """DTO поездки, которую водитель создаёт сам."""

    client_name: Optional[str] = None
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    fare_total: Optional[float] = None
    passengers: int = 1
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = None


class UpdateDestinationsDTO(BaseModel):
    """DTO изменения адресов в пути."""

    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None

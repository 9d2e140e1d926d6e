# src/core/shifts/models.py
"""
Модели данных смен.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.infra.photo_storage import PENDING_PHOTO


class Shift(BaseModel):
    """Рабочая смена водителя."""

    id: str = Field(..., description="UUID смены")
    driver_id: int = Field(..., description="ID водителя")
    taxi_number: str = Field(..., description="Номер такси")
    start_meter: float = Field(..., ge=0.0, description="Показание счётчика на старте")
    start_meter_photo: str = Field(PENDING_PHOTO, description="Фото счётчика (pending до загрузки)")
    start_time: datetime = Field(..., description="Начало смены")
    end_time: Optional[datetime] = Field(None, description="Конец смены")
    is_active: bool = Field(True, description="Активна ли смена")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StartShiftDTO(BaseModel):
    """DTO начала смены."""

    taxi_number: str
    start_meter: float
    start_meter_photo: Optional[str] = None


class ShiftRideStats(BaseModel):
    """Статистика завершённых поездок смены."""

    completed_rides: int = 0
    total_fare: float = 0.0


class ShiftSummary(BaseModel):
    """Итог закрытой смены."""

    shift: Shift
    duration_ms: int = Field(..., ge=0, description="Длительность, мс")
    duration: str = Field(..., description="Длительность в виде 'Hh Mm'")
    stats: ShiftRideStats = Field(default_factory=ShiftRideStats)


class CurrentShift(BaseModel):
    """Активная смена со статистикой."""

    shift: Shift
    stats: ShiftRideStats

# src/core/reports/models.py
"""
Модели данных отчётов водителей.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.common.constants import ReportStatus


class MoneyEntry(BaseModel):
    """Сумма с подтверждающим фото."""

    amount: Optional[float] = Field(None, description="Сумма")
    photo: Optional[str] = Field(None, description="Ссылка на фото")


class ReportInputs(BaseModel):
    """Входные данные формулы отчёта."""

    shift_start_total: Optional[float] = None
    shift_end_total: Optional[float] = None
    liftings: float = 0.0
    cash_fares: float = 0.0
    total_eftpos: float = 0.0
    total_account_trips: float = 0.0
    cash_expenses: float = 0.0
    total_trips_count: int = 0


class CalculationSettings(BaseModel):
    """Ставки формулы отчёта."""

    rental_rate_percentage: float = 45.0
    trip_levy_rate: float = 1.32
    gst_rate: float = 10.0


class ReportCalculations(BaseModel):
    """Результат расчёта отчёта."""

    shift_total_fares: float = 0.0
    total_fare_and_liftings: float = 0.0
    rentals: float = 0.0
    sub_total: float = 0.0
    trip_levy: float = 0.0
    driver_net_pay: float = 0.0
    operator_earnings: float = 0.0
    rental_rate_used: float = 45.0
    partial: bool = True
    calculated_at: Optional[datetime] = None
    breakdown: dict[str, Any] = Field(default_factory=dict)


class DriverReport(BaseModel):
    """Отчёт водителя за смену."""

    id: str = Field(..., description="UUID отчёта")
    report_code: str = Field(..., description="Код отчёта DR-YYYYMMDD-XXXX")
    shift_id: str = Field(..., description="Смена")
    driver_id: int = Field(..., description="Водитель")
    report_date: date = Field(..., description="Дата отчёта")
    taxi_number: str = Field(..., description="Номер такси")

    shift_start_total: MoneyEntry = Field(default_factory=MoneyEntry)
    shift_end_total: MoneyEntry = Field(default_factory=MoneyEntry)
    liftings: float = 0.0
    cash_fares: float = 0.0
    total_eftpos: MoneyEntry = Field(default_factory=MoneyEntry)
    total_account_trips: float = 0.0
    cash_expenses: MoneyEntry = Field(default_factory=MoneyEntry)
    total_trips_count: int = 0

    calculations: ReportCalculations = Field(default_factory=ReportCalculations)
    status: ReportStatus = Field(ReportStatus.DRAFT, description="Статус отчёта")

    driver_notes: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    ride_ids: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    def to_inputs(self) -> ReportInputs:
        """Входные данные формулы из отчёта."""
        return ReportInputs(
            shift_start_total=self.shift_start_total.amount,
            shift_end_total=self.shift_end_total.amount,
            liftings=self.liftings or 0.0,
            cash_fares=self.cash_fares or 0.0,
            total_eftpos=self.total_eftpos.amount or 0.0,
            total_account_trips=self.total_account_trips or 0.0,
            cash_expenses=self.cash_expenses.amount or 0.0,
            total_trips_count=self.total_trips_count or 0,
        )

    def photos(self) -> list[str]:
        """Все ссылки на фото отчёта."""
        entries = (self.shift_start_total, self.shift_end_total, self.total_eftpos, self.cash_expenses)
        return [entry.photo for entry in entries if entry.photo]


# =============================================================================
# DTO
# =============================================================================

class CreateReportDTO(BaseModel):
    """DTO создания отчёта."""

    shift_id: Optional[str] = None
    taxi_number: Optional[str] = None
    report_date: Optional[date] = None
    shift_start_amount: Optional[float] = None
    shift_end_amount: Optional[float] = None
    liftings: float = 0.0
    cash_fares: float = 0.0
    eftpos_amount: float = 0.0
    total_account_trips: float = 0.0
    expenses_amount: float = 0.0
    total_trips_count: Optional[int] = None
    driver_notes: Optional[str] = None


class UpdateReportDTO(BaseModel):
    """DTO изменения черновика; передаются только изменяемые поля."""

    taxi_number: Optional[str] = None
    report_date: Optional[date] = None
    shift_start_amount: Optional[float] = None
    shift_end_amount: Optional[float] = None
    liftings: Optional[float] = None
    cash_fares: Optional[float] = None
    eftpos_amount: Optional[float] = None
    total_account_trips: Optional[float] = None
    expenses_amount: Optional[float] = None
    total_trips_count: Optional[int] = None
    driver_notes: Optional[str] = None


class ReviewReportDTO(BaseModel):
    """DTO проверки отчёта."""

    action: str = Field(..., description="approve | reject")
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class ReportFilters(BaseModel):
    """Фильтры списка отчётов."""

    status: Optional[ReportStatus] = None
    driver_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

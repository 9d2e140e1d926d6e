# src/core/reports/calculation.py
"""
Формула отчёта водителя и сверка с поездками системы.

    shift_total_fares       = shift_end_total - shift_start_total
    total_fare_and_liftings = shift_total_fares + liftings + cash_fares
    rentals                 = total_fare_and_liftings * rental_rate_percentage / 100
    sub_total               = rentals - (total_eftpos + total_account_trips + cash_expenses)
    trip_levy               = total_trips_count * trip_levy_rate
    driver_net_pay          = -(sub_total + trip_levy)
    operator_earnings       = total_fare_and_liftings - rentals

Все денежные результаты округляются round2 (half-up).
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from src.common.constants import RideStatus
from src.common.errors import CalculationError
from src.common.utils import is_finite_number, round2, utcnow
from src.core.reports.models import CalculationSettings, ReportCalculations, ReportInputs
from src.core.rides.models import Ride

DEFAULT_CALCULATION_SETTINGS = CalculationSettings()

# Пороги флагов сверки
FARE_VARIANCE_THRESHOLD = 50
TRIP_VARIANCE_THRESHOLD = 2
REVIEW_FARE_THRESHOLD = 100
REVIEW_TRIP_THRESHOLD = 5


def can_calculate_totals(start: Optional[float], end: Optional[float]) -> bool:
    """Достаточно ли данных для полного расчёта (оба числа и end >= start)."""
    return is_finite_number(start) and is_finite_number(end) and end >= start


def _breakdown(inputs: ReportInputs, settings: CalculationSettings) -> dict[str, Any]:
    start = inputs.shift_start_total or 0.0
    end = inputs.shift_end_total or 0.0
    return {
        "shift_start": start,
        "shift_end": end,
        "shift_difference": round2(end - start),
        "liftings": inputs.liftings,
        "cash_fares": inputs.cash_fares,
        "total_eftpos": inputs.total_eftpos,
        "total_account_trips": inputs.total_account_trips,
        "cash_expenses": inputs.cash_expenses,
        "total_trips_count": inputs.total_trips_count,
        "rental_rate": f"{settings.rental_rate_percentage:g}%",
        "trip_levy_rate": f"${settings.trip_levy_rate:g} per trip",
    }


def partial_result(inputs: ReportInputs, settings: CalculationSettings) -> ReportCalculations:
    """Нулевой расчёт для черновика без конечного показания."""
    return ReportCalculations(
        rental_rate_used=settings.rental_rate_percentage,
        partial=True,
        calculated_at=utcnow(),
        breakdown=_breakdown(inputs, settings),
    )


def _formula(inputs: ReportInputs, settings: CalculationSettings, clamp: bool = False) -> dict[str, float]:
    start = inputs.shift_start_total or 0.0
    end = inputs.shift_end_total or 0.0

    # каждая ступень берётся от округлённой предыдущей:
    # operator_earnings == total_fare_and_liftings - rentals до цента
    shift_total_fares = round2(end - start)
    if clamp:
        shift_total_fares = max(shift_total_fares, 0.0)
    total_fare_and_liftings = round2(shift_total_fares + inputs.liftings + inputs.cash_fares)
    rentals = round2(total_fare_and_liftings * settings.rental_rate_percentage / 100)
    deductions = inputs.total_eftpos + inputs.total_account_trips + inputs.cash_expenses
    sub_total = round2(rentals - deductions)
    trip_levy = round2(inputs.total_trips_count * settings.trip_levy_rate)

    return {
        "shift_total_fares": shift_total_fares,
        "total_fare_and_liftings": total_fare_and_liftings,
        "rentals": rentals,
        "sub_total": sub_total,
        "trip_levy": trip_levy,
        "driver_net_pay": round2(-(sub_total + trip_levy)),
        "operator_earnings": round2(total_fare_and_liftings - rentals),
    }


def calculate_totals(
    inputs: ReportInputs,
    settings: Optional[CalculationSettings] = None,
    allow_partial: bool = False,
) -> ReportCalculations:
    """
    Рассчитывает итоги отчёта.

    Args:
        inputs: Входные данные
        settings: Ставки (по умолчанию 45% / 1.32 / 10%)
        allow_partial: Вернуть нулевой расчёт вместо ошибки при некорректных данных

    Returns:
        Результат расчёта

    Raises:
        CalculationError: Нет начального показания или end < start (без allow_partial)
    """
    settings = settings or DEFAULT_CALCULATION_SETTINGS
    start, end = inputs.shift_start_total, inputs.shift_end_total

    # Конечного показания ещё нет: черновик не блокируется
    if end is None:
        return partial_result(inputs, settings)

    if not can_calculate_totals(start, end):
        if allow_partial:
            return partial_result(inputs, settings)
        if is_finite_number(start) and is_finite_number(end):
            raise CalculationError(
                "Shift end total cannot be less than shift start total",
                details={"shift_start_total": start, "shift_end_total": end},
            )
        raise CalculationError(
            "Insufficient data to calculate totals",
            details={"shift_start_total": start, "shift_end_total": end},
        )

    return ReportCalculations(
        **_formula(inputs, settings),
        rental_rate_used=settings.rental_rate_percentage,
        partial=False,
        calculated_at=utcnow(),
        breakdown=_breakdown(inputs, settings),
    )


def validate_calculations(calculations: ReportCalculations, total_trips_count: int = 0) -> list[str]:
    """
    Проверяет инварианты рассчитанного отчёта.

    Returns:
        Список ошибок (пустой, если всё корректно)
    """
    errors: list[str] = []
    if calculations.shift_total_fares < 0:
        errors.append("Shift total fares cannot be negative")
    if calculations.total_fare_and_liftings < 0:
        errors.append("Total fare and liftings cannot be negative")
    if calculations.rentals > calculations.total_fare_and_liftings:
        errors.append("Rentals cannot exceed total fare and liftings")
    if total_trips_count < 0:
        errors.append("Total trips count cannot be negative")
    return errors


def realtime_preview(inputs: ReportInputs, settings: Optional[CalculationSettings] = None) -> dict[str, float]:
    """Предпросмотр для живого ввода: не бросает, shift_total_fares не ниже 0."""
    return _formula(inputs, settings or DEFAULT_CALCULATION_SETTINGS, clamp=True)


def reconcile(inputs: ReportInputs, rides: Optional[Iterable[Ride]]) -> dict[str, Any]:
    """
    Сверяет заявленные водителем итоги с завершёнными поездками.

    Args:
        inputs: Входные данные отчёта
        rides: Связанные поездки (учитываются только completed)

    Returns:
        Итоги системы, заявленные значения, расхождения и флаги
    """
    if rides is None:
        return {
            "has_system_data": False,
            "message": "No system ride data available for comparison",
        }

    system_fares = 0.0
    system_gst = 0.0
    system_trips = 0
    for ride in rides:
        if ride.status == RideStatus.COMPLETED:
            system_fares += ride.fare.total or 0.0
            system_gst += ride.fare.gst or 0.0
            system_trips += 1

    reported_fares = (inputs.shift_end_total or 0.0) - (inputs.shift_start_total or 0.0)
    reported_trips = inputs.total_trips_count or 0

    fare_variance = reported_fares - system_fares
    trip_variance = reported_trips - system_trips

    return {
        "has_system_data": True,
        "system": {
            "total_fares": round2(system_fares),
            "total_gst": round2(system_gst),
            "total_trips": system_trips,
        },
        "reported": {
            "total_fares": round2(reported_fares),
            "total_trips": reported_trips,
        },
        "variances": {
            "fare_variance": round2(fare_variance),
            "trip_variance": trip_variance,
            "fare_variance_percentage": (
                round2(fare_variance / system_fares * 100) if system_fares > 0 else 0.0
            ),
        },
        "flags": {
            "significant_fare_variance": abs(fare_variance) > FARE_VARIANCE_THRESHOLD,
            "significant_trip_variance": abs(trip_variance) > TRIP_VARIANCE_THRESHOLD,
            "requires_review": (
                abs(fare_variance) > REVIEW_FARE_THRESHOLD or abs(trip_variance) > REVIEW_TRIP_THRESHOLD
            ),
        },
    }

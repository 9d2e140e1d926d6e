# tests/core/test_report_calculation.py
"""
Тесты для формулы отчёта и сверки с поездками.
"""

from __future__ import annotations

import pytest

from src.common.constants import RideStatus
from src.common.errors import CalculationError, ErrorCode
from src.core.reports.calculation import (
    calculate_totals,
    can_calculate_totals,
    realtime_preview,
    reconcile,
    validate_calculations,
)
from src.core.reports.models import CalculationSettings, ReportCalculations, ReportInputs
from src.core.rides.models import RideFare


def _inputs(**overrides) -> ReportInputs:
    data = {
        "shift_start_total": 100.0,
        "shift_end_total": 250.0,
        "liftings": 20.0,
        "cash_fares": 30.0,
        "total_trips_count": 10,
    }
    data.update(overrides)
    return ReportInputs(**data)


class TestCalculateTotals:
    """Тесты полного расчёта."""

    def test_standard_shift(self) -> None:
        result = calculate_totals(_inputs())

        assert result.partial is False
        assert result.shift_total_fares == 150.0
        assert result.total_fare_and_liftings == 200.0
        assert result.rentals == 90.0
        assert result.sub_total == 90.0
        assert result.trip_levy == 13.2
        assert result.driver_net_pay == -103.2
        assert result.operator_earnings == 110.0
        assert result.rental_rate_used == 45.0
        assert result.calculated_at is not None

    def test_deductions_reduce_sub_total(self) -> None:
        result = calculate_totals(_inputs(total_eftpos=60.0, total_account_trips=15.0, cash_expenses=5.0))

        assert result.sub_total == 10.0
        assert result.driver_net_pay == -23.2

    def test_custom_rates(self) -> None:
        settings = CalculationSettings(rental_rate_percentage=50.0, trip_levy_rate=2.0)

        result = calculate_totals(_inputs(), settings)

        assert result.rentals == 100.0
        assert result.trip_levy == 20.0
        assert result.operator_earnings == 100.0
        assert result.breakdown["rental_rate"] == "50%"
        assert result.breakdown["trip_levy_rate"] == "$2 per trip"

    def test_breakdown(self) -> None:
        result = calculate_totals(_inputs())

        assert result.breakdown["shift_difference"] == 150.0
        assert result.breakdown["rental_rate"] == "45%"
        assert result.breakdown["trip_levy_rate"] == "$1.32 per trip"

    def test_rounding_half_up(self) -> None:
        result = calculate_totals(_inputs(shift_end_total=100.05, liftings=0, cash_fares=0, total_trips_count=0))

        # 0.05 * 45% = 0.0225 -> 0.02
        assert result.rentals == 0.02
        assert result.operator_earnings == 0.03

    def test_fractional_cents_keep_identities(self) -> None:
        result = calculate_totals(_inputs(shift_end_total=200.15, liftings=0.15, cash_fares=0, total_trips_count=0))

        assert result.total_fare_and_liftings == 100.3
        assert result.operator_earnings == pytest.approx(100.3 - result.rentals, abs=1e-9)

    @pytest.mark.parametrize("end", [100.05, 100.15, 173.37, 250.0, 999.99])
    @pytest.mark.parametrize("liftings", [0.0, 0.15, 12.34])
    @pytest.mark.parametrize("cash_fares", [0.0, 7.77])
    @pytest.mark.parametrize("trips", [0, 3, 11])
    @pytest.mark.parametrize("rate", [45.0, 33.3])
    def test_identities_hold_to_the_cent(self, end, liftings, cash_fares, trips, rate) -> None:
        inputs = _inputs(
            shift_end_total=end,
            liftings=liftings,
            cash_fares=cash_fares,
            total_trips_count=trips,
            total_eftpos=19.99,
            cash_expenses=0.05,
        )
        result = calculate_totals(inputs, CalculationSettings(rental_rate_percentage=rate))
        deductions = inputs.total_eftpos + inputs.total_account_trips + inputs.cash_expenses

        assert result.operator_earnings == pytest.approx(result.total_fare_and_liftings - result.rentals, abs=1e-9)
        assert result.driver_net_pay == pytest.approx(-(result.sub_total + result.trip_levy), abs=1e-9)
        assert result.sub_total == pytest.approx(result.rentals - deductions, abs=0.005)
        assert result.total_fare_and_liftings == pytest.approx(
            result.shift_total_fares + liftings + cash_fares, abs=0.005,
        )


class TestPartialMode:
    """Тесты частичного расчёта."""

    def test_missing_end_is_partial(self) -> None:
        result = calculate_totals(_inputs(shift_end_total=None))

        assert result.partial is True
        assert result.driver_net_pay == 0.0
        assert result.operator_earnings == 0.0
        assert result.breakdown["shift_end"] == 0.0

    def test_end_below_start_raises(self) -> None:
        with pytest.raises(CalculationError) as exc_info:
            calculate_totals(_inputs(shift_end_total=90.0))

        assert exc_info.value.code == ErrorCode.CALCULATION_ERROR
        assert exc_info.value.status_code == 422

    def test_end_below_start_partial_allowed(self) -> None:
        result = calculate_totals(_inputs(shift_end_total=90.0), allow_partial=True)

        assert result.partial is True
        assert result.rentals == 0.0

    def test_missing_start_raises(self) -> None:
        with pytest.raises(CalculationError) as exc_info:
            calculate_totals(_inputs(shift_start_total=None))

        assert "Insufficient data" in exc_info.value.message

    @pytest.mark.parametrize("start,end,expected", [
        (100.0, 250.0, True),
        (100.0, 100.0, True),
        (100.0, 99.99, False),
        (None, 100.0, False),
        (100.0, float("inf"), False),
    ])
    def test_can_calculate(self, start, end, expected) -> None:
        assert can_calculate_totals(start, end) is expected


class TestValidation:
    """Тесты проверки инвариантов."""

    def test_valid(self) -> None:
        assert validate_calculations(calculate_totals(_inputs()), 10) == []

    def test_rentals_above_total(self) -> None:
        errors = validate_calculations(ReportCalculations(total_fare_and_liftings=10.0, rentals=20.0))

        assert errors == ["Rentals cannot exceed total fare and liftings"]

    def test_negative_values(self) -> None:
        errors = validate_calculations(ReportCalculations(shift_total_fares=-1.0), total_trips_count=-1)

        assert "Shift total fares cannot be negative" in errors
        assert "Total trips count cannot be negative" in errors

    def test_preview_clamps_negative_difference(self) -> None:
        preview = realtime_preview(_inputs(shift_end_total=50.0, liftings=0, cash_fares=0, total_trips_count=0))

        assert preview["shift_total_fares"] == 0.0
        assert preview["rentals"] == 0.0


class TestReconcile:
    """Тесты сверки с поездками системы."""

    def test_no_system_data(self) -> None:
        result = reconcile(_inputs(), None)

        assert result == {
            "has_system_data": False,
            "message": "No system ride data available for comparison",
        }

    def test_matching_rides(self, make_ride) -> None:
        rides = [
            make_ride(id="r1", status=RideStatus.COMPLETED, fare=RideFare(total=100.0, gst=9.09)),
            make_ride(id="r2", status=RideStatus.COMPLETED, fare=RideFare(total=50.0, gst=4.55)),
            make_ride(id="r3", status=RideStatus.CANCELLED, fare=RideFare(total=500.0)),
        ]

        result = reconcile(_inputs(total_trips_count=2), rides)

        assert result["system"] == {"total_fares": 150.0, "total_gst": 13.64, "total_trips": 2}
        assert result["variances"]["fare_variance"] == 0.0
        assert result["variances"]["trip_variance"] == 0
        assert result["flags"] == {
            "significant_fare_variance": False,
            "significant_trip_variance": False,
            "requires_review": False,
        }

    def test_significant_variance(self, make_ride) -> None:
        rides = [make_ride(status=RideStatus.COMPLETED, fare=RideFare(total=40.0))]

        result = reconcile(_inputs(total_trips_count=10), rides)

        assert result["variances"]["fare_variance"] == 110.0
        assert result["variances"]["trip_variance"] == 9
        assert result["variances"]["fare_variance_percentage"] == 275.0
        assert result["flags"]["significant_fare_variance"] is True
        assert result["flags"]["significant_trip_variance"] is True
        assert result["flags"]["requires_review"] is True

    def test_threshold_is_strict(self, make_ride) -> None:
        rides = [make_ride(status=RideStatus.COMPLETED, fare=RideFare(total=100.0))]

        result = reconcile(_inputs(total_trips_count=3), rides)

        # 150 - 100 = 50 и 3 - 1 = 2: на границе флаги не ставятся
        assert result["flags"]["significant_fare_variance"] is False
        assert result["flags"]["significant_trip_variance"] is False

    def test_empty_ride_list(self) -> None:
        result = reconcile(_inputs(total_trips_count=0), [])

        assert result["has_system_data"] is True
        assert result["variances"]["fare_variance_percentage"] == 0.0

# tests/core/test_rides_lifecycle.py
"""
Тесты для операций водителя с поездками.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.common.constants import NotificationType, RideStatus
from src.common.errors import (
    ErrorCode,
    ForbiddenError,
    InvalidTransitionError,
    StateError,
    ValidationError,
)
from src.core.directory.models import Client, Destination
from src.core.rides.lifecycle import RideLifecycleService
from src.core.rides.models import (
    CompleteQuickTripDTO,
    CompleteRideDTO,
    RideFare,
    RideFilters,
    SelfAssignedRideDTO,
    UpdateDestinationsDTO,
)

STARTED_AT = datetime(2024, 1, 15, 9, 10, tzinfo=timezone.utc)


@pytest.fixture
def rides() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def clients() -> AsyncMock:
    repo = AsyncMock()
    repo.missing_ids = AsyncMock(return_value=[])
    repo.create = AsyncMock(return_value=Client(id="client-new", name="Jane", created_by_driver=True))
    return repo


@pytest.fixture
def destinations() -> AsyncMock:
    repo = AsyncMock()
    repo.missing_ids = AsyncMock(return_value=[])
    repo.create = AsyncMock(side_effect=lambda name, **kwargs: Destination(
        id=f"dest-{name.lower()}", name=name, created_by_driver=True,
    ))
    return repo


@pytest.fixture
def availability() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def shifts(make_shift) -> AsyncMock:
    repo = AsyncMock()
    repo.get_active = AsyncMock(return_value=make_shift())
    return repo


@pytest.fixture
def report_settings() -> AsyncMock:
    settings_service = AsyncMock()
    settings_service.gst_divisor = AsyncMock(return_value=11.0)
    return settings_service


@pytest.fixture
def service(
    mock_db, rides, clients, destinations, availability, mock_notifier, mock_event_bus, shifts, report_settings,
) -> RideLifecycleService:
    return RideLifecycleService(
        mock_db, rides, clients, destinations, availability, mock_notifier, mock_event_bus,
        shifts=shifts, report_settings=report_settings,
    )


class TestAcceptReject:
    """Тесты принятия и отказа."""

    @pytest.mark.asyncio
    async def test_accept_links_active_shift(self, service, rides, mock_notifier, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride())
        rides.transition = AsyncMock(return_value=make_ride(status=RideStatus.ACCEPTED, shift_id="shift-1"))

        ride = await service.accept("ride-1", driver)

        assert ride.status == RideStatus.ACCEPTED
        args = rides.transition.await_args.args
        assert args[2] == RideStatus.ACCEPTED
        assert args[3]["shift_id"] == "shift-1"
        assert mock_notifier.notify_staff.await_args.args[0] == NotificationType.RIDE_ACCEPTED

    @pytest.mark.asyncio
    async def test_accept_requires_shift(self, service, rides, shifts, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride())
        shifts.get_active = AsyncMock(return_value=None)

        with pytest.raises(StateError) as exc_info:
            await service.accept("ride-1", driver)

        assert exc_info.value.code == ErrorCode.NO_ACTIVE_SHIFT
        rides.transition.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_accept_foreign_ride(self, service, rides, other_driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(driver_id=10))

        with pytest.raises(ForbiddenError):
            await service.accept("ride-1", other_driver)

    @pytest.mark.asyncio
    async def test_staff_cannot_act_as_driver(self, service, rides, manager, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(driver_id=1))

        with pytest.raises(ForbiddenError):
            await service.accept("ride-1", manager)

    @pytest.mark.asyncio
    async def test_accept_twice(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.ACCEPTED))

        with pytest.raises(InvalidTransitionError):
            await service.accept("ride-1", driver)

    @pytest.mark.asyncio
    async def test_reject_frees_driver(self, service, rides, availability, mock_conn, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride())
        rides.transition = AsyncMock(return_value=make_ride(status=RideStatus.REJECTED))

        ride = await service.reject("ride-1", driver)

        assert ride.status == RideStatus.REJECTED
        availability.release.assert_awaited_once_with(driver.id, conn=mock_conn)

    @pytest.mark.asyncio
    async def test_concurrent_accept_and_reject(self, service, rides, availability, driver, make_ride) -> None:
        """Второй запрос видит уже изменённый статус и получает ошибку перехода."""
        rides.get_by_id = AsyncMock(side_effect=[
            make_ride(),
            make_ride(status=RideStatus.ACCEPTED),
        ])
        rides.transition = AsyncMock(return_value=None)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.reject("ride-1", driver)

        assert exc_info.value.details["current"] == "accepted"
        availability.release.assert_not_awaited()


class TestCancel:
    """Тесты отмены водителем."""

    @pytest.mark.asyncio
    async def test_cancel_with_reason(self, service, rides, availability, mock_event_bus, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.STARTED, started_at=STARTED_AT))
        rides.transition = AsyncMock(return_value=make_ride(status=RideStatus.CANCELLED))

        await service.cancel("ride-1", "vehicle_breakdown", "flat tyre", driver)

        fields = rides.transition.await_args.args[3]
        assert fields["cancellation_reason"] == "vehicle_breakdown"
        assert fields["cancellation_note"] == "flat tyre"
        availability.release.assert_awaited_once()
        event = mock_event_bus.publish.await_args.args[0]
        assert event.payload["reason"] == "vehicle_breakdown"

    @pytest.mark.asyncio
    async def test_cancel_without_reason(self, service, rides, driver) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await service.cancel("ride-1", None, None, driver)

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        rides.get_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_completed_ride(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.COMPLETED))

        with pytest.raises(InvalidTransitionError):
            await service.cancel("ride-1", "emergency", None, driver)


class TestStartAndComplete:
    """Тесты старта и высадки."""

    @pytest.mark.asyncio
    async def test_start(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.ACCEPTED, shift_id="shift-0"))
        rides.transition = AsyncMock(return_value=make_ride(status=RideStatus.STARTED, started_at=STARTED_AT))

        await service.start("ride-1", driver)

        fields = rides.transition.await_args.args[3]
        assert "started_at" in fields
        assert fields["shift_id"] == "shift-0"

    @pytest.mark.asyncio
    async def test_start_twice(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.STARTED, started_at=STARTED_AT))

        with pytest.raises(StateError) as exc_info:
            await service.start("ride-1", driver)

        assert exc_info.value.code == ErrorCode.ALREADY_STARTED

    @pytest.mark.asyncio
    async def test_complete_recomputes_fare(
        self, service, rides, clients, availability, mock_conn, driver, make_ride,
    ) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(
            status=RideStatus.STARTED, started_at=STARTED_AT, client_ids=["client-1", "client-2"],
        ))
        rides.transition = AsyncMock(return_value=make_ride(
            status=RideStatus.COMPLETED, fare=RideFare(total=100.0, per_person=25.0, half_fare=50.0, gst=2.27),
        ))

        await service.complete("ride-1", CompleteRideDTO(
            fare_total=100.0, additional_client_ids=["client-3", "client-4", "client-1"],
        ), driver)

        clients.missing_ids.assert_awaited_once_with(["client-3", "client-4", "client-1"])
        args = rides.transition.await_args.args
        assert args[1] == (RideStatus.STARTED,)
        fields = args[3]
        assert fields["client_ids"] == ["client-1", "client-2", "client-3", "client-4"]
        assert fields["passengers"] == 4
        assert fields["fare_total"] == 100.0
        assert fields["fare_per_person"] == 25.0
        assert fields["fare_half"] == 50.0
        assert fields["fare_gst"] == 2.27
        assert "dropped_at" in fields
        availability.release.assert_awaited_once_with(driver.id, conn=mock_conn)

    @pytest.mark.asyncio
    async def test_complete_keeps_existing_fare(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(
            status=RideStatus.STARTED, started_at=STARTED_AT, fare=RideFare(total=30.0),
        ))
        rides.transition = AsyncMock(return_value=make_ride(status=RideStatus.COMPLETED))

        await service.complete("ride-1", CompleteRideDTO(), driver)

        fields = rides.transition.await_args.args[3]
        assert fields["fare_total"] == 30.0
        assert fields["fare_per_person"] == 30.0

    @pytest.mark.asyncio
    async def test_complete_rejects_new_clients(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.STARTED, started_at=STARTED_AT))

        with pytest.raises(ValidationError) as exc_info:
            await service.complete("ride-1", CompleteRideDTO(additional_clients=[{"name": "New"}]), driver)

        assert exc_info.value.code == ErrorCode.NEW_CLIENTS_NOT_ALLOWED

    @pytest.mark.asyncio
    async def test_complete_unstarted(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.ACCEPTED))

        with pytest.raises(StateError) as exc_info:
            await service.complete("ride-1", CompleteRideDTO(fare_total=10.0), driver)

        assert exc_info.value.code == ErrorCode.RIDE_NOT_STARTED

    @pytest.mark.asyncio
    async def test_complete_negative_fare(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.STARTED, started_at=STARTED_AT))

        with pytest.raises(ValidationError):
            await service.complete("ride-1", CompleteRideDTO(fare_total=-5.0), driver)

        rides.transition.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_complete_unknown_client(self, service, rides, clients, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.STARTED, started_at=STARTED_AT))
        clients.missing_ids = AsyncMock(return_value=["ghost"])

        with pytest.raises(ValidationError) as exc_info:
            await service.complete("ride-1", CompleteRideDTO(additional_client_ids=["ghost"]), driver)

        assert exc_info.value.code == ErrorCode.INVALID_CLIENTS


class TestDestinations:
    """Тесты изменения адресов."""

    @pytest.mark.asyncio
    async def test_update_creates_driver_destinations(self, service, rides, destinations, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.ACCEPTED))
        rides.update = AsyncMock(return_value=make_ride(
            status=RideStatus.ACCEPTED, to_destination_id="dest-airport",
        ))

        await service.update_destinations("ride-1", UpdateDestinationsDTO(dropoff_location=" Airport "), driver)

        destinations.create.assert_awaited_once()
        assert destinations.create.await_args.args[0] == "Airport"
        fields = rides.update.await_args.args[1]
        assert fields == {"to_destination_id": "dest-airport"}

    @pytest.mark.asyncio
    async def test_update_requires_location(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.ACCEPTED))

        with pytest.raises(ValidationError):
            await service.update_destinations("ride-1", UpdateDestinationsDTO(pickup_location="  "), driver)

    @pytest.mark.asyncio
    async def test_update_assigned_ride(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.ASSIGNED))

        with pytest.raises(StateError) as exc_info:
            await service.update_destinations("ride-1", UpdateDestinationsDTO(pickup_location="Home"), driver)

        assert exc_info.value.code == ErrorCode.INVALID_STATUS


class TestQuickAndSelfAssigned:
    """Тесты быстрых и самоназначенных поездок."""

    @pytest.mark.asyncio
    async def test_complete_quick_trip(self, service, rides, clients, availability, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(
            status=RideStatus.STARTED, started_at=STARTED_AT, is_quick_trip=True, client_ids=[],
        ))
        rides.transition = AsyncMock(return_value=make_ride(status=RideStatus.COMPLETED, is_quick_trip=True))

        await service.complete_quick_trip("ride-1", CompleteQuickTripDTO(
            client_name="Jane", pickup_location="Home", dropoff_location="Airport", fare_total=44.0,
        ), driver)

        clients.create.assert_awaited_once()
        fields = rides.transition.await_args.args[3]
        assert fields["client_ids"] == ["client-new"]
        assert fields["from_destination_id"] == "dest-home"
        assert fields["to_destination_id"] == "dest-airport"
        assert fields["fare_per_person"] == 44.0
        assert fields["fare_gst"] == 4.0
        availability.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_regular_ride_is_not_quick_trip(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(status=RideStatus.STARTED, started_at=STARTED_AT))

        with pytest.raises(ValidationError) as exc_info:
            await service.complete_quick_trip("ride-1", CompleteQuickTripDTO(
                client_name="Jane", pickup_location="Home", dropoff_location="Airport", fare_total=10.0,
            ), driver)

        assert exc_info.value.code == ErrorCode.NOT_QUICK_TRIP

    @pytest.mark.asyncio
    async def test_quick_trip_details_required(self, service, rides, driver, make_ride) -> None:
        rides.get_by_id = AsyncMock(return_value=make_ride(
            status=RideStatus.STARTED, started_at=STARTED_AT, is_quick_trip=True,
        ))

        with pytest.raises(ValidationError) as exc_info:
            await service.complete_quick_trip("ride-1", CompleteQuickTripDTO(
                client_name="Jane", fare_total=10.0,
            ), driver)

        assert exc_info.value.details == {"missing": ["pickup_location", "dropoff_location"]}

    @pytest.mark.asyncio
    async def test_self_assigned_ride(self, service, rides, availability, mock_conn, driver, make_ride) -> None:
        rides.create = AsyncMock(return_value=make_ride(status=RideStatus.ACCEPTED, is_self_assigned=True))

        ride = await service.create_self_assigned(SelfAssignedRideDTO(
            client_name="Jane", pickup_location="Home", dropoff_location="Airport", fare_total=22.0, passengers=2,
        ), driver)

        assert ride.is_self_assigned is True
        availability.ensure_free.assert_awaited_once_with(driver.id, conn=mock_conn)
        availability.mark_on_ride.assert_awaited_once_with(driver.id, conn=mock_conn)
        _, data = rides.create.await_args.args
        assert data["status"] == "accepted"
        assert data["is_self_assigned"] is True
        assert data["driver_id"] == driver.id
        assert data["shift_id"] == "shift-1"
        assert data["passengers"] == 2
        assert data["fare_total"] == 22.0
        assert data["fare_gst"] == 2.0

    @pytest.mark.asyncio
    async def test_self_assigned_requires_positive_fare(self, service, driver) -> None:
        with pytest.raises(ValidationError):
            await service.create_self_assigned(SelfAssignedRideDTO(
                client_name="Jane", pickup_location="Home", dropoff_location="Airport", fare_total=0,
            ), driver)

    @pytest.mark.asyncio
    async def test_self_assigned_without_shift(self, service, shifts, driver) -> None:
        shifts.get_active = AsyncMock(return_value=None)

        with pytest.raises(StateError) as exc_info:
            await service.create_self_assigned(SelfAssignedRideDTO(
                client_name="Jane", pickup_location="Home", dropoff_location="Airport", fare_total=10.0,
            ), driver)

        assert exc_info.value.code == ErrorCode.NO_ACTIVE_SHIFT

    @pytest.mark.asyncio
    async def test_manager_cannot_self_assign(self, service, manager) -> None:
        with pytest.raises(ForbiddenError):
            await service.create_self_assigned(SelfAssignedRideDTO(fare_total=10.0), manager)


class TestMyRides:
    """Тесты списка поездок водителя."""

    @pytest.mark.asyncio
    async def test_filters_by_actor(self, service, rides, driver, make_ride) -> None:
        rides.list_rides = AsyncMock(return_value=([make_ride()], 1))

        result = await service.my_rides(driver, RideFilters(driver_id=99, status=RideStatus.ASSIGNED))

        filters = rides.list_rides.await_args.args[0]
        assert filters.driver_id == driver.id
        assert filters.status == RideStatus.ASSIGNED
        assert result["total"] == 1

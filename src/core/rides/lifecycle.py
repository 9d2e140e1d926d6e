# src/core/rides/lifecycle.py
"""
Операции водителя с поездками: принятие, старт, высадка, отмена,
быстрые и самоназначенные поездки.
"""

from __future__ import annotations

from typing import Any, Optional

from src.common.constants import (
    BookingType,
    CancellationReason,
    NotificationType,
    RideStatus,
    TypeMsg,
)
from src.common.errors import ErrorCode, ForbiddenError, StateError, ValidationError
from src.common.logger import log_info
from src.common.utils import ensure_aware, is_finite_number, page_envelope, paginate, utcnow
from src.core.availability.service import DriverAvailabilityTracker
from src.core.directory.repository import ClientRepository, DestinationRepository
from src.core.notifications.service import NotificationDispatcher
from src.core.reports.settings import ReportSettingsService
from src.core.rides.models import (
    CompleteQuickTripDTO,
    CompleteRideDTO,
    Ride,
    RideFilters,
    SelfAssignedRideDTO,
    UpdateDestinationsDTO,
    compute_fare,
)
from src.core.rides.repository import RideRepository, fare_columns
from src.core.rides.service import RideServiceBase, parse_reason
from src.core.rides.state_machine import RideEvent, RideStateMachine
from src.core.shifts.models import Shift
from src.core.shifts.repository import ShiftRepository
from src.core.users.models import Actor
from src.infra.database import DatabaseManager
from src.infra.event_bus import EventBus, EventTypes


class RideLifecycleService(RideServiceBase):
    """Операции водителя."""

    def __init__(
        self,
        db: DatabaseManager,
        rides: RideRepository,
        clients: ClientRepository,
        destinations: DestinationRepository,
        availability: DriverAvailabilityTracker,
        notifier: NotificationDispatcher,
        event_bus: EventBus,
        shifts: ShiftRepository,
        report_settings: ReportSettingsService,
    ) -> None:
        super().__init__(db, rides, clients, destinations, availability, notifier, event_bus)
        self._shifts = shifts
        self._report_settings = report_settings

    async def accept(self, ride_id: str, actor: Actor) -> Ride:
        """
        Водитель принимает назначенную поездку.

        Raises:
            ForbiddenError: Поездка назначена другому водителю
            InvalidTransitionError: Поездка не в статусе assigned
            StateError: NO_ACTIVE_SHIFT
        """
        ride = await self._own_ride(ride_id, actor)
        RideStateMachine.target_for(RideEvent.ACCEPT, ride.status)
        shift = await self._active_shift(actor)

        async with self._db.transaction() as conn:
            ride = await self._transition(ride, RideEvent.ACCEPT, {
                "accepted_at": utcnow(),
                "shift_id": shift.id,
            }, conn=conn)

        await log_info(f"Водитель {actor.id} принял поездку {ride.ride_code}", type_msg=TypeMsg.INFO)
        await self._notify_staff(
            NotificationType.RIDE_ACCEPTED, ride,
            f"Driver {actor.id} accepted ride {ride.ride_code}",
        )
        await self._publish(EventTypes.RIDE_ACCEPTED, ride)
        return ride

    async def reject(self, ride_id: str, actor: Actor) -> Ride:
        """
        Водитель отказывается от назначенной поездки.

        Raises:
            InvalidTransitionError: Поездка не в статусе assigned
        """
        ride = await self._own_ride(ride_id, actor)

        async with self._db.transaction() as conn:
            ride = await self._transition(ride, RideEvent.REJECT, {"rejected_at": utcnow()}, conn=conn)
            await self._availability.release(actor.id, conn=conn)

        await log_info(f"Водитель {actor.id} отказался от поездки {ride.ride_code}", type_msg=TypeMsg.INFO)
        await self._notify_staff(
            NotificationType.RIDE_REJECTED, ride,
            f"Driver {actor.id} rejected ride {ride.ride_code}",
        )
        await self._publish(EventTypes.RIDE_REJECTED, ride)
        return ride

    async def cancel(
        self,
        ride_id: str,
        reason: Optional[str],
        note: Optional[str],
        actor: Actor,
    ) -> Ride:
        """
        Водитель отменяет поездку с причиной.

        Raises:
            ValidationError: Нет причины или INVALID_REASON
            InvalidTransitionError: Поездка уже завершена или закрыта
        """
        cancellation_reason = parse_reason(reason, CancellationReason, "Cancellation")
        ride = await self._own_ride(ride_id, actor)

        async with self._db.transaction() as conn:
            ride = await self._transition(ride, RideEvent.CANCEL, {
                "cancelled_at": utcnow(),
                "cancellation_reason": cancellation_reason.value,
                "cancellation_note": note,
            }, conn=conn)
            await self._availability.release(actor.id, conn=conn)

        await log_info(
            f"Водитель {actor.id} отменил поездку {ride.ride_code}: {cancellation_reason.value}",
            type_msg=TypeMsg.INFO,
        )
        await self._notify_staff(
            NotificationType.RIDE_CANCELLED, ride,
            f"Driver {actor.id} cancelled ride {ride.ride_code}: {cancellation_reason.value}",
        )
        await self._publish(EventTypes.RIDE_CANCELLED, ride, reason=cancellation_reason.value)
        return ride

    async def start(self, ride_id: str, actor: Actor) -> Ride:
        """
        Водитель начинает принятую поездку.

        Raises:
            StateError: ALREADY_STARTED, NO_ACTIVE_SHIFT
            InvalidTransitionError: Поездка не в статусе accepted
        """
        ride = await self._own_ride(ride_id, actor)
        if ride.started_at is not None:
            raise StateError("Ride already started", code=ErrorCode.ALREADY_STARTED)
        RideStateMachine.target_for(RideEvent.START, ride.status)
        shift = await self._active_shift(actor)

        async with self._db.transaction() as conn:
            ride = await self._transition(ride, RideEvent.START, {
                "started_at": utcnow(),
                "shift_id": ride.shift_id or shift.id,
            }, conn=conn)

        await log_info(f"Поездка {ride.ride_code} начата", type_msg=TypeMsg.INFO)
        await self._notify_staff(
            NotificationType.RIDE_STARTED, ride,
            f"Driver {actor.id} started ride {ride.ride_code}",
        )
        await self._publish(EventTypes.RIDE_STARTED, ride)
        return ride

    async def complete(self, ride_id: str, dto: CompleteRideDTO, actor: Actor) -> Ride:
        """
        Высадка: завершает поездку и пересчитывает стоимость
        по итоговому списку клиентов.

        Raises:
            ValidationError: NEW_CLIENTS_NOT_ALLOWED, INVALID_CLIENTS, INVALID_DESTINATION,
                отрицательная стоимость
            StateError: RIDE_NOT_STARTED, NO_ACTIVE_SHIFT
            InvalidTransitionError: Поездка не в статусе started
        """
        ride = await self._own_ride(ride_id, actor)
        if dto.additional_clients:
            raise ValidationError(
                "New clients cannot be created at drop-off",
                code=ErrorCode.NEW_CLIENTS_NOT_ALLOWED,
            )
        if ride.started_at is None:
            raise StateError("Ride has not been started", code=ErrorCode.RIDE_NOT_STARTED)
        RideStateMachine.target_for(RideEvent.COMPLETE, ride.status)
        shift = await self._active_shift(actor)

        await self._validate_clients(dto.additional_client_ids)
        await self._validate_destinations(dto.from_destination_id, dto.to_destination_id)

        total = ride.fare.total if dto.fare_total is None else dto.fare_total
        if not is_finite_number(total) or total < 0:
            raise ValidationError("Fare total must be a non-negative number")

        client_ids = list(dict.fromkeys([*ride.client_ids, *dto.additional_client_ids]))
        fare = compute_fare(total, len(client_ids), await self._report_settings.gst_divisor())

        fields: dict[str, Any] = {
            **fare_columns(fare),
            "client_ids": client_ids,
            "passengers": max(len(client_ids), 1),
            "dropped_at": utcnow(),
            "shift_id": ride.shift_id or shift.id,
        }
        if dto.driver_notes is not None:
            fields["driver_notes"] = dto.driver_notes
        if dto.from_destination_id:
            fields["from_destination_id"] = dto.from_destination_id
        if dto.to_destination_id:
            fields["to_destination_id"] = dto.to_destination_id

        async with self._db.transaction() as conn:
            ride = await self._transition(ride, RideEvent.COMPLETE, fields, conn=conn)
            await self._availability.release(actor.id, conn=conn)

        await log_info(
            f"Поездка {ride.ride_code} завершена: {fare.total} на {len(client_ids)} клиентов",
            type_msg=TypeMsg.INFO,
        )
        await self._notify_staff(
            NotificationType.RIDE_COMPLETED, ride,
            f"Ride {ride.ride_code} completed, fare {fare.total:.2f}",
        )
        await self._publish(EventTypes.RIDE_COMPLETED, ride)
        return ride

    async def update_destinations(self, ride_id: str, dto: UpdateDestinationsDTO, actor: Actor) -> Ride:
        """
        Водитель меняет адреса в пути (создаются адреса водителя).

        Raises:
            ValidationError: Не указан ни один адрес
            StateError: INVALID_STATUS
        """
        ride = await self._own_ride(ride_id, actor)
        pickup = (dto.pickup_location or "").strip()
        dropoff = (dto.dropoff_location or "").strip()
        if not pickup and not dropoff:
            raise ValidationError("Pickup or dropoff location is required")

        editable = (RideStatus.ACCEPTED, RideStatus.STARTED)
        if ride.status not in editable:
            raise StateError(
                "Destinations can only be changed for accepted or started rides",
                code=ErrorCode.INVALID_STATUS,
            )

        async with self._db.transaction() as conn:
            fields: dict[str, Any] = {}
            if pickup:
                origin = await self._destinations.create(pickup, created_by=actor.id, conn=conn)
                fields["from_destination_id"] = origin.id
            if dropoff:
                target = await self._destinations.create(dropoff, created_by=actor.id, conn=conn)
                fields["to_destination_id"] = target.id
            updated = await self._rides.update(ride.id, fields, expected=editable, conn=conn)
            if updated is None:
                raise StateError(
                    "Destinations can only be changed for accepted or started rides",
                    code=ErrorCode.INVALID_STATUS,
                )

        await self._notify_staff(
            NotificationType.RIDE_DESTINATION_UPDATED, updated,
            f"Driver {actor.id} updated destinations for ride {updated.ride_code}",
            status=f"{updated.from_destination_id}:{updated.to_destination_id}",
        )
        return updated

    async def complete_quick_trip(self, ride_id: str, dto: CompleteQuickTripDTO, actor: Actor) -> Ride:
        """
        Завершает быструю поездку, создавая клиента и адреса водителя.

        Raises:
            ValidationError: NOT_QUICK_TRIP, не заполнены детали, стоимость <= 0
            InvalidTransitionError: Поездка не в статусе started
        """
        ride = await self._own_ride(ride_id, actor)
        if not ride.is_quick_trip:
            raise ValidationError("Ride is not a quick trip", code=ErrorCode.NOT_QUICK_TRIP)
        RideStateMachine.target_for(RideEvent.COMPLETE, ride.status)

        client_name, pickup, dropoff = self._require_trip_details(
            dto.client_name, dto.pickup_location, dto.dropoff_location, dto.fare_total,
        )
        fare = compute_fare(dto.fare_total, 1, await self._report_settings.gst_divisor())
        shift = await self._shifts.get_active(actor.id)

        async with self._db.transaction() as conn:
            client = await self._clients.create(client_name, created_by=actor.id, conn=conn)
            origin = await self._destinations.create(pickup, created_by=actor.id, conn=conn)
            target = await self._destinations.create(dropoff, created_by=actor.id, conn=conn)
            fields: dict[str, Any] = {
                **fare_columns(fare),
                "client_ids": [client.id],
                "from_destination_id": origin.id,
                "to_destination_id": target.id,
                "passengers": 1,
                "dropped_at": utcnow(),
                "shift_id": ride.shift_id or (shift.id if shift else None),
            }
            if dto.driver_notes is not None:
                fields["driver_notes"] = dto.driver_notes
            ride = await self._transition(ride, RideEvent.COMPLETE, fields, conn=conn)
            await self._availability.release(actor.id, conn=conn)

        await log_info(f"Быстрая поездка {ride.ride_code} завершена: {fare.total}", type_msg=TypeMsg.INFO)
        await self._notify_staff(
            NotificationType.RIDE_COMPLETED, ride,
            f"Quick trip {ride.ride_code} completed, fare {fare.total:.2f}",
        )
        await self._publish(EventTypes.RIDE_COMPLETED, ride, quick_trip=True)
        return ride

    async def create_self_assigned(self, dto: SelfAssignedRideDTO, actor: Actor) -> Ride:
        """
        Водитель сам создаёт поездку: сразу accepted, без назначения менеджером.

        Raises:
            ForbiddenError: Актор не водитель
            StateError: NO_ACTIVE_SHIFT, DRIVER_NOT_FREE
            ValidationError: Не заполнены детали, стоимость <= 0, пассажиров < 1
        """
        if not actor.is_driver:
            raise ForbiddenError("Only drivers can create self-assigned rides")
        shift = await self._active_shift(actor)

        client_name, pickup, dropoff = self._require_trip_details(
            dto.client_name, dto.pickup_location, dto.dropoff_location, dto.fare_total,
        )
        if dto.passengers < 1:
            raise ValidationError("At least one passenger is required")
        fare = compute_fare(dto.fare_total, 1, await self._report_settings.gst_divisor())
        now = utcnow()

        async with self._db.transaction() as conn:
            await self._availability.ensure_free(actor.id, conn=conn)
            client = await self._clients.create(client_name, created_by=actor.id, conn=conn)
            origin = await self._destinations.create(pickup, created_by=actor.id, conn=conn)
            target = await self._destinations.create(dropoff, created_by=actor.id, conn=conn)
            ride = await self._create_ride({
                "booking_type": BookingType.IMMEDIATE.value,
                "is_self_assigned": True,
                "client_ids": [client.id],
                "driver_id": actor.id,
                "assigned_by": actor.id,
                "from_destination_id": origin.id,
                "to_destination_id": target.id,
                "scheduled_time": ensure_aware(dto.scheduled_time) if dto.scheduled_time else now,
                "passengers": dto.passengers,
                **fare_columns(fare),
                "status": RideStatus.ACCEPTED.value,
                "accepted_at": now,
                "shift_id": shift.id,
                "notes": dto.notes,
            }, conn=conn)
            await self._availability.mark_on_ride(actor.id, conn=conn)

        await log_info(f"Водитель {actor.id} создал поездку {ride.ride_code}", type_msg=TypeMsg.INFO)
        await self._notify_staff(
            NotificationType.SELF_ASSIGNED_RIDE, ride,
            f"Driver {actor.id} created self-assigned ride {ride.ride_code}",
        )
        await self._publish(EventTypes.RIDE_ACCEPTED, ride, self_assigned=True)
        return ride

    async def my_rides(
        self,
        actor: Actor,
        filters: Optional[RideFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """Поездки текущего водителя."""
        filters = (filters or RideFilters()).model_copy(update={"driver_id": actor.id})
        page, limit, offset = paginate(page, limit)
        items, total = await self._rides.list_rides(filters, limit, offset)
        return page_envelope(items, total, page, limit)

    # =========================================================================
    # ПРОВЕРКИ
    # =========================================================================

    async def _own_ride(self, ride_id: str, actor: Actor) -> Ride:
        ride = await self._get_ride(ride_id)
        if not actor.is_driver or ride.driver_id != actor.id:
            raise ForbiddenError("Ride is not assigned to you")
        return ride

    async def _active_shift(self, actor: Actor) -> Shift:
        shift = await self._shifts.get_active(actor.id)
        if shift is None:
            raise StateError("Start a shift first", code=ErrorCode.NO_ACTIVE_SHIFT)
        return shift

    @staticmethod
    def _require_trip_details(
        client_name: Optional[str],
        pickup: Optional[str],
        dropoff: Optional[str],
        fare_total: Optional[float],
    ) -> tuple[str, str, str]:
        values = {
            "client_name": (client_name or "").strip(),
            "pickup_location": (pickup or "").strip(),
            "dropoff_location": (dropoff or "").strip(),
        }
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise ValidationError("Trip details are incomplete", details={"missing": missing})
        if not is_finite_number(fare_total) or fare_total <= 0:
            raise ValidationError("Fare total must be greater than zero")
        return values["client_name"], values["pickup_location"], values["dropoff_location"]

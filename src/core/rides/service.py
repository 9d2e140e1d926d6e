# src/core/rides/service.py
"""
Диспетчерские операции с поездками.

Каждая смена статуса выполняется условным UPDATE в одной транзакции
с изменением доступности водителя. Уведомления и события отправляются
после коммита и не влияют на результат операции.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional
from uuid import uuid4

from src.common.constants import (
    AbortReason,
    BookingType,
    NotificationType,
    RideStatus,
    TypeMsg,
    UserRole,
)
from src.common.errors import (
    ConflictError,
    ErrorCode,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StateError,
    ValidationError,
)
from src.common.logger import log_info
from src.common.utils import ensure_aware, generate_ride_code, page_envelope, paginate, utcnow
from src.core.availability.service import DriverAvailabilityTracker
from src.core.directory.repository import ClientRepository, DestinationRepository
from src.core.notifications.service import NotificationDispatcher
from src.core.rides.models import (
    AssignRideDTO,
    QuickTripDTO,
    Ride,
    RideFilters,
    ScheduledBookingDTO,
    UpdateScheduledBookingDTO,
)
from src.core.rides.repository import RideRepository
from src.core.rides.state_machine import RideEvent, RideStateMachine
from src.core.users.models import Actor, User
from src.infra.database import DatabaseManager, Executor, unique_violation_as
from src.infra.event_bus import DomainEvent, EventBus, EventTypes


def _duplicate_ride_code() -> ConflictError:
    return ConflictError("Ride code collision, retry the request")


def parse_reason(reason: Optional[str], enum_cls: type[Enum], label: str) -> Any:
    """
    Проверяет причину отмены или прерывания.

    Raises:
        ValidationError: Причина не указана (VALIDATION_ERROR) или вне набора (INVALID_REASON)
    """
    if not reason:
        raise ValidationError(f"{label} reason is required")
    try:
        return enum_cls(reason)
    except ValueError:
        raise ValidationError(
            f"Invalid {label.lower()} reason",
            code=ErrorCode.INVALID_REASON,
            details={"allowed": [item.value for item in enum_cls]},
        ) from None


class RideServiceBase:
    """Общие зависимости и проверки сервисов поездок."""

    def __init__(
        self,
        db: DatabaseManager,
        rides: RideRepository,
        clients: ClientRepository,
        destinations: DestinationRepository,
        availability: DriverAvailabilityTracker,
        notifier: NotificationDispatcher,
        event_bus: EventBus,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных (транзакции)
            rides: Репозиторий поездок
            clients: Справочник клиентов
            destinations: Справочник адресов
            availability: Трекер доступности водителей
            notifier: Диспетчер уведомлений
            event_bus: Шина событий
        """
        self._db = db
        self._rides = rides
        self._clients = clients
        self._destinations = destinations
        self._availability = availability
        self._notifier = notifier
        self._event_bus = event_bus

    async def _get_ride(self, ride_id: str) -> Ride:
        ride = await self._rides.get_by_id(ride_id)
        if ride is None:
            raise NotFoundError("Ride")
        return ride

    async def _validate_clients(self, client_ids: Iterable[str]) -> None:
        missing = await self._clients.missing_ids(client_ids)
        if missing:
            raise ValidationError(
                "One or more clients do not exist",
                code=ErrorCode.INVALID_CLIENTS,
                details={"missing": missing},
            )

    async def _validate_destinations(self, *destination_ids: Optional[str]) -> None:
        ids = [item for item in destination_ids if item]
        missing = await self._destinations.missing_ids(ids)
        if missing:
            raise ValidationError(
                "One or more destinations do not exist",
                code=ErrorCode.INVALID_DESTINATION,
                details={"missing": missing},
            )

    async def _create_ride(self, data: dict[str, Any], conn: Optional[Executor] = None) -> Ride:
        data.setdefault("ride_code", generate_ride_code())
        async with unique_violation_as(_duplicate_ride_code):
            return await self._rides.create(str(uuid4()), data, conn=conn)

    async def _transition(
        self,
        ride: Ride,
        event: RideEvent,
        fields: dict[str, Any],
        conn: Executor,
    ) -> Ride:
        """
        Условный переход по событию.

        Raises:
            InvalidTransitionError: Событие недопустимо или статус уже изменился
        """
        target = RideStateMachine.target_for(event, ride.status)
        updated = await self._rides.transition(
            ride.id,
            RideStateMachine.sources_for(event),
            target,
            fields,
            conn=conn,
        )
        if updated is None:
            current = await self._rides.get_by_id(ride.id, conn=conn)
            raise InvalidTransitionError(
                current.status.value if current else ride.status.value,
                target=target.value,
            )
        return updated

    async def _publish(self, event_type: str, ride: Ride, **extra: Any) -> None:
        await self._event_bus.publish(DomainEvent(
            event_type=event_type,
            payload={**ride.summary(), **extra},
        ))

    async def _notify_driver(
        self,
        driver_id: Optional[int],
        notification_type: NotificationType,
        ride: Ride,
        message: str,
        status: Optional[str] = None,
    ) -> None:
        if driver_id is None:
            return
        await self._notifier.notify_user(
            driver_id,
            notification_type,
            entity_id=ride.id,
            message=message,
            status=status or ride.status.value,
            data=ride.summary(),
        )

    async def _notify_staff(
        self,
        notification_type: NotificationType,
        ride: Ride,
        message: str,
        status: Optional[str] = None,
    ) -> None:
        await self._notifier.notify_staff(
            notification_type,
            entity_id=ride.id,
            message=message,
            status=status or ride.status.value,
            data=ride.summary(),
        )

    @staticmethod
    def _require_staff(actor: Actor) -> None:
        if not actor.is_staff:
            raise ForbiddenError("Only admins and managers can dispatch rides")

    @staticmethod
    def _require_manager(actor: Actor, action: str) -> None:
        if actor.role != UserRole.MANAGER:
            raise ForbiddenError(f"Only managers can {action}")


class RideDispatchService(RideServiceBase):
    """Операции диспетчера (админ, менеджер)."""

    async def assign_ride(self, dto: AssignRideDTO, actor: Actor) -> Ride:
        """
        Создаёт поездку и сразу назначает свободного водителя.

        Raises:
            ValidationError: INVALID_CLIENTS, INVALID_DESTINATION, INVALID_DRIVER
            StateError: DRIVER_NOT_FREE
        """
        self._require_staff(actor)
        await self._validate_clients(dto.client_ids)
        await self._validate_destinations(dto.from_destination_id, dto.to_destination_id)

        async with self._db.transaction() as conn:
            await self._availability.ensure_free(dto.driver_id, conn=conn)
            ride = await self._create_ride({
                "booking_type": BookingType.IMMEDIATE.value,
                "client_ids": list(dict.fromkeys(dto.client_ids)),
                "driver_id": dto.driver_id,
                "assigned_by": actor.id,
                "from_destination_id": dto.from_destination_id,
                "to_destination_id": dto.to_destination_id,
                "scheduled_time": ensure_aware(dto.scheduled_time),
                "passengers": max(len(set(dto.client_ids)), 1),
                "status": RideStatus.ASSIGNED.value,
                "notes": dto.notes,
            }, conn=conn)
            await self._availability.mark_on_ride(dto.driver_id, conn=conn)

        await log_info(f"Поездка {ride.ride_code} назначена водителю {dto.driver_id}", type_msg=TypeMsg.INFO)

        await self._notify_driver(
            ride.driver_id, NotificationType.RIDE_ASSIGNED, ride,
            f"You have been assigned ride {ride.ride_code}",
        )
        await self._notify_staff(
            NotificationType.RIDE_ASSIGNED, ride,
            f"Ride {ride.ride_code} assigned to driver {ride.driver_id}",
        )
        await self._publish(EventTypes.RIDE_ASSIGNED, ride)
        return ride

    async def create_scheduled_booking(self, dto: ScheduledBookingDTO, actor: Actor) -> Ride:
        """
        Создаёт бронирование на будущее без водителя.

        Raises:
            ValidationError: Время в прошлом, INVALID_CLIENTS, INVALID_DESTINATION
        """
        self._require_staff(actor)
        scheduled_time = self._future_time(dto.scheduled_time)
        await self._validate_clients(dto.client_ids)
        await self._validate_destinations(dto.from_destination_id, dto.to_destination_id)

        ride = await self._create_ride({
            "booking_type": BookingType.SCHEDULED.value,
            "client_ids": list(dict.fromkeys(dto.client_ids)),
            "assigned_by": actor.id,
            "from_destination_id": dto.from_destination_id,
            "to_destination_id": dto.to_destination_id,
            "scheduled_time": scheduled_time,
            "passengers": max(len(set(dto.client_ids)), 1),
            "status": RideStatus.SCHEDULED.value,
            "notes": dto.notes,
        })

        await log_info(f"Бронирование {ride.ride_code} запланировано на {scheduled_time}", type_msg=TypeMsg.INFO)

        await self._notify_staff(
            NotificationType.BOOKING_SCHEDULED, ride,
            f"Booking {ride.ride_code} scheduled for {scheduled_time:%Y-%m-%d %H:%M}",
        )
        await self._publish(EventTypes.RIDE_SCHEDULED, ride)
        return ride

    async def update_scheduled_booking(
        self,
        ride_id: str,
        dto: UpdateScheduledBookingDTO,
        actor: Actor,
    ) -> Ride:
        """
        Изменяет бронирование, пока оно в статусе scheduled.

        Raises:
            StateError: INVALID_STATUS
        """
        self._require_staff(actor)
        ride = await self._get_ride(ride_id)
        self._ensure_scheduled(ride)

        fields: dict[str, Any] = {}
        if dto.client_ids is not None:
            await self._validate_clients(dto.client_ids)
            fields["client_ids"] = list(dict.fromkeys(dto.client_ids))
            fields["passengers"] = max(len(fields["client_ids"]), 1)
        if dto.from_destination_id is not None or dto.to_destination_id is not None:
            await self._validate_destinations(dto.from_destination_id, dto.to_destination_id)
            if dto.from_destination_id is not None:
                fields["from_destination_id"] = dto.from_destination_id
            if dto.to_destination_id is not None:
                fields["to_destination_id"] = dto.to_destination_id
        if dto.scheduled_time is not None:
            fields["scheduled_time"] = self._future_time(dto.scheduled_time)
        if dto.notes is not None:
            fields["notes"] = dto.notes

        updated = await self._rides.update(ride.id, fields, expected=(RideStatus.SCHEDULED,))
        if updated is None:
            raise StateError("Only scheduled bookings can be edited", code=ErrorCode.INVALID_STATUS)
        return updated

    async def delete_scheduled_booking(self, ride_id: str, actor: Actor) -> None:
        """
        Удаляет бронирование в статусе scheduled.

        Raises:
            StateError: INVALID_STATUS
        """
        self._require_staff(actor)
        ride = await self._get_ride(ride_id)
        self._ensure_scheduled(ride)

        if not await self._rides.delete(ride.id, expected=(RideStatus.SCHEDULED,)):
            raise StateError("Only scheduled bookings can be deleted", code=ErrorCode.INVALID_STATUS)

        await log_info(f"Бронирование {ride.ride_code} удалено пользователем {actor.id}", type_msg=TypeMsg.INFO)
        await self._publish(EventTypes.RIDE_DELETED, ride, deleted_by=actor.id)

    async def assign_scheduled_booking(self, ride_id: str, driver_id: int, actor: Actor) -> Ride:
        """
        Назначает водителя на запланированное бронирование.

        Raises:
            InvalidTransitionError: Бронирование уже не в статусе scheduled
            StateError: DRIVER_NOT_FREE
        """
        self._require_staff(actor)
        ride = await self._get_ride(ride_id)
        RideStateMachine.target_for(RideEvent.ASSIGN, ride.status)

        async with self._db.transaction() as conn:
            await self._availability.ensure_free(driver_id, conn=conn)
            ride = await self._transition(ride, RideEvent.ASSIGN, {
                "driver_id": driver_id,
                "assigned_by": actor.id,
                "booking_type": BookingType.IMMEDIATE.value,
            }, conn=conn)
            await self._availability.mark_on_ride(driver_id, conn=conn)

        await log_info(f"Бронирование {ride.ride_code} назначено водителю {driver_id}", type_msg=TypeMsg.INFO)

        await self._notify_driver(
            driver_id, NotificationType.RIDE_ASSIGNED, ride,
            f"You have been assigned ride {ride.ride_code}",
        )
        await self._notify_staff(
            NotificationType.RIDE_ASSIGNED, ride,
            f"Booking {ride.ride_code} assigned to driver {driver_id}",
        )
        await self._publish(EventTypes.RIDE_ASSIGNED, ride)
        return ride

    async def reassign_ride(self, ride_id: str, new_driver_id: int, actor: Actor) -> Ride:
        """
        Передаёт назначенную поездку другому водителю.

        Raises:
            InvalidTransitionError: Поездка не в статусе assigned
            ValidationError: Тот же водитель
            StateError: DRIVER_NOT_FREE
        """
        self._require_staff(actor)
        ride = await self._get_ride(ride_id)
        RideStateMachine.target_for(RideEvent.REASSIGN, ride.status)
        if ride.driver_id == new_driver_id:
            raise ValidationError("Ride is already assigned to this driver")

        async with self._db.transaction() as conn:
            # Блокировка строки: параллельная передача ждёт и видит нового водителя
            locked = await self._rides.get_by_id(ride.id, conn=conn, for_update=True)
            if locked is None:
                raise NotFoundError("Ride")
            RideStateMachine.target_for(RideEvent.REASSIGN, locked.status)
            old_driver_id = locked.driver_id
            if old_driver_id == new_driver_id:
                raise ValidationError("Ride is already assigned to this driver")

            await self._availability.ensure_free(new_driver_id, conn=conn)
            ride = await self._transition(locked, RideEvent.REASSIGN, {
                "driver_id": new_driver_id,
                "assigned_by": actor.id,
            }, conn=conn)
            if old_driver_id is not None:
                await self._availability.release(old_driver_id, conn=conn)
            await self._availability.mark_on_ride(new_driver_id, conn=conn)

        await log_info(
            f"Поездка {ride.ride_code} передана: {old_driver_id} -> {new_driver_id}",
            type_msg=TypeMsg.INFO,
        )

        # ключ уведомления включает момент передачи: B -> A -> B снова уведомляет B
        stamp = (ride.updated_at or utcnow()).isoformat()
        await self._notify_driver(
            new_driver_id, NotificationType.RIDE_REASSIGNED, ride,
            f"Ride {ride.ride_code} has been reassigned to you",
            status=f"assigned",
        )
        await self._notify_driver(
            old_driver_id, NotificationType.RIDE_STATUS, ride,
            f"Ride {ride.ride_code} has been reassigned to another driver",
            status=f"reassigned:{new_driver_id}",
        )
        await self._publish(EventTypes.RIDE_REASSIGNED, ride, previous_driver_id=old_driver_id)
        return ride

    async def abort_ride(
        self,
        ride_id: str,
        reason: Optional[str],
        note: Optional[str],
        actor: Actor,
    ) -> Ride:
        """
        Прерывает поездку (только менеджер).

        Raises:
            ValidationError: Нет причины или INVALID_REASON
            ForbiddenError: Актор не менеджер
            InvalidTransitionError: Поездка не в assigned/accepted
        """
        abort_reason = parse_reason(reason, AbortReason, "Abort")
        self._require_manager(actor, "abort rides")
        ride = await self._get_ride(ride_id)

        async with self._db.transaction() as conn:
            ride = await self._transition(ride, RideEvent.ABORT, {
                "aborted_at": utcnow(),
                "aborted_by": actor.id,
                "abort_reason": abort_reason.value,
                "abort_note": note,
            }, conn=conn)
            if ride.driver_id is not None:
                await self._availability.release(ride.driver_id, conn=conn)

        await log_info(f"Поездка {ride.ride_code} прервана менеджером {actor.id}: {abort_reason.value}", type_msg=TypeMsg.INFO)

        message = f"Ride {ride.ride_code} was aborted: {abort_reason.value}"
        await self._notify_driver(ride.driver_id, NotificationType.RIDE_ABORTED, ride, message)
        await self._notify_staff(NotificationType.RIDE_ABORTED, ride, message)
        await self._publish(EventTypes.RIDE_ABORTED, ride, reason=abort_reason.value)
        return ride

    async def create_quick_trip(self, dto: QuickTripDTO, actor: Actor) -> Ride:
        """
        Быстрая поездка: только водитель, клиент и адреса - при завершении.

        Raises:
            ForbiddenError: Актор не менеджер
            StateError: DRIVER_NOT_FREE
        """
        self._require_manager(actor, "create quick trips")

        async with self._db.transaction() as conn:
            await self._availability.ensure_free(dto.driver_id, conn=conn)
            ride = await self._create_ride({
                "booking_type": BookingType.IMMEDIATE.value,
                "is_quick_trip": True,
                "client_ids": [],
                "driver_id": dto.driver_id,
                "assigned_by": actor.id,
                "scheduled_time": ensure_aware(dto.scheduled_time) if dto.scheduled_time else utcnow(),
                "passengers": 1,
                "status": RideStatus.ASSIGNED.value,
                "notes": dto.notes,
            }, conn=conn)
            await self._availability.mark_on_ride(dto.driver_id, conn=conn)

        await log_info(f"Быстрая поездка {ride.ride_code} назначена водителю {dto.driver_id}", type_msg=TypeMsg.INFO)

        await self._notify_driver(
            ride.driver_id, NotificationType.QUICK_TRIP_ASSIGNED, ride,
            f"Quick trip {ride.ride_code} assigned to you",
        )
        await self._notify_staff(
            NotificationType.QUICK_TRIP_CREATED, ride,
            f"Quick trip {ride.ride_code} created for driver {ride.driver_id}",
        )
        await self._publish(EventTypes.RIDE_ASSIGNED, ride, quick_trip=True)
        return ride

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_ride(self, ride_id: str, actor: Actor) -> Ride:
        """
        Raises:
            NotFoundError: Поездка не найдена
            ForbiddenError: Водитель запрашивает чужую поездку
        """
        ride = await self._get_ride(ride_id)
        if actor.is_driver and ride.driver_id != actor.id:
            raise ForbiddenError("Ride is assigned to another driver")
        return ride

    async def list_rides(
        self,
        filters: Optional[RideFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        page, limit, offset = paginate(page, limit)
        items, total = await self._rides.list_rides(filters or RideFilters(), limit, offset)
        return page_envelope(items, total, page, limit)

    async def list_available_drivers(self) -> list[User]:
        return await self._availability.list_available_drivers()

    @staticmethod
    def _ensure_scheduled(ride: Ride) -> None:
        if ride.status != RideStatus.SCHEDULED:
            raise StateError(
                f"Booking is '{ride.status.value}', only scheduled bookings can be changed",
                code=ErrorCode.INVALID_STATUS,
            )

    @staticmethod
    def _future_time(value: datetime) -> datetime:
        scheduled_time = ensure_aware(value)
        if scheduled_time <= utcnow():
            raise ValidationError("Scheduled time must be in the future")
        return scheduled_time

# src/core/shifts/service.py
"""
Сервис смен водителей.
Открытие и закрытие смены, история и статистика поездок.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

from src.common.constants import NotificationType, TypeMsg
from src.common.errors import ConflictError, ErrorCode, ForbiddenError, NotFoundError, StateError, ValidationError
from src.common.logger import log_info
from src.common.utils import format_duration, is_finite_number, page_envelope, paginate, utcnow
from src.core.notifications.service import NotificationDispatcher
from src.core.rides.repository import RideRepository
from src.core.shifts.models import CurrentShift, Shift, ShiftRideStats, ShiftSummary, StartShiftDTO
from src.core.shifts.repository import ShiftRepository
from src.core.users.models import Actor
from src.infra.database import unique_violation_as
from src.infra.event_bus import DomainEvent, EventBus, EventTypes
from src.infra.photo_storage import PENDING_PHOTO, PhotoStorageClient


def _shift_already_active() -> ConflictError:
    return ConflictError("Driver already has an active shift", code=ErrorCode.SHIFT_ALREADY_ACTIVE)


class ShiftService:
    """Сервис смен."""

    def __init__(
        self,
        shifts: ShiftRepository,
        rides: RideRepository,
        notifier: NotificationDispatcher,
        event_bus: EventBus,
        photos: Optional[PhotoStorageClient] = None,
    ) -> None:
        """
        Args:
            shifts: Репозиторий смен
            rides: Репозиторий поездок (статистика)
            notifier: Диспетчер уведомлений
            event_bus: Шина событий
            photos: Клиент хранилища фото
        """
        self._shifts = shifts
        self._rides = rides
        self._notifier = notifier
        self._event_bus = event_bus
        self._photos = photos or PhotoStorageClient()

    async def start_shift(self, actor: Actor, dto: StartShiftDTO) -> Shift:
        """
        Открывает смену водителя.

        Raises:
            ForbiddenError: Актор не водитель
            ValidationError: Некорректный номер такси или показание счётчика
            ConflictError: SHIFT_ALREADY_ACTIVE
        """
        self._require_driver(actor)

        taxi_number = (dto.taxi_number or "").strip()
        if not taxi_number:
            raise ValidationError("Taxi number is required")
        if not is_finite_number(dto.start_meter) or dto.start_meter < 0:
            raise ValidationError("Start meter must be a non-negative number")

        photo = PENDING_PHOTO
        if dto.start_meter_photo and dto.start_meter_photo != PENDING_PHOTO:
            photo = self._photos.validate_reference(dto.start_meter_photo)

        if await self._shifts.get_active(actor.id) is not None:
            raise _shift_already_active()

        # Параллельный старт ловит уникальный индекс
        async with unique_violation_as(_shift_already_active):
            shift = await self._shifts.create(actor.id, taxi_number, float(dto.start_meter), photo)

        await log_info(f"Смена {shift.id} открыта водителем {actor.id}", type_msg=TypeMsg.INFO)

        await self._notifier.notify_staff(
            NotificationType.SHIFT_STARTED,
            entity_id=shift.id,
            message=f"Driver {actor.id} started a shift on taxi {taxi_number}",
            status="started",
            data={"shift_id": shift.id, "driver_id": actor.id, "taxi_number": taxi_number},
        )
        await self._publish(EventTypes.SHIFT_STARTED, shift)
        return shift

    async def end_shift(self, actor: Actor) -> ShiftSummary:
        """
        Закрывает активную смену водителя.

        Raises:
            StateError: NO_ACTIVE_SHIFT
        """
        self._require_driver(actor)

        shift = await self._shifts.end_active(actor.id)
        if shift is None:
            raise StateError("No active shift", code=ErrorCode.NO_ACTIVE_SHIFT)

        end_time = shift.end_time or utcnow()
        duration_ms = max(int((end_time - shift.start_time).total_seconds() * 1000), 0)
        stats = await self.ride_stats(shift.id)
        summary = ShiftSummary(
            shift=shift,
            duration_ms=duration_ms,
            duration=format_duration(duration_ms),
            stats=stats,
        )

        await log_info(
            f"Смена {shift.id} закрыта водителем {actor.id}, длительность {summary.duration}",
            type_msg=TypeMsg.INFO,
        )

        await self._notifier.notify_staff(
            NotificationType.SHIFT_ENDED,
            entity_id=shift.id,
            message=f"Driver {actor.id} ended their shift ({summary.duration})",
            status="ended",
            data={"shift_id": shift.id, "driver_id": actor.id, "duration": summary.duration},
        )
        await self._publish(EventTypes.SHIFT_ENDED, shift, duration_ms=duration_ms)
        return summary

    async def update_start_photo(self, shift_id: str, photo: str, actor: Actor) -> Shift:
        """
        Загружает фото счётчика для собственной активной смены.

        Raises:
            NotFoundError: Смена не найдена
            ForbiddenError: Чужая смена
            StateError: Смена уже закрыта
        """
        self._require_driver(actor)
        reference = self._photos.validate_reference(photo)

        shift = await self._shifts.get_by_id(shift_id)
        if shift is None:
            raise NotFoundError("Shift")
        if shift.driver_id != actor.id:
            raise ForbiddenError("Shift belongs to another driver", code=ErrorCode.ACCESS_DENIED)
        if not shift.is_active:
            raise StateError("Shift is not active", code=ErrorCode.NO_ACTIVE_SHIFT)

        updated = await self._shifts.update_start_photo(shift_id, actor.id, reference)
        if updated is None:
            raise StateError("Shift is not active", code=ErrorCode.NO_ACTIVE_SHIFT)

        if shift.start_meter_photo != reference:
            await self._photos.delete(shift.start_meter_photo)
        return updated

    async def get_current(self, actor: Actor) -> Optional[CurrentShift]:
        """Активная смена водителя со статистикой или None."""
        shift = await self._shifts.get_active(actor.id)
        if shift is None:
            return None
        return CurrentShift(shift=shift, stats=await self.ride_stats(shift.id))

    async def history(
        self,
        actor: Actor,
        driver_id: Optional[int] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """
        История смен.

        Водитель видит только свои смены; админ и менеджер - любого водителя.
        """
        if actor.is_driver:
            driver_id = actor.id
        page, limit, offset = paginate(page, limit)
        items, total = await self._shifts.history(driver_id, limit, offset)
        return page_envelope(items, total, page, limit)

    async def timeline(
        self,
        driver_id: Optional[int] = None,
        day: Optional[date] = None,
    ) -> list[Shift]:
        """Все смены за день (UTC), новые первыми."""
        day = day or utcnow().date()
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        return await self._shifts.between(start, start + timedelta(days=1), driver_id=driver_id)

    async def ride_stats(self, shift_id: str) -> ShiftRideStats:
        """Количество и сумма завершённых поездок смены."""
        return ShiftRideStats(**await self._rides.completed_stats(shift_id))

    async def _publish(self, event_type: str, shift: Shift, **extra: Any) -> None:
        await self._event_bus.publish(DomainEvent(
            event_type=event_type,
            payload={
                "shift_id": shift.id,
                "driver_id": shift.driver_id,
                "taxi_number": shift.taxi_number,
                **extra,
            },
        ))

    @staticmethod
    def _require_driver(actor: Actor) -> None:
        if not actor.is_driver:
            raise ForbiddenError("Only drivers can manage shifts")

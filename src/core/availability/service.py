# src/core/availability/service.py
"""
Трекер доступности водителей.

Все изменения статуса водителя проходят через этот сервис и выполняются
в той же транзакции, что и изменение поездки. Периодическая сверка
исправляет расхождения, оставшиеся после сбоев.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from src.common.constants import DriverStatus, TypeMsg, UserRole
from src.common.errors import ErrorCode, StateError, ValidationError
from src.common.logger import log_info, log_warning
from src.core.availability.repository import AvailabilityRepository
from src.core.users.models import User
from src.core.users.repository import UserRepository
from src.infra.database import DatabaseManager, Executor


@dataclass
class SweepResult:
    """Результат сверки доступности."""
    released: list[int] = field(default_factory=list)
    occupied: list[int] = field(default_factory=list)

    @property
    def corrected(self) -> int:
        return len(self.released) + len(self.occupied)


class DriverAvailabilityTracker:
    """Сервис доступности водителей."""

    def __init__(
        self,
        db: DatabaseManager,
        repository: Optional[AvailabilityRepository] = None,
        users: Optional[UserRepository] = None,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных
            repository: Репозиторий статусов (для тестов)
            users: Репозиторий пользователей (для тестов)
        """
        self._repo = repository or AvailabilityRepository(db)
        self._users = users or UserRepository(db)

    async def get_status(self, driver_id: int) -> DriverStatus:
        """
        Возвращает текущий статус водителя.

        Raises:
            ValidationError: INVALID_DRIVER если пользователь не водитель
        """
        row = await self._repo.get_status(driver_id)
        self._ensure_driver_row(row, driver_id)
        return DriverStatus(row["status"])

    async def ensure_free(self, driver_id: int, conn: Optional[Executor] = None) -> None:
        """
        Проверяет, что водитель свободен, блокируя его строку в транзакции.

        Raises:
            ValidationError: INVALID_DRIVER
            StateError: DRIVER_NOT_FREE
        """
        row = await self._repo.lock_user(driver_id, conn=conn)
        self._ensure_driver_row(row, driver_id)
        if row["status"] != DriverStatus.FREE.value:
            raise StateError(
                f"Driver {driver_id} is not free",
                code=ErrorCode.DRIVER_NOT_FREE,
                details={"driver_id": driver_id, "status": row["status"]},
            )

    async def mark_on_ride(self, driver_id: int, conn: Optional[Executor] = None) -> None:
        """Помечает водителя занятым."""
        await self._set(driver_id, DriverStatus.ON_RIDE, conn)

    async def release(self, driver_id: int, conn: Optional[Executor] = None) -> None:
        """Освобождает водителя."""
        await self._set(driver_id, DriverStatus.FREE, conn)

    async def list_available_drivers(self) -> list[User]:
        """Возвращает свободных водителей."""
        return await self._users.list_drivers(status=DriverStatus.FREE)

    async def sweep(self) -> SweepResult:
        """
        Сверяет статусы водителей с активными поездками.

        Returns:
            Список исправленных водителей
        """
        result = SweepResult(
            released=await self._repo.release_idle_drivers(),
            occupied=await self._repo.occupy_busy_drivers(),
        )
        if result.corrected:
            await log_warning(
                f"Сверка доступности исправила {result.corrected} водителей",
                extra={"released": result.released, "occupied": result.occupied},
            )
        else:
            await log_info("Сверка доступности: расхождений нет", type_msg=TypeMsg.DEBUG)
        return result

    async def _set(self, driver_id: int, status: DriverStatus, conn: Optional[Executor]) -> None:
        updated = await self._repo.set_status(driver_id, status, conn=conn)
        if not updated:
            raise ValidationError(f"Driver {driver_id} not found", code=ErrorCode.INVALID_DRIVER)
        await log_info(f"Водитель {driver_id} -> {status.value}", type_msg=TypeMsg.DEBUG)

    @staticmethod
    def _ensure_driver_row(row, driver_id: int) -> None:
        if row is None or row["role"] != UserRole.DRIVER.value or not row["is_active"]:
            raise ValidationError(
                f"User {driver_id} is not an active driver",
                code=ErrorCode.INVALID_DRIVER,
                details={"driver_id": driver_id},
            )

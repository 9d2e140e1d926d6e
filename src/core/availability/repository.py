# src/core/availability/repository.py
"""
Репозиторий статуса доступности водителей.
"""

from __future__ import annotations

from typing import Optional

from asyncpg import Record

from src.common.constants import ACTIVE_RIDE_STATUSES, DriverStatus, UserRole
from src.infra.database import DatabaseManager, Executor


def _active_statuses() -> list[str]:
    return [status.value for status in ACTIVE_RIDE_STATUSES]


class AvailabilityRepository:
    """Чтение и запись users.status."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def lock_user(self, user_id: int, conn: Optional[Executor] = None) -> Optional[Record]:
        """
        Читает пользователя с блокировкой строки до конца транзакции.

        Args:
            user_id: ID пользователя
            conn: Соединение транзакции (без него блокировка не держится)
        """
        executor = conn or self._db
        return await executor.fetchrow(
            "SELECT id, role, status, is_active FROM users WHERE id = $1 FOR UPDATE",
            user_id,
        )

    async def get_status(self, user_id: int) -> Optional[Record]:
        """Читает роль и статус пользователя без блокировки."""
        return await self._db.fetchrow(
            "SELECT id, role, status, is_active FROM users WHERE id = $1",
            user_id,
        )

    async def set_status(
        self,
        driver_id: int,
        status: DriverStatus,
        conn: Optional[Executor] = None,
    ) -> bool:
        """
        Устанавливает статус водителя.

        Returns:
            True если строка обновлена
        """
        executor = conn or self._db
        result = await executor.execute(
            "UPDATE users SET status = $2, updated_at = NOW() WHERE id = $1 AND role = $3",
            driver_id,
            status.value,
            UserRole.DRIVER.value,
        )
        return result.endswith(" 1")

    async def release_idle_drivers(self) -> list[int]:
        """Освобождает водителей on_ride без активной поездки."""
        rows = await self._db.fetch(
            """
            UPDATE users u SET status = 'free', updated_at = NOW()
            WHERE u.role = 'driver' AND u.status = 'on_ride'
              AND NOT EXISTS (
                  SELECT 1 FROM rides r
                  WHERE r.driver_id = u.id AND r.status = ANY($1::text[])
              )
            RETURNING u.id
            """,
            _active_statuses(),
        )
        return [row["id"] for row in rows]

    async def occupy_busy_drivers(self) -> list[int]:
        """Помечает on_ride свободных водителей, у которых есть активная поездка."""
        rows = await self._db.fetch(
            """
            UPDATE users u SET status = 'on_ride', updated_at = NOW()
            WHERE u.role = 'driver' AND u.status = 'free'
              AND EXISTS (
                  SELECT 1 FROM rides r
                  WHERE r.driver_id = u.id AND r.status = ANY($1::text[])
              )
            RETURNING u.id
            """,
            _active_statuses(),
        )
        return [row["id"] for row in rows]

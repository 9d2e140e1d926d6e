# src/core/shifts/repository.py
"""
Репозиторий для работы со сменами в БД.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from asyncpg import Record

from src.core.shifts.models import Shift
from src.infra.database import DatabaseManager, Executor


class ShiftRepository:
    """Репозиторий смен."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Инициализация репозитория.

        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def create(
        self,
        driver_id: int,
        taxi_number: str,
        start_meter: float,
        start_meter_photo: str,
    ) -> Shift:
        """
        Открывает смену.

        Raises:
            asyncpg.UniqueViolationError: У водителя уже есть активная смена
        """
        row = await self._db.fetchrow(
            """
            INSERT INTO shifts (id, driver_id, taxi_number, start_meter, start_meter_photo)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
            """,
            str(uuid4()),
            driver_id,
            taxi_number,
            start_meter,
            start_meter_photo,
        )
        return self._row_to_shift(row)

    async def get_by_id(self, shift_id: str) -> Optional[Shift]:
        row = await self._db.fetchrow("SELECT * FROM shifts WHERE id = $1", shift_id)
        return self._row_to_shift(row) if row else None

    async def get_active(self, driver_id: int, conn: Optional[Executor] = None) -> Optional[Shift]:
        """
        Получает активную смену водителя.

        Args:
            driver_id: ID водителя
            conn: Соединение транзакции

        Returns:
            Активная смена или None
        """
        executor = conn or self._db
        row = await executor.fetchrow(
            "SELECT * FROM shifts WHERE driver_id = $1 AND is_active",
            driver_id,
        )
        return self._row_to_shift(row) if row else None

    async def end_active(self, driver_id: int) -> Optional[Shift]:
        """
        Закрывает активную смену водителя (условный UPDATE).

        Returns:
            Закрытая смена или None, если активной смены не было
        """
        row = await self._db.fetchrow(
            """
            UPDATE shifts SET end_time = NOW(), is_active = FALSE, updated_at = NOW()
            WHERE driver_id = $1 AND is_active
            RETURNING *
            """,
            driver_id,
        )
        return self._row_to_shift(row) if row else None

    async def update_start_photo(self, shift_id: str, driver_id: int, photo: str) -> Optional[Shift]:
        """Обновляет фото счётчика активной смены водителя."""
        row = await self._db.fetchrow(
            """
            UPDATE shifts SET start_meter_photo = $3, updated_at = NOW()
            WHERE id = $1 AND driver_id = $2 AND is_active
            RETURNING *
            """,
            shift_id,
            driver_id,
            photo,
        )
        return self._row_to_shift(row) if row else None

    async def history(
        self,
        driver_id: Optional[int],
        limit: int,
        offset: int,
    ) -> tuple[list[Shift], int]:
        """
        Страница смен (новые первыми).

        Args:
            driver_id: Фильтр по водителю (None - все водители)
        """
        where, args = ("WHERE driver_id = $1", [driver_id]) if driver_id is not None else ("", [])
        total = await self._db.fetchval(f"SELECT COUNT(*) FROM shifts {where}", *args)
        rows = await self._db.fetch(
            f"""
            SELECT * FROM shifts {where}
            ORDER BY start_time DESC
            LIMIT ${len(args) + 1} OFFSET ${len(args) + 2}
            """,
            *args,
            limit,
            offset,
        )
        return [self._row_to_shift(row) for row in rows], int(total or 0)

    async def between(
        self,
        start: datetime,
        end: datetime,
        driver_id: Optional[int] = None,
    ) -> list[Shift]:
        """Смены, начатые в интервале [start, end), новые первыми."""
        if driver_id is None:
            rows = await self._db.fetch(
                """
                SELECT * FROM shifts
                WHERE start_time >= $1 AND start_time < $2
                ORDER BY start_time DESC
                """,
                start,
                end,
            )
        else:
            rows = await self._db.fetch(
                """
                SELECT * FROM shifts
                WHERE start_time >= $1 AND start_time < $2 AND driver_id = $3
                ORDER BY start_time DESC
                """,
                start,
                end,
                driver_id,
            )
        return [self._row_to_shift(row) for row in rows]

    @staticmethod
    def _row_to_shift(row: Record) -> Shift:
        return Shift.model_validate(dict(row))

# src/core/rides/repository.py
"""
Репозиторий для работы с поездками в БД.

Любая смена статуса выполняется условным UPDATE по ожидаемому статусу:
проигравший гонку получает None.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from asyncpg import Record

from src.common.constants import ACTIVE_RIDE_STATUSES, RideStatus
from src.common.utils import round2
from src.core.rides.models import Ride, RideFare, RideFilters
from src.infra.database import DatabaseManager, Executor

# Колонки, которые разрешено писать из сервисов
_WRITABLE_COLUMNS = frozenset({
    "ride_code", "booking_type", "is_quick_trip", "is_self_assigned",
    "client_ids", "driver_id", "assigned_by",
    "from_destination_id", "to_destination_id",
    "scheduled_time", "passengers",
    "fare_total", "fare_per_person", "fare_half", "fare_gst",
    "status", "notes", "driver_notes",
    "cancellation_reason", "cancellation_note",
    "abort_reason", "abort_note", "aborted_by",
    "shift_id",
    "accepted_at", "started_at", "dropped_at",
    "cancelled_at", "rejected_at", "aborted_at",
})


def fare_columns(fare: RideFare) -> dict[str, float]:
    """Разворачивает разбивку стоимости в колонки таблицы."""
    return {
        "fare_total": fare.total,
        "fare_per_person": fare.per_person,
        "fare_half": fare.half_fare,
        "fare_gst": fare.gst,
    }


def _statuses(statuses: Iterable[RideStatus]) -> list[str]:
    return [RideStatus(status).value for status in statuses]


class RideRepository:
    """Репозиторий поездок."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Инициализация репозитория.

        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def create(self, ride_id: str, data: dict[str, Any], conn: Optional[Executor] = None) -> Ride:
        """
        Создаёт поездку.

        Args:
            ride_id: UUID поездки
            data: Значения колонок
            conn: Соединение транзакции

        Returns:
            Созданная поездка
        """
        self._check_columns(data)
        columns = ["id", *data.keys()]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        executor = conn or self._db
        row = await executor.fetchrow(
            f"INSERT INTO rides ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
            ride_id,
            *data.values(),
        )
        return self._row_to_ride(row)

    async def transition(
        self,
        ride_id: str,
        expected: Iterable[RideStatus],
        new_status: RideStatus,
        fields: Optional[dict[str, Any]] = None,
        conn: Optional[Executor] = None,
    ) -> Optional[Ride]:
        """
        Атомарно меняет статус, если текущий статус входит в ожидаемые.

        Args:
            ride_id: UUID поездки
            expected: Допустимые текущие статусы
            new_status: Новый статус
            fields: Дополнительные колонки
            conn: Соединение транзакции

        Returns:
            Обновлённая поездка или None, если статус уже изменился
        """
        values = dict(fields or {})
        values["status"] = RideStatus(new_status).value
        return await self.update(ride_id, values, expected=expected, conn=conn)

    async def update(
        self,
        ride_id: str,
        fields: dict[str, Any],
        expected: Optional[Iterable[RideStatus]] = None,
        conn: Optional[Executor] = None,
    ) -> Optional[Ride]:
        """
        Обновляет колонки поездки, опционально при условии статуса.

        Returns:
            Обновлённая поездка или None
        """
        self._check_columns(fields)
        if not fields:
            return await self.get_by_id(ride_id, conn=conn)

        assignments = [f"{column} = ${i}" for i, column in enumerate(fields, start=2)]
        assignments.append("updated_at = NOW()")
        args: list[Any] = [ride_id, *fields.values()]

        query = f"UPDATE rides SET {', '.join(assignments)} WHERE id = $1"
        if expected is not None:
            args.append(_statuses(expected))
            query += f" AND status = ANY(${len(args)}::text[])"
        query += " RETURNING *"

        executor = conn or self._db
        row = await executor.fetchrow(query, *args)
        return self._row_to_ride(row) if row else None

    async def delete(self, ride_id: str, expected: Iterable[RideStatus]) -> bool:
        """Удаляет поездку при условии статуса."""
        result = await self._db.execute(
            "DELETE FROM rides WHERE id = $1 AND status = ANY($2::text[])",
            ride_id,
            _statuses(expected),
        )
        return result.endswith(" 1")

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_by_id(
        self,
        ride_id: str,
        conn: Optional[Executor] = None,
        for_update: bool = False,
    ) -> Optional[Ride]:
        """
        Получает поездку по ID.

        Args:
            ride_id: UUID поездки
            conn: Соединение транзакции
            for_update: Заблокировать строку до конца транзакции

        Returns:
            Поездка или None
        """
        executor = conn or self._db
        query = "SELECT * FROM rides WHERE id = $1" + (" FOR UPDATE" if for_update else "")
        row = await executor.fetchrow(query, ride_id)
        return self._row_to_ride(row) if row else None

    async def list_rides(self, filters: RideFilters, limit: int, offset: int) -> tuple[list[Ride], int]:
        """
        Возвращает страницу поездок и общее количество.

        Args:
            filters: Фильтры
            limit: Размер страницы
            offset: Смещение
        """
        conditions: list[str] = []
        args: list[Any] = []

        def add(condition: str, value: Any) -> None:
            args.append(value)
            conditions.append(condition.format(f"${len(args)}"))

        if filters.status is not None:
            add("status = {}", filters.status.value)
        if filters.driver_id is not None:
            add("driver_id = {}", filters.driver_id)
        if filters.booking_type is not None:
            add("booking_type = {}", filters.booking_type.value)
        if filters.is_quick_trip is not None:
            add("is_quick_trip = {}", filters.is_quick_trip)
        if filters.date_from is not None:
            add("scheduled_time >= {}", filters.date_from)
        if filters.date_to is not None:
            add("scheduled_time <= {}", filters.date_to)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        total = await self._db.fetchval(f"SELECT COUNT(*) FROM rides {where}", *args)
        rows = await self._db.fetch(
            f"""
            SELECT * FROM rides {where}
            ORDER BY scheduled_time DESC
            LIMIT ${len(args) + 1} OFFSET ${len(args) + 2}
            """,
            *args,
            limit,
            offset,
        )
        return [self._row_to_ride(row) for row in rows], int(total or 0)

    async def list_by_ids(self, ride_ids: Iterable[str]) -> list[Ride]:
        """Возвращает поездки по списку ID."""
        ids = list(ride_ids)
        if not ids:
            return []
        rows = await self._db.fetch(
            "SELECT * FROM rides WHERE id = ANY($1::text[]) ORDER BY scheduled_time",
            ids,
        )
        return [self._row_to_ride(row) for row in rows]

    async def completed_ids_by_shift(self, shift_id: str, conn: Optional[Executor] = None) -> list[str]:
        """ID завершённых поездок смены."""
        executor = conn or self._db
        rows = await executor.fetch(
            "SELECT id FROM rides WHERE shift_id = $1 AND status = $2 ORDER BY dropped_at",
            shift_id,
            RideStatus.COMPLETED.value,
        )
        return [row["id"] for row in rows]

    async def completed_stats(self, shift_id: str) -> dict[str, Any]:
        """
        Статистика завершённых поездок смены.

        Returns:
            {"completed_rides": int, "total_fare": float}
        """
        row = await self._db.fetchrow(
            """
            SELECT COUNT(*) AS completed_rides, COALESCE(SUM(fare_total), 0) AS total_fare
            FROM rides
            WHERE shift_id = $1 AND status = $2
            """,
            shift_id,
            RideStatus.COMPLETED.value,
        )
        return {
            "completed_rides": int(row["completed_rides"]) if row else 0,
            "total_fare": round2(row["total_fare"]) if row else 0.0,
        }

    async def active_for_driver(self, driver_id: int) -> list[Ride]:
        """Активные поездки водителя."""
        rows = await self._db.fetch(
            "SELECT * FROM rides WHERE driver_id = $1 AND status = ANY($2::text[])",
            driver_id,
            _statuses(ACTIVE_RIDE_STATUSES),
        )
        return [self._row_to_ride(row) for row in rows]

    @staticmethod
    def _check_columns(fields: dict[str, Any]) -> None:
        unknown = set(fields) - _WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Недопустимые колонки rides: {sorted(unknown)}")

    @staticmethod
    def _row_to_ride(row: Record) -> Ride:
        data = dict(row)
        data["client_ids"] = list(data.get("client_ids") or [])
        data["fare"] = RideFare(
            total=data.pop("fare_total", 0) or 0,
            per_person=data.pop("fare_per_person", 0) or 0,
            half_fare=data.pop("fare_half", 0) or 0,
            gst=data.pop("fare_gst", 0) or 0,
        )
        return Ride.model_validate(data)


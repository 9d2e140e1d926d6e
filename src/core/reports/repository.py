# src/core/reports/repository.py
"""
Репозиторий для работы с отчётами водителей в БД.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from asyncpg import Record

from src.common.constants import ReportStatus
from src.core.reports.models import DriverReport, MoneyEntry, ReportCalculations, ReportFilters
from src.infra.database import DatabaseManager, Executor

_WRITABLE_COLUMNS = frozenset({
    "report_code", "shift_id", "driver_id", "report_date", "taxi_number",
    "shift_start_amount", "shift_start_photo", "shift_end_amount", "shift_end_photo",
    "liftings", "cash_fares", "eftpos_amount", "eftpos_photo",
    "total_account_trips", "expenses_amount", "expenses_photo", "total_trips_count",
    "calculations", "status", "driver_notes", "submitted_at",
    "reviewed_by", "reviewed_at", "review_notes", "rejection_reason", "ride_ids",
})


def _encode(column: str, value: Any) -> Any:
    if column == "calculations":
        if isinstance(value, ReportCalculations):
            value = value.model_dump(mode="json")
        return json.dumps(value)
    if column == "status" and isinstance(value, ReportStatus):
        return value.value
    return value


def _placeholder(column: str, index: int) -> str:
    return f"${index}::jsonb" if column == "calculations" else f"${index}"


class DriverReportRepository:
    """Репозиторий отчётов водителей."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Инициализация репозитория.

        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def create(self, report_id: str, data: dict[str, Any], conn: Optional[Executor] = None) -> DriverReport:
        """
        Создаёт отчёт.

        Raises:
            asyncpg.UniqueViolationError: Отчёт по смене уже есть
        """
        self._check_columns(data)
        columns = ["id", *data.keys()]
        placeholders = ", ".join(_placeholder(column, i) for i, column in enumerate(columns, start=1))
        executor = conn or self._db
        row = await executor.fetchrow(
            f"INSERT INTO driver_reports ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
            report_id,
            *(_encode(column, value) for column, value in data.items()),
        )
        return self._row_to_report(row)

    async def get_by_id(self, report_id: str) -> Optional[DriverReport]:
        row = await self._db.fetchrow("SELECT * FROM driver_reports WHERE id = $1", report_id)
        return self._row_to_report(row) if row else None

    async def get_by_driver_shift(self, driver_id: int, shift_id: str) -> Optional[DriverReport]:
        row = await self._db.fetchrow(
            "SELECT * FROM driver_reports WHERE driver_id = $1 AND shift_id = $2",
            driver_id,
            shift_id,
        )
        return self._row_to_report(row) if row else None

    async def update(
        self,
        report_id: str,
        fields: dict[str, Any],
        expected: Iterable[ReportStatus],
    ) -> Optional[DriverReport]:
        """
        Обновляет отчёт, если его статус входит в ожидаемые.

        Returns:
            Обновлённый отчёт или None, если статус уже изменился
        """
        self._check_columns(fields)
        assignments = [
            f"{column} = {_placeholder(column, i)}" for i, column in enumerate(fields, start=2)
        ]
        assignments.append("updated_at = NOW()")
        args = [report_id, *(_encode(column, value) for column, value in fields.items())]
        args.append([ReportStatus(status).value for status in expected])

        row = await self._db.fetchrow(
            f"""
            UPDATE driver_reports SET {', '.join(assignments)}
            WHERE id = $1 AND status = ANY(${len(args)}::text[])
            RETURNING *
            """,
            *args,
        )
        return self._row_to_report(row) if row else None

    async def delete(self, report_id: str, expected: Iterable[ReportStatus]) -> bool:
        result = await self._db.execute(
            "DELETE FROM driver_reports WHERE id = $1 AND status = ANY($2::text[])",
            report_id,
            [ReportStatus(status).value for status in expected],
        )
        return result.endswith(" 1")

    async def list_reports(
        self,
        filters: ReportFilters,
        limit: int,
        offset: int,
    ) -> tuple[list[DriverReport], int]:
        """Страница отчётов (новые первыми) и общее количество."""
        conditions: list[str] = []
        args: list[Any] = []

        def add(condition: str, value: Any) -> None:
            args.append(value)
            conditions.append(condition.format(f"${len(args)}"))

        if filters.status is not None:
            add("status = {}", filters.status.value)
        if filters.driver_id is not None:
            add("driver_id = {}", filters.driver_id)
        if filters.date_from is not None:
            add("report_date >= {}", filters.date_from)
        if filters.date_to is not None:
            add("report_date <= {}", filters.date_to)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        total = await self._db.fetchval(f"SELECT COUNT(*) FROM driver_reports {where}", *args)
        rows = await self._db.fetch(
            f"""
            SELECT * FROM driver_reports {where}
            ORDER BY report_date DESC, created_at DESC
            LIMIT ${len(args) + 1} OFFSET ${len(args) + 2}
            """,
            *args,
            limit,
            offset,
        )
        return [self._row_to_report(row) for row in rows], int(total or 0)

    @staticmethod
    def _check_columns(fields: dict[str, Any]) -> None:
        unknown = set(fields) - _WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Недопустимые колонки driver_reports: {sorted(unknown)}")

    @staticmethod
    def _row_to_report(row: Record) -> DriverReport:
        data = dict(row)
        calculations = data.pop("calculations", None) or {}
        if isinstance(calculations, str):
            calculations = json.loads(calculations)

        return DriverReport(
            id=data["id"],
            report_code=data["report_code"],
            shift_id=data["shift_id"],
            driver_id=data["driver_id"],
            report_date=data["report_date"],
            taxi_number=data["taxi_number"],
            shift_start_total=MoneyEntry(amount=data.get("shift_start_amount"), photo=data.get("shift_start_photo")),
            shift_end_total=MoneyEntry(amount=data.get("shift_end_amount"), photo=data.get("shift_end_photo")),
            liftings=data.get("liftings") or 0.0,
            cash_fares=data.get("cash_fares") or 0.0,
            total_eftpos=MoneyEntry(amount=data.get("eftpos_amount"), photo=data.get("eftpos_photo")),
            total_account_trips=data.get("total_account_trips") or 0.0,
            cash_expenses=MoneyEntry(amount=data.get("expenses_amount"), photo=data.get("expenses_photo")),
            total_trips_count=data.get("total_trips_count") or 0,
            calculations=ReportCalculations.model_validate(calculations),
            status=ReportStatus(data["status"]),
            driver_notes=data.get("driver_notes"),
            submitted_at=data.get("submitted_at"),
            reviewed_by=data.get("reviewed_by"),
            reviewed_at=data.get("reviewed_at"),
            review_notes=data.get("review_notes"),
            rejection_reason=data.get("rejection_reason"),
            ride_ids=list(data.get("ride_ids") or []),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

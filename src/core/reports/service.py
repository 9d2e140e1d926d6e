# src/core/reports/service.py
"""
Сервис отчётов водителей.

Жизненный цикл: draft -> submitted -> approved | rejected.
Черновик считается в частичном режиме, отправка - полный пересчёт
и проверка формулы.
"""

from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel

from src.common.constants import NotificationType, PhotoType, ReportStatus, ReviewAction, TypeMsg, UserRole
from src.common.errors import (
    CalculationError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    StateError,
    ValidationError,
)
from src.common.logger import log_info
from src.common.utils import generate_report_code, is_finite_number, page_envelope, paginate, utcnow
from src.core.notifications.service import NotificationDispatcher
from src.core.reports.calculation import calculate_totals, realtime_preview, reconcile, validate_calculations
from src.core.reports.models import (
    CreateReportDTO,
    DriverReport,
    ReportFilters,
    ReportInputs,
    UpdateReportDTO,
)
from src.core.reports.repository import DriverReportRepository
from src.core.reports.settings import ReportSettings, ReportSettingsService
from src.core.rides.repository import RideRepository
from src.core.shifts.models import Shift
from src.core.shifts.repository import ShiftRepository
from src.core.users.models import Actor
from src.infra.database import unique_violation_as
from src.infra.event_bus import DomainEvent, EventBus, EventTypes
from src.infra.photo_storage import PhotoStorageClient

PHOTO_COLUMNS: dict[PhotoType, str] = {
    PhotoType.METER_START: "shift_start_photo",
    PhotoType.METER_END: "shift_end_photo",
    PhotoType.EFTPOS: "eftpos_photo",
    PhotoType.EXPENSE: "expenses_photo",
}

_NUMERIC_FIELDS = (
    "shift_start_amount", "shift_end_amount", "liftings", "cash_fares",
    "eftpos_amount", "total_account_trips", "expenses_amount",
)

# Колонки без NULL: явный null в патче означает "не менять"
_NOT_NULL_FIELDS = (
    "taxi_number", "report_date", "liftings", "cash_fares", "eftpos_amount",
    "total_account_trips", "expenses_amount", "total_trips_count",
)


class ReportDetails(BaseModel):
    """Отчёт со сверкой по поездкам."""

    report: DriverReport
    reconciliation: dict[str, Any]


def can_submit(report: DriverReport, settings: ReportSettings) -> tuple[bool, list[str]]:
    """
    Проверяет полноту отчёта перед отправкой.

    Returns:
        (готов ли отчёт, список недостающих данных)
    """
    missing: list[str] = []
    if not PhotoStorageClient.is_present(report.shift_start_total.photo):
        missing.append("Shift start meter photo")
    if not is_finite_number(report.shift_end_total.amount):
        missing.append("Shift end total amount")
    if not PhotoStorageClient.is_present(report.shift_end_total.photo):
        missing.append("Shift end meter photo")
    if (
        settings.require_photo_for_eftpos
        and (report.total_eftpos.amount or 0) > 0
        and not PhotoStorageClient.is_present(report.total_eftpos.photo)
    ):
        missing.append("EFTPOS receipt photo")
    if (
        settings.require_photo_for_expenses
        and (report.cash_expenses.amount or 0) > 0
        and not PhotoStorageClient.is_present(report.cash_expenses.photo)
    ):
        missing.append("Cash expenses receipt photo")
    if report.total_trips_count < 0:
        missing.append("Non-negative total trips count")
    return not missing, missing


def _report_exists() -> ConflictError:
    return ConflictError("Report already exists for this shift", code=ErrorCode.REPORT_EXISTS)


class DriverReportService:
    """Сервис отчётов водителей."""

    def __init__(
        self,
        reports: DriverReportRepository,
        shifts: ShiftRepository,
        rides: RideRepository,
        settings_service: ReportSettingsService,
        notifier: NotificationDispatcher,
        event_bus: EventBus,
        photos: Optional[PhotoStorageClient] = None,
    ) -> None:
        """
        Args:
            reports: Репозиторий отчётов
            shifts: Репозиторий смен
            rides: Репозиторий поездок (привязка и сверка)
            settings_service: Настройки отчётов
            notifier: Диспетчер уведомлений
            event_bus: Шина событий
            photos: Клиент хранилища фото
        """
        self._reports = reports
        self._shifts = shifts
        self._rides = rides
        self._settings = settings_service
        self._notifier = notifier
        self._event_bus = event_bus
        self._photos = photos or PhotoStorageClient()

    # =========================================================================
    # ЧЕРНОВИК
    # =========================================================================

    async def create_report(self, actor: Actor, dto: CreateReportDTO) -> DriverReport:
        """
        Создаёт черновик отчёта по смене водителя.

        Raises:
            ValidationError: INVALID_SHIFT
            StateError: NO_ACTIVE_SHIFT
            ConflictError: REPORT_EXISTS
        """
        if not actor.is_driver:
            raise ForbiddenError("Only drivers can create reports")
        self._check_numbers(dto.model_dump())

        shift = await self._resolve_shift(actor, dto.shift_id)
        if await self._reports.get_by_driver_shift(actor.id, shift.id) is not None:
            raise _report_exists()

        ride_ids = await self._rides.completed_ids_by_shift(shift.id)
        start_photo = shift.start_meter_photo if PhotoStorageClient.is_present(shift.start_meter_photo) else None
        data: dict[str, Any] = {
            "report_code": generate_report_code(),
            "shift_id": shift.id,
            "driver_id": actor.id,
            "report_date": dto.report_date or shift.start_time.date(),
            "taxi_number": (dto.taxi_number or shift.taxi_number).strip(),
            "shift_start_amount": dto.shift_start_amount if dto.shift_start_amount is not None else shift.start_meter,
            "shift_start_photo": start_photo,
            "shift_end_amount": dto.shift_end_amount,
            "liftings": dto.liftings,
            "cash_fares": dto.cash_fares,
            "eftpos_amount": dto.eftpos_amount,
            "total_account_trips": dto.total_account_trips,
            "expenses_amount": dto.expenses_amount,
            "total_trips_count": dto.total_trips_count if dto.total_trips_count is not None else len(ride_ids),
            "driver_notes": dto.driver_notes,
            "ride_ids": ride_ids,
            "status": ReportStatus.DRAFT.value,
        }
        data["calculations"] = calculate_totals(
            self._inputs_from_columns(data),
            await self._settings.calculation_settings(),
            allow_partial=True,
        )

        async with unique_violation_as(_report_exists):
            report = await self._reports.create(str(uuid4()), data)

        await log_info(f"Отчёт {report.report_code} создан водителем {actor.id}", type_msg=TypeMsg.INFO)
        await self._publish(EventTypes.REPORT_CREATED, report)
        return report

    async def update_report(self, report_id: str, patch: UpdateReportDTO, actor: Actor) -> DriverReport:
        """
        Изменяет черновик и пересчитывает итоги в частичном режиме.

        Raises:
            ForbiddenError: ACCESS_DENIED
            StateError: REPORT_NOT_EDITABLE
            CalculationError: Нарушены инварианты формулы
        """
        report = await self._own_report(report_id, actor)
        self._ensure_editable(report)

        fields = patch.model_dump(exclude_unset=True)
        self._check_numbers(fields)
        if fields.get("taxi_number") is not None:
            fields["taxi_number"] = fields["taxi_number"].strip()
            if not fields["taxi_number"]:
                raise ValidationError("Taxi number cannot be empty")
        for name in _NOT_NULL_FIELDS:
            if name in fields and fields[name] is None:
                del fields[name]

        merged = {**self._columns_of(report), **fields}
        calculations = calculate_totals(
            self._inputs_from_columns(merged),
            await self._settings.calculation_settings(),
            allow_partial=True,
        )
        if not calculations.partial:
            errors = validate_calculations(calculations, merged.get("total_trips_count") or 0)
            if errors:
                raise CalculationError("Report calculations are invalid", details={"errors": errors})
        fields["calculations"] = calculations

        updated = await self._reports.update(report.id, fields, expected=(ReportStatus.DRAFT,))
        if updated is None:
            raise StateError("Only draft reports can be edited", code=ErrorCode.REPORT_NOT_EDITABLE)
        return updated

    async def set_photo(
        self,
        report_id: str,
        photo_type: str,
        reference: str,
        actor: Actor,
    ) -> DriverReport:
        """
        Прикрепляет фото к черновику; заменённое фото удаляется из хранилища.

        Raises:
            ValidationError: INVALID_PHOTO_TYPE, некорректная ссылка
            StateError: REPORT_NOT_EDITABLE
        """
        try:
            kind = PhotoType(photo_type)
        except ValueError:
            raise ValidationError(
                "Invalid photo type",
                code=ErrorCode.INVALID_PHOTO_TYPE,
                details={"allowed": [item.value for item in PhotoType]},
            ) from None
        reference = self._photos.validate_reference(reference)

        report = await self._own_report(report_id, actor)
        self._ensure_editable(report)

        column = PHOTO_COLUMNS[kind]
        previous = self._columns_of(report)[column]
        updated = await self._reports.update(report.id, {column: reference}, expected=(ReportStatus.DRAFT,))
        if updated is None:
            raise StateError("Only draft reports can be edited", code=ErrorCode.REPORT_NOT_EDITABLE)

        if previous and previous != reference:
            await self._photos.delete(previous)
        return updated

    # =========================================================================
    # ОТПРАВКА И ПРОВЕРКА
    # =========================================================================

    async def submit_report(self, report_id: str, actor: Actor) -> DriverReport:
        """
        Отправляет отчёт на проверку.

        Raises:
            StateError: REPORT_NOT_EDITABLE, REPORT_INCOMPLETE
            CalculationError: Полный расчёт невозможен или нарушает инварианты
        """
        report = await self._own_report(report_id, actor)
        self._ensure_editable(report)

        settings = await self._settings.get_settings()
        ready, missing = can_submit(report, settings)
        if not ready:
            raise StateError(
                "Report is incomplete",
                code=ErrorCode.REPORT_INCOMPLETE,
                details={"missing": missing},
            )

        calculations = calculate_totals(report.to_inputs(), settings.calculation())
        errors = validate_calculations(calculations, report.total_trips_count)
        if errors:
            raise CalculationError("Report calculations are invalid", details={"errors": errors})

        updated = await self._reports.update(report.id, {
            "status": ReportStatus.SUBMITTED,
            "submitted_at": utcnow(),
            "calculations": calculations,
            "ride_ids": await self._rides.completed_ids_by_shift(report.shift_id),
        }, expected=(ReportStatus.DRAFT,))
        if updated is None:
            raise StateError("Only draft reports can be submitted", code=ErrorCode.REPORT_NOT_EDITABLE)

        await log_info(f"Отчёт {updated.report_code} отправлен водителем {actor.id}", type_msg=TypeMsg.INFO)

        if settings.notify_admins_on_submission:
            await self._notifier.notify_staff(
                NotificationType.REPORT_SUBMITTED,
                entity_id=updated.id,
                message=f"Driver {actor.id} submitted report {updated.report_code}",
                status=ReportStatus.SUBMITTED.value,
                data={"report_id": updated.id, "report_code": updated.report_code, "driver_id": actor.id},
            )
        await self._publish(EventTypes.REPORT_SUBMITTED, updated)
        return updated

    async def review_report(
        self,
        report_id: str,
        action: str,
        notes: Optional[str],
        rejection_reason: Optional[str],
        actor: Actor,
    ) -> DriverReport:
        """
        Одобряет или отклоняет отправленный отчёт.

        Raises:
            ForbiddenError: Актор не админ и не менеджер
            ValidationError: INVALID_ACTION, нет причины отклонения
            StateError: INVALID_STATUS
        """
        if not actor.is_staff:
            raise ForbiddenError("Only admins and managers can review reports")
        try:
            review_action = ReviewAction(action)
        except ValueError:
            raise ValidationError("Action must be 'approve' or 'reject'", code=ErrorCode.INVALID_ACTION) from None
        if review_action == ReviewAction.REJECT and not (rejection_reason or "").strip():
            raise ValidationError("Rejection reason is required")

        report = await self._get_report(report_id)
        if report.status != ReportStatus.SUBMITTED:
            raise StateError("Only submitted reports can be reviewed", code=ErrorCode.INVALID_STATUS)

        status = ReportStatus.APPROVED if review_action == ReviewAction.APPROVE else ReportStatus.REJECTED
        updated = await self._reports.update(report.id, {
            "status": status,
            "reviewed_by": actor.id,
            "reviewed_at": utcnow(),
            "review_notes": notes,
            "rejection_reason": rejection_reason if status == ReportStatus.REJECTED else None,
        }, expected=(ReportStatus.SUBMITTED,))
        if updated is None:
            raise StateError("Only submitted reports can be reviewed", code=ErrorCode.INVALID_STATUS)

        await log_info(f"Отчёт {updated.report_code} -> {status.value} ({actor.id})", type_msg=TypeMsg.INFO)

        await self._notifier.notify_user(
            updated.driver_id,
            NotificationType.REPORT_REVIEWED,
            entity_id=updated.id,
            message=f"Your report {updated.report_code} was {status.value}",
            status=status.value,
            data={"report_id": updated.id, "status": status.value, "rejection_reason": updated.rejection_reason},
        )
        await self._publish(EventTypes.REPORT_REVIEWED, updated, reviewed_by=actor.id)
        return updated

    async def delete_report(self, report_id: str, actor: Actor) -> None:
        """
        Удаляет черновик; фото удаляются без гарантии.

        Raises:
            StateError: REPORT_NOT_DELETABLE
        """
        report = await self._get_report(report_id)
        self._ensure_access(report, actor)
        if report.status != ReportStatus.DRAFT:
            raise StateError("Only draft reports can be deleted", code=ErrorCode.REPORT_NOT_DELETABLE)

        if not await self._reports.delete(report.id, expected=(ReportStatus.DRAFT,)):
            raise StateError("Only draft reports can be deleted", code=ErrorCode.REPORT_NOT_DELETABLE)

        for photo in report.photos():
            await self._photos.delete(photo)
        await log_info(f"Отчёт {report.report_code} удалён ({actor.id})", type_msg=TypeMsg.INFO)

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_report(self, report_id: str, actor: Actor) -> ReportDetails:
        """Отчёт со сверкой по связанным поездкам."""
        report = await self._get_report(report_id)
        self._ensure_access(report, actor)
        rides = await self._rides.list_by_ids(report.ride_ids)
        return ReportDetails(report=report, reconciliation=reconcile(report.to_inputs(), rides))

    async def list_reports(
        self,
        filters: Optional[ReportFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        page, limit, offset = paginate(page, limit)
        items, total = await self._reports.list_reports(filters or ReportFilters(), limit, offset)
        return page_envelope(items, total, page, limit)

    async def my_reports(self, actor: Actor, page: int = 1, limit: int = 20) -> dict[str, Any]:
        return await self.list_reports(ReportFilters(driver_id=actor.id), page, limit)

    async def pending_reports(self, page: int = 1, limit: int = 20) -> dict[str, Any]:
        """Отчёты, ожидающие проверки."""
        return await self.list_reports(ReportFilters(status=ReportStatus.SUBMITTED), page, limit)

    async def preview(self, inputs: ReportInputs) -> dict[str, float]:
        """Живой предпросмотр итогов по текущим ставкам."""
        return realtime_preview(inputs, await self._settings.calculation_settings())

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    async def _resolve_shift(self, actor: Actor, shift_id: Optional[str]) -> Shift:
        if shift_id:
            shift = await self._shifts.get_by_id(shift_id)
            if shift is None or shift.driver_id != actor.id:
                raise ValidationError("Shift not found for this driver", code=ErrorCode.INVALID_SHIFT)
            return shift

        shift = await self._shifts.get_active(actor.id)
        if shift is None:
            raise StateError("No active shift", code=ErrorCode.NO_ACTIVE_SHIFT)
        return shift

    async def _get_report(self, report_id: str) -> DriverReport:
        report = await self._reports.get_by_id(report_id)
        if report is None:
            raise NotFoundError("Report", code=ErrorCode.REPORT_NOT_FOUND)
        return report

    async def _own_report(self, report_id: str, actor: Actor) -> DriverReport:
        report = await self._get_report(report_id)
        if report.driver_id != actor.id:
            raise ForbiddenError("Report belongs to another driver", code=ErrorCode.ACCESS_DENIED)
        return report

    async def _publish(self, event_type: str, report: DriverReport, **extra: Any) -> None:
        await self._event_bus.publish(DomainEvent(
            event_type=event_type,
            payload={
                "report_id": report.id,
                "report_code": report.report_code,
                "driver_id": report.driver_id,
                "shift_id": report.shift_id,
                "status": report.status.value,
                **extra,
            },
        ))

    @staticmethod
    def _ensure_access(report: DriverReport, actor: Actor) -> None:
        if actor.role == UserRole.DRIVER and report.driver_id != actor.id:
            raise ForbiddenError("Report belongs to another driver", code=ErrorCode.ACCESS_DENIED)

    @staticmethod
    def _ensure_editable(report: DriverReport) -> None:
        if report.status != ReportStatus.DRAFT:
            raise StateError(
                f"Report is '{report.status.value}', only drafts can be changed",
                code=ErrorCode.REPORT_NOT_EDITABLE,
            )

    @staticmethod
    def _check_numbers(values: dict[str, Any]) -> None:
        present = {
            name: values[name] for name in (*_NUMERIC_FIELDS, "total_trips_count")
            if values.get(name) is not None
        }
        invalid = [name for name, value in present.items() if not is_finite_number(value)]
        if invalid:
            raise ValidationError("Amounts must be finite numbers", details={"fields": invalid})
        negative = [name for name, value in present.items() if value < 0]
        if negative:
            raise ValidationError("Amounts and trip count cannot be negative", details={"fields": negative})

    @staticmethod
    def _columns_of(report: DriverReport) -> dict[str, Any]:
        return {
            "shift_start_amount": report.shift_start_total.amount,
            "shift_start_photo": report.shift_start_total.photo,
            "shift_end_amount": report.shift_end_total.amount,
            "shift_end_photo": report.shift_end_total.photo,
            "liftings": report.liftings,
            "cash_fares": report.cash_fares,
            "eftpos_amount": report.total_eftpos.amount,
            "eftpos_photo": report.total_eftpos.photo,
            "total_account_trips": report.total_account_trips,
            "expenses_amount": report.cash_expenses.amount,
            "expenses_photo": report.cash_expenses.photo,
            "total_trips_count": report.total_trips_count,
        }

    @staticmethod
    def _inputs_from_columns(values: dict[str, Any]) -> ReportInputs:
        return ReportInputs(
            shift_start_total=values.get("shift_start_amount"),
            shift_end_total=values.get("shift_end_amount"),
            liftings=values.get("liftings") or 0.0,
            cash_fares=values.get("cash_fares") or 0.0,
            total_eftpos=values.get("eftpos_amount") or 0.0,
            total_account_trips=values.get("total_account_trips") or 0.0,
            cash_expenses=values.get("expenses_amount") or 0.0,
            total_trips_count=values.get("total_trips_count") or 0,
        )

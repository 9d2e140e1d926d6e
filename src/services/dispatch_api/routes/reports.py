# src/services/dispatch_api/routes/reports.py
"""
Роуты отчётов водителей и настроек отчётов.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel

from src.common.constants import ReportStatus, UserRole
from src.core.reports.models import (
    CreateReportDTO,
    DriverReport,
    ReportFilters,
    ReportInputs,
    ReviewReportDTO,
    UpdateReportDTO,
)
from src.core.reports.service import DriverReportService, ReportDetails
from src.core.reports.settings import ReportSettings, ReportSettingsService
from src.core.users.models import Actor
from src.services.dispatch_api.dependencies import (
    get_actor,
    get_report_service,
    get_report_settings_service,
    require_driver,
    require_roles,
    require_staff,
)

router = APIRouter(prefix="/reports", tags=["Driver reports"])
settings_router = APIRouter(prefix="/settings/reports", tags=["Report settings"])

require_admin = require_roles(UserRole.ADMIN)


class PhotoRequest(BaseModel):
    photo_type: str
    reference: str


# =============================================================================
# ВОДИТЕЛЬ
# =============================================================================

@router.post("", response_model=DriverReport, status_code=status.HTTP_201_CREATED)
async def create_report(
    request: CreateReportDTO,
    actor: Actor = Depends(require_driver),
    service: DriverReportService = Depends(get_report_service),
):
    return await service.create_report(actor, request)


@router.get("/my", response_model=dict)
async def my_reports(
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(require_driver),
    service: DriverReportService = Depends(get_report_service),
) -> dict[str, Any]:
    return await service.my_reports(actor, page, limit)


@router.post("/preview", response_model=dict)
async def preview_report(
    request: ReportInputs,
    actor: Actor = Depends(get_actor),
    service: DriverReportService = Depends(get_report_service),
) -> dict[str, float]:
    return await service.preview(request)


@router.patch("/{report_id}", response_model=DriverReport)
async def update_report(
    report_id: str,
    request: UpdateReportDTO,
    actor: Actor = Depends(require_driver),
    service: DriverReportService = Depends(get_report_service),
):
    return await service.update_report(report_id, request, actor)


@router.put("/{report_id}/photo", response_model=DriverReport)
async def set_report_photo(
    report_id: str,
    request: PhotoRequest,
    actor: Actor = Depends(require_driver),
    service: DriverReportService = Depends(get_report_service),
):
    return await service.set_photo(report_id, request.photo_type, request.reference, actor)


@router.post("/{report_id}/submit", response_model=DriverReport)
async def submit_report(
    report_id: str,
    actor: Actor = Depends(require_driver),
    service: DriverReportService = Depends(get_report_service),
):
    return await service.submit_report(report_id, actor)


@router.delete("/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_report(
    report_id: str,
    actor: Actor = Depends(get_actor),
    service: DriverReportService = Depends(get_report_service),
) -> None:
    await service.delete_report(report_id, actor)


# =============================================================================
# ПРОВЕРКА
# =============================================================================

@router.get("", response_model=dict)
async def list_reports(
    status_: Optional[ReportStatus] = Query(None, alias="status"),
    driver_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(require_staff),
    service: DriverReportService = Depends(get_report_service),
) -> dict[str, Any]:
    filters = ReportFilters(status=status_, driver_id=driver_id, date_from=date_from, date_to=date_to)
    return await service.list_reports(filters, page, limit)


@router.get("/pending", response_model=dict)
async def pending_reports(
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(require_staff),
    service: DriverReportService = Depends(get_report_service),
) -> dict[str, Any]:
    return await service.pending_reports(page, limit)


@router.get("/{report_id}", response_model=ReportDetails)
async def get_report(
    report_id: str,
    actor: Actor = Depends(get_actor),
    service: DriverReportService = Depends(get_report_service),
):
    return await service.get_report(report_id, actor)


@router.post("/{report_id}/review", response_model=DriverReport)
async def review_report(
    report_id: str,
    request: ReviewReportDTO,
    actor: Actor = Depends(require_staff),
    service: DriverReportService = Depends(get_report_service),
):
    return await service.review_report(
        report_id, request.action, request.notes, request.rejection_reason, actor,
    )


# =============================================================================
# НАСТРОЙКИ
# =============================================================================

@settings_router.get("", response_model=ReportSettings)
async def get_report_settings(
    actor: Actor = Depends(get_actor),
    service: ReportSettingsService = Depends(get_report_settings_service),
):
    return await service.get_settings()


@settings_router.patch("", response_model=ReportSettings)
async def update_report_settings(
    patch: dict[str, Any] = Body(...),
    actor: Actor = Depends(require_admin),
    service: ReportSettingsService = Depends(get_report_settings_service),
):
    return await service.update_settings(patch, actor)


@settings_router.post("/reset", response_model=ReportSettings)
async def reset_report_settings(
    actor: Actor = Depends(require_admin),
    service: ReportSettingsService = Depends(get_report_settings_service),
):
    return await service.reset_to_defaults(actor)

# src/services/dispatch_api/routes/shifts.py
"""
Роуты смен водителей.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from src.core.shifts.models import CurrentShift, Shift, ShiftRideStats, ShiftSummary, StartShiftDTO
from src.core.shifts.service import ShiftService
from src.core.users.models import Actor
from src.services.dispatch_api.dependencies import get_actor, get_shift_service, require_driver, require_staff

router = APIRouter(prefix="/shifts", tags=["Shifts"])


class PhotoRequest(BaseModel):
    photo: str


@router.post("/start", response_model=Shift, status_code=status.HTTP_201_CREATED)
async def start_shift(
    request: StartShiftDTO,
    actor: Actor = Depends(require_driver),
    service: ShiftService = Depends(get_shift_service),
):
    return await service.start_shift(actor, request)


@router.post("/end", response_model=ShiftSummary)
async def end_shift(
    actor: Actor = Depends(require_driver),
    service: ShiftService = Depends(get_shift_service),
):
    return await service.end_shift(actor)


@router.get("/current", response_model=Optional[CurrentShift])
async def get_current_shift(
    actor: Actor = Depends(require_driver),
    service: ShiftService = Depends(get_shift_service),
):
    return await service.get_current(actor)


@router.get("/history", response_model=dict)
async def shift_history(
    driver_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(get_actor),
    service: ShiftService = Depends(get_shift_service),
) -> dict[str, Any]:
    return await service.history(actor, driver_id, page, limit)


@router.get("/timeline", response_model=list[Shift])
async def shift_timeline(
    driver_id: Optional[int] = None,
    day: Optional[date] = None,
    actor: Actor = Depends(require_staff),
    service: ShiftService = Depends(get_shift_service),
):
    return await service.timeline(driver_id, day)


@router.put("/{shift_id}/photo", response_model=Shift)
async def update_start_photo(
    shift_id: str,
    request: PhotoRequest,
    actor: Actor = Depends(require_driver),
    service: ShiftService = Depends(get_shift_service),
):
    return await service.update_start_photo(shift_id, request.photo, actor)


@router.get("/{shift_id}/stats", response_model=ShiftRideStats)
async def shift_ride_stats(
    shift_id: str,
    actor: Actor = Depends(require_staff),
    service: ShiftService = Depends(get_shift_service),
):
    return await service.ride_stats(shift_id)

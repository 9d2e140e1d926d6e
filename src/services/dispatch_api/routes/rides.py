# src/services/dispatch_api/routes/rides.py
"""
Роуты поездок: сторона диспетчера и сторона водителя.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from src.common.constants import BookingType, RideStatus
from src.core.rides.lifecycle import RideLifecycleService
from src.core.rides.models import (
    AssignRideDTO,
    CompleteQuickTripDTO,
    CompleteRideDTO,
    QuickTripDTO,
    Ride,
    RideFilters,
    ScheduledBookingDTO,
    SelfAssignedRideDTO,
    UpdateDestinationsDTO,
    UpdateScheduledBookingDTO,
)
from src.core.rides.service import RideDispatchService
from src.core.users.models import Actor, User
from src.services.dispatch_api.dependencies import (
    get_actor,
    get_dispatch_service,
    get_lifecycle_service,
    require_driver,
    require_staff,
)

router = APIRouter(prefix="/rides", tags=["Rides"])
driver_router = APIRouter(prefix="/driver/rides", tags=["Driver rides"])


class DriverRequest(BaseModel):
    driver_id: int


class ReasonRequest(BaseModel):
    reason: Optional[str] = None
    note: Optional[str] = None


def ride_filters(
    status_: Optional[RideStatus] = Query(None, alias="status"),
    driver_id: Optional[int] = None,
    booking_type: Optional[BookingType] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    is_quick_trip: Optional[bool] = None,
) -> RideFilters:
    return RideFilters(
        status=status_,
        driver_id=driver_id,
        booking_type=booking_type,
        date_from=date_from,
        date_to=date_to,
        is_quick_trip=is_quick_trip,
    )


# =============================================================================
# ДИСПЕТЧЕР
# =============================================================================

@router.post("", response_model=Ride, status_code=status.HTTP_201_CREATED)
async def assign_ride(
    request: AssignRideDTO,
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
):
    return await service.assign_ride(request, actor)


@router.get("", response_model=dict)
async def list_rides(
    filters: RideFilters = Depends(ride_filters),
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
) -> dict[str, Any]:
    return await service.list_rides(filters, page, limit)


@router.get("/drivers/available", response_model=list[User])
async def list_available_drivers(
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
):
    return await service.list_available_drivers()


@router.post("/scheduled", response_model=Ride, status_code=status.HTTP_201_CREATED)
async def create_scheduled_booking(
    request: ScheduledBookingDTO,
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
):
    return await service.create_scheduled_booking(request, actor)


@router.patch("/scheduled/{ride_id}", response_model=Ride)
async def update_scheduled_booking(
    ride_id: str,
    request: UpdateScheduledBookingDTO,
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
):
    return await service.update_scheduled_booking(ride_id, request, actor)


@router.delete("/scheduled/{ride_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_scheduled_booking(
    ride_id: str,
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
) -> None:
    await service.delete_scheduled_booking(ride_id, actor)


@router.post("/scheduled/{ride_id}/assign", response_model=Ride)
async def assign_scheduled_booking(
    ride_id: str,
    request: DriverRequest,
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
):
    return await service.assign_scheduled_booking(ride_id, request.driver_id, actor)


@router.post("/quick-trips", response_model=Ride, status_code=status.HTTP_201_CREATED)
async def create_quick_trip(
    request: QuickTripDTO,
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
):
    return await service.create_quick_trip(request, actor)


@router.get("/{ride_id}", response_model=Ride)
async def get_ride(
    ride_id: str,
    actor: Actor = Depends(get_actor),
    service: RideDispatchService = Depends(get_dispatch_service),
):
    return await service.get_ride(ride_id, actor)


@router.post("/{ride_id}/reassign", response_model=Ride)
async def reassign_ride(
    ride_id: str,
    request: DriverRequest,
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
):
    return await service.reassign_ride(ride_id, request.driver_id, actor)


@router.post("/{ride_id}/abort", response_model=Ride)
async def abort_ride(
    ride_id: str,
    request: ReasonRequest,
    actor: Actor = Depends(require_staff),
    service: RideDispatchService = Depends(get_dispatch_service),
):
    return await service.abort_ride(ride_id, request.reason, request.note, actor)


# =============================================================================
# ВОДИТЕЛЬ
# =============================================================================

@driver_router.get("", response_model=dict)
async def my_rides(
    filters: RideFilters = Depends(ride_filters),
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(require_driver),
    service: RideLifecycleService = Depends(get_lifecycle_service),
) -> dict[str, Any]:
    return await service.my_rides(actor, filters, page, limit)


@driver_router.post("", response_model=Ride, status_code=status.HTTP_201_CREATED)
async def create_self_assigned(
    request: SelfAssignedRideDTO,
    actor: Actor = Depends(require_driver),
    service: RideLifecycleService = Depends(get_lifecycle_service),
):
    return await service.create_self_assigned(request, actor)


@driver_router.post("/{ride_id}/accept", response_model=Ride)
async def accept_ride(
    ride_id: str,
    actor: Actor = Depends(require_driver),
    service: RideLifecycleService = Depends(get_lifecycle_service),
):
    return await service.accept(ride_id, actor)


@driver_router.post("/{ride_id}/reject", response_model=Ride)
async def reject_ride(
    ride_id: str,
    actor: Actor = Depends(require_driver),
    service: RideLifecycleService = Depends(get_lifecycle_service),
):
    return await service.reject(ride_id, actor)


@driver_router.post("/{ride_id}/cancel", response_model=Ride)
async def cancel_ride(
    ride_id: str,
    request: ReasonRequest,
    actor: Actor = Depends(require_driver),
    service: RideLifecycleService = Depends(get_lifecycle_service),
):
    return await service.cancel(ride_id, request.reason, request.note, actor)


@driver_router.post("/{ride_id}/start", response_model=Ride)
async def start_ride(
    ride_id: str,
    actor: Actor = Depends(require_driver),
    service: RideLifecycleService = Depends(get_lifecycle_service),
):
    return await service.start(ride_id, actor)


@driver_router.post("/{ride_id}/complete", response_model=Ride)
async def complete_ride(
    ride_id: str,
    request: CompleteRideDTO,
    actor: Actor = Depends(require_driver),
    service: RideLifecycleService = Depends(get_lifecycle_service),
):
    return await service.complete(ride_id, request, actor)


@driver_router.patch("/{ride_id}/destinations", response_model=Ride)
async def update_destinations(
    ride_id: str,
    request: UpdateDestinationsDTO,
    actor: Actor = Depends(require_driver),
    service: RideLifecycleService = Depends(get_lifecycle_service),
):
    return await service.update_destinations(ride_id, request, actor)


@driver_router.post("/{ride_id}/quick-trip/complete", response_model=Ride)
async def complete_quick_trip(
    ride_id: str,
    request: CompleteQuickTripDTO,
    actor: Actor = Depends(require_driver),
    service: RideLifecycleService = Depends(get_lifecycle_service),
):
    return await service.complete_quick_trip(ride_id, request, actor)

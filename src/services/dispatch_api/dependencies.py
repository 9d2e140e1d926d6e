# src/services/dispatch_api/dependencies.py
"""
Dependency Injection для HTTP API.

Идентичность берётся из заголовков X-User-Id / X-User-Role,
которые выставляет внешний провайдер аутентификации.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header

from src.common.constants import UserRole
from src.common.errors import ForbiddenError, ValidationError
from src.config import settings
from src.core.availability import DriverAvailabilityTracker
from src.core.directory.repository import ClientRepository, DestinationRepository
from src.core.notifications.repository import NotificationRepository
from src.core.notifications.service import NotificationDispatcher
from src.core.reports.repository import DriverReportRepository
from src.core.reports.service import DriverReportService
from src.core.reports.settings import ReportSettingsService, SettingsRepository
from src.core.rides.lifecycle import RideLifecycleService
from src.core.rides.repository import RideRepository
from src.core.rides.service import RideDispatchService
from src.core.shifts.repository import ShiftRepository
from src.core.shifts.service import ShiftService
from src.core.users.models import Actor
from src.core.users.repository import UserRepository
from src.infra.database import get_db
from src.infra.event_bus import get_event_bus
from src.infra.photo_storage import PhotoStorageClient
from src.infra.redis_client import get_redis
from src.services.realtime_ws import PushHub

# Синглтон push-хаба (создаётся в lifespan)
_push_hub: Optional[PushHub] = None


# =============================================================================
# ИДЕНТИЧНОСТЬ
# =============================================================================

def parse_actor(user_id: int, role: str) -> Actor:
    """
    Собирает Actor из значений заголовков.

    Raises:
        ValidationError: Неизвестная роль
    """
    try:
        return Actor(id=user_id, role=UserRole(role.lower()))
    except ValueError:
        raise ValidationError(
            "Unknown user role",
            details={"allowed": [item.value for item in UserRole]},
        ) from None


async def get_actor(
    x_user_id: int = Header(..., alias="X-User-Id"),
    x_user_role: str = Header(..., alias="X-User-Role"),
) -> Actor:
    return parse_actor(x_user_id, x_user_role)


def require_roles(*roles: UserRole) -> Callable:
    """Зависимость: актор должен иметь одну из ролей."""

    async def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise ForbiddenError("Insufficient role for this operation")
        return actor

    return dependency


require_staff = require_roles(UserRole.ADMIN, UserRole.MANAGER)
require_driver = require_roles(UserRole.DRIVER)


# =============================================================================
# СЕРВИСЫ
# =============================================================================

def get_notifier() -> NotificationDispatcher:
    db = get_db()
    return NotificationDispatcher(
        NotificationRepository(db),
        UserRepository(db),
        get_redis(),
        channel_prefix=settings.dispatch.NOTIFICATION_CHANNEL_PREFIX,
    )


def get_report_settings_service() -> ReportSettingsService:
    return ReportSettingsService(
        SettingsRepository(get_db()),
        get_redis(),
        cache_ttl=settings.redis_ttl.REPORT_SETTINGS_TTL,
    )


def get_dispatch_service() -> RideDispatchService:
    db = get_db()
    return RideDispatchService(
        db,
        RideRepository(db),
        ClientRepository(db),
        DestinationRepository(db),
        DriverAvailabilityTracker(db),
        get_notifier(),
        get_event_bus(),
    )


def get_lifecycle_service() -> RideLifecycleService:
    db = get_db()
    return RideLifecycleService(
        db,
        RideRepository(db),
        ClientRepository(db),
        DestinationRepository(db),
        DriverAvailabilityTracker(db),
        get_notifier(),
        get_event_bus(),
        shifts=ShiftRepository(db),
        report_settings=get_report_settings_service(),
    )


def get_shift_service() -> ShiftService:
    db = get_db()
    return ShiftService(
        ShiftRepository(db),
        RideRepository(db),
        get_notifier(),
        get_event_bus(),
        photos=PhotoStorageClient.from_settings(),
    )


def get_report_service() -> DriverReportService:
    db = get_db()
    return DriverReportService(
        DriverReportRepository(db),
        ShiftRepository(db),
        RideRepository(db),
        get_report_settings_service(),
        get_notifier(),
        get_event_bus(),
        photos=PhotoStorageClient.from_settings(),
    )


# =============================================================================
# PUSH-ХАБ
# =============================================================================

def set_push_hub(hub: Optional[PushHub]) -> None:
    global _push_hub
    _push_hub = hub


def get_push_hub() -> PushHub:
    """Получить push-хаб."""
    if _push_hub is None:
        raise RuntimeError("PushHub не инициализирован. Запустите приложение через lifespan")
    return _push_hub

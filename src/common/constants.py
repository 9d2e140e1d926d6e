# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    ADMIN = "admin"
    MANAGER = "manager"
    DRIVER = "driver"


class DriverStatus(str, Enum):
    """Доступность водителя."""
    FREE = "free"
    ON_RIDE = "on_ride"
    DROPPED = "dropped"


class RideStatus(str, Enum):
    """Статусы поездки."""
    SCHEDULED = "scheduled"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    STARTED = "started"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    ABORTED = "aborted"
    COMPLETED = "completed"


# Статусы, в которых водитель занят поездкой
ACTIVE_RIDE_STATUSES: tuple[RideStatus, ...] = (
    RideStatus.ASSIGNED,
    RideStatus.ACCEPTED,
    RideStatus.STARTED,
)


class BookingType(str, Enum):
    """Тип бронирования."""
    SCHEDULED = "scheduled"
    IMMEDIATE = "immediate"


class CancellationReason(str, Enum):
    """Причины отмены поездки водителем."""
    VEHICLE_BREAKDOWN = "vehicle_breakdown"
    EMERGENCY = "emergency"
    TRAFFIC_JAM = "traffic_jam"
    CLIENT_NO_SHOW = "client_no_show"
    CLIENT_CANCELLED = "client_cancelled"
    ROUTE_BLOCKED = "route_blocked"
    PERSONAL_EMERGENCY = "personal_emergency"
    OTHER = "other"


class AbortReason(str, Enum):
    """Причины прерывания поездки менеджером."""
    CLIENT_REQUEST = "client_request"
    VEHICLE_UNAVAILABLE = "vehicle_unavailable"
    DRIVER_UNAVAILABLE = "driver_unavailable"
    WEATHER_CONDITIONS = "weather_conditions"
    ROUTE_ISSUES = "route_issues"
    SCHEDULING_CONFLICT = "scheduling_conflict"
    CLIENT_NO_SHOW = "client_no_show"
    OTHER = "other"


class ReportStatus(str, Enum):
    """Статусы отчёта водителя."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class ReviewAction(str, Enum):
    """Действия проверки отчёта."""
    APPROVE = "approve"
    REJECT = "reject"


class PhotoType(str, Enum):
    """Типы фото в отчёте."""
    METER_START = "meter_start"
    METER_END = "meter_end"
    EFTPOS = "eftpos"
    EXPENSE = "expense"


class NotificationType(str, Enum):
    """Типы уведомлений."""
    RIDE_ASSIGNED = "ride_assigned"
    RIDE_REASSIGNED = "ride_reassigned"
    RIDE_STATUS = "ride_status"
    QUICK_TRIP_ASSIGNED = "quick_trip_assigned"
    QUICK_TRIP_CREATED = "quick_trip_created"
    SELF_ASSIGNED_RIDE = "self_assigned_ride"
    RIDE_ACCEPTED = "ride_accepted"
    RIDE_REJECTED = "ride_rejected"
    RIDE_STARTED = "ride_started"
    RIDE_COMPLETED = "ride_completed"
    RIDE_CANCELLED = "ride_cancelled"
    RIDE_ABORTED = "ride_aborted"
    RIDE_DESTINATION_UPDATED = "ride_destination_updated"
    BOOKING_SCHEDULED = "booking_scheduled"
    SHIFT_STARTED = "shift_started"
    SHIFT_ENDED = "shift_ended"
    REPORT_SUBMITTED = "report_submitted"
    REPORT_REVIEWED = "report_reviewed"

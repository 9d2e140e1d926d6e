# src/common/errors.py
"""
Доменные исключения диспетчерской.

Каждое исключение несёт машиночитаемый код ошибки и HTTP-статус,
которые транспортный слой отдаёт клиенту без изменений.
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# КОДЫ ОШИБОК
# =============================================================================

class ErrorCode:
    """Константы кодов ошибок."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CLIENTS = "INVALID_CLIENTS"
    INVALID_DESTINATION = "INVALID_DESTINATION"
    INVALID_DRIVER = "INVALID_DRIVER"
    INVALID_REASON = "INVALID_REASON"
    INVALID_SHIFT = "INVALID_SHIFT"
    INVALID_ACTION = "INVALID_ACTION"
    INVALID_PHOTO_TYPE = "INVALID_PHOTO_TYPE"
    NEW_CLIENTS_NOT_ALLOWED = "NEW_CLIENTS_NOT_ALLOWED"
    NOT_QUICK_TRIP = "NOT_QUICK_TRIP"

    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_STATUS = "INVALID_STATUS"
    DRIVER_NOT_FREE = "DRIVER_NOT_FREE"
    NO_ACTIVE_SHIFT = "NO_ACTIVE_SHIFT"
    ALREADY_STARTED = "ALREADY_STARTED"
    RIDE_NOT_STARTED = "RIDE_NOT_STARTED"
    REPORT_NOT_EDITABLE = "REPORT_NOT_EDITABLE"
    REPORT_NOT_DELETABLE = "REPORT_NOT_DELETABLE"
    REPORT_INCOMPLETE = "REPORT_INCOMPLETE"

    FORBIDDEN = "FORBIDDEN"
    ACCESS_DENIED = "ACCESS_DENIED"

    NOT_FOUND = "NOT_FOUND"
    REPORT_NOT_FOUND = "REPORT_NOT_FOUND"

    DUPLICATE = "DUPLICATE"
    REPORT_EXISTS = "REPORT_EXISTS"
    SHIFT_ALREADY_ACTIVE = "SHIFT_ALREADY_ACTIVE"

    CALCULATION_ERROR = "CALCULATION_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


# =============================================================================
# БАЗОВОЕ ИСКЛЮЧЕНИЕ
# =============================================================================

class DispatchError(Exception):
    """
    Базовое исключение бизнес-логики.

    Attributes:
        code: Машиночитаемый код ошибки
        message: Человекочитаемое описание
        status_code: HTTP-статус для транспортного слоя
        details: Дополнительные данные (список недостающих полей и т.п.)
    """

    status_code: int = 400
    default_code: str = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Сериализует ошибку для ответа API."""
        return {
            "success": False,
            "message": self.message,
            "error": {
                "code": self.code,
                "details": self.details,
            },
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# КОНКРЕТНЫЕ ИСКЛЮЧЕНИЯ
# =============================================================================

class ValidationError(DispatchError):
    """Некорректные или неполные входные данные."""
    status_code = 400
    default_code = ErrorCode.VALIDATION_ERROR


class StateError(DispatchError):
    """Операция недопустима в текущем состоянии сущности."""
    status_code = 400
    default_code = ErrorCode.INVALID_STATUS


class InvalidTransitionError(StateError):
    """Переход статуса вне таблицы переходов или проигранная гонка."""
    default_code = ErrorCode.INVALID_TRANSITION

    def __init__(self, current: str, target: str | None = None, event: str | None = None) -> None:
        if target:
            message = f"Cannot move ride from '{current}' to '{target}'"
        else:
            message = f"Event '{event}' is not allowed in status '{current}'"
        super().__init__(message, details={"current": current, "target": target, "event": event})


class ForbiddenError(DispatchError):
    """Актор не имеет права на операцию."""
    status_code = 403
    default_code = ErrorCode.FORBIDDEN


class NotFoundError(DispatchError):
    """Сущность не найдена."""
    status_code = 404
    default_code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str = "Resource", code: str | None = None) -> None:
        super().__init__(f"{resource} not found", code=code)


class ConflictError(DispatchError):
    """Нарушение уникальности."""
    status_code = 409
    default_code = ErrorCode.DUPLICATE


class CalculationError(DispatchError):
    """Нарушены инварианты формулы отчёта."""
    status_code = 422
    default_code = ErrorCode.CALCULATION_ERROR

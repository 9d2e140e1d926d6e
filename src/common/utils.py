# src/common/utils.py
"""
Вспомогательные функции: денежное округление, генерация кодов, пагинация.
"""

from __future__ import annotations

import math
import secrets
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def utcnow() -> datetime:
    """Текущее время в UTC (timezone-aware)."""
    return datetime.now(timezone.utc)


def round2(value: float | int | Decimal | None) -> float:
    """
    Округляет денежную сумму до 2 знаков (half-up).

    Args:
        value: Сумма

    Returns:
        Округлённое значение
    """
    if value is None:
        return 0.0
    # str() чтобы 2.675 не превратилось в 2.67499999...
    rounded = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    result = float(rounded)
    # -0.0 -> 0.0
    return result + 0.0


def is_finite_number(value: Any) -> bool:
    """Проверяет, что значение является конечным числом."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    return math.isfinite(float(value))


def _random_base36(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_ride_code(now: datetime | None = None) -> str:
    """Генерирует код поездки RIDE-YYYYMMDD-XXXXXX."""
    now = now or utcnow()
    return f"RIDE-{now:%Y%m%d}-{_random_base36(6)}"


def generate_report_code(now: datetime | None = None) -> str:
    """Генерирует код отчёта DR-YYYYMMDD-XXXX."""
    now = now or utcnow()
    return f"DR-{now:%Y%m%d}-{_random_base36(4)}"


def format_duration(duration_ms: int) -> str:
    """
    Форматирует длительность в вид "Hh Mm".

    Args:
        duration_ms: Длительность в миллисекундах
    """
    total_minutes = max(duration_ms, 0) // 60000
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


def paginate(page: int, limit: int, max_limit: int = 100) -> tuple[int, int, int]:
    """
    Нормализует параметры пагинации.

    Returns:
        (page, limit, offset)
    """
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit


def page_envelope(items: list[Any], total: int, page: int, limit: int) -> dict[str, Any]:
    """Формирует ответ со страницей результатов."""
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def ensure_aware(value: datetime) -> datetime:
    """Наивное время считается UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

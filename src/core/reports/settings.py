# src/core/reports/settings.py
"""
Настройки отчётов водителей.

Документ настроек хранится в app_settings под ключом driver_report_settings
и кэшируется в Redis. Отсутствующие ключи берутся из config.json.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

import redis.asyncio as redis
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from src.common.constants import TypeMsg, UserRole
from src.common.errors import ForbiddenError, ValidationError
from src.common.logger import log_info, log_warning
from src.core.reports.models import CalculationSettings
from src.core.users.models import Actor
from src.infra.database import DatabaseManager
from src.infra.redis_client import RedisClient

SETTINGS_KEY = "driver_report_settings"
CACHE_KEY = f"settings:{SETTINGS_KEY}"


class ReportSettings(BaseModel):
    """Документ настроек отчётов."""

    rental_rate_percentage: float = Field(45.0, ge=0, le=100, description="Ставка аренды, %")
    trip_levy_rate: float = Field(1.32, ge=0, description="Сбор за поездку")
    gst_rate: float = Field(10.0, ge=0, le=50, description="Ставка GST, %")
    gst_divisor: float = Field(11.0, gt=0, description="Делитель GST для стоимости поездки")
    photo_upload_max_size_mb: int = Field(5, ge=1, le=50, description="Максимальный размер фото, МБ")
    require_photo_for_eftpos: bool = True
    require_photo_for_expenses: bool = True
    # Хранится для клиентов; автоматическое одобрение не выполняется
    auto_approve_threshold: float = Field(0.0, ge=0)
    notify_admins_on_submission: bool = True
    retention_period_days: int = Field(2555, ge=30, le=3650)
    allow_report_edits_after_submission: bool = False
    updated_by: Optional[int] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_config(cls) -> ReportSettings:
        """Значения по умолчанию из config.json."""
        from src.config import settings

        defaults = settings.report_defaults
        return cls(
            rental_rate_percentage=defaults.RENTAL_RATE_PERCENTAGE,
            trip_levy_rate=defaults.TRIP_LEVY_RATE,
            gst_rate=defaults.GST_RATE,
            gst_divisor=settings.dispatch.DEFAULT_GST_DIVISOR,
            photo_upload_max_size_mb=defaults.PHOTO_UPLOAD_MAX_SIZE_MB,
            require_photo_for_eftpos=defaults.REQUIRE_PHOTO_FOR_EFTPOS,
            require_photo_for_expenses=defaults.REQUIRE_PHOTO_FOR_EXPENSES,
            auto_approve_threshold=defaults.AUTO_APPROVE_THRESHOLD,
            notify_admins_on_submission=defaults.NOTIFY_ADMINS_ON_SUBMISSION,
            retention_period_days=defaults.RETENTION_PERIOD_DAYS,
            allow_report_edits_after_submission=defaults.ALLOW_REPORT_EDITS_AFTER_SUBMISSION,
        )

    def calculation(self) -> CalculationSettings:
        return CalculationSettings(
            rental_rate_percentage=self.rental_rate_percentage,
            trip_levy_rate=self.trip_levy_rate,
            gst_rate=self.gst_rate,
        )


_EDITABLE_FIELDS = frozenset(ReportSettings.model_fields) - {"updated_by", "updated_at"}


class SettingsRepository:
    """Ключ-значение в таблице app_settings."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        row = await self._db.fetchrow(
            "SELECT value, updated_by, updated_at FROM app_settings WHERE key = $1",
            key,
        )
        if row is None:
            return None
        value = row["value"]
        data = json.loads(value) if isinstance(value, str) else dict(value)
        data["updated_by"] = row["updated_by"]
        data["updated_at"] = row["updated_at"]
        return data

    async def upsert(self, key: str, value: dict[str, Any], updated_by: Optional[int]) -> None:
        await self._db.execute(
            """
            INSERT INTO app_settings (key, value, updated_by, updated_at)
            VALUES ($1, $2::jsonb, $3, NOW())
            ON CONFLICT (key) DO UPDATE
            SET value = EXCLUDED.value, updated_by = EXCLUDED.updated_by, updated_at = NOW()
            """,
            key,
            json.dumps(value),
            updated_by,
        )

    async def delete(self, key: str) -> None:
        await self._db.execute("DELETE FROM app_settings WHERE key = $1", key)


class ReportSettingsService:
    """Сервис настроек отчётов."""

    def __init__(
        self,
        repository: SettingsRepository,
        redis_client: RedisClient,
        cache_ttl: int = 300,
        defaults: Optional[ReportSettings] = None,
    ) -> None:
        """
        Args:
            repository: Хранилище настроек
            redis_client: Клиент Redis (кэш)
            cache_ttl: Время жизни кэша, секунды
            defaults: Значения по умолчанию (по умолчанию из config.json)
        """
        self._repo = repository
        self._redis = redis_client
        self._cache_ttl = cache_ttl
        self._defaults = defaults or ReportSettings.from_config()

    @property
    def defaults(self) -> ReportSettings:
        return self._defaults

    async def get_settings(self) -> ReportSettings:
        """
        Текущие настройки: кэш, затем БД, затем значения по умолчанию.
        """
        cached = await self._cache_get()
        if cached is not None:
            return cached

        stored = await self._repo.get(SETTINGS_KEY)
        result = self._defaults
        if stored:
            try:
                result = self._merge(stored)
            except PydanticValidationError as e:
                await log_warning(f"Сохранённые настройки отчётов некорректны, используются значения по умолчанию: {e}")

        await self._cache_set(result)
        return result

    async def update_settings(self, patch: dict[str, Any], actor: Actor) -> ReportSettings:
        """
        Обновляет настройки (только админ).

        Raises:
            ForbiddenError: Актор не админ
            ValidationError: Неизвестный ключ или значение вне диапазона
        """
        self._require_admin(actor)

        unknown = sorted(set(patch) - _EDITABLE_FIELDS)
        if unknown:
            raise ValidationError("Unknown settings keys", details={"keys": unknown})

        current = await self.get_settings()
        merged = current.model_dump(exclude={"updated_by", "updated_at"})
        merged.update(patch)
        try:
            updated = ReportSettings.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid settings value",
                details=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
            ) from e

        await self._repo.upsert(
            SETTINGS_KEY,
            updated.model_dump(mode="json", exclude={"updated_by", "updated_at"}),
            actor.id,
        )
        await self._cache_invalidate()
        await log_info(f"Настройки отчётов обновлены пользователем {actor.id}: {sorted(patch)}", type_msg=TypeMsg.INFO)
        return updated.model_copy(update={"updated_by": actor.id})

    async def reset_to_defaults(self, actor: Actor) -> ReportSettings:
        """Сбрасывает настройки к значениям по умолчанию (только админ)."""
        self._require_admin(actor)
        await self._repo.delete(SETTINGS_KEY)
        await self._cache_invalidate()
        await log_info(f"Настройки отчётов сброшены пользователем {actor.id}", type_msg=TypeMsg.INFO)
        return self._defaults

    async def calculation_settings(self) -> CalculationSettings:
        """Ставки формулы отчёта."""
        return (await self.get_settings()).calculation()

    async def gst_divisor(self) -> float:
        return (await self.get_settings()).gst_divisor

    def _merge(self, stored: dict[str, Any]) -> ReportSettings:
        data = self._defaults.model_dump()
        data.update({key: value for key, value in stored.items() if key in ReportSettings.model_fields})
        return ReportSettings.model_validate(data)

    # Кэш не обязателен: при недоступности Redis читаем из БД
    async def _cache_get(self) -> Optional[ReportSettings]:
        try:
            return await self._redis.get_model(CACHE_KEY, ReportSettings)
        except (redis.RedisError, RuntimeError) as e:
            await log_warning(f"Кэш настроек недоступен: {e}")
            return None

    async def _cache_set(self, value: ReportSettings) -> None:
        try:
            await self._redis.set_model(CACHE_KEY, value, ttl=self._cache_ttl)
        except (redis.RedisError, RuntimeError) as e:
            await log_warning(f"Не удалось закэшировать настройки: {e}")

    async def _cache_invalidate(self) -> None:
        try:
            await self._redis.delete(CACHE_KEY)
        except (redis.RedisError, RuntimeError) as e:
            await log_warning(f"Не удалось сбросить кэш настроек: {e}")

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if actor.role != UserRole.ADMIN:
            raise ForbiddenError("Only admins can change report settings")

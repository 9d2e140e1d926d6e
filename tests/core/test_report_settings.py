# tests/core/test_report_settings.py
"""
Тесты для настроек отчётов водителей.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from src.common.errors import ForbiddenError, ValidationError
from src.core.reports.settings import (
    CACHE_KEY,
    SETTINGS_KEY,
    ReportSettings,
    ReportSettingsService,
    SettingsRepository,
)


@pytest.fixture
def repo() -> AsyncMock:
    repository = AsyncMock()
    repository.get = AsyncMock(return_value=None)
    return repository


@pytest.fixture
def service(repo, mock_redis) -> ReportSettingsService:
    return ReportSettingsService(repo, mock_redis, cache_ttl=60, defaults=ReportSettings())


class TestGetSettings:
    """Тесты чтения настроек."""

    @pytest.mark.asyncio
    async def test_defaults_when_nothing_stored(self, service, repo, mock_redis) -> None:
        result = await service.get_settings()

        assert result.rental_rate_percentage == 45.0
        assert result.trip_levy_rate == 1.32
        assert result.gst_divisor == 11.0
        repo.get.assert_awaited_once_with(SETTINGS_KEY)
        mock_redis.set_model.assert_awaited_once_with(CACHE_KEY, result, ttl=60)

    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(self, service, repo, mock_redis) -> None:
        mock_redis.get_model = AsyncMock(return_value=ReportSettings(rental_rate_percentage=40.0))

        result = await service.get_settings()

        assert result.rental_rate_percentage == 40.0
        repo.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stored_values_override_defaults(self, service, repo) -> None:
        repo.get = AsyncMock(return_value={
            "rental_rate_percentage": 50.0,
            "legacy_key": True,
            "updated_by": 2,
            "updated_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        })

        result = await service.get_settings()

        assert result.rental_rate_percentage == 50.0
        assert result.trip_levy_rate == 1.32
        assert result.updated_by == 2

    @pytest.mark.asyncio
    async def test_corrupt_stored_values_fall_back(self, service, repo) -> None:
        repo.get = AsyncMock(return_value={"rental_rate_percentage": 500})

        result = await service.get_settings()

        assert result.rental_rate_percentage == 45.0

    @pytest.mark.asyncio
    async def test_redis_outage_reads_database(self, service, repo, mock_redis) -> None:
        mock_redis.get_model = AsyncMock(side_effect=redis.ConnectionError("down"))
        mock_redis.set_model = AsyncMock(side_effect=redis.ConnectionError("down"))
        repo.get = AsyncMock(return_value={"trip_levy_rate": 2.0})

        result = await service.get_settings()

        assert result.trip_levy_rate == 2.0

    @pytest.mark.asyncio
    async def test_calculation_settings(self, service) -> None:
        calculation = await service.calculation_settings()

        assert calculation.rental_rate_percentage == 45.0
        assert calculation.gst_rate == 10.0


class TestUpdateSettings:
    """Тесты изменения настроек."""

    @pytest.mark.asyncio
    async def test_admin_updates(self, service, repo, mock_redis, admin) -> None:
        result = await service.update_settings({"rental_rate_percentage": 40}, admin)

        assert result.rental_rate_percentage == 40.0
        assert result.updated_by == admin.id
        key, value, updated_by = repo.upsert.await_args.args
        assert key == SETTINGS_KEY
        assert value["rental_rate_percentage"] == 40.0
        assert "updated_by" not in value
        assert updated_by == admin.id
        mock_redis.delete.assert_awaited_once_with(CACHE_KEY)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("patch", [
        {"rental_rate_percentage": 150},
        {"rental_rate_percentage": -1},
        {"gst_rate": 60},
        {"retention_period_days": 10},
        {"photo_upload_max_size_mb": 0},
    ])
    async def test_out_of_range_rejected(self, service, repo, admin, patch) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await service.update_settings(patch, admin)

        assert exc_info.value.details[0]["field"] == next(iter(patch))
        repo.upsert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_key(self, service, admin) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await service.update_settings({"bonus_rate": 5}, admin)

        assert exc_info.value.details == {"keys": ["bonus_rate"]}

    @pytest.mark.asyncio
    async def test_audit_fields_not_editable(self, service, admin) -> None:
        with pytest.raises(ValidationError):
            await service.update_settings({"updated_by": 99}, admin)

    @pytest.mark.asyncio
    async def test_manager_cannot_update(self, service, manager) -> None:
        with pytest.raises(ForbiddenError):
            await service.update_settings({"rental_rate_percentage": 40}, manager)

    @pytest.mark.asyncio
    async def test_reset(self, service, repo, mock_redis, admin) -> None:
        result = await service.reset_to_defaults(admin)

        assert result.rental_rate_percentage == 45.0
        repo.delete.assert_awaited_once_with(SETTINGS_KEY)
        mock_redis.delete.assert_awaited_once_with(CACHE_KEY)


class TestSettingsRepository:
    """Тесты хранилища app_settings."""

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, mock_db) -> None:
        mock_db.fetchrow = AsyncMock(return_value={
            "value": json.dumps({"rental_rate_percentage": 42}),
            "updated_by": 2,
            "updated_at": None,
        })

        data = await SettingsRepository(mock_db).get(SETTINGS_KEY)

        assert data == {"rental_rate_percentage": 42, "updated_by": 2, "updated_at": None}

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_db) -> None:
        assert await SettingsRepository(mock_db).get(SETTINGS_KEY) is None

    @pytest.mark.asyncio
    async def test_upsert_serializes(self, mock_db) -> None:
        await SettingsRepository(mock_db).upsert(SETTINGS_KEY, {"gst_rate": 10.0}, 2)

        query, key, value, updated_by = mock_db.execute.await_args.args
        assert "ON CONFLICT (key)" in query
        assert json.loads(value) == {"gst_rate": 10.0}
        assert updated_by == 2

# tests/conftest.py
"""
Фикстуры тестов: плоский конфиг, моки инфраструктуры, акторы и фабрики моделей.
"""

from __future__ import annotations

import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# секреты нужны до импорта src.config
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("PHOTO_STORAGE_TOKEN", "")

from src.common.constants import BookingType, RideStatus, UserRole  # noqa: E402
from src.core.rides.models import Ride, RideFare  # noqa: E402
from src.core.shifts.models import Shift  # noqa: E402
from src.core.users.models import Actor  # noqa: E402


@pytest.fixture(scope="session")
def project_root() -> Path:
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Плоский config.json тестового окружения."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "taxi_dispatch_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "COMPONENT_MODE": "api",
        "API_HOST": "127.0.0.1",
        "API_PORT": 9000,
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FORMAT": "json",
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "taxi_dispatch_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "DB_MIN_POOL_SIZE": 2,
        "DB_MAX_POOL_SIZE": 5,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_NAMESPACE": "dispatch_test",
        "REPORT_SETTINGS_TTL": 60,
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_EXCHANGE": "dispatch.test",
        "DEFAULT_GST_DIVISOR": 11.0,
        "AVAILABILITY_SWEEP_INTERVAL": 15,
        "RENTAL_RATE_PERCENTAGE": 40.0,
        "TRIP_LEVY_RATE": 1.5,
        "GST_RATE": 10.0,
        "PUSH_KEEPALIVE_INTERVAL": 10,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


@pytest.fixture
def mock_conn() -> AsyncMock:
    """Мок соединения внутри транзакции."""
    conn = AsyncMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock(return_value="UPDATE 1")
    conn.fetchval = AsyncMock(return_value=None)
    return conn


@pytest.fixture
def mock_db(mock_conn: AsyncMock) -> AsyncMock:
    """Мок менеджера базы данных с транзакцией."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)

    @asynccontextmanager
    async def _transaction():
        yield mock_conn

    db.transaction = MagicMock(side_effect=lambda: _transaction())
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    redis = AsyncMock()
    redis.delete = AsyncMock(return_value=1)
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    redis.publish_json = AsyncMock(return_value=1)
    redis.make_key = MagicMock(side_effect=lambda key: f"dispatch:{key}")
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


@pytest.fixture
def mock_notifier() -> AsyncMock:
    """Мок диспетчера уведомлений."""
    notifier = AsyncMock()
    notifier.notify_user = AsyncMock(return_value=None)
    notifier.notify_roles = AsyncMock(return_value=0)
    notifier.notify_staff = AsyncMock(return_value=0)
    return notifier


@pytest.fixture
def manager() -> Actor:
    return Actor(id=1, role=UserRole.MANAGER)


@pytest.fixture
def admin() -> Actor:
    return Actor(id=2, role=UserRole.ADMIN)


@pytest.fixture
def driver() -> Actor:
    return Actor(id=10, role=UserRole.DRIVER)


@pytest.fixture
def other_driver() -> Actor:
    return Actor(id=11, role=UserRole.DRIVER)


@pytest.fixture
def make_ride():
    """Фабрика поездок с переопределением полей."""

    def _make(**overrides: Any) -> Ride:
        data: dict[str, Any] = {
            "id": "ride-1",
            "ride_code": "RIDE-20240115-ABC123",
            "booking_type": BookingType.IMMEDIATE,
            "client_ids": ["client-1"],
            "driver_id": 10,
            "assigned_by": 1,
            "from_destination_id": "dest-1",
            "to_destination_id": "dest-2",
            "scheduled_time": datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
            "passengers": 1,
            "fare": RideFare(),
            "status": RideStatus.ASSIGNED,
        }
        data.update(overrides)
        return Ride(**data)

    return _make


@pytest.fixture
def make_shift():
    """Фабрика смен."""

    def _make(**overrides: Any) -> Shift:
        data: dict[str, Any] = {
            "id": "shift-1",
            "driver_id": 10,
            "taxi_number": "TX-101",
            "start_meter": 100.0,
            "start_meter_photo": "https://photos.example.com/start.jpg",
            "start_time": datetime.now(timezone.utc) - timedelta(hours=2, minutes=30),
            "is_active": True,
        }
        data.update(overrides)
        return Shift(**data)

    return _make

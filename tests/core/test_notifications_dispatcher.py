# tests/core/test_notifications_dispatcher.py
"""
Тесты для диспетчера уведомлений.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.common.constants import NotificationType, UserRole
from src.common.errors import NotFoundError
from src.core.notifications.models import Notification, NotificationData, title_for
from src.core.notifications.repository import NotificationRepository
from src.core.notifications.service import NotificationDispatcher, user_channel


def _notification(user_id: int = 10, **overrides) -> Notification:
    data = {
        "id": 1,
        "user_id": user_id,
        "type": NotificationType.RIDE_ASSIGNED,
        "title": "New Ride Assigned",
        "message": "You have been assigned ride RIDE-1",
        "entity_id": "ride-1",
        "status": "assigned",
        "created_at": datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return Notification(**data)


@pytest.fixture
def repo() -> AsyncMock:
    repository = AsyncMock()
    repository.insert_if_absent = AsyncMock(side_effect=lambda user_id, data: _notification(user_id))
    return repository


@pytest.fixture
def users() -> AsyncMock:
    repository = AsyncMock()
    repository.ids_by_roles = AsyncMock(return_value=[1, 2, 3])
    return repository


@pytest.fixture
def dispatcher(repo, users, mock_redis) -> NotificationDispatcher:
    return NotificationDispatcher(repo, users, mock_redis)


class TestSend:
    """Тесты отправки уведомлений."""

    @pytest.mark.asyncio
    async def test_persists_and_publishes(self, dispatcher, repo, mock_redis) -> None:
        notification = await dispatcher.notify_user(
            10, NotificationType.RIDE_ASSIGNED, entity_id="ride-1", message="hi", status="assigned",
        )

        assert notification.id == 1
        user_id, data = repo.insert_if_absent.await_args.args
        assert user_id == 10
        assert data == NotificationData(
            type=NotificationType.RIDE_ASSIGNED, entity_id="ride-1", message="hi", status="assigned",
        )
        channel, payload = mock_redis.publish_json.await_args.args
        assert channel == "notifications:user:10"
        assert payload["type"] == "ride_assigned"
        assert payload["created_at"] == "2024-01-15T09:00:00+00:00"

    @pytest.mark.asyncio
    async def test_duplicate_is_ignored(self, dispatcher, repo, mock_redis) -> None:
        repo.insert_if_absent = AsyncMock(return_value=None)

        result = await dispatcher.notify_user(10, NotificationType.RIDE_ASSIGNED, "ride-1", "hi", "assigned")

        assert result is None
        mock_redis.publish_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, dispatcher, repo) -> None:
        repo.insert_if_absent = AsyncMock(side_effect=ConnectionError("db down"))

        assert await dispatcher.notify_user(10, NotificationType.RIDE_ASSIGNED, "ride-1", "hi") is None

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self, dispatcher, mock_redis) -> None:
        mock_redis.publish_json = AsyncMock(side_effect=RuntimeError("redis not connected"))

        assert await dispatcher.notify_user(10, NotificationType.RIDE_ASSIGNED, "ride-1", "hi") is None


class TestRoles:
    """Тесты рассылки по ролям."""

    @pytest.mark.asyncio
    async def test_staff_fan_out(self, dispatcher, users, repo) -> None:
        sent = await dispatcher.notify_staff(NotificationType.SHIFT_STARTED, "shift-1", "started", exclude=[2])

        assert sent == 2
        assert users.ids_by_roles.await_args.args[0] == (UserRole.ADMIN, UserRole.MANAGER)
        recipients = [call.args[0] for call in repo.insert_if_absent.await_args_list]
        assert recipients == [1, 3]

    @pytest.mark.asyncio
    async def test_duplicates_not_counted(self, dispatcher, repo) -> None:
        repo.insert_if_absent = AsyncMock(side_effect=[_notification(1), None, _notification(3)])

        sent = await dispatcher.notify_roles([UserRole.DRIVER], NotificationType.RIDE_STATUS, "ride-1", "x")

        assert sent == 2

    @pytest.mark.asyncio
    async def test_recipient_lookup_failure(self, dispatcher, users) -> None:
        users.ids_by_roles = AsyncMock(side_effect=ConnectionError("db down"))

        assert await dispatcher.notify_staff(NotificationType.SHIFT_ENDED, "shift-1", "ended") == 0


class TestReading:
    """Тесты чтения уведомлений."""

    @pytest.mark.asyncio
    async def test_mark_read_missing(self, dispatcher, repo) -> None:
        repo.mark_read = AsyncMock(return_value=False)

        with pytest.raises(NotFoundError):
            await dispatcher.mark_read(10, 99)

    @pytest.mark.asyncio
    async def test_list_envelope(self, dispatcher, repo) -> None:
        repo.list_for_user = AsyncMock(return_value=([_notification()], 1))

        result = await dispatcher.list_for_user(10, unread_only=True)

        assert result["total"] == 1
        assert repo.list_for_user.await_args.kwargs == {"unread_only": True}


class TestHelpers:
    """Тесты вспомогательных функций."""

    def test_user_channel(self) -> None:
        assert user_channel(7) == "notifications:user:7"
        assert user_channel(7, "push") == "push:7"

    def test_title_for_known_type(self) -> None:
        assert title_for(NotificationType.REPORT_REVIEWED) == "Driver Report Reviewed"


class TestNotificationRepository:
    """Тесты SQL репозитория уведомлений."""

    @pytest.mark.asyncio
    async def test_insert_uses_idempotency_key(self, mock_db) -> None:
        repository = NotificationRepository(mock_db)

        result = await repository.insert_if_absent(10, NotificationData(
            type=NotificationType.RIDE_ASSIGNED, entity_id="ride-1", message="hi", status="assigned",
            data={"ride_code": "RIDE-1"},
        ))

        assert result is None
        query, *args = mock_db.fetchrow.await_args.args
        assert "ON CONFLICT (user_id, type, entity_id, status) DO NOTHING" in query
        assert args[:6] == [10, "ride_assigned", "New Ride Assigned", "hi", "ride-1", "assigned"]
        assert json.loads(args[6]) == {"ride_code": "RIDE-1"}

    @pytest.mark.asyncio
    async def test_mark_all_read_count(self, mock_db) -> None:
        mock_db.execute = AsyncMock(return_value="UPDATE 4")

        assert await NotificationRepository(mock_db).mark_all_read(10) == 4

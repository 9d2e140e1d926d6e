# src/core/notifications/service.py
"""
Сервис уведомлений.

Сохраняет уведомление (один раз на ключ идемпотентности) и публикует его
в канал пользователя Redis. Push-хаб доставляет его по WebSocket.
Ошибки уведомлений никогда не прерывают бизнес-операцию.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from src.common.constants import NotificationType, TypeMsg, UserRole
from src.common.errors import NotFoundError
from src.common.logger import log_error, log_info
from src.common.utils import page_envelope, paginate
from src.core.notifications.models import Notification, NotificationData
from src.core.notifications.repository import NotificationRepository
from src.core.users.repository import UserRepository
from src.infra.redis_client import RedisClient

STAFF_ROLES = (UserRole.ADMIN, UserRole.MANAGER)


def user_channel(user_id: int, prefix: str = "notifications:user") -> str:
    """Имя канала pub/sub пользователя (без namespace)."""
    return f"{prefix}:{user_id}"


class NotificationDispatcher:
    """
    Диспетчер уведомлений.

    Записывает уведомление в БД и публикует его в Redis.
    Фактическая доставка происходит в push-хабе.
    """

    def __init__(
        self,
        repository: NotificationRepository,
        users: UserRepository,
        redis: RedisClient,
        channel_prefix: str = "notifications:user",
    ) -> None:
        """
        Инициализация сервиса.

        Args:
            repository: Репозиторий уведомлений
            users: Репозиторий пользователей (поиск получателей по ролям)
            redis: Клиент Redis для публикации
            channel_prefix: Префикс каналов пользователей
        """
        self._repo = repository
        self._users = users
        self._redis = redis
        self._channel_prefix = channel_prefix

    async def send(self, user_id: int, data: NotificationData) -> Optional[Notification]:
        """
        Отправляет уведомление пользователю.

        Args:
            user_id: Получатель
            data: Данные уведомления

        Returns:
            Новое уведомление, либо None (дубликат или ошибка)
        """
        try:
            notification = await self._repo.insert_if_absent(user_id, data)
            if notification is None:
                await log_info(
                    f"Дубликат уведомления пропущен: user={user_id}, type={data.type.value}, "
                    f"entity={data.entity_id}, status={data.status}",
                    type_msg=TypeMsg.DEBUG,
                )
                return None

            await self._redis.publish_json(
                user_channel(user_id, self._channel_prefix),
                notification.to_push(),
            )
            await log_info(
                f"Уведомление отправлено: user={user_id}, type={data.type.value}",
                type_msg=TypeMsg.DEBUG,
            )
            return notification
        except Exception as e:
            await log_error(f"Ошибка отправки уведомления user={user_id}, type={data.type.value}: {e}")
            return None

    async def notify_user(
        self,
        user_id: int,
        notification_type: NotificationType,
        entity_id: str,
        message: str,
        status: str = "",
        data: dict[str, Any] | None = None,
    ) -> Optional[Notification]:
        """Уведомление одному пользователю."""
        return await self.send(user_id, NotificationData(
            type=notification_type,
            entity_id=entity_id,
            message=message,
            status=status,
            data=data or {},
        ))

    async def notify_roles(
        self,
        roles: Iterable[UserRole],
        notification_type: NotificationType,
        entity_id: str,
        message: str,
        status: str = "",
        data: dict[str, Any] | None = None,
        exclude: Iterable[int] = (),
    ) -> int:
        """
        Уведомление всем пользователям с ролями.

        Returns:
            Количество отправленных уведомлений
        """
        try:
            recipients = await self._users.ids_by_roles(roles)
        except Exception as e:
            await log_error(f"Не удалось получить получателей {notification_type.value}: {e}")
            return 0

        skip = set(exclude)
        payload = NotificationData(
            type=notification_type,
            entity_id=entity_id,
            message=message,
            status=status,
            data=data or {},
        )
        sent = 0
        for user_id in recipients:
            if user_id in skip:
                continue
            if await self.send(user_id, payload) is not None:
                sent += 1
        return sent

    async def notify_staff(
        self,
        notification_type: NotificationType,
        entity_id: str,
        message: str,
        status: str = "",
        data: dict[str, Any] | None = None,
        exclude: Iterable[int] = (),
    ) -> int:
        """Уведомление всем админам и менеджерам."""
        return await self.notify_roles(
            STAFF_ROLES, notification_type, entity_id, message,
            status=status, data=data, exclude=exclude,
        )

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def list_for_user(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
    ) -> dict[str, Any]:
        page, limit, offset = paginate(page, limit)
        items, total = await self._repo.list_for_user(user_id, limit, offset, unread_only=unread_only)
        return page_envelope(items, total, page, limit)

    async def mark_read(self, user_id: int, notification_id: int) -> None:
        """
        Raises:
            NotFoundError: Уведомление не найдено у пользователя
        """
        if not await self._repo.mark_read(user_id, notification_id):
            raise NotFoundError("Notification")

    async def mark_all_read(self, user_id: int) -> int:
        return await self._repo.mark_all_read(user_id)

    async def unread_count(self, user_id: int) -> int:
        return await self._repo.unread_count(user_id)

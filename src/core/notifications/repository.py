# src/core/notifications/repository.py
"""
Репозиторий уведомлений.
"""

from __future__ import annotations

import json
from typing import Optional

from asyncpg import Record

from src.core.notifications.models import Notification, NotificationData, title_for
from src.infra.database import DatabaseManager


class NotificationRepository:
    """Репозиторий уведомлений."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def insert_if_absent(self, user_id: int, data: NotificationData) -> Optional[Notification]:
        """
        Сохраняет уведомление, если его ещё нет.

        Args:
            user_id: Получатель
            data: Данные уведомления

        Returns:
            Новое уведомление или None для дубликата
        """
        row = await self._db.fetchrow(
            """
            INSERT INTO notifications (user_id, type, title, message, entity_id, status, data)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
            ON CONFLICT (user_id, type, entity_id, status) DO NOTHING
            RETURNING *
            """,
            user_id,
            data.type.value,
            title_for(data.type),
            data.message,
            data.entity_id,
            data.status,
            json.dumps(data.data, ensure_ascii=False, default=str),
        )
        return self._row_to_notification(row) if row else None

    async def list_for_user(
        self,
        user_id: int,
        limit: int,
        offset: int,
        unread_only: bool = False,
    ) -> tuple[list[Notification], int]:
        """Страница уведомлений пользователя (новые первыми)."""
        condition = "user_id = $1" + (" AND NOT is_read" if unread_only else "")
        total = await self._db.fetchval(
            f"SELECT COUNT(*) FROM notifications WHERE {condition}",
            user_id,
        )
        rows = await self._db.fetch(
            f"""
            SELECT * FROM notifications WHERE {condition}
            ORDER BY created_at DESC, id DESC
            LIMIT $2 OFFSET $3
            """,
            user_id,
            limit,
            offset,
        )
        return [self._row_to_notification(row) for row in rows], int(total or 0)

    async def mark_read(self, user_id: int, notification_id: int) -> bool:
        """Помечает уведомление прочитанным."""
        result = await self._db.execute(
            "UPDATE notifications SET is_read = TRUE WHERE id = $1 AND user_id = $2",
            notification_id,
            user_id,
        )
        return result.endswith(" 1")

    async def mark_all_read(self, user_id: int) -> int:
        """Помечает все уведомления пользователя прочитанными."""
        result = await self._db.execute(
            "UPDATE notifications SET is_read = TRUE WHERE user_id = $1 AND NOT is_read",
            user_id,
        )
        return int(result.split()[-1])

    async def unread_count(self, user_id: int) -> int:
        value = await self._db.fetchval(
            "SELECT COUNT(*) FROM notifications WHERE user_id = $1 AND NOT is_read",
            user_id,
        )
        return int(value or 0)

    @staticmethod
    def _row_to_notification(row: Record) -> Notification:
        data = dict(row)
        if isinstance(data.get("data"), str):
            data["data"] = json.loads(data["data"])
        return Notification.model_validate(data)

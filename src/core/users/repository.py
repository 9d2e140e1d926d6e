# src/core/users/repository.py
"""
Репозиторий для чтения пользователей из БД.
Статус доступности водителя здесь только читается.
"""

from __future__ import annotations

from typing import Iterable, Optional

from asyncpg import Record

from src.common.constants import DriverStatus, UserRole
from src.core.users.models import User
from src.infra.database import DatabaseManager

_USER_COLUMNS = "id, name, email, role, status, is_active, created_at"


class UserRepository:
    """Репозиторий пользователей."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Инициализация репозитория.

        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """
        Получает пользователя по ID.

        Returns:
            Пользователь или None
        """
        row = await self._db.fetchrow(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1",
            user_id,
        )
        return self._row_to_user(row) if row else None

    async def ids_by_roles(self, roles: Iterable[UserRole]) -> list[int]:
        """
        Возвращает ID активных пользователей с заданными ролями.

        Args:
            roles: Роли получателей
        """
        rows = await self._db.fetch(
            "SELECT id FROM users WHERE role = ANY($1::text[]) AND is_active ORDER BY id",
            [role.value for role in roles],
        )
        return [row["id"] for row in rows]

    async def list_drivers(self, status: DriverStatus | None = None) -> list[User]:
        """
        Возвращает активных водителей, опционально с фильтром по доступности.
        """
        if status is None:
            rows = await self._db.fetch(
                f"SELECT {_USER_COLUMNS} FROM users WHERE role = $1 AND is_active ORDER BY name",
                UserRole.DRIVER.value,
            )
        else:
            rows = await self._db.fetch(
                f"""
                SELECT {_USER_COLUMNS} FROM users
                WHERE role = $1 AND is_active AND status = $2
                ORDER BY name
                """,
                UserRole.DRIVER.value,
                status.value,
            )
        return [self._row_to_user(row) for row in rows]

    @staticmethod
    def _row_to_user(row: Record) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            role=UserRole(row["role"]),
            status=DriverStatus(row["status"]),
            is_active=row["is_active"],
            created_at=row["created_at"],
        )

# src/core/directory/repository.py
"""
Репозитории справочников клиентов и адресов.
"""

from __future__ import annotations

from typing import Iterable, Optional
from uuid import uuid4

from src.core.directory.models import Client, Destination
from src.infra.database import DatabaseManager, Executor


class _DirectoryRepository:
    """Общие операции справочника."""

    _table: str = ""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def missing_ids(self, ids: Iterable[str]) -> list[str]:
        """
        Возвращает ID, которых нет в справочнике.

        Args:
            ids: Проверяемые ID

        Returns:
            Отсутствующие ID в исходном порядке
        """
        wanted = [item for item in dict.fromkeys(ids) if item]
        if not wanted:
            return []

        rows = await self._db.fetch(
            f"SELECT id FROM {self._table} WHERE id = ANY($1::text[])",
            wanted,
        )
        found = {row["id"] for row in rows}
        return [item for item in wanted if item not in found]

    async def exists(self, item_id: str) -> bool:
        """Есть ли запись в справочнике."""
        return not await self.missing_ids([item_id])


class ClientRepository(_DirectoryRepository):
    """Справочник клиентов."""

    _table = "clients"

    async def get_by_id(self, client_id: str) -> Optional[Client]:
        row = await self._db.fetchrow("SELECT * FROM clients WHERE id = $1", client_id)
        return Client.model_validate(dict(row)) if row else None

    async def create(
        self,
        name: str,
        phone: Optional[str] = None,
        created_by_driver: bool = True,
        created_by: Optional[int] = None,
        conn: Optional[Executor] = None,
    ) -> Client:
        """
        Создаёт клиента.

        Args:
            name: Имя клиента
            phone: Телефон
            created_by_driver: Создан водителем (быстрые и самоназначенные поездки)
            created_by: ID создателя
            conn: Соединение транзакции
        """
        executor = conn or self._db
        row = await executor.fetchrow(
            """
            INSERT INTO clients (id, name, phone, created_by_driver, created_by)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
            """,
            str(uuid4()),
            name.strip(),
            phone,
            created_by_driver,
            created_by,
        )
        return Client.model_validate(dict(row))


class DestinationRepository(_DirectoryRepository):
    """Справочник адресов."""

    _table = "destinations"

    async def get_by_id(self, destination_id: str) -> Optional[Destination]:
        row = await self._db.fetchrow("SELECT * FROM destinations WHERE id = $1", destination_id)
        return Destination.model_validate(dict(row)) if row else None

    async def create(
        self,
        name: str,
        address: Optional[str] = None,
        created_by_driver: bool = True,
        created_by: Optional[int] = None,
        conn: Optional[Executor] = None,
    ) -> Destination:
        """
        Создаёт адрес.

        Args:
            name: Название (для водительских адресов совпадает с адресом)
            address: Полный адрес
            created_by_driver: Создан водителем
            created_by: ID создателя
            conn: Соединение транзакции
        """
        executor = conn or self._db
        name = name.strip()
        row = await executor.fetchrow(
            """
            INSERT INTO destinations (id, name, address, created_by_driver, created_by)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
            """,
            str(uuid4()),
            name,
            address or name,
            created_by_driver,
            created_by,
        )
        return Destination.model_validate(dict(row))

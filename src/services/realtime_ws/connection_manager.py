# src/services/realtime_ws/connection_manager.py
"""
Менеджер WebSocket соединений.
Хранит соединения по ID соединения и доставляет уведомления пользователям.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect

from src.common.constants import TypeMsg, UserRole
from src.common.logger import log_info, log_warning
from src.common.utils import utcnow


@dataclass
class ConnectionInfo:
    """Информация о соединении."""
    connection_id: str
    websocket: WebSocket
    user_id: int
    role: UserRole
    connected_at: datetime = field(default_factory=utcnow)


class ConnectionManager:
    """
    Менеджер WebSocket соединений.

    У пользователя может быть несколько соединений (несколько вкладок
    или устройств). Неудачная или зависшая отправка снимает соединение
    с регистрации.
    """

    def __init__(self, send_timeout: float = 5.0) -> None:
        """
        Args:
            send_timeout: Таймаут отправки одного сообщения, сек
        """
        self._send_timeout = send_timeout
        self._lock = asyncio.Lock()

        # connection_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}

        self._total_connections: int = 0
        self._total_messages_sent: int = 0

    @property
    def active_connections(self) -> int:
        """Количество активных соединений."""
        return len(self._connections)

    async def register(self, websocket: WebSocket, user_id: int, role: UserRole) -> str:
        """
        Принимает соединение и регистрирует его.

        Returns:
            ID соединения
        """
        await websocket.accept()
        connection_id = str(uuid4())

        async with self._lock:
            self._connections[connection_id] = ConnectionInfo(
                connection_id=connection_id,
                websocket=websocket,
                user_id=user_id,
                role=role,
            )
            self._total_connections += 1

        await log_info(f"WS подключен: пользователь {user_id} ({connection_id})", type_msg=TypeMsg.DEBUG)
        return connection_id

    async def unregister(self, connection_id: str) -> None:
        """Снимает соединение с регистрации."""
        async with self._lock:
            conn = self._connections.pop(connection_id, None)
        if conn is not None:
            await log_info(f"WS отключен: пользователь {conn.user_id} ({connection_id})", type_msg=TypeMsg.DEBUG)

    def connections_for(self, user_id: int) -> list[str]:
        """ID соединений пользователя."""
        return [cid for cid, conn in self._connections.items() if conn.user_id == user_id]

    async def send_to_user(self, user_id: int, message: dict[str, Any]) -> int:
        """
        Отправляет сообщение во все соединения пользователя.

        Returns:
            Количество соединений, получивших сообщение
        """
        async with self._lock:
            targets = [conn for conn in self._connections.values() if conn.user_id == user_id]
        return await self._send_many(targets, message)

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Отправляет сообщение во все соединения."""
        async with self._lock:
            targets = list(self._connections.values())
        return await self._send_many(targets, message)

    async def ping_all(self) -> int:
        """Keepalive: пингует все соединения, мёртвые снимаются."""
        return await self.broadcast({"type": "ping", "timestamp": utcnow().isoformat()})

    async def keepalive(self, interval: float) -> None:
        """Цикл keepalive до отмены задачи."""
        while True:
            await asyncio.sleep(interval)
            await self.ping_all()

    def get_stats(self) -> dict[str, Any]:
        """Статистика соединений."""
        by_role: dict[str, int] = {}
        for conn in self._connections.values():
            by_role[conn.role.value] = by_role.get(conn.role.value, 0) + 1
        return {
            "active_connections": len(self._connections),
            "active_users": len({conn.user_id for conn in self._connections.values()}),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
            "connections_by_role": by_role,
        }

    async def _send_many(self, targets: list[ConnectionInfo], message: dict[str, Any]) -> int:
        sent_count = 0
        for conn in targets:
            if await self._send(conn, message):
                sent_count += 1
        return sent_count

    async def _send(self, conn: ConnectionInfo, message: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(conn.websocket.send_json(message), timeout=self._send_timeout)
        except asyncio.TimeoutError:
            await log_warning(f"WS отправка превысила таймаут ({conn.connection_id}), соединение снято")
            await self.unregister(conn.connection_id)
            return False
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            # Соединение разорвано
            await log_warning(f"WS отправка не удалась ({conn.connection_id}): {e}")
            await self.unregister(conn.connection_id)
            return False

        self._total_messages_sent += 1
        return True

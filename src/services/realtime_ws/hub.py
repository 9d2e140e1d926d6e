# src/services/realtime_ws/hub.py
"""
Push-хаб: реестр соединений, подписчик Redis и keepalive в одном объекте.

Запускается в lifespan HTTP-приложения.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.infra.redis_client import RedisClient
from src.services.realtime_ws.connection_manager import ConnectionManager
from src.services.realtime_ws.redis_subscriber import RedisSubscriber


class PushHub:
    """Доставка уведомлений из Redis в WebSocket-соединения."""

    def __init__(
        self,
        redis: RedisClient,
        channel_prefix: str = "notifications:user",
        keepalive_interval: float = 25.0,
        send_timeout: float = 5.0,
    ) -> None:
        """
        Args:
            redis: Клиент Redis
            channel_prefix: Префикс пользовательских каналов (без namespace)
            keepalive_interval: Интервал пинга, сек
            send_timeout: Таймаут отправки, сек
        """
        self.manager = ConnectionManager(send_timeout=send_timeout)
        self._keepalive_interval = keepalive_interval
        self._subscriber = RedisSubscriber(
            pubsub_factory=redis.pubsub,
            channel_prefix=redis.make_key(channel_prefix),
            message_handler=self.deliver,
        )
        self._keepalive_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        await self._subscriber.start()
        self._keepalive_task = asyncio.create_task(self.manager.keepalive(self._keepalive_interval))
        await log_info("Push-хаб запущен", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        if self._keepalive_task:
            self._keepalive_task.cancel()
            try:
                await self._keepalive_task
            except asyncio.CancelledError:
                pass
            self._keepalive_task = None
        await self._subscriber.stop()
        await log_info("Push-хаб остановлен", type_msg=TypeMsg.INFO)

    async def deliver(self, user_id: int, payload: dict[str, Any]) -> int:
        """Пересылает уведомление во все соединения пользователя."""
        return await self.manager.send_to_user(user_id, {"type": "notification", "data": payload})

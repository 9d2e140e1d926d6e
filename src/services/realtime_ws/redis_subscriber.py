# src/services/realtime_ws/redis_subscriber.py
"""
Чтение пользовательских каналов уведомлений из Redis Pub/Sub.

Слушает каналы {namespace}:notifications:user:{user_id}, которые
публикует NotificationDispatcher, и передаёт сообщение обработчику
с ID пользователя из имени канала.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Optional

import redis.asyncio as redis

from src.common.logger import log_error, log_warning

if TYPE_CHECKING:
    from redis.asyncio.client import PubSub

MessageHandler = Callable[[int, dict[str, Any]], Coroutine[Any, Any, Any]]


def parse_user_id(channel: str, prefix: str) -> Optional[int]:
    """
    Извлекает ID пользователя из имени канала.

    Args:
        channel: Полное имя канала (с namespace)
        prefix: Префикс каналов пользователей (с namespace)

    Returns:
        ID пользователя или None, если канал не пользовательский
    """
    head = f"{prefix}:"
    if not channel.startswith(head):
        return None
    tail = channel[len(head):]
    return int(tail) if tail.isdigit() else None


class RedisSubscriber:
    """
    Psubscribe на {prefix}:* и передача каждого уведомления в message_handler.

    Ошибки Redis не останавливают прослушивание: после паузы чтение
    продолжается на том же PubSub (redis-py переподключается сам).
    """

    RETRY_PAUSE = 1.0

    def __init__(
        self,
        pubsub_factory: Callable[[], "PubSub"],
        channel_prefix: str,
        message_handler: MessageHandler,
    ) -> None:
        self._pubsub_factory = pubsub_factory
        self._prefix = channel_prefix
        self._handler = message_handler
        self._pubsub: Optional[PubSub] = None
        self._listener: Optional[asyncio.Task] = None

    @property
    def pattern(self) -> str:
        return f"{self._prefix}:*"

    async def start(self) -> None:
        if self._listener is not None:
            return
        pubsub = self._pubsub_factory()
        await pubsub.psubscribe(self.pattern)
        self._pubsub = pubsub
        self._listener = asyncio.create_task(self._listen(pubsub), name="push:redis-listener")

    async def stop(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.cancel()
            await asyncio.gather(listener, return_exceptions=True)

        pubsub, self._pubsub = self._pubsub, None
        if pubsub is not None:
            await pubsub.punsubscribe()
            await pubsub.aclose()

    async def _listen(self, pubsub: "PubSub") -> None:
        while True:
            try:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except redis.RedisError as e:
                await log_error(f"Pub/Sub уведомлений: {e}")
                await asyncio.sleep(self.RETRY_PAUSE)
                continue
            if message is not None:
                await self.process_message(message)

    @staticmethod
    def _text(value: Any) -> str:
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    async def process_message(self, message: dict[str, Any]) -> bool:
        """
        Разбирает сообщение Pub/Sub и вызывает обработчик.

        Returns:
            True если сообщение передано обработчику
        """
        if message.get("type") not in ("message", "pmessage"):
            return False

        channel = self._text(message.get("channel", b""))
        user_id = parse_user_id(channel, self._prefix)
        if user_id is None:
            return False

        try:
            payload = json.loads(self._text(message.get("data", b"")))
        except json.JSONDecodeError:
            await log_warning(f"Канал {channel}: сообщение не JSON, пропущено")
            return False

        await self._handler(user_id, payload)
        return True

# src/infra/redis_client.py
"""
Клиент Redis: кэш настроек отчётов и pub/sub канал уведомлений.

Все ключи и каналы получают префикс namespace, чтобы несколько
окружений могли делить один Redis.
"""

from __future__ import annotations

import json
from typing import Any, Type, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel, ValidationError

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning

M = TypeVar("M", bound=BaseModel)


class RedisClient:
    """Обёртка над redis.asyncio с namespace и pydantic-сериализацией."""

    def __init__(self, namespace: str = "dispatch") -> None:
        self._client: redis.Redis | None = None
        self.namespace = namespace

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован: сначала вызовите connect()")
        return self._client

    def make_key(self, key: str) -> str:
        """Ключ или имя канала с namespace."""
        return f"{self.namespace}:{key}"

    async def connect(self, url: str, max_connections: int = 50) -> None:
        """
        Создаёт пул соединений и проверяет его PING.

        Args:
            url: redis://[:password@]host:port/db
            max_connections: Размер пула
        """
        if self._client is not None:
            return
        client = redis.from_url(url, max_connections=max_connections, decode_responses=True)
        await client.ping()
        self._client = client
        await log_info(f"Redis подключён (namespace={self.namespace})", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose()
        await log_info("Redis отключён", type_msg=TypeMsg.INFO)

    # =========================================================================
    # КЭШ
    # =========================================================================

    async def get_model(self, key: str, model_class: Type[M]) -> M | None:
        """
        Читает закэшированную модель.

        Отсутствующий или повреждённый ключ считается промахом.
        """
        raw = await self.client.get(self.make_key(key))
        if raw is None:
            return None
        try:
            return model_class.model_validate_json(raw)
        except ValidationError as e:
            await log_warning(f"Повреждённый кэш {key} ({model_class.__name__}): {e.error_count()} ошибок")
            return None

    async def set_model(self, key: str, model: BaseModel, ttl: int | None = None) -> bool:
        """Кладёт модель в кэш как JSON, ttl в секундах."""
        return bool(await self.client.set(self.make_key(key), model.model_dump_json(), ex=ttl))

    async def delete(self, key: str) -> int:
        return await self.client.delete(self.make_key(key))

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish_json(self, channel: str, data: dict[str, Any]) -> int:
        """
        Публикует JSON-сообщение.

        Returns:
            Сколько подписчиков получили сообщение
        """
        message = json.dumps(data, ensure_ascii=False, default=str)
        return await self.client.publish(self.make_key(channel), message)

    def pubsub(self) -> Any:
        return self.client.pubsub()

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (redis.RedisError, RuntimeError) as e:
            await log_error(f"Redis health check: {e}")
            return False


_redis: RedisClient | None = None


def get_redis() -> RedisClient:
    """Общий для процесса RedisClient."""
    global _redis
    if _redis is None:
        from src.config import settings

        _redis = RedisClient(namespace=settings.redis.REDIS_NAMESPACE)
    return _redis


async def init_redis() -> None:
    from src.config import settings

    cfg = settings.redis
    await get_redis().connect(cfg.url, max_connections=cfg.REDIS_MAX_CONNECTIONS)
    await log_info(f"Redis: {cfg.REDIS_HOST}:{cfg.REDIS_PORT}/{cfg.REDIS_DB}", type_msg=TypeMsg.INFO)


async def close_redis() -> None:
    if _redis is not None:
        await _redis.disconnect()

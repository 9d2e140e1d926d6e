# src/infra/database.py
"""
Пул соединений PostgreSQL (asyncpg).

Репозитории работают либо через DatabaseManager (отдельное соединение
на запрос), либо через соединение открытой транзакции: у обоих
одинаковые методы execute / fetch / fetchrow / fetchval.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, TypeVar, Union

import asyncpg
from asyncpg import Connection, Pool, Record

from src.common.constants import TypeMsg
from src.common.errors import ConflictError
from src.common.logger import log_error, log_info, log_warning

T = TypeVar("T")

# Ошибки, после которых имеет смысл повторить подключение
CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionRefusedError,
    OSError,
)

# Ключ advisory lock для применения схемы
SCHEMA_LOCK_KEY = 731002


async def with_connection_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    delay: float = 1.0,
) -> T:
    """
    Выполняет операцию подключения с повторами.

    Задержка растёт линейно: delay, 2*delay, ...
    Ошибки SQL и доменные ошибки пробрасываются сразу.

    Args:
        operation: Фабрика корутины (вызывается на каждую попытку)
        attempts: Число попыток
        delay: Базовая задержка, секунды
    """
    attempts = max(attempts, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except CONNECTION_ERRORS as e:
            if attempt == attempts:
                await log_error(f"PostgreSQL недоступен, попыток: {attempts}. Последняя ошибка: {e}")
                raise
            await log_warning(f"PostgreSQL недоступен ({attempt}/{attempts}), повтор через {delay * attempt}с: {e}")
            await asyncio.sleep(delay * attempt)
    raise RuntimeError("unreachable")


@asynccontextmanager
async def unique_violation_as(
    error_factory: Callable[[], ConflictError],
) -> AsyncGenerator[None, None]:
    """
    Переводит нарушение уникального индекса в доменный конфликт.

    Example:
        async with unique_violation_as(lambda: ConflictError("Shift already active")):
            await conn.execute("INSERT INTO shifts ...")
    """
    try:
        yield
    except asyncpg.UniqueViolationError as e:
        await log_warning(f"Нарушение уникальности: {e.constraint_name or e}")
        raise error_factory() from e


class DatabaseManager:
    """Владелец пула соединений и короткие хелперы запросов."""

    def __init__(self, retry_attempts: int = 3, retry_delay: float = 1.0) -> None:
        """
        Args:
            retry_attempts: Попыток подключения при старте
            retry_delay: Базовая задержка между попытками, секунды
        """
        self._pool: Pool | None = None
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    @property
    def pool(self) -> Pool:
        if self._pool is None:
            raise RuntimeError("Пул соединений не инициализирован: сначала вызовите connect()")
        return self._pool

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(
        self,
        dsn: str,
        *,
        min_size: int = 5,
        max_size: int = 20,
        command_timeout: int = 60,
    ) -> None:
        """
        Открывает пул. Повторный вызов при открытом пуле ничего не делает.

        Args:
            dsn: Строка подключения postgresql://
            min_size: Минимум соединений в пуле
            max_size: Максимум соединений в пуле
            command_timeout: Таймаут одного запроса, секунды
        """
        if self._pool is not None:
            return

        self._pool = await with_connection_retry(
            lambda: asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=command_timeout,
            ),
            attempts=self.retry_attempts,
            delay=self.retry_delay,
        )
        await log_info(f"Пул PostgreSQL открыт ({min_size}..{max_size} соединений)", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        await log_info("Пул PostgreSQL закрыт", type_msg=TypeMsg.INFO)

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        """Соединение из пула на время блока."""
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Connection, None]:
        """
        Транзакция на отдельном соединении.

        Любое исключение внутри блока (в том числе доменное) откатывает
        все изменения, уведомления отправляются только после выхода.

        Example:
            async with db.transaction() as conn:
                ride = await rides.transition(..., conn=conn)
                await availability.release(ride.driver_id, conn=conn)
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def _run(self, method: str, query: str, *args: Any, **kwargs: Any) -> Any:
        async with self.pool.acquire() as conn:
            return await getattr(conn, method)(query, *args, **kwargs)

    async def execute(self, query: str, *args: Any) -> str:
        return await self._run("execute", query, *args)

    async def fetch(self, query: str, *args: Any) -> list[Record]:
        return await self._run("fetch", query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Record | None:
        return await self._run("fetchrow", query, *args)

    async def fetchval(self, query: str, *args: Any, column: int = 0) -> Any:
        return await self._run("fetchval", query, *args, column=column)

    async def health_check(self) -> bool:
        """SELECT 1 через пул; False при любой ошибке."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            await log_error(f"PostgreSQL health check: {e}")
            return False


# Соединение транзакции или менеджер: у обоих одинаковые fetch*/execute
Executor = Union[DatabaseManager, Connection]

_db: DatabaseManager | None = None


def get_db() -> DatabaseManager:
    """Общий для процесса DatabaseManager."""
    global _db
    if _db is None:
        from src.config import settings

        _db = DatabaseManager(
            retry_attempts=settings.database.DB_RETRY_ATTEMPTS,
            retry_delay=settings.database.DB_RETRY_DELAY,
        )
    return _db


async def init_db() -> None:
    """Открывает пул по настройкам и применяет схему."""
    from src.config import settings

    cfg = settings.database
    db = get_db()
    await db.connect(
        cfg.dsn,
        min_size=cfg.DB_MIN_POOL_SIZE,
        max_size=cfg.DB_MAX_POOL_SIZE,
        command_timeout=cfg.DB_COMMAND_TIMEOUT,
    )
    await log_info(f"PostgreSQL: {cfg.DB_HOST}:{cfg.DB_PORT}/{cfg.DB_NAME}", type_msg=TypeMsg.INFO)
    await apply_schema(db)


async def apply_schema(db: DatabaseManager) -> bool:
    """
    Выполняет migrations/init.sql.

    Скрипт идемпотентный; несколько инстансов API могут стартовать
    одновременно, поэтому применение сериализуется advisory lock.

    Returns:
        True если схема применена
    """
    from src.config.loader import get_project_root

    path = get_project_root() / "migrations" / "init.sql"
    if not path.exists():
        await log_error(f"Нет файла схемы: {path}")
        return False

    sql = path.read_text(encoding="utf-8")
    async with db.transaction() as conn:
        await conn.execute(f"SELECT pg_advisory_xact_lock({SCHEMA_LOCK_KEY})")
        await conn.execute(sql)

    await log_info(f"Схема применена: {path.name}", type_msg=TypeMsg.INFO)
    return True


async def close_db() -> None:
    if _db is not None:
        await _db.disconnect()

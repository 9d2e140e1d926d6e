# src/services/dispatch_api/app.py
"""
FastAPI приложение диспетчерской.

Endpoints:
- /api/v1/rides, /api/v1/driver/rides - поездки (диспетчер / водитель)
- /api/v1/shifts - смены
- /api/v1/reports, /api/v1/settings/reports - отчёты водителей и настройки
- /api/v1/notifications - уведомления
- /ws/notifications - push-канал уведомлений
- /health - проверка здоровья
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from src.common.constants import TypeMsg
from src.common.logger import log_info, setup_logging
from src.config import settings
from src.infra.database import close_db, get_db, init_db
from src.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from src.infra.redis_client import close_redis, get_redis, init_redis
from src.services.dispatch_api.dependencies import set_push_hub
from src.services.dispatch_api.errors import install_error_handlers
from src.services.dispatch_api.routes import ROUTERS
from src.services.dispatch_api.routes.notifications import ws_router
from src.services.realtime_ws import PushHub


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    setup_logging()
    await init_db()
    await init_redis()
    await init_event_bus()

    hub = PushHub(
        get_redis(),
        channel_prefix=settings.dispatch.NOTIFICATION_CHANNEL_PREFIX,
        keepalive_interval=settings.realtime.PUSH_KEEPALIVE_INTERVAL,
        send_timeout=settings.realtime.PUSH_SEND_TIMEOUT,
    )
    await hub.start()
    set_push_hub(hub)
    await log_info("HTTP API диспетчерской запущен", type_msg=TypeMsg.INFO)

    yield

    await hub.stop()
    set_push_hub(None)
    await close_event_bus()
    await close_redis()
    await close_db()


def create_app(with_lifespan: bool = True) -> FastAPI:
    """
    Собирает приложение.

    Args:
        with_lifespan: Подключать ли инфраструктуру при старте (False для тестов)
    """
    app = FastAPI(
        title="Taxi Dispatch API",
        description="Диспетчеризация поездок, смены и отчёты водителей.",
        version=settings.system.VERSION,
        lifespan=lifespan if with_lifespan else None,
    )
    install_error_handlers(app)

    for router in ROUTERS:
        app.include_router(router, prefix="/api/v1")
    app.include_router(ws_router)

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, Any]:
        """Проверка здоровья сервиса и его зависимостей."""
        checks = {
            "database": await get_db().health_check(),
            "redis": await get_redis().health_check(),
            "rabbitmq": await get_event_bus().health_check(),
        }
        return {
            "status": "healthy" if all(checks.values()) else "degraded",
            "service": "dispatch_api",
            "version": settings.system.VERSION,
            "checks": checks,
        }

    return app


app = create_app()

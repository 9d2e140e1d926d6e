#!/usr/bin/env python3
# main.py
"""
Запуск диспетчерской: python main.py [api|worker|all]

Без аргумента режим берётся из COMPONENT_MODE. Компоненты работают
в одном процессе до SIGINT/SIGTERM или до падения любого из них.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Awaitable, Callable

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, setup_logging
from src.config import settings
from src.infra.database import close_db, init_db
from src.infra.event_bus import close_event_bus, init_event_bus
from src.infra.redis_client import close_redis, init_redis

USAGE = """\
Taxi Dispatch: поездки, смены и отчёты водителей

Использование:
    python main.py [api|worker|all]

    api       HTTP API и push-канал уведомлений
    worker    Сверка доступности водителей
    all       API и воркеры в одном процессе
"""

Component = Callable[[asyncio.Event], Awaitable[None]]


async def serve_api(stop: asyncio.Event) -> None:
    import uvicorn

    cfg = settings.deployment
    server = uvicorn.Server(uvicorn.Config(
        "src.services.dispatch_api.app:app",
        host=cfg.API_HOST,
        port=cfg.API_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    ))

    async def exit_on_stop() -> None:
        await stop.wait()
        server.should_exit = True

    watcher = asyncio.create_task(exit_on_stop())
    await log_info(f"HTTP API: {cfg.API_HOST}:{cfg.API_PORT}", type_msg=TypeMsg.INFO)
    try:
        await server.serve()
    finally:
        watcher.cancel()


async def serve_workers(stop: asyncio.Event) -> None:
    from src.worker.runner import run_workers

    await run_workers(init_infra=False, stop_event=stop)


COMPONENTS: dict[str, tuple[Component, ...]] = {
    "api": (serve_api,),
    "worker": (serve_workers,),
    "all": (serve_api, serve_workers),
}


def install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))


async def main(mode: str | None = None) -> None:
    setup_logging()
    mode = mode or settings.system.COMPONENT_MODE
    if mode not in COMPONENTS:
        await log_error(f"Неизвестный режим запуска: {mode}")
        return

    stop = asyncio.Event()
    install_signal_handlers(stop)
    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION}, режим {mode}",
        type_msg=TypeMsg.INFO,
    )

    await init_db()
    await init_redis()
    await init_event_bus()

    tasks = [asyncio.create_task(component(stop)) for component in COMPONENTS[mode]]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        stop.set()
        await asyncio.gather(*tasks, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                await log_error(f"Компонент упал: {task.exception()}")
                raise task.exception()
    finally:
        await close_event_bus()
        await close_redis()
        await close_db()
        await log_info("Остановлено", type_msg=TypeMsg.INFO)


if __name__ == "__main__":
    arg = sys.argv[1].lower() if len(sys.argv) > 1 else None
    if arg in ("-h", "--help"):
        print(USAGE)
        sys.exit(0)
    if arg is not None and arg not in COMPONENTS:
        print(f"Неизвестный режим: {arg}\n\n{USAGE}")
        sys.exit(1)

    try:
        asyncio.run(main(arg))
    except KeyboardInterrupt:
        pass

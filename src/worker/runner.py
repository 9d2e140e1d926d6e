# src/worker/runner.py
"""
Процесс воркеров: python -m src.worker.runner
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, setup_logging
from src.config import settings
from src.infra.database import close_db, init_db
from src.infra.event_bus import close_event_bus, init_event_bus
from src.worker.availability_sweep import AvailabilitySweepWorker
from src.worker.base import BaseWorker


def build_workers() -> List[BaseWorker]:
    return [
        AvailabilitySweepWorker(interval=settings.dispatch.AVAILABILITY_SWEEP_INTERVAL),
    ]


async def run_workers(init_infra: bool = True, stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Поднимает воркеры и держит их до stop_event (или до отмены задачи).

    Args:
        init_infra: Подключать PostgreSQL и RabbitMQ самостоятельно.
                    main.py в режиме all подключает их сам и передаёт False.
        stop_event: Событие остановки; без него работаем до отмены
    """
    setup_logging()
    if init_infra:
        await init_db()
        await init_event_bus()

    stop_event = stop_event or asyncio.Event()
    workers = build_workers()
    try:
        for worker in workers:
            await worker.start()
        await log_info(f"Воркеров запущено: {len(workers)}", type_msg=TypeMsg.INFO)
        await stop_event.wait()
    except asyncio.CancelledError:
        await log_info("Воркеры: получена отмена", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Воркеры: критическая ошибка: {e}", exc_info=True)
        raise
    finally:
        for worker in workers:
            await worker.stop()
        if init_infra:
            await close_event_bus()
            await close_db()
        await log_info("Воркеры остановлены", type_msg=TypeMsg.INFO)


if __name__ == "__main__":
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass

# src/worker/base.py
"""
Периодические воркеры.
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from typing import Optional

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.infra.database import DatabaseManager, get_db
from src.infra.event_bus import EventBus, get_event_bus


class BaseWorker(ABC):
    """
    Фоновая задача, которая вызывает run_once() раз в interval секунд.

    Первый проход выполняется сразу после start(). stop() дожидается
    окончания текущего прохода (не дольше interval) и только потом
    отменяет задачу.
    """

    def __init__(
        self,
        interval: float,
        event_bus: Optional[EventBus] = None,
        db: Optional[DatabaseManager] = None,
    ) -> None:
        self.interval = interval
        self.event_bus = event_bus or get_event_bus()
        self.db = db or get_db()
        self._stop_requested = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def run_once(self) -> None:
        ...

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._stop_requested.clear()
        self._task = asyncio.create_task(self._loop(), name=f"worker:{self.name}")
        await log_info(f"Воркер {self.name} запущен, интервал {self.interval}с", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        self._stop_requested.set()

        done, _ = await asyncio.wait({task}, timeout=self.interval)
        if not done:
            await log_warning(f"Воркер {self.name} не завершил проход вовремя, задача отменена")
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def tick(self) -> None:
        """Один проход. Ошибка прохода логируется, следующий проход состоится по расписанию."""
        try:
            await self.run_once()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await log_error(f"Воркер {self.name}: проход завершился ошибкой: {e}", exc_info=True)

    async def _loop(self) -> None:
        while not self._stop_requested.is_set():
            await self.tick()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_requested.wait(), timeout=self.interval)

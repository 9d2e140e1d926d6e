# tests/worker/test_base_worker.py
"""
Тесты базового периодического воркера.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.worker.base import BaseWorker


class CountingWorker(BaseWorker):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.run_once_mock = AsyncMock()

    @property
    def name(self) -> str:
        return "counting"

    async def run_once(self) -> None:
        await self.run_once_mock()


@pytest.fixture
def worker(mock_event_bus, mock_db) -> CountingWorker:
    return CountingWorker(60.0, event_bus=mock_event_bus, db=mock_db)


@pytest.mark.asyncio
async def test_start_runs_first_pass(worker):
    await worker.start()
    await asyncio.sleep(0)

    assert worker.is_running is True
    worker.run_once_mock.assert_awaited_once()

    await worker.stop()


@pytest.mark.asyncio
async def test_start_twice_keeps_one_task(worker):
    await worker.start()
    task = worker._task
    await worker.start()

    assert worker._task is task

    await worker.stop()


@pytest.mark.asyncio
async def test_stop_cancels_task(worker):
    await worker.start()
    await worker.stop()

    assert worker.is_running is False
    assert worker._task is None


@pytest.mark.asyncio
async def test_stop_when_not_running(worker):
    await worker.stop()

    assert worker.is_running is False


@pytest.mark.asyncio
async def test_tick_swallows_errors(worker):
    worker.run_once_mock.side_effect = ConnectionError("db down")

    await worker.tick()

    worker.run_once_mock.assert_awaited_once()


@pytest.mark.asyncio
async def test_tick_propagates_cancellation(worker):
    worker.run_once_mock.side_effect = asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await worker.tick()

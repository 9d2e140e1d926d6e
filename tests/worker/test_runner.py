# tests/worker/test_runner.py
"""
Тесты запускалки воркеров.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from src.worker.availability_sweep import AvailabilitySweepWorker
from src.worker.runner import build_workers, run_workers


def _stopped() -> asyncio.Event:
    event = asyncio.Event()
    event.set()
    return event


@pytest.fixture
def mock_infra():
    with patch("src.worker.runner.init_db", new_callable=AsyncMock) as mock_init_db, \
         patch("src.worker.runner.close_db", new_callable=AsyncMock) as mock_close_db, \
         patch("src.worker.runner.init_event_bus", new_callable=AsyncMock) as mock_init_event_bus, \
         patch("src.worker.runner.close_event_bus", new_callable=AsyncMock) as mock_close_event_bus:
        yield {
            "init_db": mock_init_db,
            "close_db": mock_close_db,
            "init_event_bus": mock_init_event_bus,
            "close_event_bus": mock_close_event_bus,
        }


@pytest.fixture
def mock_worker():
    with patch("src.worker.runner.build_workers") as mock_build:
        worker = AsyncMock()
        mock_build.return_value = [worker]
        yield worker


@pytest.mark.asyncio
async def test_run_workers_lifecycle(mock_infra, mock_worker):
    await run_workers(stop_event=_stopped())

    mock_infra["init_db"].assert_awaited_once()
    mock_infra["init_event_bus"].assert_awaited_once()
    mock_worker.start.assert_awaited_once()
    mock_worker.stop.assert_awaited_once()
    mock_infra["close_event_bus"].assert_awaited_once()
    mock_infra["close_db"].assert_awaited_once()


@pytest.mark.asyncio
async def test_run_workers_without_infra(mock_infra, mock_worker):
    await run_workers(init_infra=False, stop_event=_stopped())

    mock_infra["init_db"].assert_not_awaited()
    mock_infra["close_db"].assert_not_awaited()
    mock_worker.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_worker_start_error_stops_and_raises(mock_infra, mock_worker):
    mock_worker.start.side_effect = RuntimeError("start failed")

    with pytest.raises(RuntimeError, match="start failed"):
        await run_workers()

    mock_worker.stop.assert_awaited_once()
    mock_infra["close_db"].assert_awaited_once()


@pytest.mark.asyncio
async def test_init_error_propagates(mock_infra, mock_worker):
    mock_infra["init_db"].side_effect = ConnectionError("no database")

    with pytest.raises(ConnectionError, match="no database"):
        await run_workers()

    mock_worker.start.assert_not_awaited()


def test_build_workers(mock_event_bus, mock_db):
    with patch("src.worker.base.get_event_bus", return_value=mock_event_bus), \
         patch("src.worker.base.get_db", return_value=mock_db):
        workers = build_workers()

    assert len(workers) == 1
    assert isinstance(workers[0], AvailabilitySweepWorker)


@pytest.mark.asyncio
async def test_cancellation_stops_workers(mock_infra, mock_worker):
    task = asyncio.create_task(run_workers(init_infra=False))
    await asyncio.sleep(0)
    task.cancel()
    await task

    mock_worker.start.assert_awaited_once()
    mock_worker.stop.assert_awaited_once()

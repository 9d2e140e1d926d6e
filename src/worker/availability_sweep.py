# src/worker/availability_sweep.py
"""
Воркер сверки доступности водителей.

Периодически приводит флаг users.status в соответствие с активными
поездками: водитель on_ride без поездки освобождается, свободный
водитель с активной поездкой помечается занятым.
"""

from __future__ import annotations

from typing import Optional

from src.core.availability import DriverAvailabilityTracker, SweepResult
from src.infra.database import DatabaseManager
from src.infra.event_bus import DomainEvent, EventBus, EventTypes
from src.worker.base import BaseWorker


class AvailabilitySweepWorker(BaseWorker):
    """Периодическая сверка доступности водителей."""

    def __init__(
        self,
        interval: float = 60.0,
        event_bus: Optional[EventBus] = None,
        db: Optional[DatabaseManager] = None,
        tracker: Optional[DriverAvailabilityTracker] = None,
    ) -> None:
        super().__init__(interval, event_bus=event_bus, db=db)
        self.tracker = tracker or DriverAvailabilityTracker(self.db)
        self.last_result: Optional[SweepResult] = None

    @property
    def name(self) -> str:
        return "availability_sweep"

    async def run_once(self) -> None:
        result = await self.tracker.sweep()
        self.last_result = result
        if not result.corrected:
            return

        await self.event_bus.publish(DomainEvent(
            event_type=EventTypes.DRIVER_AVAILABILITY_CORRECTED,
            payload={"released": result.released, "occupied": result.occupied},
        ))

"""
Трекер доступности водителей.
Единственная точка изменения статуса free/on_ride.
"""

from src.core.availability.service import DriverAvailabilityTracker, SweepResult

__all__ = [
    "DriverAvailabilityTracker",
    "SweepResult",
]

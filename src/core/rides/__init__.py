"""
Поездки: модели, машина состояний, диспетчерские и водительские операции.
"""

from src.core.rides.models import Ride, RideFare
from src.core.rides.state_machine import RideEvent, RideStateMachine

__all__ = [
    "Ride",
    "RideFare",
    "RideEvent",
    "RideStateMachine",
]

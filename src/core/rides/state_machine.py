# src/core/rides/state_machine.py
"""
Машина состояний поездки.
Таблица переходов хранится как данные; сервисы только спрашивают её.
"""

from __future__ import annotations

from enum import Enum
from typing import Union

from src.common.constants import RideStatus
from src.common.errors import InvalidTransitionError


class RideEvent(str, Enum):
    """События жизненного цикла поездки."""
    ASSIGN = "assign"
    REASSIGN = "reassign"
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    ABORT = "abort"
    START = "start"
    COMPLETE = "complete"


class RideStateMachine:
    ALLOWED_TRANSITIONS: dict[RideStatus, list[RideStatus]] = {
        RideStatus.SCHEDULED: [RideStatus.ASSIGNED],
        RideStatus.ASSIGNED: [
            RideStatus.ACCEPTED,
            RideStatus.REJECTED,
            RideStatus.CANCELLED,
            RideStatus.ABORTED,
        ],
        RideStatus.ACCEPTED: [RideStatus.STARTED, RideStatus.CANCELLED, RideStatus.ABORTED],
        RideStatus.STARTED: [RideStatus.COMPLETED, RideStatus.CANCELLED],
        RideStatus.REJECTED: [],
        RideStatus.CANCELLED: [],
        RideStatus.ABORTED: [],
        RideStatus.COMPLETED: [],
    }

    # событие -> (исходные статусы, целевой статус)
    EVENT_TRANSITIONS: dict[RideEvent, tuple[tuple[RideStatus, ...], RideStatus]] = {
        RideEvent.ASSIGN: ((RideStatus.SCHEDULED,), RideStatus.ASSIGNED),
        RideEvent.REASSIGN: ((RideStatus.ASSIGNED,), RideStatus.ASSIGNED),
        RideEvent.ACCEPT: ((RideStatus.ASSIGNED,), RideStatus.ACCEPTED),
        RideEvent.REJECT: ((RideStatus.ASSIGNED,), RideStatus.REJECTED),
        RideEvent.CANCEL: (
            (RideStatus.ASSIGNED, RideStatus.ACCEPTED, RideStatus.STARTED),
            RideStatus.CANCELLED,
        ),
        RideEvent.ABORT: ((RideStatus.ASSIGNED, RideStatus.ACCEPTED), RideStatus.ABORTED),
        RideEvent.START: ((RideStatus.ACCEPTED,), RideStatus.STARTED),
        RideEvent.COMPLETE: ((RideStatus.STARTED,), RideStatus.COMPLETED),
    }

    @staticmethod
    def can_transition(current_status: Union[str, RideStatus], new_status: Union[str, RideStatus]) -> bool:
        try:
            curr = RideStatus(current_status)
            new = RideStatus(new_status)
            return new in RideStateMachine.ALLOWED_TRANSITIONS.get(curr, [])
        except ValueError:
            return False

    @staticmethod
    def is_terminal(status: Union[str, RideStatus]) -> bool:
        return not RideStateMachine.ALLOWED_TRANSITIONS.get(RideStatus(status))

    @staticmethod
    def sources_for(event: RideEvent) -> tuple[RideStatus, ...]:
        """Статусы, из которых допустимо событие."""
        return RideStateMachine.EVENT_TRANSITIONS[event][0]

    @staticmethod
    def target_for(event: RideEvent, current_status: Union[str, RideStatus]) -> RideStatus:
        """
        Возвращает целевой статус события.

        Args:
            event: Событие
            current_status: Текущий статус поездки

        Raises:
            InvalidTransitionError: Если событие недопустимо в текущем статусе
        """
        sources, target = RideStateMachine.EVENT_TRANSITIONS[event]
        current = RideStatus(current_status)
        if current not in sources:
            raise InvalidTransitionError(current.value, event=event.value)
        return target

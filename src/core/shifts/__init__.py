"""
Смены водителей.
"""

from src.core.shifts.models import Shift, ShiftSummary

__all__ = [
    "Shift",
    "ShiftSummary",
]

# src/worker/__init__.py
"""
Фоновые периодические воркеры.
"""

from src.worker.availability_sweep import AvailabilitySweepWorker
from src.worker.base import BaseWorker

__all__ = ["AvailabilitySweepWorker", "BaseWorker"]

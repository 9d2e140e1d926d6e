"""
Отчёты водителей и сверка с поездками.
"""

from src.core.reports.models import DriverReport, ReportCalculations, ReportInputs

__all__ = [
    "DriverReport",
    "ReportCalculations",
    "ReportInputs",
]

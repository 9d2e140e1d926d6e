# src/services/dispatch_api/routes/__init__.py
"""
Роутеры HTTP API.
"""

from src.services.dispatch_api.routes import notifications, reports, rides, shifts

ROUTERS = (
    rides.router,
    rides.driver_router,
    shifts.router,
    reports.router,
    reports.settings_router,
    notifications.router,
)

__all__ = ["ROUTERS"]

# src/services/__init__.py
"""
Транспортный слой приложения.

Сервисы:
- dispatch_api: HTTP API диспетчерской (поездки, смены, отчёты, уведомления)
- realtime_ws: push-хаб уведомлений поверх Redis Pub/Sub
"""

__all__: list[str] = []

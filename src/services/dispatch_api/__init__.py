# src/services/dispatch_api/__init__.py
"""
HTTP API диспетчерской.

Роутеры поверх сервисов ядра: поездки, смены, отчёты водителей,
настройки отчётов и уведомления (включая WebSocket).
"""

# src/services/realtime_ws/__init__.py
"""
Push-хаб уведомлений.

Обеспечивает:
- WebSocket соединения пользователей (по ID соединения)
- Доставку уведомлений из Redis Pub/Sub
- Keepalive-пинг соединений
"""

from src.services.realtime_ws.connection_manager import ConnectionManager
from src.services.realtime_ws.hub import PushHub

__all__ = ["ConnectionManager", "PushHub"]

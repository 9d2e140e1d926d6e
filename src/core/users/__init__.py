"""
Домен пользователей.
Актор запроса и поиск пользователей по ролям.
"""

from src.core.users.models import Actor, User

__all__ = [
    "Actor",
    "User",
]

# src/core/users/models.py
"""
Модели данных пользователей.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.common.constants import DriverStatus, UserRole


class User(BaseModel):
    """Модель пользователя (админ, менеджер или водитель)."""

    id: int = Field(..., description="ID пользователя")
    name: str = Field(..., description="Имя")
    email: Optional[str] = Field(None, description="Email")
    role: UserRole = Field(..., description="Роль пользователя")
    status: DriverStatus = Field(DriverStatus.FREE, description="Доступность (только для водителей)")
    is_active: bool = Field(True, description="Активна ли учётная запись")
    created_at: Optional[datetime] = Field(None, description="Дата создания")

    class Config:
        from_attributes = True

    @property
    def is_driver(self) -> bool:
        """Является ли пользователь водителем."""
        return self.role == UserRole.DRIVER


@dataclass(frozen=True)
class Actor:
    """Аутентифицированный инициатор запроса (доверяем провайдеру идентичности)."""
    id: int
    role: UserRole

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER

    @property
    def is_staff(self) -> bool:
        """Админ или менеджер."""
        return self.role in (UserRole.ADMIN, UserRole.MANAGER)

# src/core/directory/models.py
"""
Модели справочников.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Client(BaseModel):
    """Клиент (пассажир) из справочника."""

    id: str = Field(..., description="ID клиента")
    name: str = Field(..., description="Имя клиента")
    phone: Optional[str] = Field(None, description="Телефон")
    created_by_driver: bool = Field(False, description="Создан водителем")
    created_by: Optional[int] = Field(None, description="ID создателя")
    created_at: Optional[datetime] = Field(None, description="Дата создания")

    class Config:
        from_attributes = True


class Destination(BaseModel):
    """Адрес (точка подачи или назначения)."""

    id: str = Field(..., description="ID адреса")
    name: str = Field(..., description="Название")
    address: Optional[str] = Field(None, description="Полный адрес")
    created_by_driver: bool = Field(False, description="Создан водителем")
    created_by: Optional[int] = Field(None, description="ID создателя")
    created_at: Optional[datetime] = Field(None, description="Дата создания")

    class Config:
        from_attributes = True

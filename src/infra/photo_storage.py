# src/infra/photo_storage.py
"""
Клиент внешнего хранилища фото.

Ядро хранит только непрозрачные ссылки на фото: проверяет их формат
и удаляет файл при замене или удалении отчёта.
"""

from __future__ import annotations

from urllib.parse import quote, urlparse

import httpx

from src.common.constants import TypeMsg
from src.common.errors import ValidationError
from src.common.logger import log_error, log_info

PENDING_PHOTO = "pending"


class PhotoStorageClient:
    """HTTP-клиент хранилища фото."""

    def __init__(
        self,
        base_url: str = "",
        token: str = "",
        timeout: float = 10.0,
    ) -> None:
        """
        Args:
            base_url: Базовый URL API хранилища (пусто, если удаление не настроено)
            token: Bearer-токен API
            timeout: Таймаут HTTP-запросов
        """
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout

    @classmethod
    def from_settings(cls) -> PhotoStorageClient:
        """Создаёт клиент из конфигурации."""
        from src.config import settings

        return cls(
            base_url=settings.photo_storage.PHOTO_STORAGE_URL,
            token=settings.photo_storage.PHOTO_STORAGE_TOKEN,
            timeout=settings.photo_storage.PHOTO_STORAGE_TIMEOUT,
        )

    @staticmethod
    def is_present(reference: str | None) -> bool:
        """Есть ли реальное фото (не пусто и не заглушка)."""
        return bool(reference) and reference != PENDING_PHOTO

    @staticmethod
    def validate_reference(reference: str | None) -> str:
        """
        Проверяет ссылку на фото.

        Args:
            reference: URL фото

        Returns:
            Нормализованная ссылка

        Raises:
            ValidationError: Если ссылка не является http(s) URL
        """
        if not reference or not reference.strip():
            raise ValidationError("Photo reference is required")

        reference = reference.strip()
        parsed = urlparse(reference)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Photo reference must be an http(s) URL", details={"photo": reference})
        return reference

    async def delete(self, reference: str | None) -> bool:
        """
        Удаляет фото из хранилища.

        Ошибки не пробрасываются: удаление фото не должно ломать операцию.

        Returns:
            True если хранилище подтвердило удаление
        """
        if not self.is_present(reference):
            return False

        if not self._base_url:
            await log_info(f"Хранилище фото не настроено, пропускаем удаление: {reference}", type_msg=TypeMsg.DEBUG)
            return False

        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.delete(
                    f"{self._base_url}/photos",
                    params={"url": reference},
                    headers=headers,
                )
            if response.status_code in (200, 202, 204, 404):
                return True
            await log_error(f"Хранилище фото вернуло {response.status_code} для {quote(reference)}")
            return False
        except httpx.HTTPError as e:
            await log_error(f"Не удалось удалить фото {reference}: {e}")
            return False

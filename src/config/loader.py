# src/config/loader.py
"""
Настройки сервисов диспетчерской.

config/config.json плоский: каждая секция забирает из него свои ключи.
Адреса инфраструктуры и секреты переопределяются переменными окружения
(и файлом .env в корне проекта).
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings


def get_project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def get_config_path() -> Path:
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """
    Читает config.json.

    Ключи вида "_comment_*" служат пояснениями в файле и отбрасываются.
    """
    config_path = path or get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    raw = json.loads(config_path.read_text(encoding="utf-8"))
    return {key: value for key, value in raw.items() if not key.startswith("_comment_")}


class _Section(BaseModel):
    """Секция плоского config.json."""

    # ключи, которые всегда можно переопределить из окружения
    ENV_OVERRIDES: ClassVar[tuple[str, ...]] = ()
    # секреты: пустое значение берётся из окружения
    ENV_SECRETS: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def _secrets_from_env(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        for key in cls.ENV_SECRETS:
            if not values.get(key) and os.getenv(key):
                values = {**values, key: os.getenv(key)}
        return values

    @classmethod
    def from_flat(cls, data: dict[str, Any]) -> "_Section":
        values = {name: data[name] for name in cls.model_fields if name in data}
        for key in cls.ENV_OVERRIDES:
            env_value = os.getenv(key)
            if env_value:
                values[key] = env_value
        return cls(**values)


class SystemSettings(_Section):
    ENV_OVERRIDES = ("COMPONENT_MODE", "ENVIRONMENT")

    PROJECT_NAME: str = "taxi_dispatch"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    # api | worker | all
    COMPONENT_MODE: str = "all"


class DeploymentSettings(_Section):
    ENV_OVERRIDES = ("API_HOST", "API_PORT")

    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8085


class LoggingSettings(_Section):
    ENV_OVERRIDES = ("LOG_LEVEL",)

    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = True
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(_Section):
    """PostgreSQL: пул и повторы подключения при старте."""
    ENV_OVERRIDES = ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")
    ENV_SECRETS = ("DB_PASSWORD",)

    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "taxi_dispatch"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = Field(3, ge=1)
    DB_RETRY_DELAY: float = Field(1.0, ge=0)

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


class RedisSettings(_Section):
    ENV_OVERRIDES = ("REDIS_HOST", "REDIS_PORT", "REDIS_PASSWORD")
    ENV_SECRETS = ("REDIS_PASSWORD",)

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "dispatch"
    REDIS_MAX_CONNECTIONS: int = 50

    @property
    def url(self) -> str:
        credentials = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{credentials}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(_Section):
    """Время жизни кэша, секунды."""
    REPORT_SETTINGS_TTL: int = 300


class RabbitMQSettings(_Section):
    ENV_OVERRIDES = ("RABBITMQ_HOST", "RABBITMQ_PORT", "RABBITMQ_USER", "RABBITMQ_PASSWORD")

    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "dispatch.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @property
    def url(self) -> str:
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class DispatchSettings(_Section):
    """Поездки, сверка доступности и каналы уведомлений."""
    DEFAULT_GST_DIVISOR: float = Field(11.0, gt=0)
    AVAILABILITY_SWEEP_INTERVAL: int = 60
    NOTIFICATION_CHANNEL_PREFIX: str = "notifications:user"


class ReportDefaultsSettings(_Section):
    """Начальные значения настроек отчётов (до первого сохранения админом)."""
    RENTAL_RATE_PERCENTAGE: float = 45.0
    TRIP_LEVY_RATE: float = 1.32
    GST_RATE: float = 10.0
    PHOTO_UPLOAD_MAX_SIZE_MB: int = 5
    REQUIRE_PHOTO_FOR_EFTPOS: bool = True
    REQUIRE_PHOTO_FOR_EXPENSES: bool = True
    AUTO_APPROVE_THRESHOLD: float = 0.0
    NOTIFY_ADMINS_ON_SUBMISSION: bool = True
    RETENTION_PERIOD_DAYS: int = 2555
    ALLOW_REPORT_EDITS_AFTER_SUBMISSION: bool = False


class PhotoStorageSettings(_Section):
    ENV_OVERRIDES = ("PHOTO_STORAGE_URL", "PHOTO_STORAGE_TOKEN")
    ENV_SECRETS = ("PHOTO_STORAGE_TOKEN",)

    PHOTO_STORAGE_URL: str = ""
    PHOTO_STORAGE_TOKEN: str = ""
    PHOTO_STORAGE_TIMEOUT: float = 10.0


class RealtimeSettings(_Section):
    """WebSocket-канал уведомлений."""
    PUSH_KEEPALIVE_INTERVAL: int = 25
    PUSH_SEND_TIMEOUT: float = 5.0


class Settings(BaseSettings):
    """Все секции конфигурации процесса."""

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    report_defaults: ReportDefaultsSettings = Field(default_factory=ReportDefaultsSettings)
    photo_storage: PhotoStorageSettings = Field(default_factory=PhotoStorageSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    # имя поля Settings -> класс секции
    SECTIONS: ClassVar[dict[str, type[_Section]]] = {
        "system": SystemSettings,
        "deployment": DeploymentSettings,
        "logging": LoggingSettings,
        "database": DatabaseSettings,
        "redis": RedisSettings,
        "redis_ttl": RedisTTLSettings,
        "rabbitmq": RabbitMQSettings,
        "dispatch": DispatchSettings,
        "report_defaults": ReportDefaultsSettings,
        "photo_storage": PhotoStorageSettings,
        "realtime": RealtimeSettings,
    }

    @classmethod
    def from_config_json(cls, path: Path | None = None) -> "Settings":
        """Собирает настройки из config.json с учётом окружения. Незнакомые ключи файла игнорируются."""
        data = load_config_json(path)
        return cls(**{name: section.from_flat(data) for name, section in cls.SECTIONS.items()})


@lru_cache()
def get_settings() -> Settings:
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    return Settings.from_config_json()


settings = get_settings()

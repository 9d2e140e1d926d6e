# src/common/logger.py
"""
Логирование сервисов диспетчерской.

Все функции log_* асинхронные и вызываются через await, чтобы сервисы
логировали одинаково в API и в воркерах. Формат вывода (json или
цветной текст) и запись в файл задаются секцией logging конфига.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType
from typing import Any

from src.common.constants import TypeMsg


DEFAULT_LOGGER = "taxi_dispatch"

# Шумные библиотеки, для которых достаточно WARNING
QUIET_LOGGERS = ("asyncpg", "redis", "aio_pika", "aiormq", "httpx", "uvicorn.access")

_file_handlers: dict[str, logging.Handler] = {}
_loggers: dict[str, logging.Logger] = {}
_initialized = False


class JsonFormatter(logging.Formatter):
    """Одна запись = одна JSON-строка."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Читаемый вывод в терминал при локальной разработке."""

    PALETTE = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    DIM = "\033[90m"
    RESET = "\033[0m"

    def _origin(self, record: logging.LogRecord) -> str:
        data = getattr(record, "extra_data", None) or {}
        if not data.get("caller_function"):
            return ""
        where = f"{data.get('caller_module')}.{data['caller_function']}() {data.get('caller_file')}:{data.get('caller_line')}"
        return f" {self.DIM}[{where}]{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        color = self.PALETTE.get(record.levelno, self.DIM)
        stamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        line = f"{stamp} {color}[{record.levelname}]{self.RESET}{self._origin(record)} {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class SizeRotatingFileHandler(RotatingFileHandler):
    """
    Файл <name>.log, который при переполнении переименовывается
    в <name>_<время>.log. Архивы не удаляются.
    """

    def __init__(self, log_dir: str, max_bytes: int, logger_name: str = "app", encoding: str = "utf-8"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.logger_name = logger_name
        super().__init__(
            filename=str(self.log_dir / f"{logger_name}.log"),
            maxBytes=max_bytes,
            backupCount=0,
            encoding=encoding,
        )

    def archive_path(self) -> Path:
        suffix = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        return self.log_dir / f"{self.logger_name}_{suffix}.log"

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None
        current = Path(self.baseFilename)
        if current.exists():
            try:
                current.rename(self.archive_path())
            except OSError as e:
                # файл держит другой процесс: пишем дальше в текущий
                sys.stderr.write(f"log rotation skipped for {current}: {e}\n")
        self.stream = self._open()


@dataclass
class _LogConfig:
    level: str = "DEBUG"
    fmt: str = "colored"
    to_file: bool = False
    file_path: str = "logs/app.log"
    max_bytes: int = 10485760


# поле _LogConfig -> (ключ секции logging, ожидаемый тип)
_CONFIG_FIELDS = {
    "level": ("LOG_LEVEL", str),
    "fmt": ("LOG_FORMAT", str),
    "to_file": ("LOG_TO_FILE", bool),
    "file_path": ("LOG_FILE_PATH", str),
    "max_bytes": ("LOG_MAX_BYTES", int),
}


def _read_log_config() -> _LogConfig:
    """Настройки из секции logging; без конфига остаются значения по умолчанию."""
    config = _LogConfig()
    try:
        from src.config import settings
        section = settings.logging
    except Exception:
        return config

    for attr, (key, expected) in _CONFIG_FIELDS.items():
        value = getattr(section, key, None)
        # settings в тестах бывает MagicMock
        if isinstance(value, expected):
            setattr(config, attr, value)
    return config


def _formatter(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JsonFormatter()
    return ColoredFormatter()


def _shared_file_handler(key: str, config: _LogConfig, name: str, level: int = logging.NOTSET) -> logging.Handler:
    handler = _file_handlers.get(key)
    if handler is None:
        handler = SizeRotatingFileHandler(
            log_dir=str(Path(config.file_path).parent),
            max_bytes=config.max_bytes,
            logger_name=name,
        )
        handler.setLevel(level)
        handler.setFormatter(_formatter(config.fmt))
        _file_handlers[key] = handler
    return handler


def setup_logging() -> None:
    """Готовит логгер процесса и приглушает сторонние библиотеки. Повторный вызов ничего не делает."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    get_logger(DEFAULT_LOGGER)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = DEFAULT_LOGGER) -> logging.Logger:
    """
    Логгер с консольным и (если включено) файловыми хендлерами.

    Файловые хендлеры общие для всех логгеров процесса: основной файл
    (с суффиксом SERVICE_NAME, когда API и воркер пишут в один каталог)
    и отдельный error.log только для ошибок.
    """
    cached = _loggers.get(name)
    if cached is not None:
        return cached

    config = _read_log_config()
    logger = logging.getLogger(name)
    level = logging.getLevelName(config.level.upper())
    logger.setLevel(level if isinstance(level, int) else logging.DEBUG)
    logger.propagate = False

    if not logger.handlers:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(_formatter(config.fmt))
        logger.addHandler(console)

        if config.to_file:
            main_name = Path(config.file_path).stem
            service = os.getenv("SERVICE_NAME")
            if service:
                main_name = f"{main_name}_{service}"
            logger.addHandler(_shared_file_handler("main", config, main_name))
            logger.addHandler(_shared_file_handler("error", config, "error", logging.ERROR))

    _loggers[name] = logger
    return logger


def _caller_frame() -> FrameType | None:
    frame = sys._getframe(1)
    while frame is not None and frame.f_globals.get("__name__") == __name__:
        frame = frame.f_back
    return frame


def _caller_info() -> dict[str, Any]:
    """Откуда вызвали log_*: первый фрейм за пределами этого модуля."""
    frame = _caller_frame()
    if frame is None:
        return {}
    try:
        return {
            "caller_function": frame.f_code.co_name,
            "caller_module": frame.f_globals.get("__name__", "unknown"),
            "caller_file": os.path.basename(frame.f_code.co_filename) or "unknown",
            "caller_line": frame.f_lineno,
        }
    finally:
        del frame


def _extra(extra: dict[str, Any] | None) -> dict[str, Any]:
    return {"extra_data": {**_caller_info(), **(extra or {})}}


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Пишет сообщение с уровнем type_msg.

    Args:
        message: Текст сообщения
        type_msg: Уровень (значение совпадает с именем метода logging.Logger)
        logger_name: Имя логгера
        extra: Поля, которые попадут в JSON-запись
    """
    emit = getattr(get_logger(logger_name), TypeMsg(type_msg).value)
    emit(message, extra=_extra(extra))


async def log_debug(message: str, logger_name: str = DEFAULT_LOGGER, extra: dict[str, Any] | None = None) -> None:
    await log_info(message, type_msg=TypeMsg.DEBUG, logger_name=logger_name, extra=extra)


async def log_warning(message: str, logger_name: str = DEFAULT_LOGGER, extra: dict[str, Any] | None = None) -> None:
    await log_info(message, type_msg=TypeMsg.WARNING, logger_name=logger_name, extra=extra)


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """ERROR; с exc_info=True к записи добавляется трейсбек текущего исключения."""
    get_logger(logger_name).error(message, extra=_extra(extra), exc_info=exc_info)

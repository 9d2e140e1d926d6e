# src/services/dispatch_api/errors.py
"""
Преобразование ошибок в HTTP-ответы.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.common.errors import DispatchError, ErrorCode
from src.common.logger import log_error


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    """Ошибка бизнес-логики -> статус и тело из исключения."""
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Невалидный запрос -> 422 VALIDATION_ERROR."""
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({
            "success": False,
            "message": "Request validation failed",
            "error": {"code": ErrorCode.VALIDATION_ERROR, "details": exc.errors()},
        }),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Сбой хранилища и прочие непредвиденные ошибки -> 500."""
    await log_error(f"Необработанная ошибка {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "error": {"code": ErrorCode.INTERNAL_SERVER_ERROR, "details": None},
        },
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DispatchError, dispatch_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

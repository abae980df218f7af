"""
Exception handlers mapping application errors to HTTP responses.

Every error body has the shape ``{"error": {"type": ..., "message": ...}}``.
Guard denials never reach these handlers; routes answer them with 409
directly (see ``schemas.guard_denied``).
"""

from typing import Dict, Type

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

import structlog

from serenis.core.exceptions import (
    ConfigurationError,
    LLMQuotaExhaustedError,
    LLMRateLimitError,
    LLMTimeoutError,
    RitualNotStartedError,
    SerenisError,
    SessionIncompleteError,
    StorageError,
)

log = structlog.get_logger(__name__)


# Checked in order; the first matching class wins
STATUS_BY_ERROR: Dict[Type[SerenisError], int] = {
    SessionIncompleteError: status.HTTP_409_CONFLICT,
    RitualNotStartedError: status.HTTP_409_CONFLICT,
    StorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
    LLMTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    LLMRateLimitError: status.HTTP_429_TOO_MANY_REQUESTS,
    LLMQuotaExhaustedError: status.HTTP_402_PAYMENT_REQUIRED,
}


def status_for(exc: SerenisError) -> int:
    for error_type, status_code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_response(status_code: int, error_type: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"type": error_type, "message": message}},
    )


def setup_exception_handlers(app: FastAPI):
    """Register the application's exception handlers on ``app``."""

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        log.error("configuration_error", path=request.url.path, message=exc.message)
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "ConfigurationError",
            "Server configuration error",
        )

    @app.exception_handler(SerenisError)
    async def serenis_error_handler(request: Request, exc: SerenisError):
        status_code = status_for(exc)
        log.warning(
            "request_error",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            message=exc.message,
            status_code=status_code,
        )
        return _error_response(status_code, type(exc).__name__, exc.message)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        log.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            exc_info=exc,
        )
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "InternalServerError",
            "An unexpected error occurred",
        )

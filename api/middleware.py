"""
Global middleware and domain-error → HTTP mapping.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Type

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from connectors.errors import (
    AuthExchangeError,
    ConfigurationError,
    NotLinked,
    ReauthorizationRequired,
    SnapshotNotFound,
    StreamingServiceError,
    SyncError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: Dict[Type[StreamingServiceError], int] = {
    ConfigurationError: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthExchangeError: status.HTTP_400_BAD_REQUEST,
    NotLinked: status.HTTP_404_NOT_FOUND,
    ReauthorizationRequired: status.HTTP_401_UNAUTHORIZED,
    SyncError: status.HTTP_502_BAD_GATEWAY,
    SnapshotNotFound: status.HTTP_404_NOT_FOUND,
}

_ERROR_KIND: Dict[Type[StreamingServiceError], str] = {
    ConfigurationError: "configuration_error",
    AuthExchangeError: "auth_exchange_failed",
    NotLinked: "not_linked",
    ReauthorizationRequired: "reauthorization_required",
    SyncError: "sync_failed",
    SnapshotNotFound: "not_found",
}


def error_response(exc: StreamingServiceError) -> JSONResponse:
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return JSONResponse(
                status_code=_STATUS_BY_ERROR[cls],
                content={
                    "error": _ERROR_KIND[cls],
                    "detail": exc.user_message,
                    "provider": exc.provider,
                },
            )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal", "detail": exc.user_message, "provider": exc.provider},
    )


def register_middleware(app: FastAPI) -> None:
    """Attach app-level middleware and exception handlers."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s %d — %.3fs", request.method, request.url.path, response.status_code, elapsed)
        return response

    @app.exception_handler(StreamingServiceError)
    async def streaming_error_handler(request: Request, exc: StreamingServiceError) -> JSONResponse:
        logger.info("%s %s → %s: %s", request.method, request.url.path, type(exc).__name__, exc)
        return error_response(exc)

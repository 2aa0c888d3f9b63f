"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Gateway exception classes (request-level and device-level)
    • The push-gateway JSON error body: {"error": ..., "errcode": ...}
    • Automatic logging of unhandled errors

Request-level errors (RequestMalformedError) abort the whole request.
Device-level errors (InvalidAppIdError, ProviderUnavailableError,
SendError) never reach these handlers: the dispatch engine turns them
into per-device rejections.

Usage:
    from pushgateway.app.core.errors import (
        GatewayError,
        RequestMalformedError,
        SendError,
        register_error_handlers,
    )

    raise RequestMalformedError("Request body exceeds 102400 bytes")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pushgateway.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class GatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(
        self,
        message: str = "Internal server error",
        *,
        status_code: int = 500,
        errcode: str = "UNKNOWN",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errcode = errcode
        self.details = details or {}


class RequestMalformedError(GatewayError):
    """Body is not valid JSON, violates the schema or is too large (400)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=400,
            errcode="BAD_JSON",
            details=details,
        )


class InvalidAppIdError(GatewayError):
    """Device app id does not belong to this gateway. Never retried."""

    def __init__(self, app_id: str):
        super().__init__(
            message=f"Invalid app id: {app_id}",
            status_code=400,
            errcode="BAD_JSON",
            details={"app_id": app_id},
        )
        self.app_id = app_id


class ProviderUnavailableError(GatewayError):
    """No sender is configured for the provider family a device needs."""

    def __init__(self, provider: str):
        super().__init__(
            message=f"No sender configured for provider '{provider}'",
            status_code=502,
            errcode="UNKNOWN",
            details={"provider": provider},
        )
        self.provider = provider


class SendError(GatewayError):
    """
    One delivery attempt failed.

    Raised by senders for timeouts, auth failures and provider
    rejections alike; the engine retries all of them.
    """

    def __init__(self, provider: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Provider '{provider}' send failed: {message}",
            status_code=502,
            errcode="UNKNOWN",
            details={"provider": provider, **details},
        )
        self.provider = provider


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(status_code: int, errcode: str, message: str) -> JSONResponse:
    """Build the flat error body push gateways are expected to return."""
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "errcode": errcode},
    )


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError):
        logger.warning(
            "Gateway error [%s] on %s: %s | details=%s",
            exc.errcode, request.url.path, exc.message, exc.details,
        )
        return _build_error_response(exc.status_code, exc.errcode, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.warning("Rejected malformed request on %s: %s", request.url.path, exc)
        return _build_error_response(400, "BAD_JSON", str(exc))

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        app_settings = getattr(request.app.state, "settings", settings)
        message = str(exc) if app_settings.DEBUG else "Internal server error"
        return _build_error_response(500, "UNKNOWN", message)

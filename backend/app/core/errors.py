"""
Exception hierarchy and the FastAPI handlers that render it.

Every error leaves the API as the same envelope (see ``error_body``).
Only input-validation failures (and, when ``MIN_SOURCES`` is configured,
insufficient data) ever reach a caller.  Provider faults are raised inside
the provider clients and converted there into an unavailable result.

Usage:
    from backend.app.core.errors import (
        FloodRiskError,
        InvalidLocationError,
        ProviderUnavailableError,
        register_error_handlers,
    )

    raise InvalidLocationError("Latitude must be in [-90, 90]", field="latitude", value=95.0)
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.config import settings
from backend.app.core.logging_config import get_request_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class FloodRiskError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(FloodRiskError):
    """Input validation failed (422)."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        error_code: str = "VALIDATION_ERROR",
        **details: Any,
    ):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code=error_code,
            details=d,
        )


class InvalidLocationError(ValidationError):
    """Coordinates outside the valid range — rejected before any provider call."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        super().__init__(
            message,
            field=field,
            error_code="INVALID_LOCATION",
            **details,
        )


class ProviderError(FloodRiskError):
    """A single external provider failed (never escapes a provider client)."""

    def __init__(
        self,
        provider: str,
        message: str = "",
        *,
        status_code: int = 502,
        error_code: str = "PROVIDER_ERROR",
        **details: Any,
    ):
        super().__init__(
            message=f"Provider '{provider}' failed: {message}",
            status_code=status_code,
            error_code=error_code,
            details={"provider": provider, **details},
        )
        self.provider = provider


class ProviderUnavailableError(ProviderError):
    """
    Network error, timeout, HTTP error or missing credentials.

    ``reason`` is one of ``timeout``, ``network_error``, ``api_error`` or
    ``unconfigured``; ``retryable`` marks transient faults.
    """

    def __init__(
        self,
        provider: str,
        message: str = "",
        *,
        reason: str = "network_error",
        retryable: bool = False,
        **details: Any,
    ):
        super().__init__(
            provider,
            message,
            error_code="PROVIDER_UNAVAILABLE",
            reason=reason,
            **details,
        )
        self.reason = reason
        self.retryable = retryable


class ProviderMalformedResponseError(ProviderError):
    """Provider answered but the payload could not be parsed."""

    def __init__(self, provider: str, message: str = "", **details: Any):
        super().__init__(
            provider,
            message,
            error_code="PROVIDER_MALFORMED_RESPONSE",
            **details,
        )


class InsufficientDataError(FloodRiskError):
    """Fewer providers answered than the configured minimum (503)."""

    def __init__(self, available: int, required: int):
        super().__init__(
            message=(
                f"Only {available} data source(s) answered; "
                f"{required} required for an assessment"
            ),
            status_code=503,
            error_code="INSUFFICIENT_DATA",
            details={"available_sources": available, "required_sources": required},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def error_body(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> Dict[str, Any]:
    """
    The ``{"error": {...}}`` envelope every failed request returns.

    The request id from the logging context is echoed so a client report
    can be matched to server logs; path and method are added outside
    production only.
    """
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details

    request_id = get_request_context().get("request_id")
    if request_id:
        error["request_id"] = request_id
    if request is not None and not settings.is_production:
        error.update(path=request.url.path, method=request.method)
    return {"error": error}


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register the domain, ValueError and catch-all handlers on ``app``."""

    @app.exception_handler(FloodRiskError)
    async def handle_flood_risk_error(request: Request, exc: FloodRiskError):
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "%s %s rejected [%s]: %s",
            request.method, request.url.path, exc.error_code, exc.message,
            extra={"status_code": exc.status_code, "endpoint": request.url.path},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.status_code, exc.error_code, exc.message, exc.details, request),
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        # Geometry and model constructors raise plain ValueError on bad input
        logger.warning("Invalid value on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=422,
            content=error_body(422, "VALIDATION_ERROR", str(exc), request=request),
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        details = None
        if settings.DEBUG:
            details = {"traceback": traceback.format_exception(type(exc), exc, exc.__traceback__)}
        return JSONResponse(
            status_code=500,
            content=error_body(
                500,
                "INTERNAL_ERROR",
                str(exc) if settings.DEBUG else "Internal server error",
                details,
                request,
            ),
        )

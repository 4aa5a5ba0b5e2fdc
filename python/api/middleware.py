"""
FastAPI Middleware for the Reconciliation API

Provides CORS configuration, request logging, and global error handling.
Every error leaves the API as {"success": false, "message": ..., "error": {...}}.
"""

import os
import re
import time
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from database.repositories import (
    RepositoryError,
    EntityNotFoundError,
    DuplicateEntityError,
    InvalidRowDataError,
)

logger = logging.getLogger(__name__)

# Default allowed origins for localhost development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8080",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8080",
]

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
MAX_LOG_VALUE_LENGTH = 200


def sanitize_for_logging(value: Any, max_length: int = MAX_LOG_VALUE_LENGTH) -> str:
    """Strip control characters and truncate a value before it is logged."""
    text = _CONTROL_CHARS.sub(" ", str(value))
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


def parse_cors_origins(configured: Optional[str] = None) -> List[str]:
    """Resolve allowed origins: CORS_ORIGINS env, then config, then localhost defaults."""
    raw = os.getenv("CORS_ORIGINS", "") or (configured or "")
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or list(DEFAULT_CORS_ORIGINS)


def setup_cors(app: FastAPI, configured_origins: Optional[str] = None) -> None:
    """Configure CORS middleware for the application.

    Origins can be customized via the CORS_ORIGINS environment variable or
    api.cors_origins in config.yaml (comma-separated list of allowed origins).
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_cors_origins(configured_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Processing-Time-MS"],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs."""

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        request.state.request_id = request_id
        request.state.start_time = start_time

        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitize_for_logging(request.url.path),
            request_id,
        )
        logger.debug("Query params: %s", sanitize_for_logging(dict(request.query_params)))

        try:
            response = await call_next(request)
        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(exc),
                processing_time_ms,
                request_id,
            )
            raise

        processing_time_ms = int((time.time() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

        logger.info(
            "Response: status=%d processing_time_ms=%d request_id=%s",
            response.status_code,
            processing_time_ms,
            request_id,
        )
        return response


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: Optional[str] = None,
    errors: Optional[List[Dict[str, Any]]] = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        errors: Per-field validation errors (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if field:
        error_detail["field"] = field

    content: Dict[str, Any] = {"success": False, "message": message, "error": error_detail}
    if errors is not None:
        content["errors"] = errors

    return JSONResponse(status_code=status_code, content=content)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handler for HTTP exceptions, including unknown routes."""
    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(exc.detail),
        _request_id(request),
    )
    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body, path and query validation failures become 400."""
    errors = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location) or None, "message": err.get("msg", "Invalid value")})

    logger.info("Validation failed: errors=%d request_id=%s", len(errors), _request_id(request))
    return create_error_response(
        code="VALIDATION_ERROR",
        message="Validation failed",
        status_code=400,
        field=errors[0]["field"] if errors else None,
        errors=errors,
    )


async def repository_exception_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    """Map storage errors onto HTTP status codes."""
    if isinstance(exc, EntityNotFoundError):
        status_code, code = 404, "NOT_FOUND"
    elif isinstance(exc, DuplicateEntityError):
        status_code, code = 409, "DUPLICATE_ENTITY"
    elif isinstance(exc, InvalidRowDataError):
        status_code, code = 400, "INVALID_DATA"
    else:
        status_code, code = 500, "STORAGE_ERROR"

    logger.warning(
        "Repository error: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(exc),
        _request_id(request),
    )
    return create_error_response(code=code, message=str(exc), status_code=status_code)


async def configuration_exception_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s request_id=%s", sanitize_for_logging(exc), _request_id(request))
    return create_error_response(
        code="CONFIGURATION_ERROR",
        message="Service configuration is invalid. Please contact administrator.",
        status_code=503,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(exc),
        _request_id(request),
    )
    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RepositoryError, repository_exception_handler)
    app.add_exception_handler(ConfigurationError, configuration_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

"""
Custom exception handlers for FastAPI.

Every error leaves the API as:

    {"success": false, "error": CODE, "message": ..., "details": {...},
     "timestamp": ISO-8601, "path": request path}

Security:
- Request IDs are logged server-side for tracing but NOT exposed to clients
- Generic error messages for 5xx errors; details only when DEBUG is on
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import get_settings
from core.exceptions import AuthenticationError, RateLimitExceededError, TaskFlowError
from core.logging import get_logger

logger = get_logger("backend.errors")

GENERIC_MESSAGE = "Internal server error"

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_ERROR",
    403: "AUTHORIZATION_ERROR",
    404: "RESOURCE_NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "DUPLICATE_RESOURCE",
    413: "PAYLOAD_TOO_LARGE",
    429: "RATE_LIMIT_EXCEEDED",
}


def _get_request_id() -> str:
    """
    Get the current request ID from context.

    Used for server-side logging only - NOT exposed to clients.
    """
    return structlog.contextvars.get_contextvars().get("request_id", "-")


def error_body(
    request: Request,
    error: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "success": False,
        "error": error,
        "message": message,
        "details": details or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.url.path,
    }


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location) or "request", "message": error.get("msg", "Invalid value")})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(TaskFlowError)
    async def taskflow_error_handler(request: Request, exc: TaskFlowError):
        request_id = _get_request_id()
        headers: dict[str, str] = {}
        if isinstance(exc, RateLimitExceededError):
            headers.update(exc.headers)
            headers["Retry-After"] = str(exc.retry_after)
        elif isinstance(exc, AuthenticationError):
            headers["WWW-Authenticate"] = "Bearer"

        if exc.is_client_error:
            logger.warning(
                "client_error",
                error=exc.error_code,
                status_code=exc.status_code,
                message=exc.message,
                request_id=request_id,
            )
            body = error_body(request, exc.error_code, exc.message, exc.details)
        else:
            logger.error(
                "infrastructure_error",
                error=exc.error_code,
                message=exc.message,
                details=exc.details,
                request_id=request_id,
            )
            if get_settings().debug:
                body = error_body(request, exc.error_code, exc.message, exc.details)
            else:
                body = error_body(request, exc.error_code, GENERIC_MESSAGE)

        return JSONResponse(status_code=exc.status_code, content=body, headers=headers or None)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(
            "http_exception",
            detail=exc.detail,
            status_code=exc.status_code,
            request_id=_get_request_id(),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"), str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = _field_errors(exc)
        logger.warning("validation_error", errors=errors, request_id=_get_request_id())
        return JSONResponse(
            status_code=400,
            content=error_body(request, "VALIDATION_ERROR", "Validation failed", {"errors": errors}),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("integrity_error", error=str(exc.orig), request_id=_get_request_id())
        return JSONResponse(
            status_code=409,
            content=error_body(request, "DUPLICATE_RESOURCE", "Resource conflicts with an existing record"),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(
            "database_error",
            error=str(exc),
            error_type=type(exc).__name__,
            request_id=_get_request_id(),
        )
        details = {"cause": type(exc).__name__} if get_settings().debug else None
        return JSONResponse(
            status_code=500,
            content=error_body(request, "DATABASE_ERROR", GENERIC_MESSAGE, details),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        # Log full details server-side (including request_id for tracing)
        logger.exception(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            request_id=_get_request_id(),
        )
        return JSONResponse(
            status_code=500,
            content=error_body(request, "INTERNAL_ERROR", GENERIC_MESSAGE),
        )

"""
FastAPI application entry point.

Routes are mounted under ``/api/v1``; health probes live at the root.
"""

import time
from typing import Callable

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.cache import RedisCache
from core.config import get_settings
from core.db import DatabaseManager
from core.logging import RequestLoggingMiddleware, configure_logging, get_logger

from .dependencies import get_cache, get_database, shutdown_resources
from .error_handlers import error_body, register_exception_handlers
from .middleware.security import SecurityHeadersMiddleware
from .routers import auth as auth_router
from .routers import tasks as tasks_router


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies whose declared Content-Length exceeds MAX_REQUEST_SIZE_MB with a 413."""

    def __init__(self, app, max_size_mb: int | None = None):
        super().__init__(app)
        self.max_size_mb = max_size_mb or get_settings().max_request_size_mb
        self.max_size = self.max_size_mb * 1024 * 1024

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_size:
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content=error_body(
                    request,
                    "PAYLOAD_TOO_LARGE",
                    f"Maximum request size is {self.max_size_mb}MB",
                ),
            )
        return await call_next(request)


settings = get_settings()
configure_logging()
logger = get_logger("api")


def create_app() -> FastAPI:
    api_prefix = f"{settings.api_prefix}/v1"

    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug)

    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"],
        # Expose rate limit headers to frontend
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )

    app.add_middleware(GZipMiddleware, minimum_size=500)

    # Structured request logging middleware (binds request_id)
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    @app.on_event("startup")
    async def startup_event():
        """Initialize services on startup."""
        logger.info("app_startup", app_name=settings.app_name, environment=settings.environment)

        database = get_database()
        health = database.health_check()
        if not health["healthy"]:
            logger.error("database_unreachable", error=health["error"])
            raise RuntimeError("Database unreachable. Check DATABASE_URL.")
        logger.info("database_initialized", latency_ms=health["latency_ms"])

        cache_health = get_cache().health_check()
        if cache_health["status"] == "healthy":
            logger.info("cache_initialized", redis_host=settings.redis_host)
        else:
            # Reads degrade to misses and the rate limiter fails open
            logger.warning("cache_unavailable", error=cache_health["error"])

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown."""
        logger.info("app_shutdown")
        shutdown_resources()

    @app.get("/health", tags=["health"])
    def health_check():
        """
        Health check endpoint (liveness probe).

        Returns minimal information to avoid exposing infrastructure details.
        """
        return {"status": "ok", "timestamp": time.time()}

    @app.get("/health/ready", tags=["health"])
    def readiness_check(
        database: DatabaseManager = Depends(get_database),
        cache: RedisCache = Depends(get_cache),
    ):
        """
        Readiness check endpoint.

        Returns 200 when the database and the cache both answer, 503 otherwise.
        """
        db_health = database.health_check()
        cache_health = cache.health_check()
        checks = {
            "database": {
                "status": "healthy" if db_health["healthy"] else "unhealthy",
                "latency_ms": db_health["latency_ms"],
            },
            "cache": {"status": cache_health["status"], "latency_ms": cache_health["latency_ms"]},
        }
        ready = db_health["healthy"] and cache_health["status"] == "healthy"
        if not ready:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "checks": checks},
            )
        return {"status": "ready", "checks": checks}

    app.include_router(auth_router.router, prefix=api_prefix)
    app.include_router(tasks_router.router, prefix=api_prefix)

    return app


app = create_app()

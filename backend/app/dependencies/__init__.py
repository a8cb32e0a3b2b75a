"""
FastAPI dependency injection module.

Provides centralized dependencies for:
- Database manager, cache and background executor (process-wide)
- Event publisher
- Services
- Rate limiter

Tests replace any of these with ``app.dependency_overrides``.
"""

import threading

from fastapi import Depends

from core.background import BackgroundExecutor
from core.cache import RedisCache
from core.config import Settings, get_settings
from core.db import DatabaseManager, db
from core.events import CeleryEventPublisher, EventPublisher
from core.security.lockout import AccountLockout
from core.security.rate_limiter import RateLimiter
from core.services import AuthService, TaskService

_lock = threading.Lock()
_cache: RedisCache | None = None
_executor: BackgroundExecutor | None = None
_publisher: EventPublisher | None = None

# =============================================================================
# Infrastructure Dependencies
# =============================================================================


def get_database() -> DatabaseManager:
    """Get the process database manager, initializing it on first use."""
    if not db.is_initialized:
        with _lock:
            if not db.is_initialized:
                db.initialize(get_settings().database_url)
    return db


def get_cache() -> RedisCache:
    """Get the process Redis cache."""
    global _cache
    if _cache is None:
        with _lock:
            if _cache is None:
                _cache = RedisCache()
    return _cache


def get_executor() -> BackgroundExecutor:
    """Get the executor for detached post-commit work."""
    global _executor
    if _executor is None:
        with _lock:
            if _executor is None:
                _executor = BackgroundExecutor(max_workers=get_settings().background_workers)
    return _executor


def get_publisher() -> EventPublisher:
    global _publisher
    if _publisher is None:
        with _lock:
            if _publisher is None:
                _publisher = CeleryEventPublisher()
    return _publisher


def shutdown_resources() -> None:
    """Drain background work and release pooled connections."""
    global _executor
    with _lock:
        if _executor is not None:
            _executor.shutdown(wait=True)
            _executor = None
    if db.is_initialized:
        db.reset()


# =============================================================================
# Service Dependencies
# =============================================================================


def get_task_service(
    database: DatabaseManager = Depends(get_database),
    cache: RedisCache = Depends(get_cache),
    publisher: EventPublisher = Depends(get_publisher),
    executor: BackgroundExecutor = Depends(get_executor),
    settings: Settings = Depends(get_settings),
) -> TaskService:
    """Get TaskService instance with injected infrastructure."""
    return TaskService(database, cache, publisher, executor, settings)


def get_auth_service(
    database: DatabaseManager = Depends(get_database),
    cache: RedisCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
) -> AuthService:
    return AuthService(database, cache, AccountLockout(cache), settings)


def get_rate_limiter(cache: RedisCache = Depends(get_cache)) -> RateLimiter:
    return RateLimiter(cache)


__all__ = [
    # Infrastructure
    "get_database",
    "get_cache",
    "get_executor",
    "get_publisher",
    "shutdown_resources",
    # Services
    "get_task_service",
    "get_auth_service",
    "get_rate_limiter",
]

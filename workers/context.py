"""
Worker-side dependencies.

Built lazily on first use inside a worker process so importing a task
module never opens a connection. Tests replace them with override().
"""

import threading

from core.cache import RedisCache
from core.config import get_settings
from core.db import DatabaseManager, db
from core.events import CeleryEventPublisher, EventPublisher

_lock = threading.Lock()
_cache: RedisCache | None = None
_publisher: EventPublisher | None = None
_database: DatabaseManager | None = None


def get_database() -> DatabaseManager:
    global _database
    with _lock:
        if _database is None:
            _database = db
        if not _database.is_initialized:
            _database.initialize(get_settings().database_url)
        return _database


def get_cache() -> RedisCache:
    global _cache
    with _lock:
        if _cache is None:
            _cache = RedisCache()
        return _cache


def get_publisher() -> EventPublisher:
    global _publisher
    with _lock:
        if _publisher is None:
            _publisher = CeleryEventPublisher()
        return _publisher


def override(
    database: DatabaseManager | None = None,
    cache: RedisCache | None = None,
    publisher: EventPublisher | None = None,
) -> None:
    """Swap in explicit dependencies (tests, embedded workers)."""
    global _database, _cache, _publisher
    with _lock:
        _database, _cache, _publisher = database, cache, publisher

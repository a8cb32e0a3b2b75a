"""
Durable store access.

A DatabaseManager owns one engine and one session factory. ``session()``
is the transaction boundary used by every service: the block commits on
normal exit and rolls back on any exception.

    with db.session() as session:
        task = session.get(Task, task_id)

``db`` is the process default that the API and the Celery workers
initialise from DATABASE_URL; tests build their own managers.
"""

import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from .config import get_settings
from .logging import get_logger

logger = get_logger("database")


class Base(DeclarativeBase):
    pass


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def _engine_options(url: str) -> dict[str, Any]:
    """
    SQLite is shared across the API threadpool and the statistics workers,
    so it gets ``check_same_thread=False``; an in-memory database must live
    on a single connection (StaticPool) or each thread would see its own.
    """
    if url.startswith("sqlite"):
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if _is_memory_sqlite(url):
            options["poolclass"] = StaticPool
        return options

    settings = get_settings()
    return {
        "poolclass": QueuePool,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": settings.db_pool_pre_ping,
    }


def _enforce_sqlite_foreign_keys(engine: Engine) -> None:
    # Tasks reference users; SQLite ignores the constraint unless asked
    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class DatabaseManager:
    def __init__(self):
        self.engine: Engine | None = None
        self.SessionLocal: sessionmaker | None = None

    @property
    def is_initialized(self) -> bool:
        return self.engine is not None

    def initialize(self, database_url: str | None = None) -> None:
        """Build the engine from ``database_url`` or DATABASE_URL. Idempotent."""
        if self.is_initialized:
            return

        url = database_url or get_settings().database_url
        engine = create_engine(url, **_engine_options(url))
        if engine.dialect.name == "sqlite":
            _enforce_sqlite_foreign_keys(engine)

        self.SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self.engine = engine
        logger.debug("database_initialized", dialect=engine.dialect.name)

    def create_all_tables(self) -> None:
        """Create the schema directly; deployments run the alembic migrations instead."""
        self._ensure_initialized()
        from . import models  # noqa: F401  registers mappers

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        self._ensure_initialized()
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> dict:
        """Run ``SELECT 1``; returns healthy, latency_ms and error. Never raises."""
        if not self.is_initialized:
            return {"healthy": False, "latency_ms": 0, "error": "Database not initialized"}

        start = time.perf_counter()
        error = None
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            error = str(exc)
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        return {"healthy": error is None, "latency_ms": latency_ms, "error": error}

    def reset(self) -> None:
        """Dispose the engine so the next initialize() starts fresh."""
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.SessionLocal = None

    def _ensure_initialized(self) -> None:
        if not self.is_initialized:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")


db = DatabaseManager()


__all__ = ["Base", "DatabaseManager", "db"]

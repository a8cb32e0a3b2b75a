"""
Pytest fixtures for TaskFlow tests.

Each test gets its own SQLite file and its own in-process Redis
(fakeredis), so nothing leaks between tests and no services need to run.
"""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-signing-key-0123456789-abcdefghijklmnop")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")

import threading  # noqa: E402
from collections.abc import Callable, Iterator  # noqa: E402
from datetime import datetime, timezone  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402

from core.background import BackgroundExecutor  # noqa: E402
from core.cache import RedisCache  # noqa: E402
from core.db import DatabaseManager  # noqa: E402
from core.exceptions import QueueError  # noqa: E402
from core.models import Task, User, UserRole  # noqa: E402
from core.services import TaskService  # noqa: E402


class RecordingPublisher:
    """Publisher that keeps every event in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: list[tuple[str, dict]] = []

    def publish(self, event_type: str, payload: dict) -> None:
        with self._lock:
            self.events.append((event_type, payload))

    def of_type(self, event_type: str) -> list[dict]:
        with self._lock:
            return [payload for kind, payload in self.events if kind == event_type]


class FailingPublisher(RecordingPublisher):
    """Publisher whose queue always rejects."""

    def publish(self, event_type: str, payload: dict) -> None:
        super().publish(event_type, payload)
        raise QueueError(event_type, cause=RedisConnectionError("broker down"))


class BrokenRedis:
    """Stands in for a Redis client whose server is unreachable."""

    def __getattr__(self, name: str):
        def unavailable(*args, **kwargs):
            raise RedisConnectionError("Connection refused")

        return unavailable


@pytest.fixture
def database(tmp_path) -> Iterator[DatabaseManager]:
    manager = DatabaseManager()
    manager.initialize(f"sqlite:///{tmp_path / 'taskflow-test.db'}")
    manager.create_all_tables()
    yield manager
    manager.reset()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture
def cache(redis_client) -> RedisCache:
    return RedisCache(redis_client)


@pytest.fixture
def broken_cache() -> RedisCache:
    return RedisCache(BrokenRedis())


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def failing_publisher() -> FailingPublisher:
    return FailingPublisher()


@pytest.fixture
def executor() -> Iterator[BackgroundExecutor]:
    executor = BackgroundExecutor(max_workers=2, name="taskflow-test")
    yield executor
    executor.flush(timeout=5)
    executor.shutdown()


@pytest.fixture
def task_service(database, cache, publisher, executor) -> TaskService:
    return TaskService(database, cache, publisher, executor)


@pytest.fixture
def make_user(database) -> Callable[..., dict]:
    """Insert a user directly and return its profile dict."""
    counter = {"n": 0}

    def factory(role: UserRole = UserRole.USER, email: str | None = None, name: str = "Tester") -> dict:
        counter["n"] += 1
        with database.session() as session:
            user = User(
                email=email or f"user{counter['n']}@example.com",
                name=name,
                password_hash="not-a-real-hash",
                role=role.value,
            )
            session.add(user)
            session.flush()
            return user.to_dict()

    return factory


@pytest.fixture
def make_task(database) -> Callable[..., dict]:
    """Insert a task row directly, bypassing the pipeline (no events, no invalidation)."""

    def factory(user_id: int, title: str = "Task", **fields) -> dict:
        with database.session() as session:
            task = Task(user_id=user_id, title=title, **fields)
            session.add(task)
            session.flush()
            return task.to_dict()

    return factory


@pytest.fixture
def worker_context(database, cache, publisher) -> Iterator[None]:
    """Point the Celery tasks at the test database, cache and publisher."""
    from workers import context

    context.override(database, cache, publisher)
    yield
    context.override(None, None, None)


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)

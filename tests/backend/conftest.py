from collections.abc import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from backend.app import dependencies as deps
from backend.app.main import create_app
from core.models import UserRole
from core.security.tokens import ACCESS, create_token


@pytest.fixture
def test_app_client(monkeypatch, database, cache, publisher, executor) -> Iterator[TestClient]:
    app = create_app()

    app.dependency_overrides[deps.get_database] = lambda: database
    app.dependency_overrides[deps.get_cache] = lambda: cache
    app.dependency_overrides[deps.get_publisher] = lambda: publisher
    app.dependency_overrides[deps.get_executor] = lambda: executor

    # Startup and shutdown hooks call the providers directly
    monkeypatch.setattr(deps, "db", database)
    monkeypatch.setattr(deps, "_cache", cache)
    monkeypatch.setattr(deps, "_executor", None)

    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers(make_user) -> Callable[..., tuple[dict, dict[str, str]]]:
    """Create a user and return (profile, Authorization header)."""

    def factory(role: UserRole = UserRole.USER) -> tuple[dict, dict[str, str]]:
        user = make_user(role=role)
        token, _ = create_token(user["id"], user["email"], user["role"], ACCESS)
        return user, {"Authorization": f"Bearer {token}"}

    return factory

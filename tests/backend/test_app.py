from fastapi.testclient import TestClient

from backend.app import dependencies as deps
from backend.app.main import create_app


def test_health(test_app_client):
    resp = test_app_client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_ready_when_database_and_cache_answer(test_app_client):
    resp = test_app_client.get("/health/ready")

    assert resp.status_code == 200
    assert resp.json()["checks"]["cache"]["status"] == "healthy"


def test_not_ready_when_cache_is_down(test_app_client, broken_cache):
    test_app_client.app.dependency_overrides[deps.get_cache] = lambda: broken_cache

    resp = test_app_client.get("/health/ready")

    assert resp.status_code == 503
    assert resp.json()["status"] == "not_ready"


def test_security_headers(test_app_client):
    resp = test_app_client.get("/health")

    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["Cache-Control"] == "no-store"
    assert "Strict-Transport-Security" not in resp.headers


def test_unknown_route_uses_error_format(test_app_client):
    resp = test_app_client.get("/api/v1/nothing-here")

    assert resp.status_code == 404
    assert resp.json()["error"] == "RESOURCE_NOT_FOUND"
    assert resp.json()["path"] == "/api/v1/nothing-here"


def test_oversized_body_rejected(test_app_client):
    resp = test_app_client.post(
        "/api/v1/tasks",
        content=b"x" * (1024 * 1024 + 1),
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 413
    assert resp.json()["error"] == "PAYLOAD_TOO_LARGE"


def test_requests_succeed_when_cache_is_down(monkeypatch, database, broken_cache, publisher, executor, auth_headers):
    app = create_app()
    app.dependency_overrides[deps.get_database] = lambda: database
    app.dependency_overrides[deps.get_cache] = lambda: broken_cache
    app.dependency_overrides[deps.get_publisher] = lambda: publisher
    app.dependency_overrides[deps.get_executor] = lambda: executor
    monkeypatch.setattr(deps, "db", database)
    monkeypatch.setattr(deps, "_cache", broken_cache)
    monkeypatch.setattr(deps, "_executor", None)
    _, headers = auth_headers()

    with TestClient(app) as client:
        created = client.post("/api/v1/tasks", json={"title": "No cache"}, headers=headers)
        listed = client.get("/api/v1/tasks", headers=headers)

    assert created.status_code == 201
    # The limiter fails open and sends no quota headers
    assert "X-RateLimit-Limit" not in created.headers
    assert listed.json()["meta"]["total_items"] == 1

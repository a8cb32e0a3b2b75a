from core.events import TASK_CREATED
from core.models import UserRole

API = "/api/v1/tasks"


def test_create_task(test_app_client, auth_headers, publisher, executor):
    user, headers = auth_headers()

    resp = test_app_client.post(
        API,
        json={"title": "Write report", "priority": "high", "due_date": "2030-01-01T00:00:00Z"},
        headers=headers,
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["title"] == "Write report"
    assert body["status"] == "pending"
    assert body["user_id"] == user["id"]
    assert body["due_date"].startswith("2030-01-01T00:00:00")

    executor.flush(timeout=5)
    assert [p["task_id"] for p in publisher.of_type(TASK_CREATED)] == [body["id"]]


def test_create_sets_rate_limit_headers(test_app_client, auth_headers):
    _, headers = auth_headers()

    resp = test_app_client.post(API, json={"title": "One"}, headers=headers)

    assert resp.headers["X-RateLimit-Limit"] == "20"
    assert resp.headers["X-RateLimit-Remaining"] == "19"
    assert "X-RateLimit-Reset" in resp.headers


def test_requires_authentication(test_app_client):
    resp = test_app_client.get(API)

    assert resp.status_code == 401
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "AUTHENTICATION_ERROR"
    assert body["path"] == API
    assert "timestamp" in body
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_invalid_token_rejected(test_app_client):
    resp = test_app_client.get(API, headers={"Authorization": "Bearer not-a-jwt"})

    assert resp.status_code == 401


def test_validation_error_format(test_app_client, auth_headers):
    _, headers = auth_headers()

    resp = test_app_client.post(API, json={"title": "", "status": "someday"}, headers=headers)

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "VALIDATION_ERROR"
    fields = {error["field"] for error in body["details"]["errors"]}
    assert fields == {"title", "status"}


def test_update_rejects_unknown_fields(test_app_client, auth_headers):
    _, headers = auth_headers()
    task = test_app_client.post(API, json={"title": "Mine"}, headers=headers).json()

    resp = test_app_client.patch(f"{API}/{task['id']}", json={"user_id": 99}, headers=headers)

    assert resp.status_code == 400


def test_get_update_delete_roundtrip(test_app_client, auth_headers):
    _, headers = auth_headers()
    task = test_app_client.post(API, json={"title": "Draft"}, headers=headers).json()

    resp = test_app_client.patch(
        f"{API}/{task['id']}", json={"title": "Final", "status": "in_progress"}, headers=headers
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "in_progress"

    assert test_app_client.get(f"{API}/{task['id']}", headers=headers).json()["title"] == "Final"

    resp = test_app_client.delete(f"{API}/{task['id']}", headers=headers)
    assert resp.status_code == 204
    assert resp.content == b""

    resp = test_app_client.get(f"{API}/{task['id']}", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["error"] == "RESOURCE_NOT_FOUND"


def test_other_users_task_is_not_found(test_app_client, auth_headers):
    _, owner_headers = auth_headers()
    _, stranger_headers = auth_headers()
    task = test_app_client.post(API, json={"title": "Private"}, headers=owner_headers).json()

    assert test_app_client.get(f"{API}/{task['id']}", headers=stranger_headers).status_code == 404
    assert test_app_client.delete(f"{API}/{task['id']}", headers=stranger_headers).status_code == 404


def test_list_pagination_and_filters(test_app_client, auth_headers):
    _, headers = auth_headers()
    for i in range(3):
        test_app_client.post(API, json={"title": f"Task {i}", "priority": "low"}, headers=headers)
    test_app_client.post(API, json={"title": "Urgent one", "priority": "urgent"}, headers=headers)

    page = test_app_client.get(API, params={"page": 1, "limit": 2}, headers=headers).json()
    urgent = test_app_client.get(API, params={"priority": "urgent"}, headers=headers).json()

    assert len(page["data"]) == 2
    assert page["meta"]["total_items"] == 4
    assert page["meta"]["has_next_page"] is True
    assert [t["title"] for t in urgent["data"]] == ["Urgent one"]


def test_list_date_filter_with_offset(test_app_client, auth_headers):
    _, headers = auth_headers()
    test_app_client.post(API, json={"title": "Noon", "due_date": "2030-01-01T12:00:00Z"}, headers=headers)

    found = test_app_client.get(API, params={"due_date_from": "2030-01-01T14:00:00+05:00"}, headers=headers).json()
    missed = test_app_client.get(API, params={"due_date_to": "2030-01-01T16:00:00+05:00"}, headers=headers).json()

    assert found["meta"]["total_items"] == 1
    assert missed["meta"]["total_items"] == 0


def test_list_rejects_bad_filter(test_app_client, auth_headers):
    _, headers = auth_headers()

    resp = test_app_client.get(API, params={"status": "someday"}, headers=headers)

    assert resp.status_code == 400


def test_statistics(test_app_client, auth_headers):
    _, headers = auth_headers()
    test_app_client.post(API, json={"title": "Done", "status": "completed"}, headers=headers)

    stats = test_app_client.get(f"{API}/statistics", headers=headers).json()

    assert stats["total"] == 1
    assert stats["by_status"]["completed"] == 1
    assert stats["completed_this_week"] == 1


def test_admin_views_require_staff_role(test_app_client, auth_headers):
    _, user_headers = auth_headers()
    _, manager_headers = auth_headers(UserRole.MANAGER)
    _, admin_headers = auth_headers(UserRole.ADMIN)
    test_app_client.post(API, json={"title": "Anyone's"}, headers=user_headers)

    resp = test_app_client.get(f"{API}/all", headers=user_headers)
    assert resp.status_code == 403
    assert resp.json()["error"] == "AUTHORIZATION_ERROR"

    assert test_app_client.get(f"{API}/all", headers=manager_headers).status_code == 200
    everyone = test_app_client.get(f"{API}/all", params={"include_user": True}, headers=admin_headers).json()
    assert everyone["meta"]["total_items"] == 1
    assert everyone["data"][0]["user"]["name"] == "Tester"

    assert test_app_client.get(f"{API}/all/statistics", headers=admin_headers).json()["total"] == 1


def test_batch_update_partial_failure(test_app_client, auth_headers):
    _, headers = auth_headers()
    _, other_headers = auth_headers()
    mine = test_app_client.post(API, json={"title": "Mine"}, headers=headers).json()
    theirs = test_app_client.post(API, json={"title": "Theirs"}, headers=other_headers).json()

    resp = test_app_client.post(
        f"{API}/batch",
        json={"task_ids": [mine["id"], theirs["id"]], "updates": {"status": "completed"}},
        headers=headers,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"] == {"total": 2, "successful": 1, "failed": 1}
    assert body["successful"][0]["data"]["status"] == "completed"
    assert body["failed"][0] == {"success": False, "id": theirs["id"], "error": "Task not found or access denied"}


def test_batch_size_is_limited(test_app_client, auth_headers):
    _, headers = auth_headers()

    resp = test_app_client.request(
        "DELETE", f"{API}/batch", json={"task_ids": [f"id-{i}" for i in range(101)]}, headers=headers
    )

    assert resp.status_code == 400


def test_batch_delete_rate_limited(test_app_client, auth_headers):
    _, headers = auth_headers()

    statuses = [
        test_app_client.request("DELETE", f"{API}/batch", json={"task_ids": ["missing"]}, headers=headers).status_code
        for _ in range(5)
    ]
    resp = test_app_client.request("DELETE", f"{API}/batch", json={"task_ids": ["missing"]}, headers=headers)

    assert statuses == [200] * 5
    assert resp.status_code == 429
    body = resp.json()
    assert body["error"] == "RATE_LIMIT_EXCEEDED"
    assert body["details"]["limit"] == 5
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert int(resp.headers["Retry-After"]) >= 1


def test_rate_limits_are_per_user(test_app_client, auth_headers):
    _, first = auth_headers()
    _, second = auth_headers()

    for _ in range(5):
        test_app_client.request("DELETE", f"{API}/batch", json={"task_ids": ["missing"]}, headers=first)

    resp = test_app_client.request("DELETE", f"{API}/batch", json={"task_ids": ["missing"]}, headers=second)
    assert resp.status_code == 200

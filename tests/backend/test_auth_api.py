from core.security.lockout import MAX_FAILED_ATTEMPTS

AUTH = "/api/v1/auth"
PASSWORD = "Sup3rSecret"


def _register(client, email="ada@example.com"):
    return client.post(f"{AUTH}/register", json={"email": email, "password": PASSWORD, "name": "Ada"})


def test_register_login_me(test_app_client):
    resp = _register(test_app_client)
    assert resp.status_code == 201
    assert resp.json()["token_type"] == "Bearer"

    resp = test_app_client.post(f"{AUTH}/login", json={"email": "ada@example.com", "password": PASSWORD})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = test_app_client.get(f"{AUTH}/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "ada@example.com"
    assert me.json()["role"] == "user"


def test_register_duplicate_email(test_app_client):
    _register(test_app_client)

    resp = _register(test_app_client)

    assert resp.status_code == 409
    assert resp.json()["error"] == "DUPLICATE_RESOURCE"


def test_register_weak_password(test_app_client):
    resp = test_app_client.post(
        f"{AUTH}/register", json={"email": "weak@example.com", "password": "weakpass", "name": "Weak"}
    )

    assert resp.status_code == 400
    assert resp.json()["details"]["errors"]


def test_register_invalid_email(test_app_client):
    resp = test_app_client.post(f"{AUTH}/register", json={"email": "nope", "password": PASSWORD, "name": "X"})

    assert resp.status_code == 400
    assert resp.json()["details"]["errors"][0]["field"] == "email"


def test_login_wrong_password(test_app_client):
    _register(test_app_client)

    resp = test_app_client.post(f"{AUTH}/login", json={"email": "ada@example.com", "password": "Wr0ngPassword"})

    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid credentials"


def test_login_lockout(test_app_client):
    _register(test_app_client)
    for _ in range(MAX_FAILED_ATTEMPTS):
        test_app_client.post(f"{AUTH}/login", json={"email": "ada@example.com", "password": "Wr0ngPassword"})

    resp = test_app_client.post(f"{AUTH}/login", json={"email": "ada@example.com", "password": PASSWORD})

    assert resp.status_code == 423
    body = resp.json()
    assert body["error"] == "ACCOUNT_LOCKED"
    assert body["details"]["retry_after"] > 0


def test_refresh_rotates_tokens(test_app_client):
    issued = _register(test_app_client).json()

    resp = test_app_client.post(f"{AUTH}/refresh", json={"refresh_token": issued["refresh_token"]})
    assert resp.status_code == 200

    replay = test_app_client.post(f"{AUTH}/refresh", json={"refresh_token": issued["refresh_token"]})
    assert replay.status_code == 401


def test_logout_revokes_access_token(test_app_client):
    issued = _register(test_app_client).json()
    headers = {"Authorization": f"Bearer {issued['access_token']}"}

    resp = test_app_client.post(f"{AUTH}/logout", headers=headers)
    assert resp.status_code == 204

    resp = test_app_client.get(f"{AUTH}/me", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["message"] == "Token has been revoked"


def test_refresh_token_is_not_an_access_token(test_app_client):
    issued = _register(test_app_client).json()

    resp = test_app_client.get(f"{AUTH}/me", headers={"Authorization": f"Bearer {issued['refresh_token']}"})

    assert resp.status_code == 401


def test_register_rate_limited_per_ip(test_app_client):
    statuses = [_register(test_app_client, email=f"user{i}@example.com").status_code for i in range(6)]

    assert statuses[:5] == [201] * 5
    assert statuses[5] == 429

"""
Tests for password sign-in, token rotation and revocation.
"""

import threading
import time

import pytest

from core.cache import CacheKeys
from core.exceptions import (
    AccountLockedError,
    AuthenticationError,
    DuplicateResourceError,
    ValidationError,
)
from core.security.lockout import MAX_FAILED_ATTEMPTS
from core.security.tokens import ACCESS, REFRESH, decode_token
from core.services import AuthService

PASSWORD = "Sup3rSecret"


@pytest.fixture
def auth(database, cache):
    return AuthService(database, cache)


@pytest.fixture
def registered(auth):
    return auth.register("Ada@Example.com", PASSWORD, " Ada ")


class TestRegister:
    def test_returns_token_pair(self, registered):
        assert registered["user"]["email"] == "ada@example.com"
        assert registered["user"]["name"] == "Ada"
        assert registered["user"]["role"] == "user"
        assert registered["token_type"] == "Bearer"
        assert decode_token(registered["access_token"], expected_type=ACCESS)["sub"] == str(registered["user"]["id"])
        assert decode_token(registered["refresh_token"], expected_type=REFRESH)

    def test_password_is_hashed(self, auth, registered, database):
        from core.models import User

        with database.session() as session:
            user = session.get(User, registered["user"]["id"])
            assert user.password_hash.startswith("$2")
            assert PASSWORD not in user.password_hash

    def test_duplicate_email(self, auth, registered):
        with pytest.raises(DuplicateResourceError):
            auth.register("ada@example.com", PASSWORD, "Other Ada")

    def test_weak_password_lists_every_problem(self, auth):
        with pytest.raises(ValidationError) as excinfo:
            auth.register("weak@example.com", "short", "Weak")

        messages = [error["message"] for error in excinfo.value.errors]
        assert len(messages) == 3
        assert all(error["field"] == "password" for error in excinfo.value.errors)

    def test_password_longer_than_bcrypt_accepts(self, auth):
        with pytest.raises(ValidationError) as excinfo:
            auth.register("long@example.com", "Aa1" + "x" * 97, "Long")

        assert excinfo.value.errors == [
            {"field": "password", "message": "Password must be at most 72 bytes long"}
        ]
        assert auth.get_user(1) is None

    def test_limit_counts_bytes_not_characters(self, auth):
        # 3 + 35 two-byte characters = 73 bytes in 38 characters
        with pytest.raises(ValidationError):
            auth.register("wide@example.com", "Aa1" + "\u00e9" * 35, "Wide")

    def test_refresh_metadata_is_stored(self, registered, cache):
        jti = decode_token(registered["refresh_token"], expected_type=REFRESH)["jti"]

        key = CacheKeys.refresh_token(registered["user"]["id"], jti)
        assert cache.get(key, namespace=CacheKeys.NS_AUTH)["user_id"] == registered["user"]["id"]


class TestLogin:
    def test_success(self, auth, registered):
        session = auth.login("ada@example.com", PASSWORD)

        assert session["user"]["id"] == registered["user"]["id"]

    def test_wrong_password_and_unknown_email_look_the_same(self, auth, registered):
        with pytest.raises(AuthenticationError) as wrong_password:
            auth.login("ada@example.com", "Wr0ngPassword")
        with pytest.raises(AuthenticationError) as unknown_email:
            auth.login("nobody@example.com", PASSWORD)

        assert wrong_password.value.message == unknown_email.value.message == "Invalid credentials"

    def test_locks_after_repeated_failures(self, auth, registered):
        for _ in range(MAX_FAILED_ATTEMPTS):
            with pytest.raises(AuthenticationError):
                auth.login("ada@example.com", "Wr0ngPassword")

        with pytest.raises(AccountLockedError):
            auth.login("ada@example.com", PASSWORD)

        # Attempts while locked are not counted
        assert auth.lockout.failed_attempts("ada@example.com") == MAX_FAILED_ATTEMPTS

    def test_success_clears_failures(self, auth, registered):
        for _ in range(MAX_FAILED_ATTEMPTS - 1):
            with pytest.raises(AuthenticationError):
                auth.login("ada@example.com", "Wr0ngPassword")

        auth.login("ada@example.com", PASSWORD)

        assert auth.lockout.failed_attempts("ada@example.com") == 0

    def test_login_succeeds_after_lockout_expires(self, auth, registered, cache, redis_client):
        for _ in range(MAX_FAILED_ATTEMPTS):
            with pytest.raises(AuthenticationError):
                auth.login("ada@example.com", "Wr0ngPassword")
        with pytest.raises(AccountLockedError):
            auth.login("ada@example.com", PASSWORD)

        flag = cache.build_key(CacheKeys.lockout("ada@example.com"), namespace=CacheKeys.NS_AUTH)
        redis_client.pexpire(flag, 50)
        time.sleep(0.2)

        assert auth.login("ada@example.com", PASSWORD)["user"]["email"] == "ada@example.com"
        assert auth.lockout.failed_attempts("ada@example.com") == 0
        assert cache.exists(CacheKeys.lockout("ada@example.com"), namespace=CacheKeys.NS_AUTH) is False


class TestTokenLifecycle:
    def test_refresh_rotates(self, auth, registered):
        rotated = auth.refresh(registered["refresh_token"])

        assert rotated["refresh_token"] != registered["refresh_token"]
        with pytest.raises(AuthenticationError, match="revoked"):
            auth.refresh(registered["refresh_token"])

    def test_concurrent_refresh_with_one_token_rotates_once(self, auth, registered, monkeypatch):
        barrier = threading.Barrier(2, timeout=5)
        check_revoked = auth.is_token_revoked

        def racing_check(jti):
            revoked = check_revoked(jti)
            barrier.wait()
            return revoked

        monkeypatch.setattr(auth, "is_token_revoked", racing_check)
        outcomes = []

        def attempt():
            try:
                auth.refresh(registered["refresh_token"])
                outcomes.append("rotated")
            except AuthenticationError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert sorted(outcomes) == ["rejected", "rotated"]

    def test_access_token_cannot_refresh(self, auth, registered):
        with pytest.raises(AuthenticationError):
            auth.refresh(registered["access_token"])

    def test_garbage_token(self, auth):
        with pytest.raises(AuthenticationError):
            auth.refresh("not-a-jwt")

    def test_logout_revokes_access_token_and_refresh_metadata(self, auth, registered, cache):
        claims = decode_token(registered["access_token"], expected_type=ACCESS)

        auth.logout(registered["user"]["id"], claims["jti"], claims["exp"])

        assert auth.is_token_revoked(claims["jti"]) is True
        pattern = CacheKeys.user_refresh_tokens_pattern(registered["user"]["id"])
        assert cache.keys(pattern, namespace=CacheKeys.NS_AUTH) == []

    def test_get_user(self, auth, registered):
        assert auth.get_user(registered["user"]["id"])["email"] == "ada@example.com"
        assert auth.get_user(424242) is None

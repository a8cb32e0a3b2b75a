"""
Password sign-in, token issue and revocation.

Refresh tokens rotate: every successful refresh revokes the presented
token's ``jti`` for the rest of its lifetime and issues a new pair.
Revocations and refresh-token metadata live in the ``auth`` cache
namespace.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.cache import CacheKeys, RedisCache, SetMode
from core.config import Settings, get_settings
from core.db import DatabaseManager
from core.exceptions import (
    AuthenticationError,
    CacheError,
    DatabaseError,
    DuplicateResourceError,
    ValidationError,
)
from core.logging import security_logger as logger
from core.models import User, UserRole
from core.repositories import UserRepository
from core.security.lockout import AccountLockout
from core.security.passwords import hash_password, password_problems, verify_password
from core.security.tokens import ACCESS, REFRESH, create_token, decode_token, seconds_until_expiry

INVALID_CREDENTIALS = "Invalid credentials"


class AuthService:
    """
    Usage:
        auth = AuthService(db, cache, AccountLockout(cache))
        session = auth.login("ada@example.com", "S3cretpass")
        session = auth.refresh(session["refresh_token"])
    """

    def __init__(
        self,
        database: DatabaseManager,
        cache: RedisCache,
        lockout: AccountLockout | None = None,
        settings: Settings | None = None,
    ):
        self.db = database
        self.cache = cache
        self.lockout = lockout or AccountLockout(cache)
        self.settings = settings or get_settings()

    # =========================================================================
    # Sign-up / sign-in
    # =========================================================================

    def register(self, email: str, password: str, name: str) -> dict[str, Any]:
        email = email.strip().lower()
        problems = password_problems(password)
        if problems:
            raise ValidationError(
                "Password does not meet security requirements",
                errors=[{"field": "password", "message": problem} for problem in problems],
            )

        try:
            with self.db.session() as session:
                repo = UserRepository(session)
                if repo.email_exists(email):
                    raise DuplicateResourceError("User", "email", email)
                user = repo.create(
                    email=email,
                    name=name.strip(),
                    password_hash=hash_password(password),
                    role=UserRole.USER.value,
                )
                profile = user.to_dict()
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email
            raise DuplicateResourceError("User", "email", email) from exc
        except SQLAlchemyError as exc:
            raise DatabaseError("register user", exc) from exc

        logger.info("user_registered", user_id=profile["id"])
        return self._issue(profile)

    def login(self, email: str, password: str) -> dict[str, Any]:
        """
        Verify credentials and issue a token pair.

        An unknown email and a wrong password are indistinguishable to the
        caller and both count towards the lockout.
        """
        email = email.strip().lower()
        self.lockout.check(email)

        try:
            with self.db.session() as session:
                user = UserRepository(session).get_by_email(email)
                valid = user is not None and user.is_active and verify_password(password, user.password_hash)
                profile = user.to_dict() if valid else None
        except SQLAlchemyError as exc:
            raise DatabaseError("load user", exc) from exc

        if profile is None:
            attempts = self.lockout.record_failure(email)
            logger.warning("login_failed", attempts=attempts)
            raise AuthenticationError(INVALID_CREDENTIALS)

        self.lockout.clear(email)
        logger.info("login_succeeded", user_id=profile["id"], role=profile["role"])
        return self._issue(profile)

    # =========================================================================
    # Token lifecycle
    # =========================================================================

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        try:
            claims = decode_token(refresh_token, expected_type=REFRESH, settings=self.settings)
        except ValueError as exc:
            raise AuthenticationError("Invalid refresh token") from exc

        jti = claims.get("jti")
        if not jti or self.is_token_revoked(jti):
            logger.warning("revoked_refresh_token_presented", user_id=claims.get("sub"))
            raise AuthenticationError("Token has been revoked")

        profile = self.get_user(int(claims["sub"]))
        if profile is None or not profile["is_active"]:
            raise AuthenticationError("User not found")

        # Only the caller that claims the jti may rotate; a concurrent replay loses here
        if not self._claim(jti, seconds_until_expiry(claims)):
            logger.warning("revoked_refresh_token_presented", user_id=profile["id"])
            raise AuthenticationError("Token has been revoked")
        self._forget_refresh_token(profile["id"], jti)
        logger.info("token_refreshed", user_id=profile["id"])
        return self._issue(profile)

    def logout(self, user_id: int, jti: str | None, exp: int | None = None) -> None:
        """Revoke the presented access token and drop the user's refresh-token metadata."""
        if jti:
            remaining = seconds_until_expiry({"exp": exp}) if exp else self.settings.access_token_ttl
            self._revoke(jti, remaining)
        try:
            self.cache.delete_pattern(
                CacheKeys.user_refresh_tokens_pattern(user_id), namespace=CacheKeys.NS_AUTH
            )
        except CacheError as exc:
            logger.error("logout_cleanup_failed", user_id=user_id, error=str(exc))
        logger.info("user_logged_out", user_id=user_id)

    def is_token_revoked(self, jti: str) -> bool:
        return self.cache.exists(CacheKeys.revoked_token(jti), namespace=CacheKeys.NS_AUTH)

    def get_user(self, user_id: int) -> dict[str, Any] | None:
        with self.db.session() as session:
            user: User | None = UserRepository(session).get_by_id(user_id)
            return user.to_dict() if user else None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _issue(self, profile: dict[str, Any]) -> dict[str, Any]:
        access_token, _ = create_token(
            profile["id"], profile["email"], profile["role"], ACCESS, self.settings
        )
        refresh_token, refresh_claims = create_token(
            profile["id"], profile["email"], profile["role"], REFRESH, self.settings
        )
        try:
            self.cache.set(
                CacheKeys.refresh_token(profile["id"], refresh_claims["jti"]),
                {"user_id": profile["id"], "issued_at": datetime.now(timezone.utc).isoformat()},
                ttl=self.settings.refresh_token_ttl,
                namespace=CacheKeys.NS_AUTH,
            )
        except CacheError as exc:
            logger.warning("refresh_metadata_store_failed", user_id=profile["id"], error=str(exc))

        return {
            "user": {
                "id": profile["id"],
                "email": profile["email"],
                "name": profile["name"],
                "role": profile["role"],
            },
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "Bearer",
            "expires_in": self.settings.access_token_ttl,
        }

    def _revoke(self, jti: str, ttl: int) -> None:
        try:
            self.cache.set(
                CacheKeys.revoked_token(jti),
                True,
                ttl=max(1, ttl),
                namespace=CacheKeys.NS_AUTH,
            )
        except CacheError as exc:
            logger.error("token_revoke_failed", error=str(exc))
            raise

    def _claim(self, jti: str, ttl: int) -> bool:
        """Revoke ``jti`` unless it already is. Returns whether this call revoked it."""
        try:
            return self.cache.set_conditional(
                CacheKeys.revoked_token(jti),
                True,
                ttl=max(1, ttl),
                namespace=CacheKeys.NS_AUTH,
                mode=SetMode.IF_ABSENT,
            )
        except CacheError as exc:
            logger.error("token_revoke_failed", error=str(exc))
            raise

    def _forget_refresh_token(self, user_id: int, jti: str) -> None:
        try:
            self.cache.delete(CacheKeys.refresh_token(user_id, jti), namespace=CacheKeys.NS_AUTH)
        except CacheError as exc:
            logger.warning("refresh_metadata_delete_failed", user_id=user_id, error=str(exc))

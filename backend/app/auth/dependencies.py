"""
Authentication dependencies for FastAPI routes.

Access tokens arrive as ``Authorization: Bearer <jwt>``. A token is
accepted when its signature, issuer, audience, expiry and ``type`` check
out, its ``jti`` has not been revoked, and its user still exists.
"""

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from core.exceptions import AuthenticationError, AuthorizationError
from core.models import UserRole
from core.security.tokens import ACCESS, decode_token
from core.services import AuthService

from ..dependencies import get_auth_service

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated caller, resolved once per request."""

    id: int
    email: str
    name: str
    role: str
    jti: str | None
    exp: int | None


def get_current_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> CurrentUser:
    """
    Resolve the authenticated user from a bearer token.

    Steps:
    1) Decode the JWT and require an access token.
    2) Reject if its jti was revoked (logout).
    3) Load the user or raise 401.
    """
    if not token:
        raise AuthenticationError("Not authenticated")

    try:
        claims = decode_token(token, expected_type=ACCESS, settings=auth.settings)
    except ValueError:
        raise AuthenticationError("Invalid authentication credentials") from None

    jti = claims.get("jti")
    if jti and auth.is_token_revoked(jti):
        raise AuthenticationError("Token has been revoked")

    profile = auth.get_user(int(claims["sub"]))
    if profile is None or not profile["is_active"]:
        raise AuthenticationError("User not found")

    user = CurrentUser(
        id=profile["id"],
        email=profile["email"],
        name=profile["name"],
        role=profile["role"],
        jti=jti,
        exp=claims.get("exp"),
    )
    request.state.user_id = user.id
    return user


def require_roles(*roles: UserRole) -> Callable[..., CurrentUser]:
    """
    Dependency factory restricting a route to the given roles.

    Usage:
        @router.get("/all")
        def list_all(user: CurrentUser = Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))):
            ...
    """
    allowed = {role.value for role in roles}

    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            raise AuthorizationError("Insufficient permissions")
        return user

    return dependency

"""
JWT helper utilities.

Access and refresh tokens share one signing key and differ by the
``type`` claim and lifetime. Each token has a ``jti`` so it can be revoked.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import JWTError, jwt

from core.config import Settings, get_settings

ACCESS = "access"
REFRESH = "refresh"


def create_token(
    user_id: int,
    email: str,
    role: str,
    token_type: str = ACCESS,
    settings: Settings | None = None,
) -> tuple[str, Dict[str, Any]]:
    """
    Create a signed JWT.

    Returns:
        (encoded token, claims) so callers can record the jti and expiry.
    """
    settings = settings or get_settings()
    lifetime = settings.access_token_ttl if token_type == ACCESS else settings.refresh_token_ttl
    now = datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "type": token_type,
        "jti": str(uuid.uuid4()),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=lifetime)).timestamp()),
    }
    token = jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return token, claims


def decode_token(token: str, expected_type: str | None = None, settings: Settings | None = None) -> Dict[str, Any]:
    """
    Decode and validate a JWT.

    Raises:
        ValueError: If the signature, expiry, issuer, audience or type check fails.
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError as exc:
        raise ValueError("Invalid token") from exc

    if expected_type is not None and payload.get("type") != expected_type:
        raise ValueError("Invalid token type")
    return payload


def seconds_until_expiry(claims: Dict[str, Any]) -> int:
    exp = claims.get("exp")
    if not exp:
        return 0
    return max(0, int(exp - datetime.now(timezone.utc).timestamp()))

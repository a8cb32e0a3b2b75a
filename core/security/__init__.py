"""
Security utilities for TaskFlow.

Provides:
- Fixed-window rate limiting
- Account lockout for password sign-in
- bcrypt password hashing
- JWT creation and validation
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from core.security.lockout import AccountLockout
    from core.security.rate_limiter import RateLimiter, RateLimitPolicy, RateLimitResult


def __getattr__(name: str) -> Any:
    """Lazy import so importing core.security does not pull in redis or jose."""
    if name in ("RateLimiter", "RateLimitPolicy", "RateLimitResult"):
        from core.security import rate_limiter

        return getattr(rate_limiter, name)
    if name in ("AccountLockout", "MAX_FAILED_ATTEMPTS", "LOCKOUT_SECONDS"):
        from core.security import lockout

        return getattr(lockout, name)
    if name in ("hash_password", "verify_password", "password_problems"):
        from core.security import passwords

        return getattr(passwords, name)
    if name in ("create_token", "decode_token"):
        from core.security import tokens

        return getattr(tokens, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "RateLimiter",
    "RateLimitPolicy",
    "RateLimitResult",
    "AccountLockout",
    "MAX_FAILED_ATTEMPTS",
    "LOCKOUT_SECONDS",
    "hash_password",
    "verify_password",
    "password_problems",
    "create_token",
    "decode_token",
]

"""
Rate limiting dependencies using the core Redis-backed limiter.

Every limited route names its policy explicitly:

    @router.post("", dependencies=[Depends(rate_limit("tasks.create"))])

Counters are per route and per caller. The caller is ``user:<id>`` when
the request carries a valid bearer token, otherwise ``ip:<addr>``.
"""

from collections.abc import Callable

from fastapi import Depends, Request, Response

from core.config import get_settings
from core.logging import get_logger
from core.security.rate_limiter import RateLimiter, RateLimitPolicy
from core.security.tokens import ACCESS, decode_token

from . import get_rate_limiter

logger = get_logger("api.rate_limit")

MINUTE_MS = 60 * 1000

ROUTE_POLICIES: dict[str, RateLimitPolicy] = {
    "tasks.create": RateLimitPolicy("tasks.create", limit=20, window_ms=MINUTE_MS),
    "tasks.list": RateLimitPolicy("tasks.list", limit=100, window_ms=MINUTE_MS),
    "tasks.statistics": RateLimitPolicy("tasks.statistics", limit=20, window_ms=MINUTE_MS),
    "tasks.admin_list": RateLimitPolicy("tasks.admin_list", limit=50, window_ms=MINUTE_MS),
    "tasks.batch_update": RateLimitPolicy("tasks.batch_update", limit=10, window_ms=MINUTE_MS),
    "tasks.batch_delete": RateLimitPolicy("tasks.batch_delete", limit=5, window_ms=MINUTE_MS),
    "auth.login": RateLimitPolicy(
        "auth.login",
        limit=10,
        window_ms=15 * MINUTE_MS,
        message="Too many login attempts. Please try again later.",
    ),
    "auth.register": RateLimitPolicy(
        "auth.register",
        limit=5,
        window_ms=15 * MINUTE_MS,
        message="Too many registration attempts. Please try again later.",
    ),
    "auth.refresh": RateLimitPolicy("auth.refresh", limit=20, window_ms=MINUTE_MS),
    "default": RateLimitPolicy("default", limit=100, window_ms=MINUTE_MS),
}


def client_ip(request: Request) -> str:
    """
    Get the client IP address from the request.

    Handles X-Forwarded-For header for reverse proxy setups.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def request_identity(request: Request) -> str:
    """``user:<id>`` for a valid bearer token, ``ip:<addr>`` otherwise."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            claims = decode_token(token, expected_type=ACCESS, settings=get_settings())
        except ValueError:
            pass
        else:
            return f"user:{claims['sub']}"
    return f"ip:{client_ip(request)}"


def rate_limit(name: str) -> Callable[..., None]:
    """Build a dependency enforcing ``ROUTE_POLICIES[name]``."""
    policy = ROUTE_POLICIES.get(name) or ROUTE_POLICIES["default"]

    def dependency(
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        if policy.skip_if is not None and policy.skip_if(request):
            return

        caller = policy.key_func(request) if policy.key_func is not None else request_identity(request)
        result = limiter.check(policy, f"{policy.name}:{caller}")

        for header, value in result.to_headers().items():
            response.headers[header] = value

        if not result.allowed:
            raise result.to_error(policy.message)

    return dependency

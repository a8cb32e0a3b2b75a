"""
Brute-force protection for password sign-in.

Per email address:

    CLEAR --failure x5--> LOCKED --15 min--> CLEAR
    CLEAR --success-----> CLEAR (counter and flag removed)

Both pieces of state live in the ``auth`` namespace: a failed-attempt
counter (24h TTL, seeded on the first failure) and a lockout flag (15 min
TTL). Threshold and durations are fixed policy, not settings.
"""

from core.cache import CacheKeys, RedisCache
from core.exceptions import AccountLockedError, CacheError
from core.logging import get_logger

logger = get_logger("security.lockout")

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_SECONDS = 15 * 60
FAILED_ATTEMPT_WINDOW_SECONDS = 24 * 60 * 60


def _normalize(email: str) -> str:
    return email.strip().lower()


def _masked(email: str) -> str:
    return email[:20] + "..." if len(email) > 20 else email


class AccountLockout:
    """
    Usage:
        lockout = AccountLockout(cache)

        lockout.check(email)            # raises AccountLockedError
        if not password_ok:
            lockout.record_failure(email)
        else:
            lockout.clear(email)

    Cache failures are logged and ignored, so an unreachable cache never
    blocks sign-in.
    """

    def __init__(self, cache: RedisCache):
        self.cache = cache

    def check(self, email: str) -> None:
        """Raise AccountLockedError while the flag is set. Does not count as an attempt."""
        email = _normalize(email)
        key = CacheKeys.lockout(email)
        if not self.cache.exists(key, namespace=CacheKeys.NS_AUTH):
            return

        remaining = self.cache.ttl(key, namespace=CacheKeys.NS_AUTH)
        retry_after = remaining if remaining > 0 else LOCKOUT_SECONDS
        logger.warning("login_blocked_locked_account", email=_masked(email), retry_after=retry_after)
        raise AccountLockedError(retry_after=retry_after)

    def record_failure(self, email: str) -> int:
        """Count a failed attempt and lock the account at the threshold. Returns the count."""
        email = _normalize(email)
        counter_key = CacheKeys.failed_attempts(email)
        try:
            attempts = self.cache.increment(counter_key, namespace=CacheKeys.NS_AUTH)
            if attempts == 1:
                self.cache.expire(
                    counter_key, FAILED_ATTEMPT_WINDOW_SECONDS, namespace=CacheKeys.NS_AUTH
                )
            if attempts >= MAX_FAILED_ATTEMPTS:
                self.cache.set(
                    CacheKeys.lockout(email),
                    True,
                    ttl=LOCKOUT_SECONDS,
                    namespace=CacheKeys.NS_AUTH,
                )
                logger.warning("account_locked", email=_masked(email), attempts=attempts)
        except CacheError as exc:
            logger.error("lockout_record_failed", email=_masked(email), error=str(exc))
            return 0

        logger.info("auth_failure_recorded", email=_masked(email), attempts=attempts)
        return attempts

    def clear(self, email: str) -> None:
        email = _normalize(email)
        try:
            self.cache.delete(CacheKeys.failed_attempts(email), namespace=CacheKeys.NS_AUTH)
            self.cache.delete(CacheKeys.lockout(email), namespace=CacheKeys.NS_AUTH)
        except CacheError as exc:
            logger.error("lockout_clear_failed", email=_masked(email), error=str(exc))

    def failed_attempts(self, email: str) -> int:
        value = self.cache.get(
            CacheKeys.failed_attempts(_normalize(email)), namespace=CacheKeys.NS_AUTH, default=0
        )
        return int(value or 0)

"""
Tests for the fixed-window rate limiter.
"""

import pytest

from core.cache import CacheKeys
from core.exceptions import RateLimitExceededError
from core.security.rate_limiter import RateLimiter, RateLimitPolicy


class FakeClock:
    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# Aligned to a minute boundary so window arithmetic is easy to read
WINDOW_START = 1_700_000_040.0

POLICY = RateLimitPolicy("tests.create", limit=3, window_ms=60_000)


@pytest.fixture
def clock():
    return FakeClock(WINDOW_START)


@pytest.fixture
def limiter(cache, clock):
    return RateLimiter(cache, clock=clock)


class TestFixedWindow:
    def test_allows_up_to_limit(self, limiter):
        remaining = [limiter.check(POLICY, "user:1").remaining for _ in range(3)]

        assert remaining == [2, 1, 0]

    def test_rejects_over_limit(self, limiter, clock):
        for _ in range(3):
            limiter.check(POLICY, "user:1")

        clock.advance(15)
        result = limiter.check(POLICY, "user:1")

        assert result.allowed is False
        assert result.remaining == 0
        assert result.retry_after == 45

    def test_rejected_requests_do_not_count(self, limiter, cache):
        for _ in range(5):
            limiter.check(POLICY, "user:1")

        key = CacheKeys.rate_window("user:1", int(WINDOW_START * 1000))
        assert cache.get(key, namespace=CacheKeys.NS_RATE_LIMIT) == 3

    def test_last_millisecond_belongs_to_current_window(self, limiter, clock):
        for _ in range(3):
            limiter.check(POLICY, "user:1")

        clock.advance(59.999)

        assert limiter.check(POLICY, "user:1").allowed is False

    def test_new_window_starts_fresh(self, limiter, clock):
        for _ in range(3):
            limiter.check(POLICY, "user:1")

        clock.advance(60)
        result = limiter.check(POLICY, "user:1")

        assert result.allowed is True
        assert result.remaining == 2

    def test_identities_are_counted_separately(self, limiter):
        for _ in range(3):
            limiter.check(POLICY, "user:1")

        assert limiter.check(POLICY, "user:2").allowed is True
        assert limiter.check(POLICY, "user:1").allowed is False

    def test_counter_expires_with_window(self, limiter, cache):
        limiter.check(POLICY, "ip:10.0.0.1")

        key = CacheKeys.rate_window("ip:10.0.0.1", int(WINDOW_START * 1000))
        assert 0 < cache.ttl(key, namespace=CacheKeys.NS_RATE_LIMIT) <= 60


class TestHeaders:
    def test_headers_on_allowed_request(self, limiter):
        headers = limiter.check(POLICY, "user:1").to_headers()

        assert headers["X-RateLimit-Limit"] == "3"
        assert headers["X-RateLimit-Remaining"] == "2"
        assert headers["X-RateLimit-Reset"].endswith("Z")
        assert "Retry-After" not in headers

    def test_rejection_error_carries_headers(self, limiter):
        for _ in range(3):
            limiter.check(POLICY, "user:1")

        error = limiter.check(POLICY, "user:1").to_error("Slow down")

        assert isinstance(error, RateLimitExceededError)
        assert error.status_code == 429
        assert error.message == "Slow down"
        assert error.headers["Retry-After"] == "60"
        assert error.details["limit"] == 3


class TestFailOpen:
    def test_store_failure_allows_request(self, broken_cache, clock):
        limiter = RateLimiter(broken_cache, clock=clock)

        result = limiter.check(POLICY, "user:1")

        assert result.allowed is True
        assert result.degraded is True
        assert result.to_headers() == {}

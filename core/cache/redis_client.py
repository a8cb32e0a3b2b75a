"""
Namespaced Redis cache.

Every key is stored as ``<key_prefix><namespace>:<key>`` so that pattern
deletes stay inside one subsystem's partition. Namespaces are a logical
partition only; any client of the store can still enumerate them.

Failure policy:
- Reads (get, exists, expire, ttl) degrade to a miss and never raise.
- Writes (set, delete, delete_pattern, increment, set_conditional) raise
  CacheError; the caller decides whether the failure matters.
"""

import enum
import json
import threading
import time
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any

import redis
from redis.exceptions import RedisError

from core.config import get_settings
from core.exceptions import CacheError
from core.logging import get_logger

logger = get_logger("cache")

# Keys are removed in chunks so a large invalidation does not block the server.
DELETE_BATCH_SIZE = 500


class SetMode(str, enum.Enum):
    """Conditional write modes (Redis NX / XX)."""

    IF_ABSENT = "nx"
    IF_PRESENT = "xx"


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time copy of the cache counters."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return round(self.hits / lookups, 4) if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "hit_rate": self.hit_rate}


class _Counters:
    """Mutable, lock-guarded counters owned by one RedisCache."""

    def __init__(self):
        self._lock = threading.Lock()
        self._values = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "errors": 0}

    def add(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._values[name] += amount

    def snapshot(self) -> CacheStats:
        with self._lock:
            return CacheStats(**self._values)

    def reset(self) -> None:
        with self._lock:
            for name in self._values:
                self._values[name] = 0


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _encode(value: Any) -> bytes:
    return json.dumps(value, default=_json_default, separators=(",", ":")).encode("utf-8")


def _decode(raw: bytes | str) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw)


def build_client(settings=None) -> redis.Redis:
    """Create a pooled client from settings."""
    settings = settings or get_settings()
    pool = redis.ConnectionPool(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_command_timeout,
        socket_connect_timeout=settings.redis_connect_timeout,
        decode_responses=False,
    )
    return redis.Redis(connection_pool=pool)


class RedisCache:
    """
    Key/value cache with TTLs, namespaces, pattern deletes and atomic counters.

    Usage:
        cache = RedisCache(build_client())

        cache.set("task:42", task_dict, ttl=600, namespace="tasks")
        cache.get("task:42", namespace="tasks")
        cache.delete_pattern("tasks:list:user:7:*", namespace="tasks")
        cache.increment("rate_limit:ip:1.2.3.4:1700000000000", namespace="rate_limit")
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        key_prefix: str | None = None,
        default_ttl: int | None = None,
    ):
        settings = get_settings()
        self._client = client
        self.key_prefix = settings.cache_key_prefix if key_prefix is None else key_prefix
        self.default_ttl = default_ttl or settings.cache_default_ttl
        self._counters = _Counters()
        self._client_lock = threading.Lock()

    @property
    def client(self) -> redis.Redis:
        """The underlying client, created from settings on first use."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = build_client()
        return self._client

    # =========================================================================
    # Keys
    # =========================================================================

    def build_key(self, key: str, namespace: str | None = None) -> str:
        if namespace:
            return f"{self.key_prefix}{namespace}:{key}"
        return f"{self.key_prefix}{key}"

    def _strip(self, stored_key: bytes | str, namespace: str | None) -> str:
        if isinstance(stored_key, bytes):
            stored_key = stored_key.decode("utf-8")
        head = self.build_key("", namespace)
        return stored_key[len(head):] if stored_key.startswith(head) else stored_key

    def _failed(self, operation: str, key: str, exc: Exception) -> CacheError:
        self._counters.add("errors")
        logger.error("cache_operation_failed", operation=operation, key=key, error=str(exc))
        return CacheError(operation, key=key, cause=exc)

    # =========================================================================
    # Read operations (fail to a miss)
    # =========================================================================

    def get(self, key: str, namespace: str | None = None, default: Any = None) -> Any:
        """Return the decoded value, or ``default`` on a miss or store error."""
        full_key = self.build_key(key, namespace)
        try:
            raw = self.client.get(full_key)
        except RedisError as exc:
            self._counters.add("errors")
            self._counters.add("misses")
            logger.warning("cache_get_failed", key=full_key, error=str(exc))
            return default

        if raw is None:
            self._counters.add("misses")
            return default

        try:
            value = _decode(raw)
        except ValueError as exc:
            self._counters.add("errors")
            self._counters.add("misses")
            logger.warning("cache_decode_failed", key=full_key, error=str(exc))
            return default

        self._counters.add("hits")
        return value

    def exists(self, key: str, namespace: str | None = None) -> bool:
        full_key = self.build_key(key, namespace)
        try:
            return bool(self.client.exists(full_key))
        except RedisError as exc:
            self._counters.add("errors")
            logger.warning("cache_exists_failed", key=full_key, error=str(exc))
            return False

    def expire(self, key: str, ttl: int, namespace: str | None = None) -> bool:
        """Set a new TTL on an existing key; ``False`` if the key is absent."""
        full_key = self.build_key(key, namespace)
        try:
            return bool(self.client.expire(full_key, ttl))
        except RedisError as exc:
            self._counters.add("errors")
            logger.warning("cache_expire_failed", key=full_key, error=str(exc))
            return False

    def ttl(self, key: str, namespace: str | None = None) -> int:
        """Seconds remaining, or -1 when the key is missing, persistent or unreadable."""
        full_key = self.build_key(key, namespace)
        try:
            remaining = self.client.ttl(full_key)
        except RedisError as exc:
            self._counters.add("errors")
            logger.warning("cache_ttl_failed", key=full_key, error=str(exc))
            return -1
        return int(remaining) if remaining is not None and remaining >= 0 else -1

    def keys(self, pattern: str = "*", namespace: str | None = None) -> list[str]:
        """Logical keys (prefix and namespace stripped) matching a glob."""
        full_pattern = self.build_key(pattern, namespace)
        try:
            return [
                self._strip(found, namespace)
                for found in self.client.scan_iter(match=full_pattern, count=DELETE_BATCH_SIZE)
            ]
        except RedisError as exc:
            raise self._failed("keys", full_pattern, exc) from exc

    # =========================================================================
    # Write operations (raise CacheError)
    # =========================================================================

    def set(self, key: str, value: Any, ttl: int | None = None, namespace: str | None = None) -> bool:
        """Overwrite ``key`` with ``value`` for ``ttl`` seconds (default TTL if omitted)."""
        full_key = self.build_key(key, namespace)
        try:
            payload = _encode(value)
        except TypeError as exc:
            raise self._failed("set", full_key, exc) from exc
        try:
            self.client.set(full_key, payload, ex=ttl or self.default_ttl)
        except RedisError as exc:
            raise self._failed("set", full_key, exc) from exc
        self._counters.add("sets")
        return True

    def set_conditional(
        self,
        key: str,
        value: Any,
        ttl: int,
        namespace: str | None = None,
        mode: SetMode = SetMode.IF_ABSENT,
    ) -> bool:
        """Write only if the key is absent (NX) or present (XX). Returns whether it wrote."""
        full_key = self.build_key(key, namespace)
        try:
            written = self.client.set(
                full_key,
                _encode(value),
                ex=ttl,
                nx=mode is SetMode.IF_ABSENT,
                xx=mode is SetMode.IF_PRESENT,
            )
        except (RedisError, TypeError) as exc:
            raise self._failed("set_conditional", full_key, exc) from exc
        if written:
            self._counters.add("sets")
        return bool(written)

    def delete(self, key: str, namespace: str | None = None) -> int:
        full_key = self.build_key(key, namespace)
        try:
            removed = int(self.client.delete(full_key))
        except RedisError as exc:
            raise self._failed("delete", full_key, exc) from exc
        self._counters.add("deletes", removed)
        return removed

    def delete_pattern(self, pattern: str, namespace: str | None = None) -> int:
        """
        Delete every key matching a glob inside the namespace.

        Enumeration uses SCAN; matched keys are already fully prefixed, so
        they are removed as-is in batches.
        """
        full_pattern = self.build_key(pattern, namespace)
        removed = 0
        try:
            batch: list[bytes] = []
            for found in self.client.scan_iter(match=full_pattern, count=DELETE_BATCH_SIZE):
                batch.append(found)
                if len(batch) >= DELETE_BATCH_SIZE:
                    removed += int(self.client.delete(*batch))
                    batch = []
            if batch:
                removed += int(self.client.delete(*batch))
        except RedisError as exc:
            raise self._failed("delete_pattern", full_pattern, exc) from exc

        self._counters.add("deletes", removed)
        if removed:
            logger.debug("cache_pattern_deleted", pattern=full_pattern, count=removed)
        return removed

    def increment(self, key: str, amount: int = 1, namespace: str | None = None) -> int:
        """
        Atomically add ``amount`` (INCRBY), creating the key at ``amount``.

        The key keeps whatever TTL it had; a new key has none until the
        caller sets one with expire().
        """
        full_key = self.build_key(key, namespace)
        try:
            return int(self.client.incrby(full_key, amount))
        except RedisError as exc:
            raise self._failed("increment", full_key, exc) from exc

    def flush_namespace(self, namespace: str) -> int:
        """Remove every key in a namespace."""
        return self.delete_pattern("*", namespace)

    # =========================================================================
    # Health and statistics
    # =========================================================================

    def health_check(self) -> dict[str, Any]:
        """PING the store. Never raises."""
        start = time.perf_counter()
        try:
            self.client.ping()
        except RedisError as exc:
            latency = (time.perf_counter() - start) * 1000
            return {"status": "unhealthy", "latency_ms": round(latency, 2), "error": str(exc)}
        latency = (time.perf_counter() - start) * 1000
        return {"status": "healthy", "latency_ms": round(latency, 2), "error": None}

    @property
    def stats(self) -> CacheStats:
        return self._counters.snapshot()

    def reset_stats(self) -> None:
        self._counters.reset()

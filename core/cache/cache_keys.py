"""
Cache key management.

Centralized namespaces, TTLs and key builders so that writers and
invalidators agree on key shapes. The dispatcher, the sweeps and the
request path all import from here.
"""

import hashlib
import json
from typing import Any


class CacheKeys:
    """
    Centralized cache key definitions.

    Namespaces partition the key space per subsystem:
        tasks       list and single-task views
        stats       per-user and global statistics
        auth        refresh-token metadata, revocations, failed attempts, lockouts
        rate_limit  fixed-window request counters
        metrics     month/day bucketed counters written by workers
        overdue     markers written by the overdue sweep

    Examples (logical keys, before the storage prefix):
        tasks   task:3f2a...            single task
        tasks   tasks:list:user:7:ab12  one page of user 7's tasks
        stats   stats:user:7            user 7's statistics
        metrics status_metrics:7:completed:2024-05
    """

    NS_TASKS = "tasks"
    NS_STATS = "stats"
    NS_AUTH = "auth"
    NS_RATE_LIMIT = "rate_limit"
    NS_METRICS = "metrics"
    NS_OVERDUE = "overdue"

    # TTLs (in seconds)
    TTL_TASK_LIST = 300
    TTL_TASK = 600
    TTL_STATISTICS = 900
    TTL_USER_STATS = 60 * 60
    TTL_SWEEP_STATS = 60 * 60 * 6
    TTL_OVERDUE_MARKER = 60 * 60 * 24
    TTL_DAILY_METRICS = 60 * 60 * 25
    TTL_ARCHIVE_MARKER = 60 * 60 * 24 * 30

    # =========================================================================
    # tasks namespace
    # =========================================================================

    @staticmethod
    def task(task_id: str) -> str:
        return f"task:{task_id}"

    @staticmethod
    def list_scope(user_id: int | None) -> str:
        return f"user:{user_id}" if user_id is not None else "all"

    @staticmethod
    def task_list(user_id: int | None, query: dict[str, Any]) -> str:
        """
        Key for one list query.

        The owner scope stays readable so owner patterns can match it; the
        rest of the query is canonical JSON (sorted keys) hashed with SHA-256,
        so equal queries map to one key regardless of argument order.
        """
        canonical = json.dumps(query, sort_keys=True, separators=(",", ":"), default=str)
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"tasks:list:{CacheKeys.list_scope(user_id)}:{digest}"

    @staticmethod
    def user_lists_pattern(user_id: int) -> str:
        return f"tasks:list:user:{user_id}:*"

    @staticmethod
    def all_lists_pattern() -> str:
        return "tasks:list:*"

    # =========================================================================
    # stats namespace
    # =========================================================================

    @staticmethod
    def statistics(user_id: int | None) -> str:
        return f"stats:user:{user_id}" if user_id is not None else "stats:global"

    @staticmethod
    def user_stats(user_id: int) -> str:
        """Completion summary maintained by the event dispatcher."""
        return f"user_stats:{user_id}"

    GLOBAL_TASK_STATS = "global_task_stats"

    @staticmethod
    def user_task_stats(user_id: int) -> str:
        """Per-user statistics written by the periodic recompute sweep."""
        return f"user_task_stats:{user_id}"

    # =========================================================================
    # auth namespace
    # =========================================================================

    @staticmethod
    def failed_attempts(email: str) -> str:
        return f"failed_attempts:{email}"

    @staticmethod
    def lockout(email: str) -> str:
        return f"lockout:{email}"

    @staticmethod
    def refresh_token(user_id: int, token_id: str) -> str:
        return f"refresh_token:{user_id}:{token_id}"

    @staticmethod
    def user_refresh_tokens_pattern(user_id: int) -> str:
        return f"refresh_token:{user_id}:*"

    @staticmethod
    def revoked_token(token_id: str) -> str:
        return f"blacklist:{token_id}"

    # =========================================================================
    # rate_limit namespace
    # =========================================================================

    @staticmethod
    def rate_window(identity: str, window_start_ms: int) -> str:
        return f"rate_limit:{identity}:{window_start_ms}"

    # =========================================================================
    # metrics / overdue namespaces
    # =========================================================================

    @staticmethod
    def status_metrics(user_id: int, status: str, month: str) -> str:
        return f"status_metrics:{user_id}:{status}:{month}"

    @staticmethod
    def user_completions(user_id: int, month: str) -> str:
        return f"user_completions:{user_id}:{month}"

    @staticmethod
    def task_related_pattern(task_id: str) -> str:
        return f"task_related:{task_id}:*"

    @staticmethod
    def task_metrics_pattern(task_id: str) -> str:
        return f"task_metrics:{task_id}:*"

    @staticmethod
    def archived(task_id: str) -> str:
        return f"archived:{task_id}"

    @staticmethod
    def overdue_marker(task_id: str) -> str:
        return f"task_overdue:{task_id}"

    @staticmethod
    def sweep_metrics(sweep: str, day: str) -> str:
        """Daily summary of one sweep, e.g. ``overdue_metrics:2024-05-01``."""
        return f"{sweep}_metrics:{day}"

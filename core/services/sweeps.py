"""
Scheduled maintenance sweeps.

Each sweep is independent and returns a summary dict. Per-task failures
(a rejected publish, an unwritable marker) are logged and counted; a store
failure aborts the sweep with DatabaseError.
"""

from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from core.cache import CacheKeys, RedisCache
from core.db import DatabaseManager
from core.events import TASK_ARCHIVE, TASK_OVERDUE, EventPublisher
from core.exceptions import CacheError, DatabaseError, QueueError
from core.logging import get_logger, log_timing
from core.models import TaskStatus, as_utc
from core.repositories import TaskRepository

logger = get_logger("services.sweeps")

SCAN_LIMIT = 1000
ARCHIVE_AFTER_DAYS = 30
USER_BATCH_SIZE = 50
TRANSIENT_PATTERNS = ("temp:*", "session:*")


def _batches(items: list[int], size: int) -> Iterator[list[int]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SweepService:
    """
    Usage:
        sweeps = SweepService(db, cache, CeleryEventPublisher())
        sweeps.check_overdue_tasks()
    """

    def __init__(
        self,
        database: DatabaseManager,
        cache: RedisCache,
        publisher: EventPublisher,
        clock=None,
    ):
        self.db = database
        self.cache = cache
        self.publisher = publisher
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # Overdue
    # =========================================================================

    @log_timing("check_overdue_tasks")
    def check_overdue_tasks(self) -> dict[str, Any]:
        """Publish ``task-overdue`` for every open task past its due date."""
        now = self.now()
        try:
            with self.db.session() as session:
                rows = [
                    (task.id, task.user_id, task.title, as_utc(task.due_date))
                    for task in TaskRepository(session).find_overdue(now, limit=SCAN_LIMIT)
                ]
        except SQLAlchemyError as exc:
            raise DatabaseError("find overdue tasks", exc) from exc

        logger.info("overdue_tasks_found", count=len(rows))
        published = failed = 0
        for task_id, user_id, title, due_date in rows:
            days_overdue = (now - due_date).days
            try:
                self.publisher.publish(
                    TASK_OVERDUE,
                    {
                        "task_id": task_id,
                        "user_id": user_id,
                        "title": title,
                        "due_date": due_date.isoformat(),
                        "days_overdue": days_overdue,
                    },
                )
                self.cache.set(
                    CacheKeys.overdue_marker(task_id),
                    {
                        "task_id": task_id,
                        "user_id": user_id,
                        "days_overdue": days_overdue,
                        "flagged_at": now.isoformat(),
                    },
                    ttl=CacheKeys.TTL_OVERDUE_MARKER,
                    namespace=CacheKeys.NS_OVERDUE,
                )
                published += 1
            except (QueueError, CacheError) as exc:
                failed += 1
                logger.warning("overdue_task_failed", task_id=task_id, error=str(exc))

        summary = {"found": len(rows), "published": published, "failed": failed}
        self._write_metrics("overdue", now, {"count": len(rows), "checked_at": now.isoformat()})
        return summary

    # =========================================================================
    # Archival
    # =========================================================================

    @log_timing("archive_old_completed_tasks")
    def archive_old_completed_tasks(self) -> dict[str, Any]:
        """Publish ``task-archive`` for tasks completed more than 30 days ago."""
        now = self.now()
        cutoff = now - timedelta(days=ARCHIVE_AFTER_DAYS)
        try:
            with self.db.session() as session:
                rows = [
                    (task.id, task.user_id, task.title)
                    for task in TaskRepository(session).find_completed_before(cutoff, limit=SCAN_LIMIT)
                ]
        except SQLAlchemyError as exc:
            raise DatabaseError("find archivable tasks", exc) from exc

        logger.info("archivable_tasks_found", count=len(rows))
        published = failed = 0
        for task_id, user_id, title in rows:
            try:
                self.publisher.publish(
                    TASK_ARCHIVE,
                    {
                        "task_id": task_id,
                        "user_id": user_id,
                        "title": title,
                        "archived_at": now.isoformat(),
                    },
                )
                published += 1
            except QueueError as exc:
                failed += 1
                logger.warning("archive_task_failed", task_id=task_id, error=str(exc))

        summary = {"found": len(rows), "published": published, "failed": failed}
        self._write_metrics("archive", now, {**summary, "checked_at": now.isoformat()})
        return summary

    # =========================================================================
    # Statistics
    # =========================================================================

    @log_timing("recompute_statistics")
    def recompute_statistics(self) -> dict[str, Any]:
        """Refresh ``global_task_stats`` and every owner's ``user_task_stats``."""
        now = self.now()
        try:
            with self.db.session() as session:
                repo = TaskRepository(session)
                global_counts = repo.count_by_status()
                owners = repo.owner_ids()
        except SQLAlchemyError as exc:
            raise DatabaseError("recompute statistics", exc) from exc

        global_stats = self._stats_from_counts(global_counts, now)
        try:
            self.cache.set(
                CacheKeys.GLOBAL_TASK_STATS,
                global_stats,
                ttl=CacheKeys.TTL_SWEEP_STATS,
                namespace=CacheKeys.NS_STATS,
            )
        except CacheError as exc:
            logger.warning("global_stats_store_failed", error=str(exc))

        updated = failed = 0
        with ThreadPoolExecutor(max_workers=8, thread_name_prefix="taskflow-sweep") as pool:
            for batch in _batches(owners, USER_BATCH_SIZE):
                for ok in pool.map(lambda user_id: self._refresh_user(user_id, now), batch):
                    if ok:
                        updated += 1
                    else:
                        failed += 1

        logger.info("statistics_recomputed", users=len(owners), updated=updated, failed=failed)
        return {"total": global_stats["total"], "users": len(owners), "updated": updated, "failed": failed}

    def _refresh_user(self, user_id: int, now: datetime) -> bool:
        try:
            with self.db.session() as session:
                counts = TaskRepository(session).count_by_status(user_id)
            self.cache.set(
                CacheKeys.user_task_stats(user_id),
                self._stats_from_counts(counts, now, with_rate=True),
                ttl=CacheKeys.TTL_SWEEP_STATS,
                namespace=CacheKeys.NS_STATS,
            )
        except (SQLAlchemyError, CacheError) as exc:
            logger.warning("user_stats_recompute_failed", user_id=user_id, error=str(exc))
            return False
        return True

    @staticmethod
    def _stats_from_counts(counts: dict[str, int], now: datetime, with_rate: bool = False) -> dict[str, Any]:
        by_status = {status.value: counts.get(status.value, 0) for status in TaskStatus}
        total = sum(by_status.values())
        stats: dict[str, Any] = {"total": total, "by_status": by_status}
        if with_rate:
            completed = by_status[TaskStatus.COMPLETED.value]
            stats["completion_rate"] = round(completed / total * 100, 2) if total else 0.0
        stats["last_updated"] = now.isoformat()
        return stats

    # =========================================================================
    # Cache housekeeping
    # =========================================================================

    @log_timing("cleanup_transient_keys")
    def cleanup_transient_keys(self) -> dict[str, Any]:
        """
        Remove scratch keys and rate-limit windows that lost their TTL.

        Windows that still carry a TTL are left to expire on their own so
        live counters are never reset early.
        """
        now = self.now()
        removed: dict[str, int] = {}
        for pattern in TRANSIENT_PATTERNS:
            try:
                removed[pattern] = self.cache.delete_pattern(pattern)
            except CacheError as exc:
                removed[pattern] = 0
                logger.warning("transient_cleanup_failed", pattern=pattern, error=str(exc))

        stale_windows = 0
        try:
            for key in self.cache.keys("*", namespace=CacheKeys.NS_RATE_LIMIT):
                if self.cache.ttl(key, namespace=CacheKeys.NS_RATE_LIMIT) < 0:
                    stale_windows += self.cache.delete(key, namespace=CacheKeys.NS_RATE_LIMIT)
        except CacheError as exc:
            logger.warning("rate_limit_cleanup_failed", error=str(exc))

        summary = {"removed": sum(removed.values()) + stale_windows, "rate_limit_windows": stale_windows, **removed}
        self._write_metrics("cleanup", now, {**summary, "checked_at": now.isoformat()})
        logger.info("cache_cleanup_completed", removed=summary["removed"])
        return summary

    def _write_metrics(self, sweep: str, now: datetime, values: dict[str, Any]) -> None:
        key = CacheKeys.sweep_metrics(sweep, now.strftime("%Y-%m-%d"))
        try:
            self.cache.set(key, values, ttl=CacheKeys.TTL_DAILY_METRICS, namespace=CacheKeys.NS_METRICS)
        except CacheError as exc:
            logger.warning("sweep_metrics_failed", sweep=sweep, error=str(exc))

"""
Consumer side of task lifecycle events.

The Celery task in workers.tasks.task_events decodes the envelope and
calls TaskEventHandler.handle(). Store failures propagate so the job is
retried; cache failures in the follow-up bookkeeping are logged and the
job still succeeds.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from core.cache import CacheKeys, RedisCache
from core.db import DatabaseManager
from core.events import (
    TASK_ARCHIVE,
    TASK_CREATED,
    TASK_DELETED,
    TASK_OVERDUE,
    TASK_STATUS_UPDATED,
    TASKS_BATCH_UPDATED,
)
from core.exceptions import CacheError, DatabaseError, UnknownJobTypeError
from core.logging import get_logger
from core.models import TaskPriority, TaskStatus
from core.repositories import TaskRepository
from core.services.task_service import invalidate_task_views

logger = get_logger("services.task_events")

URGENT_PRIORITIES = (TaskPriority.HIGH.value, TaskPriority.URGENT.value)


def _month() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


class LogNotifier:
    """Notification sink that writes structured log events."""

    def notify(self, kind: str, **context: Any) -> None:
        logger.info("notification", kind=kind, **context)


class TaskEventHandler:
    """
    Apply the side effects of one task event.

    Usage:
        handler = TaskEventHandler(db, cache)
        handler.handle("task-created", {"task_id": "...", "user_id": 7, "priority": "high"})
    """

    def __init__(self, database: DatabaseManager, cache: RedisCache, notifier=None):
        self.db = database
        self.cache = cache
        self.notifier = notifier or LogNotifier()
        self._handlers: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            TASK_CREATED: self._on_created,
            TASK_STATUS_UPDATED: self._on_status_updated,
            TASK_DELETED: self._on_deleted,
            TASKS_BATCH_UPDATED: self._on_batch_updated,
            TASK_OVERDUE: self._on_overdue,
            TASK_ARCHIVE: self._on_archive,
        }

    def handle(self, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(event_type)
        if handler is None:
            raise UnknownJobTypeError(event_type)

        logger.debug("task_event_started", event_type=event_type, task_id=payload.get("task_id"))
        result = handler(payload)
        logger.info("task_event_processed", event_type=event_type, task_id=payload.get("task_id"))
        return {"event_type": event_type, **result}

    # =========================================================================
    # Event handlers
    # =========================================================================

    def _on_created(self, payload: dict[str, Any]) -> dict[str, Any]:
        user_id = payload["user_id"]
        stats = self.refresh_user_stats(user_id)

        notified = payload.get("priority") in URGENT_PRIORITIES
        if notified:
            self.notifier.notify(
                "high_priority_task",
                task_id=payload.get("task_id"),
                user_id=user_id,
                priority=payload.get("priority"),
            )

        invalidate_task_views(self.cache, [user_id])
        return {"user_stats": stats, "notified": notified}

    def _on_status_updated(self, payload: dict[str, Any]) -> dict[str, Any]:
        user_id = payload["user_id"]
        old_status = payload.get("old_status")
        new_status = payload["new_status"]

        self._record_status_change(user_id, old_status, new_status)
        if new_status == TaskStatus.CANCELLED.value:
            logger.info("task_cancelled", task_id=payload.get("task_id"), user_id=user_id)

        stats = self.refresh_user_stats(user_id)
        invalidate_task_views(self.cache, [user_id])
        return {"user_stats": stats}

    def _on_deleted(self, payload: dict[str, Any]) -> dict[str, Any]:
        task_id = payload["task_id"]
        user_id = payload["user_id"]

        removed = 0
        for pattern in (CacheKeys.task_related_pattern(task_id), CacheKeys.task_metrics_pattern(task_id)):
            try:
                removed += self.cache.delete_pattern(pattern)
            except CacheError as exc:
                logger.warning("task_related_cleanup_failed", task_id=task_id, pattern=pattern, error=str(exc))

        stats = self.refresh_user_stats(user_id)
        invalidate_task_views(self.cache, [user_id])
        return {"user_stats": stats, "related_keys_removed": removed}

    def _on_batch_updated(self, payload: dict[str, Any]) -> dict[str, Any]:
        user_ids = payload.get("user_ids") or []
        for change in payload.get("status_changes") or []:
            self._record_status_change(change["user_id"], change.get("old_status"), change["new_status"])

        for user_id in user_ids:
            self.refresh_user_stats(user_id)
        invalidate_task_views(self.cache, user_ids)
        return {"users_refreshed": len(user_ids), "tasks": len(payload.get("task_ids") or [])}

    def _on_overdue(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.notifier.notify(
            "task_overdue",
            task_id=payload.get("task_id"),
            user_id=payload.get("user_id"),
            days_overdue=payload.get("days_overdue"),
        )
        return {"notified": True}

    def _on_archive(self, payload: dict[str, Any]) -> dict[str, Any]:
        task_id = payload["task_id"]
        try:
            self.cache.set(
                CacheKeys.archived(task_id),
                {"task_id": task_id, "archived_at": datetime.now(timezone.utc).isoformat()},
                ttl=CacheKeys.TTL_ARCHIVE_MARKER,
                namespace=CacheKeys.NS_METRICS,
            )
        except CacheError as exc:
            logger.warning("archive_marker_failed", task_id=task_id, error=str(exc))
            return {"archived": False}
        return {"archived": True}

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _record_status_change(self, user_id: int, old_status: str | None, new_status: str) -> None:
        """Move one unit between monthly status buckets; the old bucket never goes below zero."""
        month = _month()
        try:
            self.cache.increment(
                CacheKeys.status_metrics(user_id, new_status, month), namespace=CacheKeys.NS_METRICS
            )
            if old_status:
                old_key = CacheKeys.status_metrics(user_id, old_status, month)
                if int(self.cache.get(old_key, namespace=CacheKeys.NS_METRICS, default=0) or 0) > 0:
                    self.cache.increment(old_key, -1, namespace=CacheKeys.NS_METRICS)
            if new_status == TaskStatus.COMPLETED.value:
                self.cache.increment(
                    CacheKeys.user_completions(user_id, month), namespace=CacheKeys.NS_METRICS
                )
        except CacheError as exc:
            logger.warning("status_metrics_failed", user_id=user_id, error=str(exc))

    def refresh_user_stats(self, user_id: int) -> dict[str, Any]:
        """Recount one user's tasks and store the summary under ``user_stats:<id>``."""
        try:
            with self.db.session() as session:
                counts = TaskRepository(session).count_by_status(user_id)
        except SQLAlchemyError as exc:
            raise DatabaseError("refresh user stats", exc) from exc

        total = sum(counts.values())
        completed = counts.get(TaskStatus.COMPLETED.value, 0)
        stats = {
            "total": total,
            "completed": completed,
            "pending": counts.get(TaskStatus.PENDING.value, 0),
            "in_progress": counts.get(TaskStatus.IN_PROGRESS.value, 0),
            "completion_rate": round(completed / total * 100, 2) if total else 0.0,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.cache.set(
                CacheKeys.user_stats(user_id),
                stats,
                ttl=CacheKeys.TTL_USER_STATS,
                namespace=CacheKeys.NS_STATS,
            )
        except CacheError as exc:
            logger.warning("user_stats_store_failed", user_id=user_id, error=str(exc))
        return stats

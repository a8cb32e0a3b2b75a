"""
Task mutation pipeline and cache-first read path.

Every mutation follows the same order:

1. write inside ``database.session()``; the block commits on exit
2. invalidate cached views (synchronous, failures logged)
3. hand event publishing to the background executor (detached)

Nothing in steps 2 and 3 can undo step 1, and neither step runs when the
commit fails.

Invalidation is coarse: every list view of the owner and every global
list view is dropped on each write, together with the owner's and the
global statistics. There is no index from task to the list keys that
contain it.
"""

import math
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from core.background import BackgroundExecutor
from core.cache import CacheKeys, RedisCache
from core.config import Settings, get_settings
from core.db import DatabaseManager
from core.events import (
    TASK_CREATED,
    TASK_DELETED,
    TASK_STATUS_UPDATED,
    TASKS_BATCH_UPDATED,
    EventPublisher,
)
from core.exceptions import CacheError, DatabaseError, QueueError, ResourceNotFoundError, ValidationError
from core.logging import get_logger
from core.models import Task, TaskPriority, TaskStatus, as_utc, utcnow
from core.repositories import TaskFilters, TaskRepository

logger = get_logger("services.tasks")

MUTABLE_FIELDS = ("title", "description", "status", "priority", "due_date")
TITLE_MAX_LENGTH = 255
BATCH_FAILURE_MESSAGE = "Task not found or access denied"


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return as_utc(parsed)


def clean_task_fields(changes: dict[str, Any], require_title: bool = False) -> dict[str, Any]:
    """
    Normalize and validate task fields.

    Enum members and their string values are both accepted; datetimes are
    converted to UTC. Raises ValidationError listing every bad field.
    """
    errors: list[dict[str, str]] = []
    cleaned: dict[str, Any] = {}

    for field, value in changes.items():
        if field not in MUTABLE_FIELDS:
            errors.append({"field": field, "message": "Field cannot be updated"})
            continue

        if field == "title":
            title = (value or "").strip() if isinstance(value, str) or value is None else None
            if not title:
                errors.append({"field": "title", "message": "Title must be a non-empty string"})
            elif len(title) > TITLE_MAX_LENGTH:
                errors.append({"field": "title", "message": f"Title must be at most {TITLE_MAX_LENGTH} characters"})
            else:
                cleaned["title"] = title
        elif field == "description":
            cleaned["description"] = value
        elif field == "status":
            try:
                cleaned["status"] = TaskStatus(value).value
            except ValueError:
                errors.append({"field": "status", "message": f"Invalid status '{value}'"})
        elif field == "priority":
            try:
                cleaned["priority"] = TaskPriority(value).value
            except ValueError:
                errors.append({"field": "priority", "message": f"Invalid priority '{value}'"})
        elif field == "due_date":
            if value is None:
                cleaned["due_date"] = None
            else:
                try:
                    cleaned["due_date"] = _parse_datetime(value)
                except (TypeError, ValueError):
                    errors.append({"field": "due_date", "message": "Invalid ISO-8601 datetime"})

    if require_title and "title" not in cleaned and not any(e["field"] == "title" for e in errors):
        errors.append({"field": "title", "message": "Title is required"})

    if errors:
        raise ValidationError("Validation failed", errors=errors)
    return cleaned


def _jsonable(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in fields.items()}


def _filters_to_query(filters: TaskFilters) -> dict[str, Any]:
    query = {}
    for name in TaskFilters.__dataclass_fields__:
        value = getattr(filters, name)
        if value is None or value == "":
            continue
        query[name] = value.isoformat() if isinstance(value, datetime) else value
    return query


class TaskService:
    """
    The only writer of Task rows.

    Every public method takes an optional ``user_id``. When given, the
    operation is owner-scoped and another user's task behaves exactly like
    a missing one.

    Usage:
        service = TaskService(db, cache, CeleryEventPublisher(), BackgroundExecutor())
        task = service.create({"title": "Write report"}, user_id=7)
        page = service.find_all(user_id=7, page=1, limit=20)
    """

    def __init__(
        self,
        database: DatabaseManager,
        cache: RedisCache,
        publisher: EventPublisher,
        executor: BackgroundExecutor,
        settings: Settings | None = None,
    ):
        self.db = database
        self.cache = cache
        self.publisher = publisher
        self.executor = executor
        self.settings = settings or get_settings()

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(self, data: dict[str, Any], user_id: int) -> dict[str, Any]:
        fields = clean_task_fields(data, require_title=True)
        fields.setdefault("status", TaskStatus.PENDING.value)
        fields.setdefault("priority", TaskPriority.MEDIUM.value)

        try:
            with self.db.session() as session:
                task = TaskRepository(session).create(user_id=user_id, **fields)
                result = task.to_dict()
        except SQLAlchemyError as exc:
            logger.error("task_create_failed", user_id=user_id, error=str(exc))
            raise DatabaseError("create task", exc) from exc

        logger.info("task_created", task_id=result["id"], user_id=user_id)
        self._invalidate([user_id])
        self._dispatch(
            TASK_CREATED,
            {
                "task_id": result["id"],
                "user_id": user_id,
                "title": result["title"],
                "status": result["status"],
                "priority": result["priority"],
            },
        )
        return result

    def update(self, task_id: str, changes: dict[str, Any], user_id: int | None = None) -> dict[str, Any]:
        fields = clean_task_fields(changes)

        try:
            with self.db.session() as session:
                task = TaskRepository(session).get_owned(task_id, user_id)
                if task is None:
                    raise ResourceNotFoundError("Task", task_id)

                old_status = task.status
                for name, value in fields.items():
                    setattr(task, name, value)
                task.updated_at = utcnow()
                session.flush()
                result = task.to_dict()
        except SQLAlchemyError as exc:
            logger.error("task_update_failed", task_id=task_id, error=str(exc))
            raise DatabaseError("update task", exc) from exc

        owner_id = result["user_id"]
        logger.info("task_updated", task_id=task_id, fields=sorted(fields))
        self._invalidate([owner_id], [task_id])

        if result["status"] != old_status:
            self._dispatch(
                TASK_STATUS_UPDATED,
                {
                    "task_id": task_id,
                    "user_id": owner_id,
                    "old_status": old_status,
                    "new_status": result["status"],
                },
            )
        return result

    def remove(self, task_id: str, user_id: int | None = None) -> None:
        try:
            with self.db.session() as session:
                repo = TaskRepository(session)
                task = repo.get_owned(task_id, user_id)
                if task is None:
                    raise ResourceNotFoundError("Task", task_id)
                owner_id, title = task.user_id, task.title
                repo.delete(task)
        except SQLAlchemyError as exc:
            logger.error("task_delete_failed", task_id=task_id, error=str(exc))
            raise DatabaseError("delete task", exc) from exc

        logger.info("task_deleted", task_id=task_id, user_id=owner_id)
        self._invalidate([owner_id], [task_id])
        self._dispatch(TASK_DELETED, {"task_id": task_id, "user_id": owner_id, "title": title})

    def batch_update(
        self, task_ids: list[str], changes: dict[str, Any], user_id: int | None = None
    ) -> dict[str, Any]:
        """
        Apply the same changes to many tasks.

        Ids the caller cannot see are reported as per-item failures; the
        rest are updated with a single UPDATE statement.
        """
        fields = clean_task_fields(changes)
        if not fields:
            raise ValidationError("Validation failed", errors=[{"field": "updates", "message": "No fields to update"}])

        try:
            with self.db.session() as session:
                repo = TaskRepository(session)
                found, missing = repo.partition_owned(task_ids, user_id)
                before = {task.id: (task.user_id, task.status) for task in found}
                ids = list(before)

                repo.bulk_update(ids, **fields, updated_at=utcnow())
                session.expire_all()
                updated = [task.to_dict() for task in repo.get_many(ids)]
        except SQLAlchemyError as exc:
            logger.error("task_batch_update_failed", count=len(task_ids), error=str(exc))
            raise DatabaseError("batch update tasks", exc) from exc

        owners = sorted({owner for owner, _ in before.values()})
        result = self._bulk_result(
            [{"success": True, "id": task["id"], "data": task} for task in updated], missing
        )
        logger.info(
            "tasks_batch_updated",
            successful=result["summary"]["successful"],
            failed=result["summary"]["failed"],
        )

        if ids:
            self._invalidate(owners, ids)
            status_changes = [
                {
                    "task_id": task["id"],
                    "user_id": task["user_id"],
                    "old_status": before[task["id"]][1],
                    "new_status": task["status"],
                }
                for task in updated
                if task["status"] != before[task["id"]][1]
            ]
            self._dispatch(
                TASKS_BATCH_UPDATED,
                {
                    "task_ids": ids,
                    "user_ids": owners,
                    "updates": _jsonable(fields),
                    "status_changes": status_changes,
                },
            )
        return result

    def batch_remove(self, task_ids: list[str], user_id: int | None = None) -> dict[str, Any]:
        try:
            with self.db.session() as session:
                repo = TaskRepository(session)
                found, missing = repo.partition_owned(task_ids, user_id)
                removed = [(task.id, task.user_id, task.title) for task in found]
                repo.bulk_delete([task_id for task_id, _, _ in removed])
        except SQLAlchemyError as exc:
            logger.error("task_batch_delete_failed", count=len(task_ids), error=str(exc))
            raise DatabaseError("batch delete tasks", exc) from exc

        result = self._bulk_result([{"success": True, "id": task_id} for task_id, _, _ in removed], missing)
        logger.info(
            "tasks_batch_deleted",
            successful=result["summary"]["successful"],
            failed=result["summary"]["failed"],
        )

        if removed:
            self._invalidate(sorted({owner for _, owner, _ in removed}), [task_id for task_id, _, _ in removed])
            for task_id, owner, title in removed:
                self._dispatch(TASK_DELETED, {"task_id": task_id, "user_id": owner, "title": title})
        return result

    @staticmethod
    def _bulk_result(successful: list[dict[str, Any]], missing: list[str]) -> dict[str, Any]:
        failed = [{"success": False, "id": task_id, "error": BATCH_FAILURE_MESSAGE} for task_id in missing]
        return {
            "successful": successful,
            "failed": failed,
            "summary": {
                "total": len(successful) + len(failed),
                "successful": len(successful),
                "failed": len(failed),
            },
        }

    # =========================================================================
    # Reads (cache first)
    # =========================================================================

    def find_one(self, task_id: str, user_id: int | None = None) -> dict[str, Any]:
        key = CacheKeys.task(task_id)
        cached = self.cache.get(key, namespace=CacheKeys.NS_TASKS)
        if cached is not None:
            if user_id is not None and cached.get("user_id") != user_id:
                raise ResourceNotFoundError("Task", task_id)
            return cached

        with self.db.session() as session:
            task = TaskRepository(session).get_owned(task_id, user_id)
            if task is None:
                raise ResourceNotFoundError("Task", task_id)
            result = task.to_dict()

        self._store(key, result, CacheKeys.TTL_TASK, CacheKeys.NS_TASKS)
        return result

    def find_all(
        self,
        user_id: int | None = None,
        page: int = 1,
        limit: int | None = None,
        filters: TaskFilters | None = None,
        include_user: bool = False,
    ) -> dict[str, Any]:
        filters = filters or TaskFilters()
        page = max(1, int(page))
        limit = limit if limit is not None else self.settings.default_page_size
        limit = max(1, min(int(limit), self.settings.task_list_max_limit))

        query = {
            "page": page,
            "limit": limit,
            "filters": _filters_to_query(filters),
            "include_user": include_user,
        }
        key = CacheKeys.task_list(user_id, query)
        cached = self.cache.get(key, namespace=CacheKeys.NS_TASKS)
        if cached is not None:
            return cached

        with self.db.session() as session:
            tasks, total = TaskRepository(session).list_page(
                filters,
                user_id=user_id,
                offset=(page - 1) * limit,
                limit=limit,
                include_user=include_user,
            )
            data = [task.to_dict(include_user=include_user) for task in tasks]

        total_pages = math.ceil(total / limit) if total else 0
        result = {
            "data": data,
            "meta": {
                "current_page": page,
                "items_per_page": limit,
                "total_items": total,
                "total_pages": total_pages,
                "has_previous_page": page > 1,
                "has_next_page": page < total_pages,
            },
        }
        self._store(key, result, CacheKeys.TTL_TASK_LIST, CacheKeys.NS_TASKS)
        return result

    def get_statistics(self, user_id: int | None = None) -> dict[str, Any]:
        """Counts by status and priority, overdue, and completions in the last 7 and 30 days."""
        key = CacheKeys.statistics(user_id)
        cached = self.cache.get(key, namespace=CacheKeys.NS_STATS)
        if cached is not None:
            return cached

        result = compute_statistics(self.db, user_id)
        self._store(key, result, CacheKeys.TTL_STATISTICS, CacheKeys.NS_STATS)
        return result

    # =========================================================================
    # Side effects
    # =========================================================================

    def _store(self, key: str, value: Any, ttl: int, namespace: str) -> None:
        try:
            self.cache.set(key, value, ttl=ttl, namespace=namespace)
        except CacheError as exc:
            logger.warning("cache_populate_failed", key=key, error=str(exc))

    def _invalidate(self, user_ids: Iterable[int], task_ids: Iterable[str] = ()) -> None:
        invalidate_task_views(self.cache, user_ids, task_ids)

    def _dispatch(self, event_type: str, payload: dict[str, Any]) -> None:
        self.executor.submit(self._publish, event_type, payload, label=f"publish:{event_type}")

    def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            self.publisher.publish(event_type, payload)
        except QueueError as exc:
            logger.error(
                "event_publish_failed",
                event_type=event_type,
                task_id=payload.get("task_id"),
                error=str(exc),
            )


def invalidate_task_views(cache: RedisCache, user_ids: Iterable[int], task_ids: Iterable[str] = ()) -> None:
    """
    Drop every cached view a write may have made stale.

    Shared by the request path and the event dispatcher. Each step is
    attempted even if an earlier one fails; failures are only logged.
    """
    steps: list[tuple[str, Callable[[], int]]] = []
    for user_id in user_ids:
        steps.append(
            (
                CacheKeys.user_lists_pattern(user_id),
                lambda u=user_id: cache.delete_pattern(CacheKeys.user_lists_pattern(u), namespace=CacheKeys.NS_TASKS),
            )
        )
        steps.append(
            (
                CacheKeys.statistics(user_id),
                lambda u=user_id: cache.delete(CacheKeys.statistics(u), namespace=CacheKeys.NS_STATS),
            )
        )
    steps.append(
        (
            CacheKeys.all_lists_pattern(),
            lambda: cache.delete_pattern(CacheKeys.all_lists_pattern(), namespace=CacheKeys.NS_TASKS),
        )
    )
    steps.append(
        (
            CacheKeys.statistics(None),
            lambda: cache.delete(CacheKeys.statistics(None), namespace=CacheKeys.NS_STATS),
        )
    )
    for task_id in task_ids:
        steps.append(
            (
                CacheKeys.task(task_id),
                lambda t=task_id: cache.delete(CacheKeys.task(t), namespace=CacheKeys.NS_TASKS),
            )
        )

    for key, step in steps:
        try:
            step()
        except CacheError as exc:
            logger.warning("cache_invalidation_failed", key=key, error=str(exc))


def compute_statistics(database: DatabaseManager, user_id: int | None = None) -> dict[str, Any]:
    """
    Run the five aggregates concurrently, each in its own session, and merge them.
    """
    now = datetime.now(timezone.utc)
    aggregates: dict[str, Callable[[TaskRepository], Any]] = {
        "by_status": lambda repo: repo.count_by_status(user_id),
        "by_priority": lambda repo: repo.count_by_priority(user_id),
        "overdue": lambda repo: repo.count_overdue(now, user_id),
        "completed_this_week": lambda repo: repo.count_completed_since(now - timedelta(days=7), user_id),
        "completed_this_month": lambda repo: repo.count_completed_since(now - timedelta(days=30), user_id),
    }

    def run(query: Callable[[TaskRepository], Any]) -> Any:
        with database.session() as session:
            return query(TaskRepository(session))

    try:
        with ThreadPoolExecutor(max_workers=len(aggregates), thread_name_prefix="taskflow-stats") as pool:
            futures = {name: pool.submit(run, query) for name, query in aggregates.items()}
            values = {name: future.result() for name, future in futures.items()}
    except SQLAlchemyError as exc:
        logger.error("statistics_query_failed", user_id=user_id, error=str(exc))
        raise DatabaseError("compute statistics", exc) from exc

    by_status = {status.value: values["by_status"].get(status.value, 0) for status in TaskStatus}
    by_priority = {priority.value: values["by_priority"].get(priority.value, 0) for priority in TaskPriority}
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_priority": by_priority,
        "overdue": values["overdue"],
        "completed_this_week": values["completed_this_week"],
        "completed_this_month": values["completed_this_month"],
    }

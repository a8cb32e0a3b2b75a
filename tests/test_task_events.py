"""
Tests for the task event dispatcher.

Tests:
- TaskEventHandler side effects per event type
- Celery task retries and the failed-job record
"""

from datetime import datetime, timezone

import pytest

from core.cache import CacheKeys
from core.events import (
    TASK_ARCHIVE,
    TASK_CREATED,
    TASK_DELETED,
    TASK_OVERDUE,
    TASK_STATUS_UPDATED,
    TASKS_BATCH_UPDATED,
)
from core.exceptions import UnknownJobTypeError
from core.models import FailedJob
from core.services import TaskEventHandler


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, kind, **context):
        self.sent.append((kind, context))


def _month() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def handler(database, cache, notifier):
    return TaskEventHandler(database, cache, notifier)


class TestTaskEventHandler:
    def test_created_refreshes_user_stats(self, handler, cache, make_user, make_task):
        user = make_user()
        task = make_task(user["id"], status="completed")
        make_task(user["id"])

        result = handler.handle(TASK_CREATED, {"task_id": task["id"], "user_id": user["id"], "priority": "medium"})

        stored = cache.get(CacheKeys.user_stats(user["id"]), namespace=CacheKeys.NS_STATS)
        assert result["event_type"] == TASK_CREATED
        assert stored["total"] == 2
        assert stored["completed"] == 1
        assert stored["completion_rate"] == 50.0
        assert 0 < cache.ttl(CacheKeys.user_stats(user["id"]), namespace=CacheKeys.NS_STATS) <= 3600

    @pytest.mark.parametrize("priority, notified", [("urgent", True), ("high", True), ("low", False)])
    def test_created_notifies_on_high_priority(self, handler, notifier, make_user, priority, notified):
        user = make_user()

        result = handler.handle(TASK_CREATED, {"task_id": "t1", "user_id": user["id"], "priority": priority})

        assert result["notified"] is notified
        assert bool(notifier.sent) is notified

    def test_created_invalidates_owner_views(self, handler, cache, make_user):
        user = make_user()
        cache.set(CacheKeys.task_list(user["id"], {"page": 1}), {"data": []}, namespace=CacheKeys.NS_TASKS)

        handler.handle(TASK_CREATED, {"task_id": "t1", "user_id": user["id"]})

        assert cache.keys(CacheKeys.user_lists_pattern(user["id"]), namespace=CacheKeys.NS_TASKS) == []

    def test_status_update_moves_month_buckets(self, handler, cache, make_user):
        user = make_user()
        month = _month()
        cache.set(CacheKeys.status_metrics(user["id"], "pending", month), 1, namespace=CacheKeys.NS_METRICS)

        handler.handle(
            TASK_STATUS_UPDATED,
            {"task_id": "t1", "user_id": user["id"], "old_status": "pending", "new_status": "completed"},
        )

        metrics = CacheKeys.NS_METRICS
        assert cache.get(CacheKeys.status_metrics(user["id"], "pending", month), namespace=metrics) == 0
        assert cache.get(CacheKeys.status_metrics(user["id"], "completed", month), namespace=metrics) == 1
        assert cache.get(CacheKeys.user_completions(user["id"], month), namespace=metrics) == 1

    def test_old_bucket_never_goes_negative(self, handler, cache, make_user):
        user = make_user()

        handler.handle(
            TASK_STATUS_UPDATED,
            {"task_id": "t1", "user_id": user["id"], "old_status": "in_progress", "new_status": "pending"},
        )

        old_key = CacheKeys.status_metrics(user["id"], "in_progress", _month())
        assert cache.get(old_key, namespace=CacheKeys.NS_METRICS) is None

    def test_deleted_drops_related_keys(self, handler, cache, make_user):
        user = make_user()
        cache.set("task_related:t1:comments", [1, 2])
        cache.set("task_metrics:t1:views", 10)
        cache.set("task_related:t2:comments", [3])

        result = handler.handle(TASK_DELETED, {"task_id": "t1", "user_id": user["id"]})

        assert result["related_keys_removed"] == 2
        assert cache.exists("task_related:t2:comments")

    def test_batch_update_records_each_status_change(self, handler, cache, make_user):
        first, second = make_user(), make_user()

        result = handler.handle(
            TASKS_BATCH_UPDATED,
            {
                "task_ids": ["a", "b"],
                "user_ids": [first["id"], second["id"]],
                "updates": {"status": "completed"},
                "status_changes": [
                    {"task_id": "a", "user_id": first["id"], "old_status": "pending", "new_status": "completed"},
                    {"task_id": "b", "user_id": second["id"], "old_status": "pending", "new_status": "completed"},
                ],
            },
        )

        assert result["users_refreshed"] == 2
        for user in (first, second):
            key = CacheKeys.user_completions(user["id"], _month())
            assert cache.get(key, namespace=CacheKeys.NS_METRICS) == 1
            assert cache.exists(CacheKeys.user_stats(user["id"]), namespace=CacheKeys.NS_STATS)

    def test_overdue_notifies(self, handler, notifier):
        handler.handle(TASK_OVERDUE, {"task_id": "t1", "user_id": 1, "days_overdue": 3})

        assert notifier.sent == [("task_overdue", {"task_id": "t1", "user_id": 1, "days_overdue": 3})]

    def test_archive_sets_marker(self, handler, cache):
        result = handler.handle(TASK_ARCHIVE, {"task_id": "t1", "user_id": 1})

        assert result["archived"] is True
        marker = cache.get(CacheKeys.archived("t1"), namespace=CacheKeys.NS_METRICS)
        assert marker["task_id"] == "t1"
        assert cache.ttl(CacheKeys.archived("t1"), namespace=CacheKeys.NS_METRICS) > 60 * 60 * 24 * 29

    def test_unknown_event_type(self, handler):
        with pytest.raises(UnknownJobTypeError):
            handler.handle("task-teleported", {"task_id": "t1"})

    def test_cache_outage_does_not_fail_event(self, database, broken_cache, make_user, make_task):
        user = make_user()
        make_task(user["id"])

        result = TaskEventHandler(database, broken_cache).handle(
            TASK_STATUS_UPDATED,
            {"task_id": "t1", "user_id": user["id"], "old_status": "pending", "new_status": "completed"},
        )

        assert result["user_stats"]["total"] == 1


class TestProcessTaskEvent:
    """The Celery entry point, run eagerly."""

    def test_success(self, worker_context, make_user):
        from workers.tasks.task_events import process_task_event

        user = make_user()
        result = process_task_event.apply(
            kwargs={"event_type": TASK_CREATED, "payload": {"task_id": "t1", "user_id": user["id"]}}
        )

        assert result.successful()
        assert result.get()["event_type"] == TASK_CREATED

    def test_retries_then_records_failed_job(self, worker_context, database, monkeypatch):
        from workers.tasks import task_events

        calls = []

        class ExplodingHandler:
            def __init__(self, *args, **kwargs):
                pass

            def handle(self, event_type, payload):
                calls.append(event_type)
                raise RuntimeError("downstream unavailable")

        monkeypatch.setattr(task_events, "TaskEventHandler", ExplodingHandler)

        result = task_events.process_task_event.apply(
            kwargs={"event_type": TASK_CREATED, "payload": {"task_id": "t1", "user_id": 1}}
        )

        assert result.failed()
        assert len(calls) == task_events.MAX_RETRIES + 1
        with database.session() as session:
            [job] = session.query(FailedJob).all()
            assert job.event_type == TASK_CREATED
            assert job.task_id == "t1"
            assert job.error_type == "RuntimeError"
            assert job.attempts == task_events.MAX_RETRIES + 1

    def test_unknown_type_is_recorded_without_retry(self, worker_context, database):
        from workers.tasks.task_events import process_task_event

        result = process_task_event.apply(kwargs={"event_type": "task-teleported", "payload": {"task_id": "t9"}})

        assert result.failed()
        with database.session() as session:
            [job] = session.query(FailedJob).all()
            assert job.error_type == "UnknownJobTypeError"
            assert job.attempts == 1

    def test_backoff_doubles(self):
        from workers.tasks.task_events import retry_delay

        assert [retry_delay(n) for n in range(3)] == [2, 4, 8]

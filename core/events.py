"""
Task lifecycle events and the publishers that put them on the job queue.

The mutation pipeline only knows the EventPublisher protocol. In the API
and in workers the publisher is CeleryEventPublisher; tests pass a
recording publisher.
"""

from datetime import datetime, timezone
from typing import Any, Protocol

from core.exceptions import QueueError
from core.logging import get_logger

logger = get_logger("events")

TASK_CREATED = "task-created"
TASK_STATUS_UPDATED = "task-status-updated"
TASK_DELETED = "task-deleted"
TASKS_BATCH_UPDATED = "tasks-batch-updated"
TASK_OVERDUE = "task-overdue"
TASK_ARCHIVE = "task-archive"

EVENT_TYPES = frozenset(
    {
        TASK_CREATED,
        TASK_STATUS_UPDATED,
        TASK_DELETED,
        TASKS_BATCH_UPDATED,
        TASK_OVERDUE,
        TASK_ARCHIVE,
    }
)

DEFAULT_QUEUE = "default"
PROCESSING_QUEUE = "task-processing"
SCHEDULED_QUEUE = "scheduled"

# Events not listed go to PROCESSING_QUEUE
EVENT_QUEUES = {
    TASK_OVERDUE: SCHEDULED_QUEUE,
    TASK_ARCHIVE: SCHEDULED_QUEUE,
}

# Lower is more urgent (Celery priority semantics).
EVENT_PRIORITIES = {
    TASK_OVERDUE: 2,
    TASK_STATUS_UPDATED: 3,
    TASK_CREATED: 4,
    TASK_DELETED: 5,
    TASKS_BATCH_UPDATED: 5,
    TASK_ARCHIVE: 8,
}


class EventPublisher(Protocol):
    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Enqueue one event. Raises QueueError when the queue rejects it."""
        ...


def envelope(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event_type": event_type,
        "payload": payload,
        "enqueued_at": datetime.now(timezone.utc).isoformat(),
    }


class CeleryEventPublisher:
    """Send events to ``workers.tasks.task_events.process_task_event``."""

    TASK_NAME = "workers.tasks.task_events.process_task_event"

    def __init__(self, celery_app=None):
        self._celery_app = celery_app

    @property
    def celery_app(self):
        if self._celery_app is None:
            from workers.celery_app import celery_app

            self._celery_app = celery_app
        return self._celery_app

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        message = envelope(event_type, payload)
        try:
            self.celery_app.send_task(
                self.TASK_NAME,
                kwargs=message,
                queue=EVENT_QUEUES.get(event_type, PROCESSING_QUEUE),
                priority=EVENT_PRIORITIES.get(event_type, 5),
            )
        except Exception as exc:
            # kombu/redis raise a wide range of transport errors
            raise QueueError(event_type, cause=exc) from exc
        logger.debug("event_published", event_type=event_type, task_id=payload.get("task_id"))

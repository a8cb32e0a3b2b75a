"""
Background processing of task lifecycle events.

Failed events are retried with exponential backoff (2s, 4s, 8s). Once the
retries are used up, or when the event type is unknown, the event is
written to ``failed_jobs`` for an operator to inspect.
"""

from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import UnknownJobTypeError
from core.logging import worker_logger as logger
from core.repositories import FailedJobRepository
from core.services import TaskEventHandler

from ..celery_app import celery_app
from ..context import get_cache, get_database

MAX_RETRIES = 3
BACKOFF_BASE_SECONDS = 2


def retry_delay(retries: int) -> int:
    """Countdown before retry number ``retries + 1``."""
    return BACKOFF_BASE_SECONDS * (2**retries)


def record_failed_job(event_type: str, payload: dict[str, Any], error: Exception, attempts: int) -> None:
    try:
        with get_database().session() as session:
            FailedJobRepository(session).record(
                event_type=event_type,
                payload=payload,
                error=error,
                attempts=attempts,
                task_id=payload.get("task_id"),
            )
    except SQLAlchemyError as exc:
        logger.error("failed_job_record_failed", event_type=event_type, error=str(exc))
        return
    logger.error(
        "task_event_dead_lettered",
        event_type=event_type,
        task_id=payload.get("task_id"),
        attempts=attempts,
        error=str(error),
    )


@celery_app.task(
    bind=True,
    name="workers.tasks.task_events.process_task_event",
    max_retries=MAX_RETRIES,
)
def process_task_event(
    self,
    event_type: str,
    payload: dict[str, Any],
    enqueued_at: str | None = None,
) -> dict:
    """
    Apply one task event.

    Args:
        event_type: One of core.events.EVENT_TYPES
        payload: Event body as published by the request path or a sweep
        enqueued_at: ISO timestamp set by the publisher

    Returns:
        Summary dict from TaskEventHandler

    Raises:
        The final error, after its FailedJob row is written, so the result
        state is FAILURE.
    """
    attempt = self.request.retries + 1
    logger.info("task_event_received", event_type=event_type, attempt=attempt, enqueued_at=enqueued_at)

    handler = TaskEventHandler(get_database(), get_cache())
    try:
        return handler.handle(event_type, payload)
    except UnknownJobTypeError as exc:
        record_failed_job(event_type, payload, exc, attempts=attempt)
        raise
    except Exception as exc:
        if self.request.retries >= self.max_retries:
            record_failed_job(event_type, payload, exc, attempts=attempt)
            raise
        logger.warning(
            "task_event_retry_scheduled",
            event_type=event_type,
            attempt=attempt,
            countdown=retry_delay(self.request.retries),
            error=str(exc),
        )
        raise self.retry(exc=exc, countdown=retry_delay(self.request.retries))

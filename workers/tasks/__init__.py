"""Celery task definitions."""

from workers.tasks.sweep_tasks import (
    archive_old_completed_tasks,
    check_overdue_tasks,
    cleanup_transient_keys,
    recompute_statistics,
)
from workers.tasks.task_events import process_task_event

__all__ = [
    # Events
    "process_task_event",
    # Sweeps
    "check_overdue_tasks",
    "archive_old_completed_tasks",
    "recompute_statistics",
    "cleanup_transient_keys",
]

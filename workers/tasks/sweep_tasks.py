"""
Periodic maintenance sweeps, scheduled by Celery beat (see workers.schedules).
"""

from core.logging import LogContext
from core.logging import worker_logger as logger
from core.services import SweepService

from ..celery_app import celery_app
from ..context import get_cache, get_database, get_publisher


def _sweeps() -> SweepService:
    return SweepService(get_database(), get_cache(), get_publisher())


@celery_app.task(name="workers.tasks.sweep_tasks.check_overdue_tasks")
def check_overdue_tasks() -> dict:
    """Flag open tasks past their due date and publish ``task-overdue`` events."""
    with LogContext(sweep="overdue"):
        result = _sweeps().check_overdue_tasks()
        logger.info("overdue_sweep_complete", **result)
        return result


@celery_app.task(name="workers.tasks.sweep_tasks.archive_old_completed_tasks")
def archive_old_completed_tasks() -> dict:
    """Publish ``task-archive`` for tasks completed more than 30 days ago."""
    with LogContext(sweep="archive"):
        result = _sweeps().archive_old_completed_tasks()
        logger.info("archive_sweep_complete", **result)
        return result


@celery_app.task(name="workers.tasks.sweep_tasks.recompute_statistics")
def recompute_statistics() -> dict:
    with LogContext(sweep="statistics"):
        result = _sweeps().recompute_statistics()
        logger.info("statistics_sweep_complete", **result)
        return result


@celery_app.task(name="workers.tasks.sweep_tasks.cleanup_transient_keys")
def cleanup_transient_keys() -> dict:
    with LogContext(sweep="cleanup"):
        result = _sweeps().cleanup_transient_keys()
        logger.info("cleanup_sweep_complete", removed=result["removed"])
        return result

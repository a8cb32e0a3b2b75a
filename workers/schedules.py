"""Beat entries for the four maintenance sweeps (all times UTC)."""

from celery.schedules import crontab

from core.config import get_settings
from core.events import SCHEDULED_QUEUE

SWEEP_TASK = "workers.tasks.sweep_tasks.{}"


def get_beat_schedule():
    options = {"queue": SCHEDULED_QUEUE}
    return {
        "check-overdue-tasks-hourly": {
            "task": SWEEP_TASK.format("check_overdue_tasks"),
            "schedule": crontab(minute=0),
            "options": options,
        },
        "archive-completed-tasks-daily": {
            "task": SWEEP_TASK.format("archive_old_completed_tasks"),
            "schedule": crontab(hour=0, minute=0),
            "options": options,
        },
        "recompute-statistics": {
            "task": SWEEP_TASK.format("recompute_statistics"),
            "schedule": crontab(hour="*/6", minute=0),
            "options": options,
        },
        "cleanup-transient-keys-daily": {
            "task": SWEEP_TASK.format("cleanup_transient_keys"),
            "schedule": crontab(hour=2, minute=0),
            "options": options,
        },
    }


def apply_beat_schedule(celery_app):
    """Install the schedule only when ENABLE_SCHEDULER is set."""
    if get_settings().enable_scheduler:
        celery_app.conf.beat_schedule = get_beat_schedule()
        celery_app.conf.beat_schedule_filename = "celerybeat-schedule"

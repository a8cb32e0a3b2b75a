"""
Celery application for TaskFlow.

Two kinds of work run here: lifecycle events published after a task
mutation commits (``task-processing``) and the periodic sweeps started by
beat (``scheduled``). Messages are JSON because every event payload is a
plain dict.

Run one worker pool per queue so a slow sweep never delays event handling:
    celery -A workers worker -Q task-processing -c 4
    celery -A workers worker -Q scheduled -c 1
"""

from celery import Celery
from celery.signals import worker_process_init
from kombu import Exchange, Queue

from core.config import get_settings
from core.events import DEFAULT_QUEUE, PROCESSING_QUEUE, SCHEDULED_QUEUE
from workers.schedules import apply_beat_schedule

settings = get_settings()

celery_app = Celery(
    "taskflow",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "workers.tasks.task_events",
        "workers.tasks.sweep_tasks",
    ],
)

# Priority runs 0 (most urgent) to 9; publishers set it per event type
celery_app.conf.task_queues = tuple(
    Queue(name, Exchange(name, type="direct"), routing_key=name, queue_arguments={"x-max-priority": 10})
    for name in (DEFAULT_QUEUE, PROCESSING_QUEUE, SCHEDULED_QUEUE)
)

celery_app.conf.task_routes = {
    "workers.tasks.task_events.*": {"queue": PROCESSING_QUEUE, "routing_key": PROCESSING_QUEUE},
    "workers.tasks.sweep_tasks.*": {"queue": SCHEDULED_QUEUE, "routing_key": SCHEDULED_QUEUE, "priority": 7},
}

celery_app.conf.update(
    task_default_queue=DEFAULT_QUEUE,
    task_default_exchange=DEFAULT_QUEUE,
    task_default_routing_key=DEFAULT_QUEUE,
    task_default_priority=5,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_always_eager=settings.celery_task_always_eager,
    # An event is acknowledged only once handled; a lost worker requeues it
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
    result_expires=86400,
    # Sweeps scan at most a thousand rows; anything slower is stuck
    task_soft_time_limit=120,
    task_time_limit=300,
    worker_hijack_root_logger=False,
    task_send_sent_event=True,
)


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    from core.logging import configure_celery_logging, configure_logging

    configure_logging()
    configure_celery_logging()


apply_beat_schedule(celery_app)

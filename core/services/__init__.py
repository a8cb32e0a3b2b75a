"""
Core services: the task pipeline, event handling, sweeps and sign-in.

Services own transactions and cache invalidation; routers and Celery
tasks only translate inputs and outputs.
"""

from core.services.auth_service import AuthService
from core.services.sweeps import SweepService
from core.services.task_events import LogNotifier, TaskEventHandler
from core.services.task_service import TaskService, compute_statistics, invalidate_task_views

__all__ = [
    "AuthService",
    "SweepService",
    "TaskEventHandler",
    "LogNotifier",
    "TaskService",
    "compute_statistics",
    "invalidate_task_views",
]

"""
SQLAlchemy models for TaskFlow.

Usage:
    from core.models import User, Task, TaskStatus
"""

from .base import Base, as_utc, utcnow
from .job import FailedJob
from .task import CLOSED_STATUSES, Task, TaskPriority, TaskStatus
from .user import User, UserRole

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Task",
    "TaskStatus",
    "TaskPriority",
    "CLOSED_STATUSES",
    "FailedJob",
    "as_utc",
    "utcnow",
]

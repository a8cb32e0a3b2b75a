"""
Repository pattern implementations for data access.

Usage:
    from core.repositories import TaskRepository
    from core.db import db

    with db.session() as session:
        repo = TaskRepository(session)
        tasks, total = repo.list_page(TaskFilters(status="pending"), user_id=1)
"""

from .base import BaseRepository
from .failed_job_repository import FailedJobRepository
from .task_repository import TaskFilters, TaskRepository
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "TaskRepository",
    "TaskFilters",
    "UserRepository",
    "FailedJobRepository",
]

"""Task repository: owner-scoped lookups, filtered pages and aggregates."""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import selectinload

from core.models import CLOSED_STATUSES, Task, TaskStatus, as_utc

from .base import BaseRepository


@dataclass(frozen=True)
class TaskFilters:
    """Already-validated list filters. ``None`` means "do not filter"."""

    status: str | None = None
    priority: str | None = None
    search: str | None = None
    due_date_from: datetime | None = None
    due_date_to: datetime | None = None
    created_date_from: datetime | None = None
    created_date_to: datetime | None = None

    def __post_init__(self):
        # Stored timestamps are UTC; an offset in the filter must not shift the comparison
        for name in ("due_date_from", "due_date_to", "created_date_from", "created_date_to"):
            object.__setattr__(self, name, as_utc(getattr(self, name)))


class TaskRepository(BaseRepository[Task]):
    """Repository for Task operations."""

    model = Task

    def get_owned(self, task_id: str, user_id: int | None = None) -> Task | None:
        """
        Get a task, optionally restricted to one owner.

        A task owned by someone else is reported exactly like a missing one.
        """
        stmt = select(Task).where(Task.id == task_id)
        if user_id is not None:
            stmt = stmt.where(Task.user_id == user_id)
        return self.session.scalars(stmt).first()

    def list_page(
        self,
        filters: TaskFilters,
        user_id: int | None = None,
        offset: int = 0,
        limit: int = 10,
        include_user: bool = False,
    ) -> tuple[list[Task], int]:
        """Return one page of tasks (newest first) and the total match count."""
        conditions = self._build_conditions(filters, user_id)

        count_stmt = select(func.count()).select_from(Task)
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
        total = self.session.scalar(count_stmt) or 0

        stmt = select(Task)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        if include_user:
            stmt = stmt.options(selectinload(Task.user))
        stmt = stmt.order_by(Task.created_at.desc(), Task.id.desc()).offset(offset).limit(limit)

        return list(self.session.scalars(stmt)), total

    def _build_conditions(self, filters: TaskFilters, user_id: int | None) -> list:
        conditions = []
        if user_id is not None:
            conditions.append(Task.user_id == user_id)
        if filters.status:
            conditions.append(Task.status == filters.status)
        if filters.priority:
            conditions.append(Task.priority == filters.priority)
        if filters.search:
            # Literal substring match; % and _ typed by the user are not wildcards
            conditions.append(
                or_(
                    Task.title.icontains(filters.search, autoescape=True),
                    Task.description.icontains(filters.search, autoescape=True),
                )
            )
        if filters.due_date_from:
            conditions.append(Task.due_date >= filters.due_date_from)
        if filters.due_date_to:
            conditions.append(Task.due_date <= filters.due_date_to)
        if filters.created_date_from:
            conditions.append(Task.created_at >= filters.created_date_from)
        if filters.created_date_to:
            conditions.append(Task.created_at <= filters.created_date_to)
        return conditions

    def partition_owned(
        self, task_ids: list[str], user_id: int | None = None
    ) -> tuple[list[Task], list[str]]:
        """
        Split ``task_ids`` into tasks the caller may touch and ids it may not.

        Found tasks keep the order of ``task_ids``; duplicates are collapsed.
        """
        unique_ids = list(dict.fromkeys(task_ids))
        if not unique_ids:
            return [], []

        stmt = select(Task).where(Task.id.in_(unique_ids))
        if user_id is not None:
            stmt = stmt.where(Task.user_id == user_id)
        by_id = {task.id: task for task in self.session.scalars(stmt)}

        found = [by_id[task_id] for task_id in unique_ids if task_id in by_id]
        missing = [task_id for task_id in unique_ids if task_id not in by_id]
        return found, missing

    def get_many(self, task_ids: list[str]) -> list[Task]:
        if not task_ids:
            return []
        stmt = select(Task).where(Task.id.in_(task_ids))
        by_id = {task.id: task for task in self.session.scalars(stmt)}
        return [by_id[task_id] for task_id in task_ids if task_id in by_id]

    # =========================================================================
    # Aggregates
    # =========================================================================

    def _scoped(self, stmt, user_id: int | None):
        if user_id is not None:
            stmt = stmt.where(Task.user_id == user_id)
        return stmt

    def count_by_status(self, user_id: int | None = None) -> dict[str, int]:
        stmt = self._scoped(select(Task.status, func.count()).group_by(Task.status), user_id)
        return {status: count for status, count in self.session.execute(stmt)}

    def count_by_priority(self, user_id: int | None = None) -> dict[str, int]:
        stmt = self._scoped(select(Task.priority, func.count()).group_by(Task.priority), user_id)
        return {priority: count for priority, count in self.session.execute(stmt)}

    def _overdue_conditions(self, now: datetime) -> list:
        return [
            Task.due_date.is_not(None),
            Task.due_date < now,
            Task.status.not_in(CLOSED_STATUSES),
        ]

    def count_overdue(self, now: datetime, user_id: int | None = None) -> int:
        stmt = select(func.count()).select_from(Task).where(*self._overdue_conditions(now))
        return self.session.scalar(self._scoped(stmt, user_id)) or 0

    def count_completed_since(self, since: datetime, user_id: int | None = None) -> int:
        stmt = (
            select(func.count())
            .select_from(Task)
            .where(Task.status == TaskStatus.COMPLETED.value, Task.updated_at >= since)
        )
        return self.session.scalar(self._scoped(stmt, user_id)) or 0

    def find_overdue(self, now: datetime, limit: int = 1000) -> list[Task]:
        stmt = (
            select(Task)
            .where(*self._overdue_conditions(now))
            .order_by(Task.due_date.asc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def find_completed_before(self, cutoff: datetime, limit: int = 1000) -> list[Task]:
        stmt = (
            select(Task)
            .where(Task.status == TaskStatus.COMPLETED.value, Task.updated_at < cutoff)
            .order_by(Task.updated_at.asc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def owner_ids(self) -> list[int]:
        """Distinct owners that have at least one task."""
        stmt = select(Task.user_id).distinct().order_by(Task.user_id)
        return list(self.session.scalars(stmt))

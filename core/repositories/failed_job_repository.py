"""Repository for dead-lettered background jobs."""

from sqlalchemy import select

from core.models import FailedJob

from .base import BaseRepository


class FailedJobRepository(BaseRepository[FailedJob]):
    model = FailedJob

    def record(
        self,
        event_type: str,
        payload: dict,
        error: Exception,
        attempts: int,
        task_id: str | None = None,
    ) -> FailedJob:
        return self.create(
            task_id=task_id,
            event_type=event_type,
            payload=payload,
            error=str(error),
            error_type=type(error).__name__,
            attempts=attempts,
        )

    def recent(self, limit: int = 50) -> list[FailedJob]:
        stmt = select(FailedJob).order_by(FailedJob.created_at.desc(), FailedJob.id.desc()).limit(limit)
        return list(self.session.scalars(stmt))

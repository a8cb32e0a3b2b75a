"""Shared data access for the single-table repositories."""

from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from core.db import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """
    Repositories wrap a session owned by the caller; they flush but never
    commit, so the service's ``db.session()`` block decides the transaction.

        class TaskRepository(BaseRepository[Task]):
            model = Task
    """

    model: type[T]

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, id: Any) -> T | None:
        return self.session.get(self.model, id)

    def create(self, **kwargs) -> T:
        instance = self.model(**kwargs)
        self.session.add(instance)
        self.session.flush()
        return instance

    def delete(self, instance: T) -> None:
        self.session.delete(instance)
        self.session.flush()

    def bulk_update(self, ids: list[Any], **values) -> int:
        """One UPDATE for every row in ``ids``; returns the matched row count."""
        if not ids:
            return 0
        stmt = (
            update(self.model)
            .where(self.model.id.in_(ids))  # type: ignore[attr-defined]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def bulk_delete(self, ids: list[Any]) -> int:
        if not ids:
            return 0
        stmt = (
            delete(self.model)
            .where(self.model.id.in_(ids))  # type: ignore[attr-defined]
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def exists_where(self, **filters) -> bool:
        """Column-equality lookup, e.g. ``exists_where(email=email)``."""
        stmt = select(func.count()).select_from(self.model)
        for key, value in filters.items():
            if not hasattr(self.model, key):
                raise ValueError(f"Unknown filter key: {key}")
            stmt = stmt.where(getattr(self.model, key) == value)
        return (self.session.scalar(stmt) or 0) > 0

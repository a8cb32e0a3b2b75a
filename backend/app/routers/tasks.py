"""
Task endpoints.

All routes require a bearer token. Regular routes are scoped to the
caller's own tasks; ``/tasks/all`` views span every owner and are limited
to admins and managers.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status

from core.models import TaskPriority, TaskStatus, UserRole
from core.repositories import TaskFilters
from core.services import TaskService

from ..auth.dependencies import CurrentUser, get_current_user, require_roles
from ..dependencies import get_task_service
from ..dependencies.rate_limit import rate_limit
from ..schemas import (
    BatchDeleteRequest,
    BatchResponse,
    BatchUpdateRequest,
    TaskCreate,
    TaskListResponse,
    TaskResponse,
    TaskStatistics,
    TaskUpdate,
)

router = APIRouter(prefix="/tasks", tags=["tasks"])

require_staff = require_roles(UserRole.ADMIN, UserRole.MANAGER)


class ListParams:
    """Shared query parameters of the list endpoints."""

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number, 1-based"),
        limit: int = Query(10, ge=1, description="Items per page (capped at 100)"),
        status: TaskStatus | None = Query(None, description="Filter by status"),
        priority: TaskPriority | None = Query(None, description="Filter by priority"),
        search: str | None = Query(None, max_length=200, description="Search title and description"),
        due_date_from: datetime | None = Query(None),
        due_date_to: datetime | None = Query(None),
        created_date_from: datetime | None = Query(None),
        created_date_to: datetime | None = Query(None),
        include_user: bool = Query(False, description="Embed the owner in each task"),
    ):
        self.page = page
        self.limit = limit
        self.include_user = include_user
        self.filters = TaskFilters(
            status=status.value if status else None,
            priority=priority.value if priority else None,
            search=search.strip() if search and search.strip() else None,
            due_date_from=due_date_from,
            due_date_to=due_date_to,
            created_date_from=created_date_from,
            created_date_to=created_date_to,
        )


# =============================================================================
# Create & List
# =============================================================================


@router.post(
    "",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("tasks.create"))],
)
def create_task(
    body: TaskCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """Create a task owned by the caller."""
    return service.create(body.model_dump(), user_id=current_user.id)


@router.get("", response_model=TaskListResponse, dependencies=[Depends(rate_limit("tasks.list"))])
def list_tasks(
    params: ListParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """List the caller's tasks, newest first."""
    return service.find_all(
        user_id=current_user.id,
        page=params.page,
        limit=params.limit,
        filters=params.filters,
        include_user=params.include_user,
    )


@router.get(
    "/statistics",
    response_model=TaskStatistics,
    dependencies=[Depends(rate_limit("tasks.statistics"))],
)
def my_statistics(
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.get_statistics(user_id=current_user.id)


# =============================================================================
# Admin views
# =============================================================================


@router.get("/all", response_model=TaskListResponse, dependencies=[Depends(rate_limit("tasks.admin_list"))])
def list_all_tasks(
    params: ListParams = Depends(),
    current_user: CurrentUser = Depends(require_staff),
    service: TaskService = Depends(get_task_service),
):
    """List tasks across all owners."""
    return service.find_all(
        user_id=None,
        page=params.page,
        limit=params.limit,
        filters=params.filters,
        include_user=params.include_user,
    )


@router.get(
    "/all/statistics",
    response_model=TaskStatistics,
    dependencies=[Depends(rate_limit("tasks.statistics"))],
)
def global_statistics(
    current_user: CurrentUser = Depends(require_staff),
    service: TaskService = Depends(get_task_service),
):
    return service.get_statistics(user_id=None)


# =============================================================================
# Batch operations
# =============================================================================


@router.post(
    "/batch",
    response_model=BatchResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("tasks.batch_update"))],
)
def batch_update_tasks(
    body: BatchUpdateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """
    Apply the same changes to several of the caller's tasks.

    Ids that do not exist or belong to someone else are reported in
    ``failed``; the rest are updated.
    """
    return service.batch_update(body.task_ids, body.updates.changes(), user_id=current_user.id)


@router.delete(
    "/batch",
    response_model=BatchResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("tasks.batch_delete"))],
)
def batch_delete_tasks(
    body: BatchDeleteRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.batch_remove(body.task_ids, user_id=current_user.id)


# =============================================================================
# Single task
# =============================================================================


@router.get("/{task_id}", response_model=TaskResponse, dependencies=[Depends(rate_limit("default"))])
def get_task(
    task_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.find_one(task_id, user_id=current_user.id)


@router.patch("/{task_id}", response_model=TaskResponse, dependencies=[Depends(rate_limit("default"))])
def update_task(
    task_id: str,
    body: TaskUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.update(task_id, body.changes(), user_id=current_user.id)


@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("default"))],
)
def delete_task(
    task_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    service.remove(task_id, user_id=current_user.id)

"""
Pydantic schemas for request and response validation.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from core.models import TaskPriority, TaskStatus

MAX_BATCH_SIZE = 100

# =============================================================================
# Auth
# =============================================================================


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class UserSummary(BaseModel):
    id: int
    email: EmailStr
    name: str
    role: str


class UserResponse(UserSummary):
    is_active: bool = True
    created_at: datetime | None = None


class AuthResponse(BaseModel):
    user: UserSummary
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


# =============================================================================
# Tasks
# =============================================================================


class TaskCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None


class TaskUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class TaskOwner(BaseModel):
    id: int
    email: str
    name: str


class TaskResponse(BaseModel):
    id: str
    user_id: int
    title: str
    description: str | None = None
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime | None = None
    created_at: datetime
    updated_at: datetime
    user: TaskOwner | None = None


class PageMeta(BaseModel):
    current_page: int
    items_per_page: int
    total_items: int
    total_pages: int
    has_previous_page: bool
    has_next_page: bool


class TaskListResponse(BaseModel):
    data: list[TaskResponse]
    meta: PageMeta


class TaskStatistics(BaseModel):
    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    overdue: int
    completed_this_week: int
    completed_this_month: int


class BatchUpdateRequest(BaseModel):
    task_ids: list[str] = Field(min_length=1, max_length=MAX_BATCH_SIZE)
    updates: TaskUpdate


class BatchDeleteRequest(BaseModel):
    task_ids: list[str] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


class BatchItemResult(BaseModel):
    success: bool
    id: str
    data: TaskResponse | None = None
    error: str | None = None


class BatchSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BatchResponse(BaseModel):
    successful: list[BatchItemResult]
    failed: list[BatchItemResult]
    summary: BatchSummary

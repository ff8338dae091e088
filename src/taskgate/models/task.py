"""Task model - core unit of queued work."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from taskgate.models.enums import SortDirection, TaskPriority, TaskSortBy, TaskStatus


class QueueTaskRequest(BaseModel):
    """Request to queue a new task."""

    type: str = Field(..., min_length=1, max_length=50, description="Task type code")
    batch_id: Optional[str] = Field(None, max_length=50)
    external_reference: Optional[str] = Field(
        None, min_length=1, max_length=50, description="Caller reference, unique across tasks"
    )
    data: str = Field(..., min_length=1, description="Opaque payload handed to the executor")
    suspended: bool = False

    @field_validator("type", "data")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class Task(BaseModel):
    """A queued unit of work and its execution state."""

    id: UUID
    type: str
    priority: TaskPriority = TaskPriority.MEDIUM
    batch_id: Optional[str] = None
    external_reference: Optional[str] = None

    status: TaskStatus = TaskStatus.QUEUED
    # Cancel/suspend requested while the task was executing
    pending_status: Optional[TaskStatus] = None
    step: Optional[str] = None
    data: str

    execution_attempts: int = 0
    execution_time: int = Field(0, description="Cumulative executor time in milliseconds")
    failure: Optional[str] = None

    queued: datetime
    executed: Optional[datetime] = None
    updated: datetime
    next_execution: Optional[datetime] = None
    lock_name: Optional[str] = None

    def is_terminal(self) -> bool:
        """Check if task is in a terminal state."""
        return self.status.is_terminal()


class TaskSummary(BaseModel):
    """Lightweight projection of a task for listings."""

    id: UUID
    batch_id: Optional[str] = None
    external_reference: Optional[str] = None
    type: str
    step: Optional[str] = None
    status: TaskStatus
    queued: datetime
    executed: Optional[datetime] = None
    execution_attempts: int = 0
    next_execution: Optional[datetime] = None
    lock_name: Optional[str] = None


class TaskSummaries(BaseModel):
    """One page of task summaries plus the query that produced it."""

    type: Optional[str] = None
    status: Optional[TaskStatus] = None
    filter: Optional[str] = None
    sort_by: TaskSortBy = TaskSortBy.QUEUED
    sort_direction: SortDirection = SortDirection.DESCENDING
    page_index: int = 0
    page_size: int
    total: int
    tasks: list[TaskSummary] = Field(default_factory=list)

"""Task type model - configuration governing a kind of task."""

from typing import Optional

from pydantic import BaseModel, Field

from taskgate.models.enums import TaskEventType, TaskPriority, TaskStatus


class TaskType(BaseModel):
    """
    Configuration for one kind of task.

    Optional limits fall back to the configured defaults
    (``default_maximum_execution_attempts``, ``default_retry_delay_ms``,
    ``default_execution_timeout_ms``) when unset.
    """

    code: str = Field(..., min_length=1, max_length=50, description="Unique task type code")
    name: str = Field(..., min_length=1, max_length=100, description="Display name")
    executor_class: str = Field(
        ..., min_length=1, max_length=1000, description="Registered executor name"
    )
    enabled: bool = True
    priority: TaskPriority = TaskPriority.MEDIUM

    maximum_execution_attempts: Optional[int] = Field(None, ge=1)
    retry_delay: Optional[int] = Field(None, ge=0, description="Retry delay in milliseconds")
    execution_timeout: Optional[int] = Field(
        None, ge=1, description="Hung-task timeout in milliseconds"
    )

    archive_completed: bool = False
    archive_failed: bool = False

    event_types: list[TaskEventType] = Field(default_factory=list)
    event_types_with_task_data: list[TaskEventType] = Field(default_factory=list)

    def records_event(self, event_type: TaskEventType) -> bool:
        """Check whether events of this type are recorded for the task type."""
        return (
            event_type in self.event_types
            or event_type in self.event_types_with_task_data
        )

    def records_event_data(self, event_type: TaskEventType) -> bool:
        """Check whether recorded events of this type carry a task data snapshot."""
        return event_type in self.event_types_with_task_data

    def archives(self, status: TaskStatus) -> bool:
        """Check whether a task finishing in ``status`` is archived rather than dropped."""
        if status == TaskStatus.COMPLETED:
            return self.archive_completed
        if status == TaskStatus.FAILED:
            return self.archive_failed
        return False

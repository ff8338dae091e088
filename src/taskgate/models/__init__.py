"""TaskGate data models."""

from taskgate.models.enums import (
    SortDirection,
    TaskEventType,
    TaskPriority,
    TaskSortBy,
    TaskStatus,
)
from taskgate.models.archived import ArchivedTask
from taskgate.models.event import TaskEvent
from taskgate.models.task import QueueTaskRequest, Task, TaskSummaries, TaskSummary
from taskgate.models.task_type import TaskType

__all__ = [
    "ArchivedTask",
    "QueueTaskRequest",
    "SortDirection",
    "Task",
    "TaskEvent",
    "TaskEventType",
    "TaskPriority",
    "TaskSortBy",
    "TaskStatus",
    "TaskSummaries",
    "TaskSummary",
    "TaskType",
]

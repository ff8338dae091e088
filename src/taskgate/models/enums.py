"""TaskGate enumerations."""

from enum import Enum


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    QUEUED = "queued"
    EXECUTING = "executing"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @classmethod
    def terminal_states(cls) -> set["TaskStatus"]:
        """Return terminal states."""
        return {cls.COMPLETED, cls.FAILED, cls.CANCELED}

    @classmethod
    def historical_states(cls) -> set["TaskStatus"]:
        """Terminal states reached by running the task (immutable to callers)."""
        return {cls.COMPLETED, cls.FAILED}

    def is_terminal(self) -> bool:
        """Check if status is terminal."""
        return self in self.terminal_states()


class TaskEventType(str, Enum):
    """Lifecycle events recorded against a task."""

    STEP_COMPLETED = "step_completed"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_CANCELED = "task_canceled"


class TaskPriority(int, Enum):
    """Claim ordering hint. Lower values are claimed first."""

    HIGH = 1
    MEDIUM = 5
    LOW = 10


class TaskSortBy(str, Enum):
    """Sort keys for task summaries."""

    QUEUED = "queued"
    TYPE = "type"


class SortDirection(str, Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"

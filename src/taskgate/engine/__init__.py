"""TaskGate engine - task lifecycle, task types, events and archival.

The engine itself lives in ``taskgate.engine.core``; importing this package
only loads the error taxonomy so executors can depend on it.
"""

from taskgate.engine.errors import (
    ArchivedTaskNotFound,
    BatchTasksNotFound,
    DuplicateTaskType,
    InvalidArgument,
    InvalidTaskStatus,
    ServiceUnavailable,
    TaskExecutorNotFound,
    TaskGateError,
    TaskLockLost,
    TaskNotFound,
    TaskTypeNotFound,
)

__all__ = [
    "ArchivedTaskNotFound",
    "BatchTasksNotFound",
    "DuplicateTaskType",
    "InvalidArgument",
    "InvalidTaskStatus",
    "ServiceUnavailable",
    "TaskExecutorNotFound",
    "TaskGateError",
    "TaskLockLost",
    "TaskNotFound",
    "TaskTypeNotFound",
]

"""TaskGate engine errors."""

from contextlib import contextmanager
from typing import Any, Iterator
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError


class TaskGateError(Exception):
    """Base error for TaskGate operations."""

    def __init__(self, message: str, code: str = "TASKGATE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidArgument(TaskGateError):
    """Request failed validation. Never persisted."""

    def __init__(
        self,
        parameter: str,
        message: str | None = None,
        validation_errors: list[dict[str, Any]] | None = None,
    ):
        super().__init__(message or f"Invalid argument: {parameter}", "INVALID_ARGUMENT")
        self.parameter = parameter
        self.validation_errors = validation_errors or []

    @classmethod
    def from_validation_error(cls, parameter: str, error) -> "InvalidArgument":
        """Build from a pydantic ``ValidationError``."""
        errors = [
            {
                "field": ".".join(str(part) for part in item["loc"]),
                "message": item["msg"],
            }
            for item in error.errors()
        ]
        fields = ", ".join(item["field"] or parameter for item in errors)
        return cls(parameter, f"Invalid {parameter}: {fields}", errors)


class TaskNotFound(TaskGateError):
    """Task does not exist."""

    def __init__(self, task_id: UUID | str):
        super().__init__(f"Task not found: {task_id}", "TASK_NOT_FOUND")
        self.task_id = task_id


class TaskTypeNotFound(TaskGateError):
    """Task type does not exist."""

    def __init__(self, code: str, message: str | None = None, error_code: str = "TASK_TYPE_NOT_FOUND"):
        super().__init__(message or f"Task type not found: {code}", error_code)
        self.task_type = code


class TaskExecutorNotFound(TaskTypeNotFound):
    """No executor is registered under the task type's executor name."""

    def __init__(self, executor_class: str, task_type: str | None = None):
        super().__init__(
            task_type or executor_class,
            f"Task executor not found: {executor_class}",
            "TASK_EXECUTOR_NOT_FOUND",
        )
        self.executor_class = executor_class


class ArchivedTaskNotFound(TaskGateError):
    """Archived task does not exist."""

    def __init__(self, task_id: UUID | str):
        super().__init__(f"Archived task not found: {task_id}", "ARCHIVED_TASK_NOT_FOUND")
        self.task_id = task_id


class BatchTasksNotFound(TaskGateError):
    """No tasks carry the batch id."""

    def __init__(self, batch_id: str):
        super().__init__(f"No tasks found for batch: {batch_id}", "BATCH_TASKS_NOT_FOUND")
        self.batch_id = batch_id


class DuplicateTaskType(TaskGateError):
    """A task type with the code already exists."""

    def __init__(self, code: str):
        super().__init__(f"Task type already exists: {code}", "DUPLICATE_TASK_TYPE")
        self.task_type = code


class InvalidTaskStatus(TaskGateError):
    """Operation has no meaning for the task's current status."""

    def __init__(self, task_id: UUID | str, status: str, operation: str):
        super().__init__(
            f"Cannot {operation} task {task_id} with status {status}",
            "INVALID_TASK_STATUS",
        )
        self.task_id = task_id
        self.status = status
        self.operation = operation


class TaskLockLost(TaskGateError):
    """The worker no longer holds the task it tried to update."""

    def __init__(self, task_id: UUID | str, worker_id: str):
        super().__init__(
            f"Task {task_id} is no longer executing under {worker_id}",
            "TASK_LOCK_LOST",
        )
        self.task_id = task_id
        self.worker_id = worker_id


class ServiceUnavailable(TaskGateError):
    """Task store failure. The only error callers are expected to retry."""

    def __init__(self, message: str = "Task store unavailable"):
        super().__init__(message, "SERVICE_UNAVAILABLE")


@contextmanager
def store_errors(message: str) -> Iterator[None]:
    """Re-raise task store failures inside the block as ``ServiceUnavailable``."""
    try:
        yield
    except SQLAlchemyError as e:
        raise ServiceUnavailable(f"{message}: {e.__class__.__name__}") from e

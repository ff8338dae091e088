"""Task executors - the pluggable units of work run by workers."""

from taskgate.executors.base import (
    MultistepTaskExecutor,
    SimpleTaskExecutor,
    TaskExecutor,
    TaskStep,
)
from taskgate.executors.errors import (
    TaskExecutionDelayed,
    TaskExecutionFailed,
    TaskExecutionRetryable,
)
from taskgate.executors.outcomes import (
    Completed,
    Delay,
    Failed,
    Outcome,
    Retry,
    StepCompleted,
)
from taskgate.executors.registry import (
    ExecutorRegistry,
    executor_registry,
    load_executor_modules,
)

__all__ = [
    "Completed",
    "Delay",
    "ExecutorRegistry",
    "Failed",
    "MultistepTaskExecutor",
    "Outcome",
    "Retry",
    "SimpleTaskExecutor",
    "StepCompleted",
    "TaskExecutionDelayed",
    "TaskExecutionFailed",
    "TaskExecutionRetryable",
    "TaskExecutor",
    "TaskStep",
    "executor_registry",
    "load_executor_modules",
]

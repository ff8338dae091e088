"""Execution outcomes returned by executors."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from taskgate.executors.base import TaskStep


@dataclass(frozen=True)
class Completed:
    """The task is done. ``data`` is the latest serialized task data."""

    data: str
    data_updated: bool = True


@dataclass(frozen=True)
class StepCompleted:
    """The current step succeeded and the task continues with ``next_step``."""

    next_step: "TaskStep"
    data: str


@dataclass(frozen=True)
class Failed:
    """Fatal failure. Never retried."""

    reason: str


@dataclass(frozen=True)
class Retry:
    """Retryable failure, subject to the task type's attempt limit."""

    reason: str | None = None


@dataclass(frozen=True)
class Delay:
    """Run the current step again after ``delay`` milliseconds."""

    delay: int

    def __post_init__(self):
        if self.delay < 0:
            raise ValueError(f"Delay must not be negative, got {self.delay}")


Outcome = Union[Completed, StepCompleted, Failed, Retry, Delay]

# Outcomes an executor hook may return in place of its normal result
SIGNAL_OUTCOMES = (Failed, Retry, Delay)

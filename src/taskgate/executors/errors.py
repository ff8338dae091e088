"""Exceptions an executor may raise to signal a non-success outcome."""


class TaskExecutionError(Exception):
    """Base for execution outcome signals."""


class TaskExecutionFailed(TaskExecutionError):
    """The task cannot succeed. It fails without further attempts."""


class TaskExecutionRetryable(TaskExecutionError):
    """The attempt failed but may succeed if tried again after the retry delay."""


class TaskExecutionDelayed(TaskExecutionError):
    """Run the current step again once ``delay`` milliseconds have passed."""

    def __init__(self, delay: int, message: str | None = None):
        super().__init__(message or f"Delayed by {delay}ms")
        self.delay = delay

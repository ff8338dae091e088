"""TaskGate background tasks."""

from taskgate.tasks.sweep import start_sweeps, stop_sweeps
from taskgate.tasks.worker import TaskWorker, start_workers, stop_workers

__all__ = ["TaskWorker", "start_sweeps", "start_workers", "stop_sweeps", "stop_workers"]

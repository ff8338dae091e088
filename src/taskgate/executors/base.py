"""Executor base classes."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence

from pydantic import BaseModel, ValidationError

from taskgate.executors.errors import (
    TaskExecutionDelayed,
    TaskExecutionFailed,
    TaskExecutionRetryable,
)
from taskgate.executors.outcomes import (
    SIGNAL_OUTCOMES,
    Completed,
    Delay,
    Failed,
    Outcome,
    Retry,
    StepCompleted,
)
from taskgate.models import Task

logger = logging.getLogger("taskgate.executors")


@dataclass(frozen=True)
class TaskStep:
    """One stage of a multistep task. ``delay`` (ms) postpones the step once reached."""

    name: str
    label: str | None = None
    delay: int | None = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Step name must not be empty")
        if self.delay is not None and self.delay < 0:
            raise ValueError(f"Step delay must not be negative, got {self.delay}")


class TaskExecutor(ABC):
    """
    Runs tasks of one or more task types.

    Task data is JSON by default. Set ``data_model`` to a pydantic model to
    receive validated model instances instead, or override ``deserialize``
    and ``serialize`` for other formats.

    Hooks may signal a non-success outcome either by returning ``Failed``,
    ``Retry`` or ``Delay`` or by raising the matching exception from
    ``taskgate.executors.errors``. Any other exception fails the task.
    """

    data_model: type[BaseModel] | None = None

    def deserialize(self, data: str) -> Any:
        if self.data_model is not None:
            return self.data_model.model_validate_json(data)
        return json.loads(data)

    def serialize(self, data: Any) -> str:
        if isinstance(data, BaseModel):
            return data.model_dump_json()
        return json.dumps(data)

    def initial_step(self) -> str | None:
        """Step assigned to newly queued tasks."""
        return None

    async def run(self, task: Task) -> Outcome:
        """Execute ``task`` once and report the outcome. Never raises."""
        try:
            data = self.deserialize(task.data)
        except (ValueError, ValidationError) as e:
            return Failed(f"Unreadable task data: {e}")

        try:
            return await self._execute(task, data)
        except TaskExecutionFailed as e:
            return Failed(str(e) or "Task execution failed")
        except TaskExecutionRetryable as e:
            return Retry(str(e) or None)
        except TaskExecutionDelayed as e:
            if e.delay < 0:
                return Failed(f"Invalid delay: {e.delay}ms")
            return Delay(e.delay)
        except Exception as e:
            logger.error(f"Executor {type(self).__name__} raised on task {task.id}: {e}", exc_info=True)
            return Failed(f"{type(e).__name__}: {e}")

    @abstractmethod
    async def _execute(self, task: Task, data: Any) -> Outcome:
        ...


class SimpleTaskExecutor(TaskExecutor):
    """Executor that runs the whole task in one call."""

    @abstractmethod
    async def execute_task(self, task: Task, data: Any) -> bool | Failed | Retry | Delay:
        """
        Run the task.

        Returns whether ``data`` was changed. The latest data is stored
        either way.
        """

    async def _execute(self, task: Task, data: Any) -> Outcome:
        result = await self.execute_task(task, data)
        if isinstance(result, SIGNAL_OUTCOMES):
            return result
        return Completed(data=self.serialize(data), data_updated=bool(result))


class MultistepTaskExecutor(TaskExecutor):
    """
    Executor that runs a task as an ordered sequence of steps.

    Each claim runs the task's current step only; the engine requeues the
    task at the next step until the last one succeeds.
    """

    def __init__(self, steps: Sequence[TaskStep]):
        if not steps:
            raise ValueError("A multistep executor needs at least one step")
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Step names must be unique: {names}")
        self.steps: tuple[TaskStep, ...] = tuple(steps)
        self._positions = {name: position for position, name in enumerate(names)}

    def initial_step(self) -> str | None:
        return self.steps[0].name

    def get_step(self, name: str | None) -> TaskStep | None:
        if name is None or name not in self._positions:
            return None
        return self.steps[self._positions[name]]

    def next_step(self, step: TaskStep) -> TaskStep | None:
        position = self._positions[step.name] + 1
        return self.steps[position] if position < len(self.steps) else None

    @abstractmethod
    async def execute_task_step(
        self, task: Task, step: TaskStep, data: Any
    ) -> bool | Failed | Retry | Delay:
        """
        Run one step.

        Returns True when the task is complete now (even with steps left),
        False to continue with the next declared step.
        """

    async def _execute(self, task: Task, data: Any) -> Outcome:
        # Tasks queued where this executor was not registered carry no step yet
        step = self.steps[0] if task.step is None else self.get_step(task.step)
        if step is None:
            return Failed(f"Unknown step {task.step!r} for {type(self).__name__}")

        result = await self.execute_task_step(task, step, data)
        if isinstance(result, SIGNAL_OUTCOMES):
            return result

        serialized = self.serialize(data)
        following = self.next_step(step)
        if result or following is None:
            return Completed(data=serialized)
        return StepCompleted(next_step=following, data=serialized)

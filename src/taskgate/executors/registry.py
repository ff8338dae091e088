"""Static executor registry."""

import importlib
import logging
from typing import Callable, Iterable, TypeVar

from taskgate.engine.errors import TaskExecutorNotFound
from taskgate.executors.base import TaskExecutor

logger = logging.getLogger("taskgate.executors")

E = TypeVar("E", bound=type[TaskExecutor])


class ExecutorRegistry:
    """Maps executor names (a task type's ``executor_class``) to executor instances."""

    def __init__(self) -> None:
        self._executors: dict[str, TaskExecutor] = {}

    def register(self, name: str, executor: TaskExecutor) -> TaskExecutor:
        if not name:
            raise ValueError("Executor name must not be empty")
        existing = self._executors.get(name)
        if existing is not None and existing is not executor:
            raise ValueError(f"Executor already registered: {name}")
        self._executors[name] = executor
        logger.debug(f"Registered executor {name}: {type(executor).__name__}")
        return executor

    def executor(self, name: str) -> Callable[[E], E]:
        """Class decorator registering an instance of the executor under ``name``."""

        def decorator(cls: E) -> E:
            self.register(name, cls())
            return cls

        return decorator

    def unregister(self, name: str) -> None:
        self._executors.pop(name, None)

    def has(self, name: str) -> bool:
        return name in self._executors

    def names(self) -> list[str]:
        return sorted(self._executors)

    def resolve(self, name: str, task_type: str | None = None) -> TaskExecutor:
        executor = self._executors.get(name)
        if executor is None:
            raise TaskExecutorNotFound(name, task_type)
        return executor


executor_registry = ExecutorRegistry()


def load_executor_modules(modules: Iterable[str]) -> None:
    """Import modules whose import registers executors on ``executor_registry``."""
    for module in modules:
        importlib.import_module(module)
        logger.info(f"Loaded executor module {module}")

"""Task type catalog with validation against registered executors."""

import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.db.repositories import TaskTypeRepository
from taskgate.engine.errors import (
    DuplicateTaskType,
    InvalidArgument,
    TaskTypeNotFound,
    store_errors,
)
from taskgate.executors.registry import ExecutorRegistry
from taskgate.models import TaskType

logger = logging.getLogger("taskgate.task_types")


class TaskTypeRegistry:
    """Creates, updates and looks up task types."""

    def __init__(self, session: AsyncSession, executors: ExecutorRegistry):
        self.task_types = TaskTypeRepository(session)
        self.executors = executors

    def _validate(self, task_type: TaskType | dict[str, Any]) -> TaskType:
        if isinstance(task_type, TaskType):
            # Re-run validation on instances built with model_construct
            task_type = task_type.model_dump()
        try:
            validated = TaskType.model_validate(task_type)
        except ValidationError as e:
            raise InvalidArgument.from_validation_error("task_type", e) from e

        # Unknown executors are rejected here rather than at dispatch time
        self.executors.resolve(validated.executor_class, validated.code)
        return validated

    async def create_task_type(self, task_type: TaskType | dict[str, Any]) -> TaskType:
        validated = self._validate(task_type)
        with store_errors("Failed to create task type"):
            if await self.task_types.exists(validated.code):
                raise DuplicateTaskType(validated.code)
            created = await self.task_types.create(validated)
        logger.info(f"Created task type {created.code} ({created.executor_class})")
        return created

    async def update_task_type(self, task_type: TaskType | dict[str, Any]) -> TaskType:
        validated = self._validate(task_type)
        with store_errors("Failed to update task type"):
            if not await self.task_types.update(validated):
                raise TaskTypeNotFound(validated.code)
        logger.info(f"Updated task type {validated.code}")
        return validated

    async def delete_task_type(self, code: str) -> None:
        with store_errors("Failed to delete task type"):
            if not await self.task_types.delete(code):
                raise TaskTypeNotFound(code)
        logger.info(f"Deleted task type {code}")

    async def find_task_type(self, code: str) -> TaskType | None:
        with store_errors("Failed to read task type"):
            return await self.task_types.get(code)

    async def get_task_type(self, code: str) -> TaskType:
        task_type = await self.find_task_type(code)
        if task_type is None:
            raise TaskTypeNotFound(code)
        return task_type

    async def get_task_type_name(self, code: str) -> str:
        return (await self.get_task_type(code)).name

    async def get_task_types(self) -> list[TaskType]:
        with store_errors("Failed to list task types"):
            return await self.task_types.list()

    async def task_type_exists(self, code: str) -> bool:
        with store_errors("Failed to read task type"):
            return await self.task_types.exists(code)

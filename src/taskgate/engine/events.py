"""Task event recording."""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.db.repositories import TaskEventRepository
from taskgate.models import TaskEvent, TaskEventType, TaskType

logger = logging.getLogger("taskgate.events")


class TaskEventRecorder:
    """Appends lifecycle events for the event types a task type asks for."""

    def __init__(self, session: AsyncSession):
        self.events = TaskEventRepository(session)

    async def record(
        self,
        event_type: TaskEventType,
        task_type: TaskType | None,
        task_id: UUID,
        step: str | None = None,
        data: str | None = None,
    ) -> TaskEvent | None:
        """Record ``event_type`` if ``task_type`` is configured for it."""
        if task_type is None or not task_type.records_event(event_type):
            return None

        snapshot = data if task_type.records_event_data(event_type) else None
        event = await self.events.create(task_id, event_type, step=step, data=snapshot)
        logger.debug(f"Recorded {event_type.value} for task {task_id} (step: {step})")
        return event

    async def list_for_task(self, task_id: UUID) -> list[TaskEvent]:
        return await self.events.list_for_task(task_id)

    async def delete_for_task(self, task_id: UUID) -> int:
        return await self.events.delete_for_task(task_id)

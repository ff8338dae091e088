"""Historical task archival."""

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.config import settings
from taskgate.db.repositories import (
    ArchivedTaskRepository,
    TaskRepository,
    TaskTypeRepository,
)
from taskgate.engine.errors import ArchivedTaskNotFound, store_errors
from taskgate.engine.events import TaskEventRecorder
from taskgate.models import ArchivedTask, TaskType
from taskgate.observability.metrics import metrics
from taskgate.utils.time import utc_now

logger = logging.getLogger("taskgate.archive")


class TaskArchiver:
    """Moves terminal tasks past the retention window out of the active table."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.tasks = TaskRepository(session)
        self.task_types = TaskTypeRepository(session)
        self.archived = ArchivedTaskRepository(session)
        self.events = TaskEventRecorder(session)

    async def archive_and_delete_historical_tasks(
        self,
        retention_days: int | None = None,
        page_size: int | None = None,
    ) -> int:
        """
        Archive or drop every terminal task not updated within the retention window.

        A task is archived when its type asks for it (``archive_completed``
        or ``archive_failed``) and its events are kept; any other terminal
        task is deleted together with its events. Each page commits on its
        own, so an interrupted run resumes with whatever is left. Tasks
        already present in the archive are not copied twice.

        Returns:
            Number of tasks removed from the active table.
        """
        retention_days = (
            settings.historical_task_retention_days if retention_days is None else retention_days
        )
        page_size = page_size or settings.archive_page_size
        cutoff = utc_now() - timedelta(days=retention_days)
        task_types: dict[str, TaskType | None] = {}
        processed = 0

        with store_errors("Failed to archive historical tasks"):
            while True:
                page = await self.tasks.list_historical(cutoff, limit=page_size)
                if not page:
                    break

                for task in page:
                    if task.type not in task_types:
                        task_types[task.type] = await self.task_types.get(task.type)
                    task_type = task_types[task.type]

                    if task_type is not None and task_type.archives(task.status):
                        if not await self.archived.exists(task.id):
                            await self.archived.create_from(task)
                        metrics.inc_counter("tasks.archived")
                    else:
                        await self.events.delete_for_task(task.id)
                        metrics.inc_counter("tasks.purged")

                    if await self.tasks.delete(task.id):
                        processed += 1

                await self.session.commit()

        if processed:
            logger.info(f"Archived or deleted {processed} historical tasks (cutoff: {cutoff.isoformat()})")
        return processed

    async def get_archived_task(self, task_id: UUID) -> ArchivedTask:
        with store_errors("Failed to read archived task"):
            archived = await self.archived.get(task_id)
        if archived is None:
            raise ArchivedTaskNotFound(task_id)
        return archived

    async def is_archived(self, task_id: UUID) -> bool:
        with store_errors("Failed to read archived task"):
            return await self.archived.exists(task_id)

"""Database repositories for TaskGate entities."""

from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.db.tables import (
    ArchivedTaskTable,
    TaskEventTable,
    TaskTable,
    TaskTypeTable,
)
from taskgate.models import (
    ArchivedTask,
    SortDirection,
    Task,
    TaskEvent,
    TaskEventType,
    TaskPriority,
    TaskSortBy,
    TaskStatus,
    TaskSummary,
    TaskType,
)
from taskgate.utils.ids import time_ordered_uuid
from taskgate.utils.time import utc_now


class TaskRepository:
    """Repository for task operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        type: str,
        data: str,
        priority: TaskPriority,
        status: TaskStatus = TaskStatus.QUEUED,
        step: str | None = None,
        batch_id: str | None = None,
        external_reference: str | None = None,
        task_id: UUID | None = None,
    ) -> Task:
        """Insert a new task. Unique violations surface as ``IntegrityError``."""
        now = utc_now()
        task_row = TaskTable(
            id=task_id or time_ordered_uuid(),
            type=type,
            priority=int(priority),
            batch_id=batch_id,
            external_reference=external_reference,
            status=status,
            pending_status=None,
            step=step,
            data=data,
            execution_attempts=0,
            execution_time=0,
            queued=now,
            updated=now,
        )
        self.session.add(task_row)
        await self.session.flush()
        return self._row_to_model(task_row)

    async def get(self, task_id: UUID) -> Task | None:
        """Get a task by ID, bypassing any stale identity-map copy."""
        result = await self.session.execute(
            select(TaskTable)
            .where(TaskTable.id == task_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def get_by_external_reference(self, external_reference: str) -> Task | None:
        result = await self.session.execute(
            select(TaskTable)
            .where(TaskTable.external_reference == external_reference)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def exists(self, task_id: UUID) -> bool:
        result = await self.session.execute(select(TaskTable.id).where(TaskTable.id == task_id))
        return result.scalar_one_or_none() is not None

    async def exists_by_external_reference(self, external_reference: str) -> bool:
        result = await self.session.execute(
            select(TaskTable.id).where(TaskTable.external_reference == external_reference)
        )
        return result.scalar_one_or_none() is not None

    async def claim_next(
        self,
        worker_id: str,
        now: datetime | None = None,
        candidates: int = 5,
    ) -> Task | None:
        """
        Atomically claim the next runnable task.

        Candidates are QUEUED tasks of enabled types whose next_execution has
        passed, highest priority (lowest value) first, then oldest. Each
        candidate is taken with a conditional update guarded on
        ``status = QUEUED``, so at most one caller wins a given row. On
        PostgreSQL the candidate rows are also locked with SKIP LOCKED so
        concurrent workers fan out over different tasks.
        """
        now = now or utc_now()

        query = (
            select(TaskTable.id)
            .join(TaskTypeTable, TaskTypeTable.code == TaskTable.type)
            .where(
                TaskTypeTable.enabled.is_(True),
                TaskTable.status == TaskStatus.QUEUED,
                or_(
                    TaskTable.next_execution.is_(None),
                    TaskTable.next_execution <= now,
                ),
            )
            .order_by(
                TaskTable.priority.asc(),
                TaskTable.queued.asc(),
                TaskTable.id.asc(),
            )
            .limit(candidates)
            .with_for_update(skip_locked=True, of=TaskTable)
        )
        result = await self.session.execute(query)
        candidate_ids = list(result.scalars().all())

        for task_id in candidate_ids:
            claimed = await self.session.execute(
                update(TaskTable)
                .where(
                    TaskTable.id == task_id,
                    TaskTable.status == TaskStatus.QUEUED,
                )
                .values(
                    status=TaskStatus.EXECUTING,
                    lock_name=worker_id,
                    executed=now,
                    execution_attempts=TaskTable.execution_attempts + 1,
                    updated=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 1:
                return await self.get(task_id)

        return None

    async def update_where(
        self,
        task_id: UUID,
        values: dict[str, Any],
        statuses: Iterable[TaskStatus] | None = None,
        lock_name: str | None = None,
        pending_status: TaskStatus | None = None,
        require_no_pending: bool = False,
        executed: datetime | None = None,
    ) -> bool:
        """
        Conditionally update one task.

        The update only applies while the row still matches every given
        guard, which makes each caller's transition atomic against
        concurrent workers. Returns whether a row changed.
        """
        conditions = [TaskTable.id == task_id]
        if statuses is not None:
            conditions.append(TaskTable.status.in_(list(statuses)))
        if lock_name is not None:
            conditions.append(TaskTable.lock_name == lock_name)
        if pending_status is not None:
            conditions.append(TaskTable.pending_status == pending_status)
        elif require_no_pending:
            conditions.append(TaskTable.pending_status.is_(None))
        if executed is not None:
            conditions.append(TaskTable.executed == executed)

        values = {"updated": utc_now(), **values}
        result = await self.session.execute(
            update(TaskTable)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_ids_by_batch(self, batch_id: str) -> list[UUID]:
        result = await self.session.execute(
            select(TaskTable.id)
            .where(TaskTable.batch_id == batch_id)
            .order_by(TaskTable.queued.asc(), TaskTable.id.asc())
        )
        return list(result.scalars().all())

    async def list_executing(
        self,
        executed_before: datetime | None = None,
        type: str | None = None,
        exclude_types: Iterable[str] | None = None,
        lock_name: str | None = None,
    ) -> list[Task]:
        """List EXECUTING tasks, optionally by type, lock holder or start time."""
        query = select(TaskTable).where(TaskTable.status == TaskStatus.EXECUTING)
        if executed_before is not None:
            query = query.where(TaskTable.executed < executed_before)
        if type is not None:
            query = query.where(TaskTable.type == type)
        if exclude_types:
            query = query.where(TaskTable.type.not_in(list(exclude_types)))
        if lock_name is not None:
            query = query.where(TaskTable.lock_name == lock_name)

        result = await self.session.execute(
            query.order_by(TaskTable.executed.asc()).execution_options(populate_existing=True)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def list_historical(
        self,
        updated_before: datetime,
        limit: int,
        exclude_ids: Iterable[UUID] | None = None,
    ) -> list[Task]:
        """Terminal tasks last changed at or before ``updated_before``, oldest first."""
        query = select(TaskTable).where(
            TaskTable.status.in_(list(TaskStatus.terminal_states())),
            TaskTable.updated <= updated_before,
        )
        if exclude_ids:
            query = query.where(TaskTable.id.not_in(list(exclude_ids)))

        result = await self.session.execute(
            query.order_by(TaskTable.queued.asc(), TaskTable.id.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def list_summaries(
        self,
        type: str | None = None,
        status: TaskStatus | None = None,
        filter: str | None = None,
        sort_by: TaskSortBy = TaskSortBy.QUEUED,
        sort_direction: SortDirection = SortDirection.DESCENDING,
        offset: int = 0,
        limit: int = 100,
    ) -> tuple[list[TaskSummary], int]:
        """Find task summaries matching the filters, plus the total match count."""
        conditions = []
        if type:
            conditions.append(TaskTable.type == type)
        if status:
            conditions.append(TaskTable.status == status)
        if filter:
            needle = filter.lower()
            conditions.append(
                or_(
                    func.lower(TaskTable.batch_id).contains(needle, autoescape=True),
                    func.lower(TaskTable.external_reference).contains(needle, autoescape=True),
                )
            )

        count_result = await self.session.execute(
            select(func.count()).select_from(TaskTable).where(*conditions)
        )
        total = count_result.scalar_one()

        sort_column = TaskTable.type if sort_by == TaskSortBy.TYPE else TaskTable.queued
        if sort_direction == SortDirection.ASCENDING:
            order = [sort_column.asc(), TaskTable.queued.asc(), TaskTable.id.asc()]
        else:
            order = [sort_column.desc(), TaskTable.queued.desc(), TaskTable.id.desc()]

        result = await self.session.execute(
            select(TaskTable).where(*conditions).order_by(*order).offset(offset).limit(limit)
        )
        summaries = [self._row_to_summary(r) for r in result.scalars().all()]
        return summaries, total

    async def exists_with_type_and_status(self, type: str, statuses: Iterable[TaskStatus]) -> bool:
        result = await self.session.execute(
            select(TaskTable.id)
            .where(TaskTable.type == type, TaskTable.status.in_(list(statuses)))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def delete(self, task_id: UUID) -> bool:
        result = await self.session.execute(delete(TaskTable).where(TaskTable.id == task_id))
        return result.rowcount == 1

    def _row_to_model(self, row: TaskTable) -> Task:
        """Convert database row to model."""
        return Task(
            id=row.id,
            type=row.type,
            priority=TaskPriority(row.priority),
            batch_id=row.batch_id,
            external_reference=row.external_reference,
            status=row.status,
            pending_status=row.pending_status,
            step=row.step,
            data=row.data,
            execution_attempts=row.execution_attempts,
            execution_time=row.execution_time,
            failure=row.failure,
            queued=row.queued,
            executed=row.executed,
            updated=row.updated,
            next_execution=row.next_execution,
            lock_name=row.lock_name,
        )

    def _row_to_summary(self, row: TaskTable) -> TaskSummary:
        return TaskSummary(
            id=row.id,
            batch_id=row.batch_id,
            external_reference=row.external_reference,
            type=row.type,
            step=row.step,
            status=row.status,
            queued=row.queued,
            executed=row.executed,
            execution_attempts=row.execution_attempts,
            next_execution=row.next_execution,
            lock_name=row.lock_name,
        )


class TaskTypeRepository:
    """Repository for task type operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, task_type: TaskType) -> TaskType:
        now = utc_now()
        row = TaskTypeTable(created=now, updated=now, **self._model_to_values(task_type))
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def update(self, task_type: TaskType) -> bool:
        result = await self.session.execute(
            update(TaskTypeTable)
            .where(TaskTypeTable.code == task_type.code)
            .values(updated=utc_now(), **self._model_to_values(task_type))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get(self, code: str) -> TaskType | None:
        result = await self.session.execute(
            select(TaskTypeTable)
            .where(TaskTypeTable.code == code)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list(self) -> list[TaskType]:
        result = await self.session.execute(
            select(TaskTypeTable)
            .order_by(TaskTypeTable.name.asc(), TaskTypeTable.code.asc())
            .execution_options(populate_existing=True)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(TaskTypeTable.code).where(TaskTypeTable.code == code)
        )
        return result.scalar_one_or_none() is not None

    async def delete(self, code: str) -> bool:
        result = await self.session.execute(
            delete(TaskTypeTable).where(TaskTypeTable.code == code)
        )
        return result.rowcount == 1

    def _model_to_values(self, task_type: TaskType) -> dict[str, Any]:
        return {
            "code": task_type.code,
            "name": task_type.name,
            "executor_class": task_type.executor_class,
            "enabled": task_type.enabled,
            "priority": int(task_type.priority),
            "maximum_execution_attempts": task_type.maximum_execution_attempts,
            "retry_delay": task_type.retry_delay,
            "execution_timeout": task_type.execution_timeout,
            "archive_completed": task_type.archive_completed,
            "archive_failed": task_type.archive_failed,
            "event_types": [e.value for e in task_type.event_types],
            "event_types_with_task_data": [e.value for e in task_type.event_types_with_task_data],
        }

    def _row_to_model(self, row: TaskTypeTable) -> TaskType:
        return TaskType(
            code=row.code,
            name=row.name,
            executor_class=row.executor_class,
            enabled=row.enabled,
            priority=TaskPriority(row.priority),
            maximum_execution_attempts=row.maximum_execution_attempts,
            retry_delay=row.retry_delay,
            execution_timeout=row.execution_timeout,
            archive_completed=row.archive_completed,
            archive_failed=row.archive_failed,
            event_types=[TaskEventType(e) for e in row.event_types or []],
            event_types_with_task_data=[
                TaskEventType(e) for e in row.event_types_with_task_data or []
            ],
        )


class TaskEventRepository:
    """Repository for task event operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        task_id: UUID,
        type: TaskEventType,
        step: str | None = None,
        data: str | None = None,
    ) -> TaskEvent:
        row = TaskEventTable(
            id=time_ordered_uuid(),
            task_id=task_id,
            type=type,
            step=step,
            timestamp=utc_now(),
            data=data,
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def list_for_task(self, task_id: UUID) -> list[TaskEvent]:
        result = await self.session.execute(
            select(TaskEventTable)
            .where(TaskEventTable.task_id == task_id)
            .order_by(TaskEventTable.timestamp.asc(), TaskEventTable.id.asc())
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def delete_for_task(self, task_id: UUID) -> int:
        result = await self.session.execute(
            delete(TaskEventTable).where(TaskEventTable.task_id == task_id)
        )
        return result.rowcount

    def _row_to_model(self, row: TaskEventTable) -> TaskEvent:
        return TaskEvent(
            id=row.id,
            task_id=row.task_id,
            type=row.type,
            step=row.step,
            timestamp=row.timestamp,
            data=row.data,
        )


class ArchivedTaskRepository:
    """Repository for archived task operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_from(self, task: Task) -> ArchivedTask:
        """Copy a terminal task into the archive."""
        row = ArchivedTaskTable(
            id=task.id,
            batch_id=task.batch_id,
            type=task.type,
            step=task.step,
            status=task.status,
            queued=task.queued,
            executed=task.executed,
            execution_time=task.execution_time,
            external_reference=task.external_reference,
            data=task.data,
            failure=task.failure,
            archived=utc_now(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, task_id: UUID) -> ArchivedTask | None:
        result = await self.session.execute(
            select(ArchivedTaskTable).where(ArchivedTaskTable.id == task_id)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def exists(self, task_id: UUID) -> bool:
        result = await self.session.execute(
            select(ArchivedTaskTable.id).where(ArchivedTaskTable.id == task_id)
        )
        return result.scalar_one_or_none() is not None

    def _row_to_model(self, row: ArchivedTaskTable) -> ArchivedTask:
        return ArchivedTask(
            id=row.id,
            batch_id=row.batch_id,
            type=row.type,
            step=row.step,
            status=row.status,
            queued=row.queued,
            executed=row.executed,
            execution_time=row.execution_time,
            external_reference=row.external_reference,
            data=row.data,
            failure=row.failure,
            archived=row.archived,
        )

"""TaskGate engine - task lifecycle and state machine."""

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.config import settings
from taskgate.db.repositories import TaskRepository
from taskgate.db.tables import TaskTable
from taskgate.engine.archive import TaskArchiver
from taskgate.engine.errors import (
    BatchTasksNotFound,
    InvalidArgument,
    InvalidTaskStatus,
    ServiceUnavailable,
    TaskLockLost,
    TaskNotFound,
    store_errors,
)
from taskgate.engine.events import TaskEventRecorder
from taskgate.engine.task_types import TaskTypeRegistry
from taskgate.executors.outcomes import (
    Completed,
    Delay,
    Failed,
    Outcome,
    Retry,
    StepCompleted,
)
from taskgate.executors.registry import ExecutorRegistry, executor_registry
from taskgate.models import (
    ArchivedTask,
    QueueTaskRequest,
    SortDirection,
    Task,
    TaskEvent,
    TaskEventType,
    TaskSortBy,
    TaskStatus,
    TaskSummaries,
    TaskType,
)
from taskgate.observability.metrics import metrics
from taskgate.utils.time import after_ms, utc_now

logger = logging.getLogger("taskgate.engine")

# Attempts at a guarded transition before giving up on a row that keeps changing
TRANSITION_RETRIES = 5

# Result of a single guarded transition: applied, nothing to do, or lost a race
_CHANGED = "changed"
_UNCHANGED = "unchanged"
_RACED = "raced"


class TaskEngine:
    """
    Core TaskGate engine.

    Owns every task state transition. All transitions are conditional
    updates guarded on the state they start from, so workers, sweeps and
    callers can act on the same tasks concurrently without locks held
    across calls.
    """

    def __init__(self, session: AsyncSession, executors: ExecutorRegistry | None = None):
        self.session = session
        self.executors = executors if executors is not None else executor_registry
        self.tasks = TaskRepository(session)
        self.task_types = TaskTypeRegistry(session, self.executors)
        self.events = TaskEventRecorder(session)
        self.archiver = TaskArchiver(session)

    # =========================================================================
    # Queueing and queries
    # =========================================================================

    async def queue_task(self, request: QueueTaskRequest | dict[str, Any]) -> UUID:
        """
        Queue a new task.

        The task starts SUSPENDED when the request asks for it, otherwise
        QUEUED. Multistep tasks start at their executor's first step.

        Raises:
            InvalidArgument: Malformed request, disabled type or reused external reference
            TaskTypeNotFound: Unknown task type
            ServiceUnavailable: Task store failure
        """
        if not isinstance(request, QueueTaskRequest):
            try:
                request = QueueTaskRequest.model_validate(request)
            except ValidationError as e:
                raise InvalidArgument.from_validation_error("request", e) from e

        task_type = await self.task_types.get_task_type(request.type)
        if not task_type.enabled:
            raise InvalidArgument("type", f"Task type is disabled: {task_type.code}")

        step = None
        if self.executors.has(task_type.executor_class):
            step = self.executors.resolve(task_type.executor_class).initial_step()

        with store_errors("Failed to queue task"):
            reference = request.external_reference
            if reference is not None and await self.tasks.exists_by_external_reference(reference):
                raise InvalidArgument(
                    "external_reference",
                    f"External reference already used: {request.external_reference}",
                )

            try:
                task = await self.tasks.create(
                    type=task_type.code,
                    data=request.data,
                    priority=task_type.priority,
                    status=TaskStatus.SUSPENDED if request.suspended else TaskStatus.QUEUED,
                    step=step,
                    batch_id=request.batch_id,
                    external_reference=request.external_reference,
                )
            except IntegrityError as e:
                await self.session.rollback()
                if reference is not None and await self.tasks.exists_by_external_reference(reference):
                    raise InvalidArgument(
                        "external_reference",
                        f"External reference already used: {request.external_reference}",
                    ) from e
                raise ServiceUnavailable("Failed to queue task: duplicate task id") from e

        metrics.inc_counter("tasks.queued")
        logger.debug(f"Queued task {task.id} ({task.type}, status: {task.status.value})")
        return task.id

    async def get_task(self, task_id: UUID) -> Task:
        with store_errors("Failed to read task"):
            task = await self.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    async def get_task_by_external_reference(self, external_reference: str) -> Task:
        with store_errors("Failed to read task"):
            task = await self.tasks.get_by_external_reference(external_reference)
        if task is None:
            raise TaskNotFound(external_reference)
        return task

    async def get_task_status(self, task_id: UUID) -> TaskStatus:
        return (await self.get_task(task_id)).status

    async def get_task_summaries(
        self,
        type: str | None = None,
        status: TaskStatus | None = None,
        filter: str | None = None,
        sort_by: TaskSortBy = TaskSortBy.QUEUED,
        sort_direction: SortDirection = SortDirection.DESCENDING,
        page_index: int = 0,
        page_size: int | None = None,
    ) -> TaskSummaries:
        """
        Page through task summaries.

        ``filter`` matches batch ids and external references, ignoring
        case. Page size is capped at ``max_task_summaries_page_size``.
        """
        if page_index < 0:
            raise InvalidArgument("page_index", f"Page index must not be negative, got {page_index}")
        if page_size is not None and page_size < 1:
            raise InvalidArgument("page_size", f"Page size must be at least 1, got {page_size}")

        page_size = min(page_size or settings.max_task_summaries_page_size, settings.max_task_summaries_page_size)
        filter = filter.strip() if filter else None

        with store_errors("Failed to list tasks"):
            summaries, total = await self.tasks.list_summaries(
                type=type,
                status=status,
                filter=filter,
                sort_by=sort_by,
                sort_direction=sort_direction,
                offset=page_index * page_size,
                limit=page_size,
            )

        return TaskSummaries(
            type=type,
            status=status,
            filter=filter,
            sort_by=sort_by,
            sort_direction=sort_direction,
            page_index=page_index,
            page_size=page_size,
            total=total,
            tasks=summaries,
        )

    async def get_task_events_for_task(self, task_id: UUID) -> list[TaskEvent]:
        """Events of an active or archived task, oldest first."""
        with store_errors("Failed to read task events"):
            if not await self.tasks.exists(task_id) and not await self.archiver.is_archived(task_id):
                raise TaskNotFound(task_id)
            return await self.events.list_for_task(task_id)

    async def is_task_with_task_type_queued_or_executing(self, code: str) -> bool:
        with store_errors("Failed to read tasks"):
            return await self.tasks.exists_with_type_and_status(
                code, [TaskStatus.QUEUED, TaskStatus.EXECUTING]
            )

    async def delete_task(self, task_id: UUID) -> None:
        with store_errors("Failed to delete task"):
            if not await self.tasks.delete(task_id):
                raise TaskNotFound(task_id)
            await self.events.delete_for_task(task_id)
        logger.info(f"Deleted task {task_id}")

    # =========================================================================
    # Claim and outcome application
    # =========================================================================

    async def claim_next_task(self, worker_id: str) -> Task | None:
        """
        Claim the next runnable task for ``worker_id``.

        Returns None when nothing is claimable. The claimed task is
        EXECUTING, locked by ``worker_id``, with its attempt count
        incremented. The caller must commit before running it.
        """
        if not worker_id:
            raise InvalidArgument("worker_id", "Worker id must not be empty")

        with store_errors("Failed to claim task"):
            task = await self.tasks.claim_next(worker_id)

        if task is not None:
            metrics.inc_counter("tasks.claimed")
            logger.debug(
                f"Worker {worker_id} claimed task {task.id} "
                f"(type: {task.type}, step: {task.step}, attempt: {task.execution_attempts})"
            )
        return task

    async def apply_outcome(
        self,
        task: Task,
        outcome: Outcome,
        worker_id: str,
        execution_time: int = 0,
    ) -> Task:
        """
        Apply an executor outcome to a task claimed by ``worker_id``.

        COMPLETED and FAILED always stand. Outcomes that would requeue the
        task land in the task's pending status instead when a cancel or
        suspend arrived during execution.

        Raises:
            TaskLockLost: The task is no longer EXECUTING under ``worker_id``
        """
        with store_errors("Failed to apply task outcome"):
            task_type = await self.task_types.find_task_type(task.type)
            now = utc_now()
            accounting = {
                "lock_name": None,
                "execution_time": TaskTable.execution_time + max(0, execution_time),
            }

            if isinstance(outcome, Completed):
                await self._finish(
                    task, worker_id, TaskStatus.COMPLETED, {**accounting, "data": outcome.data}
                )
                await self.events.record(
                    TaskEventType.TASK_COMPLETED, task_type, task.id, task.step, outcome.data
                )
                metrics.inc_counter("tasks.completed")

            elif isinstance(outcome, Failed):
                await self._fail(task, task_type, worker_id, outcome.reason, accounting)

            elif isinstance(outcome, Retry):
                maximum = self._maximum_execution_attempts(task_type)
                if task.execution_attempts < maximum:
                    retry_delay = self._retry_delay(task_type)
                    await self._requeue(
                        task,
                        task_type,
                        worker_id,
                        {**accounting, "next_execution": after_ms(retry_delay, now)},
                    )
                    metrics.inc_counter("tasks.retried")
                else:
                    reason = f"Maximum execution attempts ({maximum}) reached"
                    if outcome.reason:
                        reason = f"{reason}: {outcome.reason}"
                    await self._fail(task, task_type, worker_id, reason, accounting)

            elif isinstance(outcome, Delay):
                await self._requeue(
                    task,
                    task_type,
                    worker_id,
                    {**accounting, "next_execution": after_ms(outcome.delay, now)},
                )
                metrics.inc_counter("tasks.delayed")

            elif isinstance(outcome, StepCompleted):
                next_step = outcome.next_step
                await self._requeue(
                    task,
                    task_type,
                    worker_id,
                    {
                        **accounting,
                        "step": next_step.name,
                        "data": outcome.data,
                        # Each step gets its own attempt budget
                        "execution_attempts": 0,
                        "next_execution": after_ms(next_step.delay, now) if next_step.delay else None,
                    },
                )
                await self.events.record(
                    TaskEventType.STEP_COMPLETED, task_type, task.id, task.step, outcome.data
                )
                metrics.inc_counter("tasks.step_completed")

            else:
                raise TypeError(f"Unknown task outcome: {outcome!r}")

            updated = await self.tasks.get(task.id)

        return updated

    async def unlock_failed(self, task: Task, worker_id: str, reason: str) -> bool:
        """
        Fail a claimed task whose outcome could not be applied.

        Only touches the row while it is still the execution ``worker_id``
        claimed. Records no event. Returns whether the task was unlocked.
        """
        with store_errors("Failed to unlock task"):
            unlocked = await self.tasks.update_where(
                task.id,
                {
                    "status": TaskStatus.FAILED,
                    "pending_status": None,
                    "lock_name": None,
                    "next_execution": None,
                    "failure": reason,
                },
                statuses=[TaskStatus.EXECUTING],
                lock_name=worker_id,
                executed=task.executed,
            )
        if unlocked:
            metrics.inc_counter("tasks.failed")
            logger.warning(f"Task {task.id} failed without its outcome: {reason}")
        return unlocked

    async def _finish(
        self, task: Task, worker_id: str, status: TaskStatus, values: dict[str, Any]
    ) -> None:
        applied = await self.tasks.update_where(
            task.id,
            {**values, "status": status, "pending_status": None, "next_execution": None},
            statuses=[TaskStatus.EXECUTING],
            lock_name=worker_id,
        )
        if not applied:
            raise TaskLockLost(task.id, worker_id)

    async def _fail(
        self,
        task: Task,
        task_type: TaskType | None,
        worker_id: str,
        reason: str,
        values: dict[str, Any],
    ) -> None:
        """Fail the task. The TASK_FAILED event snapshots the data as claimed."""
        await self._finish(task, worker_id, TaskStatus.FAILED, {**values, "failure": reason})
        await self.events.record(TaskEventType.TASK_FAILED, task_type, task.id, task.step, task.data)
        metrics.inc_counter("tasks.failed")
        logger.info(f"Task {task.id} failed: {reason}")

    async def _requeue(
        self,
        task: Task,
        task_type: TaskType | None,
        worker_id: str,
        values: dict[str, Any],
    ) -> None:
        """Return an executing task to the queue, or to its pending status if one was requested."""
        for _ in range(TRANSITION_RETRIES):
            if await self.tasks.update_where(
                task.id,
                {**values, "status": TaskStatus.QUEUED},
                statuses=[TaskStatus.EXECUTING],
                lock_name=worker_id,
                require_no_pending=True,
            ):
                return

            current = await self.tasks.get(task.id)
            if (
                current is None
                or current.status != TaskStatus.EXECUTING
                or current.lock_name != worker_id
            ):
                raise TaskLockLost(task.id, worker_id)
            if current.pending_status is None:
                continue

            if await self._land_in_pending(current, task_type, values, lock_name=worker_id):
                return

        raise TaskLockLost(task.id, worker_id)

    async def _land_in_pending(
        self,
        task: Task,
        task_type: TaskType | None,
        values: dict[str, Any],
        lock_name: str,
    ) -> bool:
        pending = task.pending_status
        applied = await self.tasks.update_where(
            task.id,
            {**values, "status": pending, "pending_status": None, "next_execution": None},
            statuses=[TaskStatus.EXECUTING],
            lock_name=lock_name,
            pending_status=pending,
        )
        if applied:
            if pending == TaskStatus.CANCELED:
                await self.events.record(
                    TaskEventType.TASK_CANCELED, task_type, task.id, values.get("step", task.step)
                )
                metrics.inc_counter("tasks.canceled")
            logger.info(f"Task {task.id} moved to requested status {pending.value} after execution")
        return applied

    def _maximum_execution_attempts(self, task_type: TaskType | None) -> int:
        if task_type is not None and task_type.maximum_execution_attempts:
            return task_type.maximum_execution_attempts
        return settings.default_maximum_execution_attempts

    def _retry_delay(self, task_type: TaskType | None) -> int:
        if task_type is not None and task_type.retry_delay is not None:
            return task_type.retry_delay
        return settings.default_retry_delay_ms

    def _execution_timeout(self, task_type: TaskType | None) -> int:
        if task_type is not None and task_type.execution_timeout:
            return task_type.execution_timeout
        return settings.default_execution_timeout_ms

    # =========================================================================
    # Cancel / suspend / unsuspend
    # =========================================================================

    async def cancel_task(self, task_id: UUID) -> Task:
        """
        Cancel a task.

        Canceling a CANCELED task succeeds silently. An EXECUTING task is
        canceled once its current attempt ends without completing or failing.

        Raises:
            TaskNotFound: Unknown task
            InvalidTaskStatus: Task is COMPLETED or FAILED
        """
        return await self._transition_task(task_id, self._cancel, "cancel")

    async def suspend_task(self, task_id: UUID) -> Task:
        """Suspend a queued task. Suspending a SUSPENDED task succeeds silently."""
        return await self._transition_task(task_id, self._suspend, "suspend")

    async def unsuspend_task(self, task_id: UUID) -> Task:
        """Return a suspended task to the queue, runnable immediately."""
        return await self._transition_task(task_id, self._unsuspend, "unsuspend")

    async def cancel_batch(self, batch_id: str) -> int:
        """Cancel every task of the batch that has not finished. Returns the number changed."""
        return await self._transition_batch(batch_id, self._cancel, "cancel")

    async def suspend_batch(self, batch_id: str) -> int:
        return await self._transition_batch(batch_id, self._suspend, "suspend")

    async def unsuspend_batch(self, batch_id: str) -> int:
        return await self._transition_batch(batch_id, self._unsuspend, "unsuspend")

    async def _transition_task(
        self,
        task_id: UUID,
        transition: Callable[[Task, bool], Awaitable[str]],
        operation: str,
    ) -> Task:
        with store_errors(f"Failed to {operation} task"):
            for _ in range(TRANSITION_RETRIES):
                task = await self.tasks.get(task_id)
                if task is None:
                    raise TaskNotFound(task_id)
                if await transition(task, True) != _RACED:
                    return await self.tasks.get(task_id)

        raise ServiceUnavailable(f"Task {task_id} kept changing while trying to {operation} it")

    async def _transition_batch(
        self,
        batch_id: str,
        transition: Callable[[Task, bool], Awaitable[str]],
        operation: str,
    ) -> int:
        if not batch_id or not batch_id.strip():
            raise InvalidArgument("batch_id", "Batch id must not be empty")

        changed = 0
        with store_errors(f"Failed to {operation} batch"):
            task_ids = await self.tasks.list_ids_by_batch(batch_id)
            if not task_ids:
                raise BatchTasksNotFound(batch_id)

            for task_id in task_ids:
                for _ in range(TRANSITION_RETRIES):
                    task = await self.tasks.get(task_id)
                    if task is None:
                        break
                    result = await transition(task, False)
                    if result == _CHANGED:
                        changed += 1
                    if result != _RACED:
                        break
                else:
                    logger.warning(f"Gave up trying to {operation} task {task_id} of batch {batch_id}")

        logger.info(f"Batch {batch_id}: {operation} changed {changed} of {len(task_ids)} tasks")
        return changed

    def _reject(self, task: Task, strict: bool, operation: str) -> str:
        if strict:
            raise InvalidTaskStatus(task.id, task.status.value, operation)
        return _UNCHANGED

    def _result(self, applied: bool) -> str:
        return _CHANGED if applied else _RACED

    async def _cancel(self, task: Task, strict: bool) -> str:
        if task.status == TaskStatus.CANCELED:
            return _UNCHANGED
        if task.status in TaskStatus.historical_states():
            return self._reject(task, strict, "cancel")

        if task.status == TaskStatus.EXECUTING:
            if task.pending_status == TaskStatus.CANCELED:
                return _UNCHANGED
            applied = await self.tasks.update_where(
                task.id,
                {"pending_status": TaskStatus.CANCELED},
                statuses=[TaskStatus.EXECUTING],
            )
            return self._result(applied)

        applied = await self.tasks.update_where(
            task.id,
            {"status": TaskStatus.CANCELED, "pending_status": None, "next_execution": None},
            statuses=[task.status],
        )
        if applied:
            task_type = await self.task_types.find_task_type(task.type)
            await self.events.record(TaskEventType.TASK_CANCELED, task_type, task.id, task.step)
            metrics.inc_counter("tasks.canceled")
        return self._result(applied)

    async def _suspend(self, task: Task, strict: bool) -> str:
        if task.status == TaskStatus.SUSPENDED:
            return _UNCHANGED
        if task.status.is_terminal():
            return self._reject(task, strict, "suspend")

        if task.status == TaskStatus.EXECUTING:
            if task.pending_status is not None:
                # Already suspending, or canceling which takes precedence
                return _UNCHANGED
            applied = await self.tasks.update_where(
                task.id,
                {"pending_status": TaskStatus.SUSPENDED},
                statuses=[TaskStatus.EXECUTING],
                require_no_pending=True,
            )
            return self._result(applied)

        applied = await self.tasks.update_where(
            task.id,
            {"status": TaskStatus.SUSPENDED, "next_execution": None},
            statuses=[TaskStatus.QUEUED],
        )
        return self._result(applied)

    async def _unsuspend(self, task: Task, strict: bool) -> str:
        if task.status == TaskStatus.QUEUED:
            return _UNCHANGED
        if task.status.is_terminal():
            return self._reject(task, strict, "unsuspend")

        if task.status == TaskStatus.EXECUTING:
            if task.pending_status != TaskStatus.SUSPENDED:
                return _UNCHANGED
            applied = await self.tasks.update_where(
                task.id,
                {"pending_status": None},
                statuses=[TaskStatus.EXECUTING],
                pending_status=TaskStatus.SUSPENDED,
            )
            return self._result(applied)

        applied = await self.tasks.update_where(
            task.id,
            {"status": TaskStatus.QUEUED, "next_execution": utc_now()},
            statuses=[TaskStatus.SUSPENDED],
        )
        return self._result(applied)

    # =========================================================================
    # Hung tasks and lock release
    # =========================================================================

    async def reset_hung_tasks(self) -> int:
        """
        Return tasks left EXECUTING past their type's execution timeout to the queue.

        Attempts are not incremented: a crashed worker is not a failed
        attempt. Tasks with a pending cancel or suspend land in that status.

        Returns:
            Number of tasks reset.
        """
        now = utc_now()
        count = 0

        with store_errors("Failed to reset hung tasks"):
            task_types = await self.task_types.get_task_types()
            for task_type in task_types:
                cutoff = now - timedelta(milliseconds=self._execution_timeout(task_type))
                for task in await self.tasks.list_executing(executed_before=cutoff, type=task_type.code):
                    if await self._release(task, task_type):
                        count += 1

            # Tasks whose type has since been deleted
            cutoff = now - timedelta(milliseconds=self._execution_timeout(None))
            orphans = await self.tasks.list_executing(
                executed_before=cutoff,
                exclude_types=[task_type.code for task_type in task_types],
            )
            for task in orphans:
                if await self._release(task, None):
                    count += 1

        if count:
            metrics.inc_counter("tasks.hung_reset", count)
            logger.warning(f"Reset {count} hung tasks")
        return count

    async def reset_task_locks(self, lock_name: str) -> int:
        """Release every task still EXECUTING under ``lock_name``. Run when a worker starts."""
        if not lock_name:
            raise InvalidArgument("lock_name", "Lock name must not be empty")

        count = 0
        with store_errors("Failed to reset task locks"):
            for task in await self.tasks.list_executing(lock_name=lock_name):
                task_type = await self.task_types.find_task_type(task.type)
                if await self._release(task, task_type):
                    count += 1

        if count:
            logger.info(f"Released {count} tasks locked by {lock_name}")
        return count

    async def _release(self, task: Task, task_type: TaskType | None) -> bool:
        """Unlock one EXECUTING task, guarded on the execution it was seen in."""
        values = {"lock_name": None, "next_execution": None}
        if task.pending_status is not None:
            return await self._land_in_pending(task, task_type, values, lock_name=task.lock_name)

        return await self.tasks.update_where(
            task.id,
            {**values, "status": TaskStatus.QUEUED},
            statuses=[TaskStatus.EXECUTING],
            lock_name=task.lock_name,
            require_no_pending=True,
            executed=task.executed,
        )

    # =========================================================================
    # Task types
    # =========================================================================

    async def create_task_type(self, task_type: TaskType | dict[str, Any]) -> TaskType:
        return await self.task_types.create_task_type(task_type)

    async def update_task_type(self, task_type: TaskType | dict[str, Any]) -> TaskType:
        return await self.task_types.update_task_type(task_type)

    async def delete_task_type(self, code: str) -> None:
        await self.task_types.delete_task_type(code)

    async def get_task_type(self, code: str) -> TaskType:
        return await self.task_types.get_task_type(code)

    async def get_task_types(self) -> list[TaskType]:
        return await self.task_types.get_task_types()

    # =========================================================================
    # Archival
    # =========================================================================

    def set_historical_task_retention_days(self, days: int) -> None:
        """Set how long terminal tasks stay in the active table. 0 archives at the next run."""
        if days < 0:
            raise InvalidArgument("days", f"Retention must not be negative, got {days}")
        settings.historical_task_retention_days = days
        logger.info(f"Historical task retention set to {days} days")

    async def archive_and_delete_historical_tasks(self) -> int:
        return await self.archiver.archive_and_delete_historical_tasks()

    async def get_archived_task(self, task_id: UUID) -> ArchivedTask:
        return await self.archiver.get_archived_task(task_id)

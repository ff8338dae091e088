"""Worker loops - claim, execute and settle tasks."""

import asyncio
import logging
import random
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskgate.config import settings
from taskgate.db.base import get_session
from taskgate.engine.core import TaskEngine
from taskgate.engine.errors import TaskExecutorNotFound, TaskGateError, TaskLockLost
from taskgate.executors.outcomes import Failed, Outcome
from taskgate.executors.registry import ExecutorRegistry, executor_registry
from taskgate.instance import worker_id_for
from taskgate.models import Task
from taskgate.observability.metrics import metrics
from taskgate.utils.time import elapsed_ms

logger = logging.getLogger("taskgate.worker")

_worker_tasks: list[asyncio.Task] = []
_shutdown_event: Optional[asyncio.Event] = None


class TaskWorker:
    """
    Executes claimable tasks under one lock name.

    Claiming and settling a task each use their own committed session; the
    executor itself runs outside any database transaction.
    """

    def __init__(
        self,
        worker_id: str,
        executors: ExecutorRegistry | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.worker_id = worker_id
        self.executors = executors if executors is not None else executor_registry
        self.session_factory = session_factory

    async def execute_tasks(self, shutdown_event: asyncio.Event | None = None) -> int:
        """Run tasks until nothing is claimable. Returns the number executed."""
        executed = 0
        while shutdown_event is None or not shutdown_event.is_set():
            if not await self.execute_next_task():
                break
            executed += 1
        return executed

    async def execute_next_task(self) -> bool:
        """Claim and run one task. Returns False when nothing was claimable."""
        async with get_session(self.session_factory) as session:
            engine = TaskEngine(session, self.executors)
            task = await engine.claim_next_task(self.worker_id)
            if task is None:
                return False
            executor_or_failure = await self._resolve(engine, task)

        if isinstance(executor_or_failure, Failed):
            outcome, execution_time = executor_or_failure, 0
        else:
            started = time.perf_counter()
            outcome = await executor_or_failure.run(task)
            execution_time = elapsed_ms(started, time.perf_counter())
            metrics.observe("tasks.execution_ms", execution_time)

        await self._settle(task, outcome, execution_time)
        return True

    async def _resolve(self, engine: TaskEngine, task: Task):
        task_type = await engine.task_types.find_task_type(task.type)
        if task_type is None:
            return Failed(f"Task type not found: {task.type}")
        try:
            return self.executors.resolve(task_type.executor_class, task_type.code)
        except TaskExecutorNotFound as e:
            logger.error(f"Task {task.id}: {e.message}")
            return Failed(e.message)

    async def _settle(self, task: Task, outcome: Outcome, execution_time: int) -> None:
        try:
            async with get_session(self.session_factory) as session:
                settled = await TaskEngine(session, self.executors).apply_outcome(
                    task, outcome, self.worker_id, execution_time
                )
            logger.debug(
                f"Task {task.id} -> {settled.status.value} "
                f"({type(outcome).__name__}, {execution_time}ms)"
            )
        except TaskLockLost as e:
            metrics.inc_counter("tasks.lock_lost")
            logger.warning(f"Dropping outcome {type(outcome).__name__}: {e.message}")
        except (TaskGateError, SQLAlchemyError) as e:
            metrics.inc_counter("tasks.settle_failed")
            logger.error(
                f"Failed to apply {type(outcome).__name__} to task {task.id}: {e}", exc_info=True
            )
            await self._unlock_failed(task, f"Failed to apply task outcome: {e}")

    async def _unlock_failed(self, task: Task, reason: str) -> None:
        """Fail the task so it does not stay EXECUTING until the hung-task sweep."""
        try:
            async with get_session(self.session_factory) as session:
                await TaskEngine(session, self.executors).unlock_failed(
                    task, self.worker_id, reason
                )
        except (TaskGateError, SQLAlchemyError) as e:
            logger.error(f"Task {task.id} left to the hung-task sweep: {e}")

    async def release_locks(self) -> int:
        """Release tasks a previous run of this worker left EXECUTING."""
        async with get_session(self.session_factory) as session:
            return await TaskEngine(session, self.executors).reset_task_locks(self.worker_id)


async def worker_loop(worker: TaskWorker, shutdown_event: asyncio.Event):
    """
    Background loop draining the queue, then idling for the poll interval.

    The idle wait is jittered (±20%) so workers across instances do not
    poll in lockstep.
    """
    base_interval = settings.worker_poll_interval_seconds
    logger.info(f"Worker {worker.worker_id} started (poll interval: {base_interval}s)")

    try:
        released = await worker.release_locks()
        if released:
            logger.info(f"Worker {worker.worker_id} released {released} stale locks")
    except Exception as e:
        logger.error(f"Worker {worker.worker_id} failed to release stale locks: {e}", exc_info=True)

    while not shutdown_event.is_set():
        try:
            executed = await worker.execute_tasks(shutdown_event)
            if executed:
                logger.debug(f"Worker {worker.worker_id} executed {executed} tasks")
        except Exception as e:
            logger.error(f"Worker {worker.worker_id} error: {e}", exc_info=True)

        try:
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=base_interval * random.uniform(0.8, 1.2),
            )
        except asyncio.TimeoutError:
            pass

    logger.info(f"Worker {worker.worker_id} stopped")


async def start_workers(
    count: int | None = None,
    executors: ExecutorRegistry | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[TaskWorker]:
    """Start ``count`` worker loops named after this instance."""
    global _worker_tasks, _shutdown_event

    _shutdown_event = asyncio.Event()
    workers = [
        TaskWorker(worker_id_for(settings.instance_id, index), executors, session_factory)
        for index in range(1, (count or settings.worker_count) + 1)
    ]
    _worker_tasks = [
        asyncio.create_task(worker_loop(worker, _shutdown_event)) for worker in workers
    ]
    return workers


async def stop_workers():
    """Stop the worker loops, letting in-flight tasks finish."""
    global _worker_tasks, _shutdown_event

    if _shutdown_event:
        _shutdown_event.set()

    for task in _worker_tasks:
        try:
            await asyncio.wait_for(task, timeout=30.0)
        except asyncio.TimeoutError:
            logger.warning("Worker did not stop gracefully, cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    _worker_tasks = []
    _shutdown_event = None

"""
Batch-scoped cancel, suspend and unsuspend.
"""

import pytest

from taskgate.engine.errors import BatchTasksNotFound, InvalidArgument
from taskgate.models import TaskStatus


@pytest.mark.asyncio
async def test_cancel_batch_only_touches_batch(task_engine, create_type, queue):
    await create_type("echo", "echo")
    in_batch = [await queue("echo", batch_id="batch-1") for _ in range(3)]
    outside = await queue("echo", batch_id="batch-2")
    unbatched = await queue("echo")

    assert await task_engine.cancel_batch("batch-1") == 3

    for task in in_batch:
        assert await task_engine.get_task_status(task.id) == TaskStatus.CANCELED
    assert await task_engine.get_task_status(outside.id) == TaskStatus.QUEUED
    assert await task_engine.get_task_status(unbatched.id) == TaskStatus.QUEUED


@pytest.mark.asyncio
async def test_cancel_batch_skips_finished_tasks(task_engine, create_type, queue, run_next):
    """Finished tasks in a batch are left alone rather than failing the whole call."""
    await create_type("echo", "echo")
    finished = await queue("echo", batch_id="batch-1")
    await run_next()
    pending = await queue("echo", batch_id="batch-1")

    assert await task_engine.cancel_batch("batch-1") == 1
    assert await task_engine.get_task_status(finished.id) == TaskStatus.COMPLETED
    assert await task_engine.get_task_status(pending.id) == TaskStatus.CANCELED

    # Already canceled
    assert await task_engine.cancel_batch("batch-1") == 0


@pytest.mark.asyncio
async def test_cancel_batch_marks_executing_tasks_pending(task_engine, create_type, queue):
    await create_type("echo", "echo")
    await queue("echo", batch_id="batch-1")
    executing = await task_engine.claim_next_task("worker-1")

    assert await task_engine.cancel_batch("batch-1") == 1

    task = await task_engine.get_task(executing.id)
    assert task.status == TaskStatus.EXECUTING
    assert task.pending_status == TaskStatus.CANCELED


@pytest.mark.asyncio
async def test_suspend_and_unsuspend_batch(task_engine, create_type, queue):
    await create_type("echo", "echo")
    tasks = [await queue("echo", batch_id="batch-1") for _ in range(2)]

    assert await task_engine.suspend_batch("batch-1") == 2
    assert await task_engine.claim_next_task("worker-1") is None
    assert await task_engine.suspend_batch("batch-1") == 0

    assert await task_engine.unsuspend_batch("batch-1") == 2
    for task in tasks:
        assert await task_engine.get_task_status(task.id) == TaskStatus.QUEUED


@pytest.mark.asyncio
async def test_unknown_batch(task_engine, create_type, queue):
    await create_type("echo", "echo")
    await queue("echo", batch_id="batch-1")

    with pytest.raises(BatchTasksNotFound):
        await task_engine.cancel_batch("batch-9")
    with pytest.raises(BatchTasksNotFound):
        await task_engine.suspend_batch("batch-9")
    with pytest.raises(BatchTasksNotFound):
        await task_engine.unsuspend_batch("batch-9")


@pytest.mark.asyncio
@pytest.mark.parametrize("batch_id", ["", "   "])
async def test_blank_batch_id_rejected(task_engine, batch_id):
    with pytest.raises(InvalidArgument):
        await task_engine.cancel_batch(batch_id)

"""
Queueing tasks and claim ordering.
"""

import pytest

from taskgate.engine.errors import InvalidArgument, TaskNotFound, TaskTypeNotFound
from taskgate.models import QueueTaskRequest, TaskPriority, TaskStatus


@pytest.mark.asyncio
async def test_queue_task_starts_queued(task_engine, create_type):
    """A new task is QUEUED with no attempts and the type's priority."""
    await create_type("echo", "echo", priority=TaskPriority.HIGH)

    task_id = await task_engine.queue_task(
        QueueTaskRequest(type="echo", data='{"n": 1}', batch_id="b-1", external_reference="ref-1")
    )
    task = await task_engine.get_task(task_id)

    assert task.status == TaskStatus.QUEUED
    assert task.execution_attempts == 0
    assert task.priority == TaskPriority.HIGH
    assert task.batch_id == "b-1"
    assert task.data == '{"n": 1}'
    assert task.step is None
    assert task.lock_name is None
    assert task.queued.tzinfo is not None
    assert await task_engine.get_task_by_external_reference("ref-1") == task


@pytest.mark.asyncio
async def test_queue_suspended_task_is_not_claimable(task_engine, create_type, queue):
    await create_type("echo", "echo")
    task = await queue("echo", suspended=True)

    assert task.status == TaskStatus.SUSPENDED
    assert await task_engine.claim_next_task("worker-1") is None


@pytest.mark.asyncio
async def test_queue_multistep_task_starts_at_first_step(create_type, queue):
    await create_type("four-step", "four-step")
    task = await queue("four-step")
    assert task.step == "step_1"


@pytest.mark.asyncio
async def test_queue_task_validation(task_engine, create_type):
    """Bad requests are rejected and nothing is stored."""
    await create_type("echo", "echo")

    with pytest.raises(InvalidArgument) as exc:
        await task_engine.queue_task({"type": "echo", "data": ""})
    assert exc.value.parameter == "request"
    assert exc.value.validation_errors

    with pytest.raises(InvalidArgument):
        await task_engine.queue_task({"type": "", "data": "{}"})

    with pytest.raises(InvalidArgument):
        await task_engine.queue_task({"type": "echo", "data": "   "})

    with pytest.raises(TaskTypeNotFound):
        await task_engine.queue_task(QueueTaskRequest(type="missing", data="{}"))

    summaries = await task_engine.get_task_summaries()
    assert summaries.total == 0


@pytest.mark.asyncio
async def test_queue_task_rejects_disabled_type(task_engine, create_type):
    await create_type("echo", "echo", enabled=False)
    with pytest.raises(InvalidArgument) as exc:
        await task_engine.queue_task(QueueTaskRequest(type="echo", data="{}"))
    assert exc.value.parameter == "type"


@pytest.mark.asyncio
async def test_queue_task_rejects_duplicate_external_reference(task_engine, create_type, queue):
    await create_type("echo", "echo")
    await queue("echo", external_reference="order-42")

    with pytest.raises(InvalidArgument) as exc:
        await queue("echo", external_reference="order-42")
    assert exc.value.parameter == "external_reference"


@pytest.mark.asyncio
async def test_queue_task_rejects_empty_external_reference(task_engine, create_type):
    """An empty reference is a bad request, not a reference every task could share."""
    await create_type("echo", "echo")

    for _ in range(2):
        with pytest.raises(InvalidArgument) as exc:
            await task_engine.queue_task({"type": "echo", "data": "{}", "external_reference": ""})
        assert exc.value.parameter == "request"

    summaries = await task_engine.get_task_summaries()
    assert summaries.total == 0


@pytest.mark.asyncio
async def test_unknown_task_lookups(task_engine):
    from uuid import uuid4

    with pytest.raises(TaskNotFound):
        await task_engine.get_task(uuid4())
    with pytest.raises(TaskNotFound):
        await task_engine.get_task_by_external_reference("nope")
    with pytest.raises(TaskNotFound):
        await task_engine.get_task_status(uuid4())


@pytest.mark.asyncio
async def test_claim_orders_by_priority_then_queued(task_engine, create_type, queue):
    """Lower priority values run first; ties run oldest first."""
    await create_type("low", "echo", priority=TaskPriority.LOW)
    await create_type("high", "echo", priority=TaskPriority.HIGH)

    first_low = await queue("low")
    second_low = await queue("low")
    high = await queue("high")

    claimed = [await task_engine.claim_next_task("worker-1") for _ in range(3)]
    assert [task.id for task in claimed] == [high.id, first_low.id, second_low.id]
    assert await task_engine.claim_next_task("worker-1") is None


@pytest.mark.asyncio
async def test_claim_marks_task_executing(task_engine, create_type, queue):
    await create_type("echo", "echo")
    queued = await queue("echo")

    claimed = await task_engine.claim_next_task("worker-7")

    assert claimed.id == queued.id
    assert claimed.status == TaskStatus.EXECUTING
    assert claimed.lock_name == "worker-7"
    assert claimed.execution_attempts == 1
    assert claimed.executed is not None


@pytest.mark.asyncio
async def test_claim_skips_disabled_types(task_engine, create_type, queue):
    """Tasks of a type disabled after queueing stay queued."""
    task_type = await create_type("echo", "echo")
    task = await queue("echo")

    await task_engine.update_task_type(task_type.model_copy(update={"enabled": False}))
    assert await task_engine.claim_next_task("worker-1") is None

    await task_engine.update_task_type(task_type)
    claimed = await task_engine.claim_next_task("worker-1")
    assert claimed.id == task.id


@pytest.mark.asyncio
async def test_is_task_with_task_type_queued_or_executing(task_engine, create_type, queue, run_next):
    await create_type("echo", "echo")
    assert not await task_engine.is_task_with_task_type_queued_or_executing("echo")

    await queue("echo")
    assert await task_engine.is_task_with_task_type_queued_or_executing("echo")

    await run_next()
    assert not await task_engine.is_task_with_task_type_queued_or_executing("echo")


@pytest.mark.asyncio
async def test_delete_task_removes_task_and_events(task_engine, create_type, queue, run_next):
    await create_type("echo", "echo")
    task = await queue("echo")
    await run_next()
    assert await task_engine.get_task_events_for_task(task.id)

    await task_engine.delete_task(task.id)

    with pytest.raises(TaskNotFound):
        await task_engine.get_task(task.id)
    with pytest.raises(TaskNotFound):
        await task_engine.get_task_events_for_task(task.id)
    with pytest.raises(TaskNotFound):
        await task_engine.delete_task(task.id)

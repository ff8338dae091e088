"""
Historical task archival and retention.
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from taskgate.config import settings
from taskgate.db.tables import TaskTable
from taskgate.engine.errors import ArchivedTaskNotFound, InvalidArgument, TaskNotFound
from taskgate.models import TaskEventType, TaskStatus
from taskgate.utils.time import utc_now


@pytest.mark.asyncio
async def test_completed_task_round_trips_through_archive(task_engine, create_type, queue, run_next):
    """With zero retention a completed task moves to the archive, keeping its events."""
    await create_type("echo", "echo", archive_completed=True)
    task = await queue("echo", batch_id="batch-1", external_reference="ref-1")
    completed = await run_next()

    task_engine.set_historical_task_retention_days(0)
    assert await task_engine.archive_and_delete_historical_tasks() == 1

    with pytest.raises(TaskNotFound):
        await task_engine.get_task(task.id)

    archived = await task_engine.get_archived_task(task.id)
    assert archived.status == TaskStatus.COMPLETED
    assert archived.type == "echo"
    assert archived.batch_id == "batch-1"
    assert archived.external_reference == "ref-1"
    assert archived.data == completed.data
    assert archived.execution_time == completed.execution_time
    assert archived.archived >= completed.updated

    events = await task_engine.get_task_events_for_task(task.id)
    assert [event.type for event in events] == [TaskEventType.TASK_COMPLETED]


@pytest.mark.asyncio
async def test_failed_task_archived_with_failure(task_engine, create_type, queue, run_next):
    await create_type("failing", "failing", archive_failed=True)
    task = await queue("failing")
    await run_next()

    task_engine.set_historical_task_retention_days(0)
    await task_engine.archive_and_delete_historical_tasks()

    archived = await task_engine.get_archived_task(task.id)
    assert archived.status == TaskStatus.FAILED
    assert archived.failure == "cannot be done"


@pytest.mark.asyncio
async def test_unarchived_types_are_purged_with_events(task_engine, create_type, queue, run_next):
    await create_type("echo", "echo", archive_completed=False, archive_failed=True)
    task = await queue("echo")
    await run_next()

    task_engine.set_historical_task_retention_days(0)
    assert await task_engine.archive_and_delete_historical_tasks() == 1

    with pytest.raises(ArchivedTaskNotFound):
        await task_engine.get_archived_task(task.id)
    with pytest.raises(TaskNotFound):
        await task_engine.get_task_events_for_task(task.id)


@pytest.mark.asyncio
async def test_canceled_tasks_are_never_archived(task_engine, create_type, queue):
    await create_type("echo", "echo", archive_completed=True, archive_failed=True)
    task = await queue("echo")
    await task_engine.cancel_task(task.id)

    task_engine.set_historical_task_retention_days(0)
    assert await task_engine.archive_and_delete_historical_tasks() == 1

    assert not await task_engine.archiver.is_archived(task.id)


@pytest.mark.asyncio
async def test_active_tasks_are_untouched(task_engine, create_type, queue):
    await create_type("echo", "echo", archive_completed=True)
    queued = await queue("echo")
    suspended = await queue("echo", suspended=True)
    executing = await queue("echo")
    await task_engine.claim_next_task("worker-1")

    task_engine.set_historical_task_retention_days(0)
    assert await task_engine.archive_and_delete_historical_tasks() == 0

    for task in (queued, suspended, executing):
        assert await task_engine.get_task(task.id)


@pytest.mark.asyncio
async def test_retention_window_keeps_recent_tasks(task_engine, session, create_type, queue, run_next):
    await create_type("echo", "echo", archive_completed=True)
    old = await queue("echo")
    await run_next()
    recent = await queue("echo")
    await run_next()

    await session.execute(
        update(TaskTable)
        .where(TaskTable.id == old.id)
        .values(updated=utc_now() - timedelta(days=31))
    )

    task_engine.set_historical_task_retention_days(30)
    assert await task_engine.archive_and_delete_historical_tasks() == 1

    assert await task_engine.get_archived_task(old.id)
    assert (await task_engine.get_task(recent.id)).status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_archive_run_is_idempotent(task_engine, create_type, queue, run_next):
    await create_type("echo", "echo", archive_completed=True)
    await queue("echo")
    await run_next()

    task_engine.set_historical_task_retention_days(0)
    assert await task_engine.archive_and_delete_historical_tasks() == 1
    assert await task_engine.archive_and_delete_historical_tasks() == 0


@pytest.mark.asyncio
async def test_archive_pages_through_many_tasks(task_engine, create_type, queue):
    settings.archive_page_size = 2
    await create_type("echo", "echo", archive_completed=True)
    tasks = [await queue("echo") for _ in range(5)]
    for task in tasks:
        await task_engine.cancel_task(task.id)

    task_engine.set_historical_task_retention_days(0)
    assert await task_engine.archive_and_delete_historical_tasks() == 5


def test_negative_retention_rejected(task_engine):
    with pytest.raises(InvalidArgument):
        task_engine.set_historical_task_retention_days(-1)

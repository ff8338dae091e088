"""
Retry accounting, attempt limits and delays.
"""

from datetime import timedelta

import pytest

from taskgate.config import settings
from taskgate.executors import Delay, Retry
from taskgate.models import TaskEventType, TaskStatus
from taskgate.utils.time import utc_now


@pytest.mark.asyncio
async def test_retry_requeues_until_attempts_exhausted(task_engine, create_type, queue, run_next):
    """A task retried on every attempt fails exactly at the type's limit."""
    await create_type("retrying", "retrying", maximum_execution_attempts=3)
    task = await queue("retrying")

    first = await run_next()
    assert first.status == TaskStatus.QUEUED
    assert first.execution_attempts == 1
    assert first.lock_name is None

    second = await run_next()
    assert second.status == TaskStatus.QUEUED
    assert second.execution_attempts == 2

    third = await run_next()
    assert third.status == TaskStatus.FAILED
    assert third.execution_attempts == 3
    assert "Maximum execution attempts (3) reached" in third.failure
    assert "not yet" in third.failure
    assert third.execution_time == 15

    assert await run_next() is None
    events = await task_engine.get_task_events_for_task(task.id)
    assert [event.type for event in events] == [TaskEventType.TASK_FAILED]


@pytest.mark.asyncio
async def test_single_attempt_type_fails_on_first_retry(create_type, queue, run_next):
    await create_type("retry-returning", "retry-returning", maximum_execution_attempts=1)
    await queue("retry-returning")

    failed = await run_next()

    assert failed.status == TaskStatus.FAILED
    assert failed.execution_attempts == 1
    assert "try later" in failed.failure


@pytest.mark.asyncio
async def test_retry_waits_for_retry_delay(task_engine, create_type, queue, run_next):
    await create_type("retrying", "retrying", retry_delay=60_000)
    await queue("retrying")

    before = utc_now()
    retried = await run_next()

    assert retried.status == TaskStatus.QUEUED
    assert retried.next_execution >= before + timedelta(milliseconds=60_000)
    assert await task_engine.claim_next_task("worker-1") is None


@pytest.mark.asyncio
async def test_retry_delay_defaults_to_settings(task_engine, create_type, queue, run_next):
    settings.default_retry_delay_ms = 0
    await create_type("retrying", "retrying", retry_delay=None)
    await queue("retrying")

    await run_next()

    assert await task_engine.claim_next_task("worker-1") is not None


@pytest.mark.asyncio
async def test_maximum_attempts_defaults_to_settings(create_type, queue, run_next):
    settings.default_maximum_execution_attempts = 2
    await create_type("retrying", "retrying", maximum_execution_attempts=None)
    await queue("retrying")

    assert (await run_next()).status == TaskStatus.QUEUED
    assert (await run_next()).status == TaskStatus.FAILED


@pytest.mark.asyncio
async def test_delay_postpones_without_failing(task_engine, create_type, queue, run_next):
    """A delayed task is not claimable until its delay passes and never fails for it."""
    await create_type("delaying", "delaying", maximum_execution_attempts=1)
    await queue("delaying", data='{"delay": 60000}')

    before = utc_now()
    delayed = await run_next()

    assert delayed.status == TaskStatus.QUEUED
    assert delayed.execution_attempts == 1
    assert delayed.next_execution >= before + timedelta(milliseconds=60_000)
    assert delayed.failure is None
    assert await task_engine.claim_next_task("worker-1") is None


@pytest.mark.asyncio
async def test_zero_delay_is_claimable_again(task_engine, create_type, queue, run_next):
    await create_type("delaying", "delaying", maximum_execution_attempts=1)
    task = await queue("delaying", data='{"delay": 0}')

    await run_next()
    delayed_again = await run_next()

    assert delayed_again.id == task.id
    assert delayed_again.status == TaskStatus.QUEUED
    assert delayed_again.execution_attempts == 2


@pytest.mark.asyncio
async def test_returned_outcomes_match_raised_ones(task_engine, create_type, queue):
    """Returning Retry or Delay from apply_outcome behaves like the raised signals."""
    await create_type("echo", "echo")
    await queue("echo")

    task = await task_engine.claim_next_task("worker-1")
    retried = await task_engine.apply_outcome(task, Retry(), "worker-1")
    assert retried.status == TaskStatus.QUEUED

    task = await task_engine.claim_next_task("worker-1")
    delayed = await task_engine.apply_outcome(task, Delay(0), "worker-1")
    assert delayed.status == TaskStatus.QUEUED
    assert delayed.execution_attempts == 2


def test_negative_delay_rejected():
    with pytest.raises(ValueError):
        Delay(-1)


@pytest.mark.asyncio
async def test_unreadable_data_fails_task(create_type, queue, run_next):
    await create_type("echo", "echo")
    await queue("echo", data="not json")

    failed = await run_next()

    assert failed.status == TaskStatus.FAILED
    assert failed.failure.startswith("Unreadable task data")

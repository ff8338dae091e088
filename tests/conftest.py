"""
Pytest fixtures for TaskGate tests.
"""

import os

import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient

# Ensure test config is set before importing taskgate modules.
os.environ.setdefault("TASKGATE_ENV", "development")
os.environ.setdefault("TASKGATE_WORKERS_ENABLED", "false")
os.environ.setdefault(
    "TASKGATE_DATABASE_URL",
    os.getenv("TASKGATE_TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:"),
)

from taskgate.api.deps import get_db_session, get_engine
from taskgate.config import settings
from taskgate.db import base as db_base
from taskgate.db.base import Base, build_engine, build_session_factory
import taskgate.db.tables  # noqa: F401
from taskgate.engine.core import TaskEngine
from taskgate.executors import (
    ExecutorRegistry,
    MultistepTaskExecutor,
    Retry,
    SimpleTaskExecutor,
    TaskExecutionDelayed,
    TaskExecutionFailed,
    TaskExecutionRetryable,
    TaskStep,
)
from taskgate.main import app
from taskgate.models import QueueTaskRequest, TaskEventType, TaskType
from taskgate.observability.metrics import metrics


# ============================================================================
# Example executors
# ============================================================================


class EchoExecutor(SimpleTaskExecutor):
    """Marks the data as processed."""

    async def execute_task(self, task, data):
        data["processed"] = True
        return True


class UntouchedExecutor(SimpleTaskExecutor):
    async def execute_task(self, task, data):
        return False


class FailingExecutor(SimpleTaskExecutor):
    async def execute_task(self, task, data):
        raise TaskExecutionFailed("cannot be done")


class RetryingExecutor(SimpleTaskExecutor):
    async def execute_task(self, task, data):
        raise TaskExecutionRetryable("not yet")


class RetryReturningExecutor(SimpleTaskExecutor):
    async def execute_task(self, task, data):
        return Retry("try later")


class DelayingExecutor(SimpleTaskExecutor):
    """Delays by ``data["delay"]`` ms."""

    async def execute_task(self, task, data):
        raise TaskExecutionDelayed(data["delay"])


class CrashingExecutor(SimpleTaskExecutor):
    async def execute_task(self, task, data):
        raise RuntimeError("unexpected")


class FourStepExecutor(MultistepTaskExecutor):
    """
    Runs step_1 to step_4, recording each visited step in the data.

    ``data["fail_at"]`` fails the task at that step and
    ``data["complete_at"]`` completes it early.
    """

    def __init__(self):
        super().__init__([TaskStep(f"step_{n}", f"Step {n}") for n in range(1, 5)])

    async def execute_task_step(self, task, step, data):
        data.setdefault("visited", []).append(step.name)
        if data.get("fail_at") == step.name:
            raise TaskExecutionFailed(f"failed at {step.name}")
        if data.get("complete_at") == step.name:
            return True
        return step.name == "step_4"


class DelayedStepExecutor(MultistepTaskExecutor):
    """The second step waits a minute after the first completes."""

    def __init__(self):
        super().__init__([TaskStep("prepare"), TaskStep("send", "Send", delay=60_000)])

    async def execute_task_step(self, task, step, data):
        return False


EXECUTORS = {
    "echo": EchoExecutor,
    "untouched": UntouchedExecutor,
    "failing": FailingExecutor,
    "retrying": RetryingExecutor,
    "retry-returning": RetryReturningExecutor,
    "delaying": DelayingExecutor,
    "crashing": CrashingExecutor,
    "four-step": FourStepExecutor,
    "delayed-step": DelayedStepExecutor,
}


def make_task_type(code: str, executor_class: str, **overrides) -> TaskType:
    """Task type recording every event, retrying immediately, at most 3 attempts."""
    values = {
        "code": code,
        "name": code.replace("-", " ").title(),
        "executor_class": executor_class,
        "maximum_execution_attempts": 3,
        "retry_delay": 0,
        "event_types": list(TaskEventType),
    }
    values.update(overrides)
    return TaskType(**values)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def restore_settings():
    """Undo settings changes and clear metrics after each test."""
    saved = settings.model_dump()
    metrics.reset()
    yield
    for key, value in saved.items():
        setattr(settings, key, value)


@pytest.fixture
async def engine(tmp_path):
    """Create a fresh database and wire it into taskgate.db.base."""
    database_url = os.getenv(
        "TASKGATE_TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'taskgate.db'}"
    )
    test_engine = build_engine(database_url)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    original = (db_base.engine, db_base.async_session_factory)
    db_base.engine = test_engine
    db_base.async_session_factory = build_session_factory(test_engine)

    yield test_engine

    db_base.engine, db_base.async_session_factory = original
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db_base.async_session_factory


@pytest.fixture
async def session(session_factory):
    """Provide a database session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def registry():
    executors = ExecutorRegistry()
    for name, executor_cls in EXECUTORS.items():
        executors.register(name, executor_cls())
    return executors


@pytest.fixture
def task_engine(session, registry):
    return TaskEngine(session, registry)


@pytest.fixture
def create_type(task_engine):
    """Create a task type through the engine."""

    async def _create(code: str, executor_class: str, **overrides) -> TaskType:
        return await task_engine.create_task_type(make_task_type(code, executor_class, **overrides))

    return _create


@pytest.fixture
def queue(task_engine):
    """Queue a task and return it."""

    async def _queue(type: str, data: str = "{}", **fields):
        task_id = await task_engine.queue_task(QueueTaskRequest(type=type, data=data, **fields))
        return await task_engine.get_task(task_id)

    return _queue


@pytest.fixture
def run_next(task_engine, registry):
    """Claim, execute and settle the next task the way a worker does."""

    async def _run_next(worker_id: str = "worker-1"):
        task = await task_engine.claim_next_task(worker_id)
        if task is None:
            return None
        task_type = await task_engine.get_task_type(task.type)
        outcome = await registry.resolve(task_type.executor_class).run(task)
        return await task_engine.apply_outcome(task, outcome, worker_id, execution_time=5)

    return _run_next


@pytest.fixture
async def client(session_factory, registry):
    """HTTP client against the app, with the test executors wired into the engine."""

    async def engine_with_test_executors(session=Depends(get_db_session)):
        return TaskEngine(session, registry)

    app.dependency_overrides[get_engine] = engine_with_test_executors
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()

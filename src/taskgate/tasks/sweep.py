"""Hung-task and archive sweep background tasks."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from taskgate.config import settings
from taskgate.db.base import get_session
from taskgate.engine.core import TaskEngine
from taskgate.observability.metrics import metrics

logger = logging.getLogger("taskgate.sweep")

_sweep_tasks: list[asyncio.Task] = []
_shutdown_event: Optional[asyncio.Event] = None


async def reset_hung_tasks_once() -> int:
    with metrics.timer("sweep.hung_tasks_ms"):
        async with get_session() as session:
            return await TaskEngine(session).reset_hung_tasks()


async def archive_historical_tasks_once() -> int:
    with metrics.timer("sweep.archive_ms"):
        async with get_session() as session:
            return await TaskEngine(session).archive_and_delete_historical_tasks()


async def _sweep_loop(
    name: str,
    sweep: Callable[[], Awaitable[int]],
    base_interval: float,
    shutdown_event: asyncio.Event,
):
    """
    Run ``sweep`` every ``base_interval`` seconds until shutdown.

    The interval is jittered (±20%) so several instances do not sweep in
    lockstep. Errors are logged and the loop carries on.
    """
    logger.info(f"{name} sweep loop started (base interval: {base_interval}s with ±20% jitter)")

    while not shutdown_event.is_set():
        try:
            count = await sweep()
            if count > 0:
                logger.info(f"{name} sweep processed {count} tasks")
        except Exception as e:
            logger.error(f"{name} sweep error: {e}", exc_info=True)

        try:
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=base_interval * random.uniform(0.8, 1.2),
            )
        except asyncio.TimeoutError:
            pass

    logger.info(f"{name} sweep loop stopped")


async def start_sweeps():
    """Start the hung-task and archive sweep background tasks."""
    global _sweep_tasks, _shutdown_event

    _shutdown_event = asyncio.Event()
    _sweep_tasks = [
        asyncio.create_task(
            _sweep_loop(
                "Hung task",
                reset_hung_tasks_once,
                settings.hung_task_sweep_interval_seconds,
                _shutdown_event,
            )
        ),
        asyncio.create_task(
            _sweep_loop(
                "Archive",
                archive_historical_tasks_once,
                settings.archive_sweep_interval_seconds,
                _shutdown_event,
            )
        ),
    ]


async def stop_sweeps():
    """Stop the sweep background tasks."""
    global _sweep_tasks, _shutdown_event

    if _shutdown_event:
        _shutdown_event.set()

    for task in _sweep_tasks:
        try:
            await asyncio.wait_for(task, timeout=10.0)
        except asyncio.TimeoutError:
            logger.warning("Sweep task did not stop gracefully, cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    _sweep_tasks = []
    _shutdown_event = None

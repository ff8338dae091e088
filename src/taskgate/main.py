"""TaskGate main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from taskgate import __version__
from taskgate.api import router
from taskgate.config import settings
from taskgate.db.base import close_db, init_db
from taskgate.executors.registry import executor_registry, load_executor_modules
from taskgate.instance import DEFAULT_INSTANCE_ID, detect_instance_id
from taskgate.tasks.sweep import start_sweeps, stop_sweeps
from taskgate.tasks.worker import start_workers, stop_workers

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("taskgate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting TaskGate server...")

    if settings.instance_id == DEFAULT_INSTANCE_ID:
        settings.instance_id = detect_instance_id()
        logger.info(f"Auto-detected instance ID: {settings.instance_id}")
    else:
        logger.info(f"Using configured instance ID: {settings.instance_id}")
    logger.info(f"Environment: {settings.env.value}")

    load_executor_modules(settings.executor_modules)
    logger.info(f"Registered executors: {', '.join(executor_registry.names()) or 'none'}")

    await init_db()
    logger.info("Database initialized")

    await start_sweeps()
    logger.info("Hung task and archive sweeps started")

    if settings.workers_enabled:
        await start_workers()
        logger.info(f"Started {settings.worker_count} workers")

    yield

    logger.info("Shutting down TaskGate server...")
    await stop_workers()
    await stop_sweeps()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="TaskGate",
    description="Durable multi-step task execution engine",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router)


def main():
    """Entry point for the application."""
    uvicorn.run(
        "taskgate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

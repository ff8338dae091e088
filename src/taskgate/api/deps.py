"""API dependencies."""

import logging
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.db import base as db_base
from taskgate.engine.core import TaskEngine

logger = logging.getLogger("taskgate.api")


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with db_base.async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_engine(session: AsyncSession = Depends(get_db_session)) -> TaskEngine:
    """Task engine bound to the request's session and the process executor registry."""
    return TaskEngine(session)

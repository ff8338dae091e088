"""Archived task model."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from taskgate.models.enums import TaskStatus


class ArchivedTask(BaseModel):
    """Copy of a terminal task moved out of the active store."""

    id: UUID
    batch_id: Optional[str] = None
    type: str
    step: Optional[str] = None
    status: TaskStatus
    queued: datetime
    executed: Optional[datetime] = None
    execution_time: int = 0
    external_reference: Optional[str] = None
    data: str
    failure: Optional[str] = None
    archived: datetime

"""Task event model - append-only audit trail."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from taskgate.models.enums import TaskEventType


class TaskEvent(BaseModel):
    """A lifecycle event recorded against a task."""

    id: UUID
    task_id: UUID
    type: TaskEventType
    step: Optional[str] = None
    timestamp: datetime
    data: Optional[str] = None

"""TaskGate database layer."""

from taskgate.db.base import Base, get_session, init_db
from taskgate.db.tables import (
    ArchivedTaskTable,
    TaskEventTable,
    TaskTable,
    TaskTypeTable,
)

__all__ = [
    "ArchivedTaskTable",
    "Base",
    "TaskEventTable",
    "TaskTable",
    "TaskTypeTable",
    "get_session",
    "init_db",
]

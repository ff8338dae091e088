"""SQLAlchemy table definitions."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from taskgate.db.base import Base
from taskgate.db.types import UTCDateTime
from taskgate.models.enums import TaskEventType, TaskStatus


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


task_status_enum = Enum(TaskStatus, name="taskstatus", values_callable=_enum_values)
task_event_type_enum = Enum(TaskEventType, name="taskeventtype", values_callable=_enum_values)


class TaskTypeTable(Base):
    """Task types - configuration per kind of task."""

    __tablename__ = "task_types"

    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    executor_class: Mapped[str] = mapped_column(String(1000), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)

    # Limits (null = configured default)
    maximum_execution_attempts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    retry_delay: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    execution_timeout: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Archival
    archive_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    archive_failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Recorded events
    event_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    event_types_with_task_data: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )

    created: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class TaskTable(Base):
    """Tasks table - queued, running and recently finished work."""

    __tablename__ = "tasks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_reference: Mapped[str | None] = mapped_column(
        String(50), nullable=True, unique=True
    )

    # State
    status: Mapped[TaskStatus] = mapped_column(task_status_enum, nullable=False)
    pending_status: Mapped[TaskStatus | None] = mapped_column(task_status_enum, nullable=True)
    step: Mapped[str | None] = mapped_column(String(100), nullable=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)

    # Execution bookkeeping
    execution_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    execution_time: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    failure: Mapped[str | None] = mapped_column(Text, nullable=True)
    lock_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Timestamps
    queued: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    executed: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    next_execution: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        # Index for claim queries
        Index("idx_tasks_claimable", "status", "priority", "queued"),
        # Index for batch operations
        Index("idx_tasks_batch", "batch_id"),
        # Index for lock release and hung-task reset
        Index("idx_tasks_lock", "status", "lock_name"),
        # Index for archival
        Index("idx_tasks_status_updated", "status", "updated"),
        Index("idx_tasks_type_status", "type", "status"),
    )


class TaskEventTable(Base):
    """Task events - append-only audit trail, kept for archived tasks."""

    __tablename__ = "task_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    task_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[TaskEventType] = mapped_column(task_event_type_enum, nullable=False)
    step: Mapped[str | None] = mapped_column(String(100), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    data: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_task_events_task", "task_id", "timestamp"),)


class ArchivedTaskTable(Base):
    """Archived tasks - terminal tasks moved out of the active table."""

    __tablename__ = "archived_tasks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    batch_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    step: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[TaskStatus] = mapped_column(task_status_enum, nullable=False)
    queued: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    executed: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    execution_time: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    external_reference: Mapped[str | None] = mapped_column(String(50), nullable=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    failure: Mapped[str | None] = mapped_column(Text, nullable=True)
    archived: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("idx_archived_tasks_batch", "batch_id"),
        Index("idx_archived_tasks_external_reference", "external_reference"),
    )

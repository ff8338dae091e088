"""Initial TaskGate schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

TASK_STATUSES = ("queued", "executing", "suspended", "completed", "failed", "canceled")
TASK_EVENT_TYPES = ("step_completed", "task_completed", "task_failed", "task_canceled")


def upgrade() -> None:
    """Create task tables and enums."""
    bind = op.get_bind()

    sa.Enum(*TASK_STATUSES, name="taskstatus").create(bind, checkfirst=True)
    sa.Enum(*TASK_EVENT_TYPES, name="taskeventtype").create(bind, checkfirst=True)

    taskstatus = postgresql.ENUM(*TASK_STATUSES, name="taskstatus", create_type=False)
    taskeventtype = postgresql.ENUM(*TASK_EVENT_TYPES, name="taskeventtype", create_type=False)

    op.create_table(
        "task_types",
        sa.Column("code", sa.String(length=50), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("executor_class", sa.String(length=1000), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("maximum_execution_attempts", sa.Integer(), nullable=True),
        sa.Column("retry_delay", sa.BigInteger(), nullable=True),
        sa.Column("execution_timeout", sa.BigInteger(), nullable=True),
        sa.Column("archive_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archive_failed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("event_types", sa.JSON(), nullable=False),
        sa.Column("event_types_with_task_data", sa.JSON(), nullable=False),
        sa.Column("created", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "tasks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.String(length=50), nullable=True),
        sa.Column("external_reference", sa.String(length=50), nullable=True, unique=True),
        sa.Column("status", taskstatus, nullable=False),
        sa.Column("pending_status", taskstatus, nullable=True),
        sa.Column("step", sa.String(length=100), nullable=True),
        sa.Column("data", sa.Text(), nullable=False),
        sa.Column("execution_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("execution_time", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("failure", sa.Text(), nullable=True),
        sa.Column("lock_name", sa.String(length=255), nullable=True),
        sa.Column("queued", sa.DateTime(timezone=True), nullable=False),
        sa.Column("executed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_execution", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_tasks_claimable", "tasks", ["status", "priority", "queued"])
    op.create_index("idx_tasks_batch", "tasks", ["batch_id"])
    op.create_index("idx_tasks_lock", "tasks", ["status", "lock_name"])
    op.create_index("idx_tasks_status_updated", "tasks", ["status", "updated"])
    op.create_index("idx_tasks_type_status", "tasks", ["type", "status"])

    op.create_table(
        "task_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("type", taskeventtype, nullable=False),
        sa.Column("step", sa.String(length=100), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("data", sa.Text(), nullable=True),
    )
    op.create_index("idx_task_events_task", "task_events", ["task_id", "timestamp"])

    op.create_table(
        "archived_tasks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("batch_id", sa.String(length=50), nullable=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("step", sa.String(length=100), nullable=True),
        sa.Column("status", taskstatus, nullable=False),
        sa.Column("queued", sa.DateTime(timezone=True), nullable=False),
        sa.Column("executed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_time", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("external_reference", sa.String(length=50), nullable=True),
        sa.Column("data", sa.Text(), nullable=False),
        sa.Column("failure", sa.Text(), nullable=True),
        sa.Column("archived", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_archived_tasks_batch", "archived_tasks", ["batch_id"])
    op.create_index(
        "idx_archived_tasks_external_reference",
        "archived_tasks",
        ["external_reference"],
    )


def downgrade() -> None:
    """Drop task tables and enums."""
    op.drop_index("idx_archived_tasks_external_reference", table_name="archived_tasks")
    op.drop_index("idx_archived_tasks_batch", table_name="archived_tasks")
    op.drop_table("archived_tasks")

    op.drop_index("idx_task_events_task", table_name="task_events")
    op.drop_table("task_events")

    op.drop_index("idx_tasks_type_status", table_name="tasks")
    op.drop_index("idx_tasks_status_updated", table_name="tasks")
    op.drop_index("idx_tasks_lock", table_name="tasks")
    op.drop_index("idx_tasks_batch", table_name="tasks")
    op.drop_index("idx_tasks_claimable", table_name="tasks")
    op.drop_table("tasks")

    op.drop_table("task_types")

    bind = op.get_bind()
    sa.Enum(name="taskeventtype").drop(bind, checkfirst=True)
    sa.Enum(name="taskstatus").drop(bind, checkfirst=True)

"""Workload capacity, productivity analytics and bulk task operations

Revision ID: 0003_workload_analytics_bulk
Revises: 0002_timesheet_approvals
Create Date: 2026-09-21 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0003_workload_analytics_bulk"
down_revision: Union[str, None] = "0002_timesheet_approvals"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

workload_status = postgresql.ENUM(
    "under_utilized",
    "optimal",
    "over_loaded",
    "critical",
    name="workload_status",
    create_type=False,
)
bulk_operation_type = postgresql.ENUM(
    "reassign",
    "update_status",
    "update_due_date",
    "update_priority",
    "bulk_delete",
    name="bulk_operation_type",
    create_type=False,
)
bulk_operation_status = postgresql.ENUM(
    "pending",
    "in_progress",
    "completed",
    "failed",
    name="bulk_operation_status",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    workload_status.create(bind, checkfirst=True)
    bulk_operation_type.create(bind, checkfirst=True)
    bulk_operation_status.create(bind, checkfirst=True)

    op.create_table(
        "employee_workload_capacity",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("week_start_date", sa.Date(), nullable=False),
        sa.Column("weekly_capacity_hours", sa.Integer(), nullable=False, server_default=sa.text("40")),
        sa.Column("current_planned_hours", sa.Numeric(7, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("workload_percentage", sa.Numeric(7, 2), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "workload_status",
            workload_status,
            nullable=False,
            server_default=sa.text("'under_utilized'"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "week_start_date", name="uq_employee_workload_capacity_week"),
    )
    op.create_index(
        "ix_employee_workload_capacity_week_start_date",
        "employee_workload_capacity",
        ["week_start_date"],
    )
    op.create_index(
        "ix_employee_workload_capacity_workload_status",
        "employee_workload_capacity",
        ["workload_status"],
    )

    op.create_table(
        "employee_productivity_analytics",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("tasks_completed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tasks_created", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_progress_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("hours_logged", sa.Numeric(7, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("streak_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_streak", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "date", name="uq_employee_productivity_analytics_date"),
    )
    op.create_index(
        "ix_employee_productivity_analytics_date",
        "employee_productivity_analytics",
        ["date"],
    )

    op.create_table(
        "bulk_task_operations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("initiated_by_id", sa.Integer(), nullable=False),
        sa.Column("operation_type", bulk_operation_type, nullable=True),
        sa.Column(
            "task_ids",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "operation_data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("status", bulk_operation_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("total_tasks", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("processed_tasks", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failed_tasks", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "error_log",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["initiated_by_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_bulk_task_operations_initiated_by_status",
        "bulk_task_operations",
        ["initiated_by_id", "status"],
    )
    op.create_index("ix_bulk_task_operations_operation_type", "bulk_task_operations", ["operation_type"])
    op.create_index("ix_bulk_task_operations_status", "bulk_task_operations", ["status"])
    op.create_index("ix_bulk_task_operations_created_at", "bulk_task_operations", ["created_at"])


def downgrade() -> None:
    op.drop_table("bulk_task_operations")
    op.drop_table("employee_productivity_analytics")
    op.drop_table("employee_workload_capacity")

    bind = op.get_bind()
    bulk_operation_status.drop(bind, checkfirst=True)
    bulk_operation_type.drop(bind, checkfirst=True)
    workload_status.drop(bind, checkfirst=True)

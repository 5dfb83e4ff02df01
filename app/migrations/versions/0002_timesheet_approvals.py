"""Timesheets with staged approvals, workflow history and chat

Revision ID: 0002_timesheet_approvals
Revises: 0001_initial
Create Date: 2026-09-14 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_timesheet_approvals"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

timesheet_status = postgresql.ENUM(
    "draft",
    "in_review",
    "approved",
    "rejected",
    "reopened",
    name="timesheet_status",
    create_type=False,
)
timesheet_approver_role = postgresql.ENUM(
    "pm",
    "dm",
    "gm",
    name="timesheet_approver_role",
    create_type=False,
)
timesheet_approval_status = postgresql.ENUM(
    "pending",
    "approved",
    "rejected",
    "reopened",
    "auto_closed",
    name="timesheet_approval_status",
    create_type=False,
)
timesheet_workflow_stage = postgresql.ENUM(
    "employee",
    "pm",
    "dm",
    "gm",
    "admin",
    name="timesheet_workflow_stage",
    create_type=False,
)
timesheet_workflow_action = postgresql.ENUM(
    "submitted",
    "approved",
    "rejected",
    "reopened",
    name="timesheet_workflow_action",
    create_type=False,
)
timesheet_chat_sender_role = postgresql.ENUM(
    "employee",
    "pm",
    "dm",
    "gm",
    "admin",
    name="timesheet_chat_sender_role",
    create_type=False,
)

DAY_COLUMNS = (
    "hours_monday",
    "hours_tuesday",
    "hours_wednesday",
    "hours_thursday",
    "hours_friday",
    "hours_saturday",
    "hours_sunday",
)


def upgrade() -> None:
    bind = op.get_bind()
    timesheet_status.create(bind, checkfirst=True)
    timesheet_approver_role.create(bind, checkfirst=True)
    timesheet_approval_status.create(bind, checkfirst=True)
    timesheet_workflow_stage.create(bind, checkfirst=True)
    timesheet_workflow_action.create(bind, checkfirst=True)
    timesheet_chat_sender_role.create(bind, checkfirst=True)

    op.create_table(
        "timesheets",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("overall_status", timesheet_status, nullable=False, server_default=sa.text("'draft'")),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submission_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
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
        sa.UniqueConstraint("employee_id", "period_start", name="uq_timesheets_employee_period_start"),
    )
    op.create_index("ix_timesheets_employee_id", "timesheets", ["employee_id"])
    op.create_index("ix_timesheets_overall_status", "timesheets", ["overall_status"])

    day_columns = [
        sa.Column(name, sa.Numeric(4, 2), nullable=False, server_default=sa.text("0"))
        for name in DAY_COLUMNS
    ]
    op.create_table(
        "timesheet_rows",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("timesheet_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("task_id", sa.Integer(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *day_columns,
        sa.Column("total_hours", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("achievement_note", sa.String(length=500), nullable=True),
        sa.ForeignKeyConstraint(["timesheet_id"], ["timesheets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "total_hours = " + " + ".join(DAY_COLUMNS),
            name="ck_timesheet_rows_total_hours",
        ),
    )
    op.create_index("ix_timesheet_rows_timesheet_id", "timesheet_rows", ["timesheet_id"])
    op.create_index("ix_timesheet_rows_project_id", "timesheet_rows", ["project_id"])

    op.create_table(
        "timesheet_approvals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("timesheet_id", sa.Integer(), nullable=False),
        sa.Column("cycle", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("approver_role", timesheet_approver_role, nullable=False),
        sa.Column("approver_id", sa.Integer(), nullable=True),
        sa.Column("status", timesheet_approval_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("acted_by_id", sa.Integer(), nullable=True),
        sa.Column("acted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comment", sa.String(length=500), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["timesheet_id"], ["timesheets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approver_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["acted_by_id"], ["employees.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_timesheet_approvals_timesheet_cycle",
        "timesheet_approvals",
        ["timesheet_id", "cycle"],
    )
    op.create_index("ix_timesheet_approvals_approver_id", "timesheet_approvals", ["approver_id"])
    op.create_index("ix_timesheet_approvals_status", "timesheet_approvals", ["status"])

    op.create_table(
        "timesheet_workflow_history",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("timesheet_id", sa.Integer(), nullable=False),
        sa.Column("cycle", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("stage", timesheet_workflow_stage, nullable=False),
        sa.Column("action", timesheet_workflow_action, nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("comment", sa.String(length=500), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["timesheet_id"], ["timesheets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actor_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_timesheet_workflow_history_timesheet_id",
        "timesheet_workflow_history",
        ["timesheet_id"],
    )

    op.create_table(
        "timesheet_chats",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("timesheet_id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column("sender_role", timesheet_chat_sender_role, nullable=False),
        sa.Column("message", sa.String(length=500), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["timesheet_id"], ["timesheets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["timesheet_chats.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_timesheet_chats_timesheet_id", "timesheet_chats", ["timesheet_id"])
    op.create_index("ix_timesheet_chats_parent_id", "timesheet_chats", ["parent_id"])


def downgrade() -> None:
    op.drop_table("timesheet_chats")
    op.drop_table("timesheet_workflow_history")
    op.drop_table("timesheet_approvals")
    op.drop_table("timesheet_rows")
    op.drop_table("timesheets")

    bind = op.get_bind()
    timesheet_chat_sender_role.drop(bind, checkfirst=True)
    timesheet_workflow_action.drop(bind, checkfirst=True)
    timesheet_workflow_stage.drop(bind, checkfirst=True)
    timesheet_approval_status.drop(bind, checkfirst=True)
    timesheet_approver_role.drop(bind, checkfirst=True)
    timesheet_status.drop(bind, checkfirst=True)

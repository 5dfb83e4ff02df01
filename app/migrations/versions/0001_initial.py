"""Initial back office schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-09-07 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

task_kind = postgresql.ENUM(
    "personal",
    "project",
    "assigned",
    name="task_kind",
    create_type=False,
)
task_status = postgresql.ENUM(
    "to-do",
    "doing",
    "done",
    "blocked",
    name="task_status",
    create_type=False,
)
task_permission_level = postgresql.ENUM(
    "view_only",
    "edit_progress",
    "full_edit",
    name="task_permission_level",
    create_type=False,
)
task_activity_action = postgresql.ENUM(
    "created",
    "updated",
    "status_changed",
    "pinned",
    "unpinned",
    "marked_important",
    "unmarked_important",
    "completed",
    "blocked",
    "deleted",
    "time_logged",
    "feedback_submitted",
    name="task_activity_action",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "employee",
    "system",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    task_kind.create(bind, checkfirst=True)
    task_status.create(bind, checkfirst=True)
    task_permission_level.create(bind, checkfirst=True)
    task_activity_action.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.UniqueConstraint("name", name="uq_departments_name"),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email", name="uq_employees_email"),
    )
    op.create_index("ix_employees_department_id", "employees", ["department_id"])
    op.create_foreign_key(
        "fk_departments_manager_id",
        "departments",
        "employees",
        ["manager_id"],
        ["id"],
        ondelete="SET NULL",
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["manager_id"], ["employees.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_projects_department_id", "projects", ["department_id"])
    op.create_index("ix_projects_manager_id", "projects", ["manager_id"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("kind", task_kind, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", task_status, nullable=False, server_default=sa.text("'to-do'")),
        sa.Column("progress_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("estimated_hours", sa.Numeric(7, 2), nullable=True),
        sa.Column("actual_hours", sa.Numeric(7, 2), nullable=True),
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_important", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_task_id", sa.Integer(), nullable=True),
        sa.Column("assigned_by_id", sa.Integer(), nullable=True),
        sa.Column("permission_level", task_permission_level, nullable=True),
        sa.Column("assignment_notes", sa.Text(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_feedback", sa.String(length=1000), nullable=True),
        sa.Column("completion_rating", sa.Integer(), nullable=True),
        sa.Column("feedback_submitted_at", sa.DateTime(timezone=True), nullable=True),
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
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["source_task_id"], ["tasks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_by_id"], ["employees.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("source_task_id", "employee_id", name="uq_tasks_source_task_employee"),
        sa.CheckConstraint("progress_points >= 0 AND progress_points <= 100", name="ck_tasks_progress_points"),
        sa.CheckConstraint(
            "completion_rating IS NULL OR (completion_rating >= 1 AND completion_rating <= 5)",
            name="ck_tasks_completion_rating",
        ),
    )
    op.create_index("ix_tasks_employee_status", "tasks", ["employee_id", "status"])
    op.create_index("ix_tasks_employee_kind", "tasks", ["employee_id", "kind"])
    op.create_index("ix_tasks_project_id", "tasks", ["project_id"])
    op.create_index("ix_tasks_due_date", "tasks", ["due_date"])
    op.create_index("ix_tasks_source_task_id", "tasks", ["source_task_id"])
    op.create_index("ix_tasks_assigned_by_id", "tasks", ["assigned_by_id"])

    op.create_table(
        "task_time_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("hours", sa.Numeric(5, 2), nullable=False),
        sa.Column("logged_on", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.CheckConstraint("hours >= 0.1 AND hours <= 24", name="ck_task_time_logs_hours"),
    )
    op.create_index("ix_task_time_logs_task_id", "task_time_logs", ["task_id"])
    op.create_index(
        "ix_task_time_logs_employee_logged_on",
        "task_time_logs",
        ["employee_id", "logged_on"],
    )

    op.create_table(
        "task_activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("task_kind", task_kind, nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("action", task_activity_action, nullable=False),
        sa.Column("field_changed", sa.String(length=100), nullable=True),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "performed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_task_activity_logs_task", "task_activity_logs", ["task_kind", "task_id"])
    op.create_index(
        "ix_task_activity_logs_employee_performed_at",
        "task_activity_logs",
        ["employee_id", "performed_at"],
    )
    op.create_index("ix_task_activity_logs_action", "task_activity_logs", ["action"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("task_activity_logs")
    op.drop_table("task_time_logs")
    op.drop_table("tasks")
    op.drop_table("projects")
    op.drop_constraint("fk_departments_manager_id", "departments", type_="foreignkey")
    op.drop_table("employees")
    op.drop_table("departments")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    task_activity_action.drop(bind, checkfirst=True)
    task_permission_level.drop(bind, checkfirst=True)
    task_status.drop(bind, checkfirst=True)
    task_kind.drop(bind, checkfirst=True)

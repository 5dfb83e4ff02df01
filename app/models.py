from __future__ import annotations

import datetime as dt
import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [str(member.value) for member in enum_cls]


class TimesheetStatus(str, enum.Enum):
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    REOPENED = "reopened"


class ApproverRole(str, enum.Enum):
    PM = "pm"
    DM = "dm"
    GM = "gm"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REOPENED = "reopened"
    AUTO_CLOSED = "auto_closed"


class WorkflowStage(str, enum.Enum):
    EMPLOYEE = "employee"
    PM = "pm"
    DM = "dm"
    GM = "gm"
    ADMIN = "admin"


class WorkflowAction(str, enum.Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    REOPENED = "reopened"


class ChatSenderRole(str, enum.Enum):
    EMPLOYEE = "employee"
    PM = "pm"
    DM = "dm"
    GM = "gm"
    ADMIN = "admin"


class TaskKind(str, enum.Enum):
    PERSONAL = "personal"
    PROJECT = "project"
    ASSIGNED = "assigned"


class TaskStatus(str, enum.Enum):
    TODO = "to-do"
    DOING = "doing"
    DONE = "done"
    BLOCKED = "blocked"


class TaskPermissionLevel(str, enum.Enum):
    VIEW_ONLY = "view_only"
    EDIT_PROGRESS = "edit_progress"
    FULL_EDIT = "full_edit"


class TaskActivityAction(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    PINNED = "pinned"
    UNPINNED = "unpinned"
    MARKED_IMPORTANT = "marked_important"
    UNMARKED_IMPORTANT = "unmarked_important"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    DELETED = "deleted"
    TIME_LOGGED = "time_logged"
    FEEDBACK_SUBMITTED = "feedback_submitted"


class WorkloadStatus(str, enum.Enum):
    UNDER_UTILIZED = "under_utilized"
    OPTIMAL = "optimal"
    OVER_LOADED = "over_loaded"
    CRITICAL = "critical"


class BulkOperationType(str, enum.Enum):
    REASSIGN = "reassign"
    UPDATE_STATUS = "update_status"
    UPDATE_DUE_DATE = "update_due_date"
    UPDATE_PRIORITY = "update_priority"
    BULK_DELETE = "bulk_delete"


class BulkOperationStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class AuditActorType(str, enum.Enum):
    EMPLOYEE = "employee"
    SYSTEM = "system"


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    manager_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL", use_alter=True, name="fk_departments_manager_id"),
        nullable=True,
    )

    employees: Mapped[list[Employee]] = relationship(
        back_populates="department",
        foreign_keys="Employee.department_id",
    )
    manager: Mapped[Employee | None] = relationship(foreign_keys=[manager_id], post_update=True)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    department: Mapped[Department | None] = relationship(
        back_populates="employees",
        foreign_keys=[department_id],
    )
    timesheets: Mapped[list[Timesheet]] = relationship(back_populates="employee")


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    manager_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    manager: Mapped[Employee | None] = relationship()


class Timesheet(Base):
    __tablename__ = "timesheets"
    __table_args__ = (
        UniqueConstraint("employee_id", "period_start", name="uq_timesheets_employee_period_start"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    overall_status: Mapped[TimesheetStatus] = mapped_column(
        Enum(TimesheetStatus, name="timesheet_status", values_callable=_enum_values),
        nullable=False,
        default=TimesheetStatus.DRAFT,
        server_default=text("'draft'"),
        index=True,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submission_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="timesheets")
    rows: Mapped[list[TimesheetRow]] = relationship(
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimesheetRow.position",
    )
    approvals: Mapped[list[TimesheetApproval]] = relationship(
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimesheetApproval.id",
    )
    history: Mapped[list[TimesheetWorkflowHistory]] = relationship(
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimesheetWorkflowHistory.id",
    )
    chats: Mapped[list[TimesheetChat]] = relationship(
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimesheetChat.id",
    )


TIMESHEET_DAY_FIELDS: tuple[str, ...] = (
    "hours_monday",
    "hours_tuesday",
    "hours_wednesday",
    "hours_thursday",
    "hours_friday",
    "hours_saturday",
    "hours_sunday",
)


class TimesheetRow(Base):
    __tablename__ = "timesheet_rows"
    __table_args__ = (
        CheckConstraint(
            "total_hours = hours_monday + hours_tuesday + hours_wednesday + hours_thursday"
            " + hours_friday + hours_saturday + hours_sunday",
            name="ck_timesheet_rows_total_hours",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timesheet_id: Mapped[int] = mapped_column(
        ForeignKey("timesheets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[int | None] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    task_id: Mapped[int | None] = mapped_column(ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    hours_monday: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False, default=Decimal("0"), server_default=text("0"))
    hours_tuesday: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False, default=Decimal("0"), server_default=text("0"))
    hours_wednesday: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False, default=Decimal("0"), server_default=text("0"))
    hours_thursday: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False, default=Decimal("0"), server_default=text("0"))
    hours_friday: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False, default=Decimal("0"), server_default=text("0"))
    hours_saturday: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False, default=Decimal("0"), server_default=text("0"))
    hours_sunday: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False, default=Decimal("0"), server_default=text("0"))
    total_hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"), server_default=text("0"))
    achievement_note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    timesheet: Mapped[Timesheet] = relationship(back_populates="rows")
    project: Mapped[Project | None] = relationship()

    def day_hours(self) -> list[Decimal]:
        return [Decimal(getattr(self, field) or 0) for field in TIMESHEET_DAY_FIELDS]

    def recompute_total(self) -> Decimal:
        self.total_hours = sum(self.day_hours(), Decimal("0"))
        return self.total_hours


@event.listens_for(TimesheetRow, "before_insert")
@event.listens_for(TimesheetRow, "before_update")
def _sync_timesheet_row_total(_mapper, _connection, target: TimesheetRow) -> None:  # type: ignore[no-untyped-def]
    target.recompute_total()


class TimesheetApproval(Base):
    __tablename__ = "timesheet_approvals"
    __table_args__ = (
        Index("ix_timesheet_approvals_timesheet_cycle", "timesheet_id", "cycle"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timesheet_id: Mapped[int] = mapped_column(ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False)
    cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    approver_role: Mapped[ApproverRole] = mapped_column(
        Enum(ApproverRole, name="timesheet_approver_role", values_callable=_enum_values),
        nullable=False,
    )
    approver_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, name="timesheet_approval_status", values_callable=_enum_values),
        nullable=False,
        default=ApprovalStatus.PENDING,
        server_default=text("'pending'"),
        index=True,
    )
    acted_by_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    acted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    comment: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    timesheet: Mapped[Timesheet] = relationship(back_populates="approvals")


class TimesheetWorkflowHistory(Base):
    __tablename__ = "timesheet_workflow_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timesheet_id: Mapped[int] = mapped_column(
        ForeignKey("timesheets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    stage: Mapped[WorkflowStage] = mapped_column(
        Enum(WorkflowStage, name="timesheet_workflow_stage", values_callable=_enum_values),
        nullable=False,
    )
    action: Mapped[WorkflowAction] = mapped_column(
        Enum(WorkflowAction, name="timesheet_workflow_action", values_callable=_enum_values),
        nullable=False,
    )
    actor_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    comment: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    timesheet: Mapped[Timesheet] = relationship(back_populates="history")


class TimesheetChat(Base):
    __tablename__ = "timesheet_chats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timesheet_id: Mapped[int] = mapped_column(
        ForeignKey("timesheets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("timesheet_chats.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    sender_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    sender_role: Mapped[ChatSenderRole] = mapped_column(
        Enum(ChatSenderRole, name="timesheet_chat_sender_role", values_callable=_enum_values),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    timesheet: Mapped[Timesheet] = relationship(back_populates="chats")
    parent: Mapped[TimesheetChat | None] = relationship(back_populates="replies", remote_side=[id])
    replies: Mapped[list[TimesheetChat]] = relationship(
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="TimesheetChat.id",
    )


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("source_task_id", "employee_id", name="uq_tasks_source_task_employee"),
        CheckConstraint("progress_points >= 0 AND progress_points <= 100", name="ck_tasks_progress_points"),
        CheckConstraint(
            "completion_rating IS NULL OR (completion_rating >= 1 AND completion_rating <= 5)",
            name="ck_tasks_completion_rating",
        ),
        Index("ix_tasks_employee_status", "employee_id", "status"),
        Index("ix_tasks_employee_kind", "employee_id", "kind"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[TaskKind] = mapped_column(
        Enum(TaskKind, name="task_kind", values_callable=_enum_values),
        nullable=False,
    )
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    project_id: Mapped[int | None] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, name="task_status", values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.TODO,
        server_default=text("'to-do'"),
    )
    progress_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    estimated_hours: Mapped[Decimal | None] = mapped_column(Numeric(7, 2), nullable=True)
    actual_hours: Mapped[Decimal | None] = mapped_column(Numeric(7, 2), nullable=True)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_important: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source_task_id: Mapped[int | None] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    assigned_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    permission_level: Mapped[TaskPermissionLevel | None] = mapped_column(
        Enum(TaskPermissionLevel, name="task_permission_level", values_callable=_enum_values),
        nullable=True,
    )
    assignment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_feedback: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    completion_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(foreign_keys=[employee_id])
    assigned_by: Mapped[Employee | None] = relationship(foreign_keys=[assigned_by_id])
    project: Mapped[Project | None] = relationship()
    source_task: Mapped[Task | None] = relationship(remote_side=[id])
    time_logs: Mapped[list[TaskTimeLog]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskTimeLog.id",
    )


class TaskTimeLog(Base):
    __tablename__ = "task_time_logs"
    __table_args__ = (
        CheckConstraint("hours >= 0.1 AND hours <= 24", name="ck_task_time_logs_hours"),
        Index("ix_task_time_logs_employee_logged_on", "employee_id", "logged_on"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    logged_on: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    task: Mapped[Task] = relationship(back_populates="time_logs")


class TaskActivityLog(Base):
    __tablename__ = "task_activity_logs"
    __table_args__ = (
        Index("ix_task_activity_logs_task", "task_kind", "task_id"),
        Index("ix_task_activity_logs_employee_performed_at", "employee_id", "performed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_kind: Mapped[TaskKind] = mapped_column(
        Enum(TaskKind, name="task_kind", values_callable=_enum_values),
        nullable=False,
    )
    task_id: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    action: Mapped[TaskActivityAction] = mapped_column(
        Enum(TaskActivityAction, name="task_activity_action", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    field_changed: Mapped[str | None] = mapped_column(String(100), nullable=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class EmployeeWorkloadCapacity(Base):
    __tablename__ = "employee_workload_capacity"
    __table_args__ = (
        UniqueConstraint("employee_id", "week_start_date", name="uq_employee_workload_capacity_week"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    weekly_capacity_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=40, server_default=text("40"))
    current_planned_hours: Mapped[Decimal] = mapped_column(
        Numeric(7, 2),
        nullable=False,
        default=Decimal("0"),
        server_default=text("0"),
    )
    workload_percentage: Mapped[Decimal] = mapped_column(
        Numeric(7, 2),
        nullable=False,
        default=Decimal("0"),
        server_default=text("0"),
    )
    workload_status: Mapped[WorkloadStatus] = mapped_column(
        Enum(WorkloadStatus, name="workload_status", values_callable=_enum_values),
        nullable=False,
        default=WorkloadStatus.UNDER_UTILIZED,
        server_default=text("'under_utilized'"),
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship()


class EmployeeProductivityAnalytics(Base):
    __tablename__ = "employee_productivity_analytics"
    __table_args__ = (
        UniqueConstraint("employee_id", "date", name="uq_employee_productivity_analytics_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    tasks_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    total_progress_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    hours_logged: Mapped[Decimal] = mapped_column(
        Numeric(7, 2),
        nullable=False,
        default=Decimal("0"),
        server_default=text("0"),
    )
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    max_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class BulkTaskOperation(Base):
    __tablename__ = "bulk_task_operations"
    __table_args__ = (
        Index("ix_bulk_task_operations_initiated_by_status", "initiated_by_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    initiated_by_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    operation_type: Mapped[BulkOperationType | None] = mapped_column(
        Enum(BulkOperationType, name="bulk_operation_type", values_callable=_enum_values),
        nullable=True,
        index=True,
    )
    task_ids: Mapped[list[int]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )
    operation_data: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
    status: Mapped[BulkOperationStatus] = mapped_column(
        Enum(BulkOperationStatus, name="bulk_operation_status", values_callable=_enum_values),
        nullable=False,
        default=BulkOperationStatus.PENDING,
        server_default=text("'pending'"),
        index=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    processed_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    failed_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    error_log: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )

    @property
    def progress_percentage(self) -> float:
        if not self.total_tasks:
            return 0.0
        return round((self.processed_tasks or 0) / self.total_tasks * 100, 2)

    @property
    def duration_seconds(self) -> int | None:
        if self.started_at is None:
            return None
        end = self.completed_at or datetime.now(timezone.utc)
        return int((end - self.started_at).total_seconds())


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type", values_callable=_enum_values),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

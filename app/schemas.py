from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models import (
    ApprovalStatus,
    ApproverRole,
    BulkOperationStatus,
    BulkOperationType,
    ChatSenderRole,
    TaskActivityAction,
    TaskKind,
    TaskPermissionLevel,
    TaskStatus,
    TimesheetStatus,
    WorkflowAction,
    WorkflowStage,
    WorkloadStatus,
)

DayHours = Field(default=Decimal("0"), ge=0, le=24, max_digits=4, decimal_places=2)


class TimesheetRowWrite(BaseModel):
    project_id: int | None = Field(default=None, ge=1)
    task_id: int | None = Field(default=None, ge=1)
    hours_monday: Decimal = DayHours
    hours_tuesday: Decimal = DayHours
    hours_wednesday: Decimal = DayHours
    hours_thursday: Decimal = DayHours
    hours_friday: Decimal = DayHours
    hours_saturday: Decimal = DayHours
    hours_sunday: Decimal = DayHours
    achievement_note: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(extra="forbid")


class TimesheetDraftRequest(BaseModel):
    period_start: date
    rows: list[TimesheetRowWrite] = Field(default_factory=list, max_length=100)


class TimesheetRowRead(BaseModel):
    id: int
    project_id: int | None
    task_id: int | None
    position: int
    hours_monday: Decimal
    hours_tuesday: Decimal
    hours_wednesday: Decimal
    hours_thursday: Decimal
    hours_friday: Decimal
    hours_saturday: Decimal
    hours_sunday: Decimal
    total_hours: Decimal
    achievement_note: str | None

    model_config = ConfigDict(from_attributes=True)


class TimesheetApprovalRead(BaseModel):
    id: int
    timesheet_id: int
    cycle: int
    approver_role: ApproverRole
    approver_id: int | None
    status: ApprovalStatus
    acted_by_id: int | None
    acted_at: datetime | None
    comment: str | None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class TimesheetHistoryRead(BaseModel):
    id: int
    cycle: int
    stage: WorkflowStage
    action: WorkflowAction
    actor_id: int
    comment: str | None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class TimesheetRead(BaseModel):
    id: int
    employee_id: int
    period_start: date
    period_end: date
    overall_status: TimesheetStatus
    submitted_at: datetime | None
    submission_count: int
    rows: list[TimesheetRowRead] = Field(default_factory=list)
    approvals: list[TimesheetApprovalRead] = Field(default_factory=list)
    history: list[TimesheetHistoryRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class TimesheetSummaryRead(BaseModel):
    id: int
    employee_id: int
    period_start: date
    period_end: date
    overall_status: TimesheetStatus
    submitted_at: datetime | None
    submission_count: int

    model_config = ConfigDict(from_attributes=True)


class TimesheetDecisionRequest(BaseModel):
    stage: ApproverRole | None = None
    comment: str | None = Field(default=None, max_length=500)


class TimesheetReopenRequest(BaseModel):
    comment: str = Field(min_length=1, max_length=500)


class WorkflowStageCounts(BaseModel):
    total: int
    approved: int
    pending: int
    rejected: int


class TimesheetWorkflowStatusRead(BaseModel):
    timesheet_id: int
    overall_status: TimesheetStatus
    cycle: int
    current_stage: ApproverRole | None
    stages: dict[str, WorkflowStageCounts]


class TimesheetChatCreateRequest(BaseModel):
    message: str = Field(min_length=1, max_length=500)
    parent_id: int | None = Field(default=None, ge=1)


class TimesheetChatRead(BaseModel):
    id: int
    timesheet_id: int
    parent_id: int | None
    sender_id: int
    sender_role: ChatSenderRole
    message: str
    created_at: datetime | None = None
    replies: list["TimesheetChatRead"] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class TaskCreateRequest(BaseModel):
    kind: TaskKind = TaskKind.PERSONAL
    project_id: int | None = Field(default=None, ge=1)
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    estimated_hours: Decimal | None = Field(default=None, ge=0, le=1000, decimal_places=2)
    is_pinned: bool = False
    is_important: bool = False
    notes: str | None = None
    due_date: date | None = None


class TaskUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: TaskStatus | None = None
    progress_points: int | None = Field(default=None, ge=0, le=100)
    estimated_hours: Decimal | None = Field(default=None, ge=0, le=1000, decimal_places=2)
    is_pinned: bool | None = None
    is_important: bool | None = None
    notes: str | None = None
    due_date: date | None = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def validate_non_nullable_fields(self) -> "TaskUpdateRequest":
        for name in ("title", "status", "progress_points", "is_pinned", "is_important"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class TaskStatusUpdateRequest(BaseModel):
    status: TaskStatus


class TaskTimeLogRequest(BaseModel):
    hours: Decimal = Field(ge=Decimal("0.1"), le=24, decimal_places=2)
    logged_on: date | None = None
    description: str | None = Field(default=None, max_length=500)


class TaskTimeLogRead(BaseModel):
    id: int
    task_id: int
    employee_id: int
    hours: Decimal
    logged_on: date
    description: str | None

    model_config = ConfigDict(from_attributes=True)


class TaskFeedbackRequest(BaseModel):
    feedback: str = Field(min_length=1, max_length=1000)
    rating: int | None = Field(default=None, ge=1, le=5)


class TaskAssignRequest(BaseModel):
    task_id: int = Field(ge=1)
    employee_id: int = Field(ge=1)
    permission_level: TaskPermissionLevel = TaskPermissionLevel.EDIT_PROGRESS
    estimated_hours: Decimal | None = Field(default=None, ge=0, le=1000, decimal_places=2)
    due_date: date | None = None
    is_important: bool = False
    assignment_notes: str | None = Field(default=None, max_length=2000)


class AssignmentUpdateRequest(BaseModel):
    permission_level: TaskPermissionLevel | None = None
    estimated_hours: Decimal | None = Field(default=None, ge=0, le=1000, decimal_places=2)
    due_date: date | None = None
    is_important: bool | None = None
    assignment_notes: str | None = Field(default=None, max_length=2000)

    model_config = ConfigDict(extra="forbid")


class TaskRead(BaseModel):
    id: int
    kind: TaskKind
    employee_id: int
    project_id: int | None
    title: str
    description: str | None
    status: TaskStatus
    progress_points: int
    estimated_hours: Decimal | None
    actual_hours: Decimal | None
    is_pinned: bool
    is_important: bool
    notes: str | None
    due_date: date | None
    completed_at: datetime | None
    source_task_id: int | None = None
    assigned_by_id: int | None = None
    permission_level: TaskPermissionLevel | None = None
    assignment_notes: str | None = None
    assigned_at: datetime | None = None
    completion_feedback: str | None = None
    completion_rating: int | None = None
    feedback_submitted_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class TaskActivityRead(BaseModel):
    id: int
    task_kind: TaskKind
    task_id: int
    employee_id: int
    action: TaskActivityAction
    field_changed: str | None
    old_value: str | None
    new_value: str | None
    notes: str | None
    performed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkloadRead(BaseModel):
    employee_id: int
    week_start_date: date
    weekly_capacity_hours: int
    current_planned_hours: Decimal
    workload_percentage: Decimal
    workload_status: WorkloadStatus
    available_capacity: Decimal | None = None
    recommendations: list[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class WorkloadCapacityUpdateRequest(BaseModel):
    weekly_capacity_hours: int = Field(ge=0, le=168)
    week_start: date | None = None


class WorkloadCheckRead(BaseModel):
    employee_id: int
    hours: Decimal
    can_take_additional_hours: bool


class WorkloadDistributionRead(BaseModel):
    week_start_date: date
    counts: dict[str, int]
    heatmap: list[dict[str, Any]] = Field(default_factory=list)


class ProductivityAnalyticsRead(BaseModel):
    employee_id: int
    date: date
    tasks_completed: int
    tasks_created: int
    total_progress_points: int
    hours_logged: Decimal
    streak_days: int
    max_streak: int

    model_config = ConfigDict(from_attributes=True)


class ProductivitySummaryRead(BaseModel):
    employee_id: int
    start: date
    end: date
    days: int
    tasks_completed: int
    tasks_created: int
    total_progress_points: int
    hours_logged: Decimal
    current_streak: int
    max_streak: int
    trend: str
    average_productivity_score: float
    daily: list[ProductivityAnalyticsRead] = Field(default_factory=list)


class AnalyticsRebuildRequest(BaseModel):
    start: date
    end: date

    @model_validator(mode="after")
    def validate_range(self) -> "AnalyticsRebuildRequest":
        if self.end < self.start:
            raise ValueError("end must be greater than or equal to start")
        return self


class BulkOperationCreateRequest(BaseModel):
    operation_type: str = Field(min_length=1, max_length=50)
    task_ids: list[Any] = Field(default_factory=list)
    operation_data: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = Field(default=None, max_length=2000)


class BulkOperationRead(BaseModel):
    id: int
    initiated_by_id: int
    operation_type: BulkOperationType | None
    task_ids: list[Any]
    operation_data: dict[str, Any]
    status: BulkOperationStatus
    notes: str | None
    total_tasks: int
    processed_tasks: int
    failed_tasks: int
    error_log: list[dict[str, Any]]
    started_at: datetime | None
    completed_at: datetime | None
    progress_percentage: float
    duration_seconds: int | None
    description: str | None = None

    model_config = ConfigDict(from_attributes=True)

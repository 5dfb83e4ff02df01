from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import AuthorizationError, ConflictError, InvalidStateError, NotFoundError, ValidationError
from app.models import (
    TIMESHEET_DAY_FIELDS,
    ApprovalStatus,
    ApproverRole,
    ChatSenderRole,
    Department,
    Employee,
    Project,
    Timesheet,
    TimesheetApproval,
    TimesheetChat,
    TimesheetRow,
    TimesheetStatus,
    TimesheetWorkflowHistory,
    WorkflowAction,
    WorkflowStage,
)
from app.schemas import TimesheetDraftRequest
from app.security import APPROVER_ROLES, ROLE_ADMIN, ROLE_GM, Actor

logger = logging.getLogger("app.timesheets")

STAGE_ORDER: tuple[ApproverRole, ...] = (ApproverRole.PM, ApproverRole.DM, ApproverRole.GM)
EDITABLE_STATUSES = frozenset({TimesheetStatus.DRAFT, TimesheetStatus.REOPENED})
REOPENABLE_STATUSES = frozenset({TimesheetStatus.IN_REVIEW, TimesheetStatus.REJECTED, TimesheetStatus.APPROVED})
COMMENT_MAX_LENGTH = 500
MAX_DAILY_HOURS = Decimal("24")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_comment(comment: str | None, *, required: bool, action: str) -> str | None:
    value = (comment or "").strip()
    if required and not value:
        raise ValidationError(f"A comment is required to {action} a timesheet")
    if len(value) > COMMENT_MAX_LENGTH:
        raise ValidationError(f"comment must be at most {COMMENT_MAX_LENGTH} characters")
    return value or None


def _lock_timesheet(db: Session, timesheet_id: int) -> Timesheet:
    timesheet = db.scalar(select(Timesheet).where(Timesheet.id == timesheet_id).with_for_update())
    if timesheet is None:
        raise NotFoundError("Timesheet not found")
    return timesheet


def _can_view(timesheet: Timesheet, actor: Actor) -> bool:
    return (
        timesheet.employee_id == actor.employee_id
        or actor.is_admin
        or actor.has_any_role(APPROVER_ROLES)
    )


def _actor_stage(actor: Actor) -> WorkflowStage:
    if actor.is_admin:
        return WorkflowStage.ADMIN
    for role in reversed(STAGE_ORDER):
        if actor.has_role(role.value):
            return WorkflowStage(role.value)
    return WorkflowStage.EMPLOYEE


def cycle_approvals(timesheet: Timesheet) -> list[TimesheetApproval]:
    return [item for item in timesheet.approvals if item.cycle == timesheet.submission_count]


def current_stage(timesheet: Timesheet) -> ApproverRole | None:
    if timesheet.overall_status != TimesheetStatus.IN_REVIEW:
        return None
    pending_roles = {item.approver_role for item in cycle_approvals(timesheet) if item.status == ApprovalStatus.PENDING}
    for role in STAGE_ORDER:
        if role in pending_roles:
            return role
    return None


def next_stage(stage: ApproverRole) -> ApproverRole | None:
    index = STAGE_ORDER.index(stage)
    if index + 1 < len(STAGE_ORDER):
        return STAGE_ORDER[index + 1]
    return None


def resolve_stage_approvers(db: Session, timesheet: Timesheet, stage: ApproverRole) -> list[int | None]:
    candidate_ids: list[int] = []
    if stage == ApproverRole.PM:
        project_ids = sorted({row.project_id for row in timesheet.rows if row.project_id is not None})
        if project_ids:
            candidate_ids = list(
                db.scalars(
                    select(Project.manager_id)
                    .where(Project.id.in_(project_ids), Project.manager_id.is_not(None))
                    .distinct()
                ).all()
            )
    elif stage == ApproverRole.DM:
        manager_id = db.scalar(
            select(Department.manager_id)
            .join(Employee, Employee.department_id == Department.id)
            .where(Employee.id == timesheet.employee_id)
        )
        if manager_id is not None:
            candidate_ids = [manager_id]

    approver_ids = sorted({item for item in candidate_ids if item is not None and item != timesheet.employee_id})
    if not approver_ids:
        return [None]
    return list(approver_ids)


def _open_stage(db: Session, timesheet: Timesheet, stage: ApproverRole, *, now: datetime) -> list[TimesheetApproval]:
    approvals: list[TimesheetApproval] = []
    for approver_id in resolve_stage_approvers(db, timesheet, stage):
        approval = TimesheetApproval(
            cycle=timesheet.submission_count,
            approver_role=stage,
            approver_id=approver_id,
            status=ApprovalStatus.PENDING,
            created_at=now,
        )
        timesheet.approvals.append(approval)
        approvals.append(approval)

    logger.info(
        "timesheet_approval_requested",
        extra={
            "timesheet_id": timesheet.id,
            "employee_id": timesheet.employee_id,
            "stage": stage.value,
            "cycle": timesheet.submission_count,
            "approver_ids": [item.approver_id for item in approvals],
        },
    )
    return approvals


def _append_history(
    timesheet: Timesheet,
    *,
    stage: WorkflowStage,
    action: WorkflowAction,
    actor_id: int,
    comment: str | None,
    now: datetime,
) -> TimesheetWorkflowHistory:
    entry = TimesheetWorkflowHistory(
        cycle=timesheet.submission_count,
        stage=stage,
        action=action,
        actor_id=actor_id,
        comment=comment,
        created_at=now,
    )
    timesheet.history.append(entry)
    return entry


def _log_transition(timesheet: Timesheet, *, action: WorkflowAction, actor: Actor, stage: WorkflowStage) -> None:
    logger.info(
        "timesheet_transition",
        extra={
            "timesheet_id": timesheet.id,
            "employee_id": timesheet.employee_id,
            "action": action.value,
            "stage": stage.value,
            "actor_id": actor.employee_id,
            "overall_status": timesheet.overall_status.value,
            "cycle": timesheet.submission_count,
        },
    )


def _actionable_approval(timesheet: Timesheet, actor: Actor, stage: ApproverRole | None) -> TimesheetApproval:
    active_stage = current_stage(timesheet)
    if active_stage is None:
        raise InvalidStateError("Timesheet has no pending approval stage")
    if stage is not None and stage != active_stage:
        raise AuthorizationError(
            f"Timesheet is awaiting {active_stage.value} approval; {stage.value} cannot act yet"
        )
    if not actor.has_role(active_stage.value):
        raise AuthorizationError(f"The {active_stage.value} role is required for this stage")
    if actor.employee_id == timesheet.employee_id:
        raise AuthorizationError("Approvers cannot act on their own timesheet")

    pending = [
        item
        for item in cycle_approvals(timesheet)
        if item.approver_role == active_stage and item.status == ApprovalStatus.PENDING
    ]
    for item in pending:
        if item.approver_id == actor.employee_id:
            return item
    for item in pending:
        if item.approver_id is None:
            return item
    raise AuthorizationError("You are not an approver for this stage")


def _close_pending(
    timesheet: Timesheet,
    *,
    status: ApprovalStatus,
    now: datetime,
    comment: str | None,
    role: ApproverRole | None = None,
) -> int:
    closed = 0
    for item in cycle_approvals(timesheet):
        if item.status != ApprovalStatus.PENDING:
            continue
        if role is not None and item.approver_role != role:
            continue
        item.status = status
        item.acted_at = now
        item.comment = comment
        closed += 1
    return closed


def _ensure_cycle_complete(timesheet: Timesheet) -> None:
    approved_by_stage: dict[ApproverRole, int] = defaultdict(int)
    for item in cycle_approvals(timesheet):
        if item.status == ApprovalStatus.APPROVED:
            approved_by_stage[item.approver_role] += 1
    for stage in STAGE_ORDER:
        if approved_by_stage[stage] != 1:
            raise InvalidStateError(f"Stage {stage.value} does not have exactly one approval in this cycle")


def save_draft(db: Session, *, actor: Actor, payload: TimesheetDraftRequest) -> Timesheet:
    if payload.period_start.weekday() != 0:
        raise ValidationError("period_start must be a Monday")

    daily_totals = [Decimal("0")] * len(TIMESHEET_DAY_FIELDS)
    for row in payload.rows:
        for index, field_name in enumerate(TIMESHEET_DAY_FIELDS):
            daily_totals[index] += getattr(row, field_name)
    if any(total > MAX_DAILY_HOURS for total in daily_totals):
        raise ValidationError("Logged hours for a single day cannot exceed 24")

    project_ids = {row.project_id for row in payload.rows if row.project_id is not None}
    if project_ids:
        known_ids = set(db.scalars(select(Project.id).where(Project.id.in_(sorted(project_ids)))).all())
        missing_ids = sorted(project_ids - known_ids)
        if missing_ids:
            raise ValidationError(f"Unknown project id(s): {', '.join(str(item) for item in missing_ids)}")

    timesheet = db.scalar(
        select(Timesheet)
        .where(
            Timesheet.employee_id == actor.employee_id,
            Timesheet.period_start == payload.period_start,
        )
        .with_for_update()
    )
    if timesheet is None:
        timesheet = Timesheet(
            employee_id=actor.employee_id,
            period_start=payload.period_start,
            period_end=payload.period_start + timedelta(days=6),
            overall_status=TimesheetStatus.DRAFT,
            submission_count=0,
        )
        db.add(timesheet)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError("A timesheet for this week was created concurrently; reload and try again") from exc
    elif timesheet.overall_status not in EDITABLE_STATUSES:
        raise InvalidStateError(f"Timesheet cannot be edited while {timesheet.overall_status.value}")

    timesheet.rows.clear()
    for position, row_payload in enumerate(payload.rows):
        row = TimesheetRow(
            project_id=row_payload.project_id,
            task_id=row_payload.task_id,
            position=position,
            achievement_note=row_payload.achievement_note,
        )
        for field_name in TIMESHEET_DAY_FIELDS:
            setattr(row, field_name, getattr(row_payload, field_name))
        row.recompute_total()
        timesheet.rows.append(row)

    db.commit()
    db.refresh(timesheet)
    return timesheet


def get_timesheet(db: Session, *, actor: Actor, timesheet_id: int) -> Timesheet:
    timesheet = db.get(Timesheet, timesheet_id)
    if timesheet is None or not _can_view(timesheet, actor):
        raise NotFoundError("Timesheet not found")
    return timesheet


def list_timesheets(
    db: Session,
    *,
    employee_id: int,
    status: TimesheetStatus | None = None,
) -> list[Timesheet]:
    stmt = (
        select(Timesheet)
        .where(Timesheet.employee_id == employee_id)
        .order_by(Timesheet.period_start.desc(), Timesheet.id.desc())
    )
    if status is not None:
        stmt = stmt.where(Timesheet.overall_status == status)
    return list(db.scalars(stmt).all())


def delete_draft(db: Session, *, actor: Actor, timesheet_id: int) -> None:
    timesheet = _lock_timesheet(db, timesheet_id)
    if timesheet.employee_id != actor.employee_id:
        raise NotFoundError("Timesheet not found")
    if timesheet.overall_status != TimesheetStatus.DRAFT or timesheet.submission_count > 0:
        raise InvalidStateError("Only never-submitted drafts can be deleted")
    db.delete(timesheet)
    db.commit()


def submit_timesheet(db: Session, *, actor: Actor, timesheet_id: int) -> Timesheet:
    timesheet = _lock_timesheet(db, timesheet_id)
    if timesheet.employee_id != actor.employee_id:
        raise AuthorizationError("Only the timesheet owner can submit it")
    if timesheet.overall_status not in EDITABLE_STATUSES:
        raise InvalidStateError(f"Timesheet cannot be submitted while {timesheet.overall_status.value}")
    if not timesheet.rows:
        raise ValidationError("Timesheet must contain at least one row")

    now = _utcnow()
    timesheet.submission_count = (timesheet.submission_count or 0) + 1
    timesheet.submitted_at = now
    timesheet.overall_status = TimesheetStatus.IN_REVIEW
    _append_history(
        timesheet,
        stage=WorkflowStage.EMPLOYEE,
        action=WorkflowAction.SUBMITTED,
        actor_id=actor.employee_id,
        comment=None,
        now=now,
    )
    _open_stage(db, timesheet, STAGE_ORDER[0], now=now)

    db.commit()
    db.refresh(timesheet)
    _log_transition(timesheet, action=WorkflowAction.SUBMITTED, actor=actor, stage=WorkflowStage.EMPLOYEE)
    return timesheet


def approve_timesheet(
    db: Session,
    *,
    actor: Actor,
    timesheet_id: int,
    stage: ApproverRole | None = None,
    comment: str | None = None,
) -> Timesheet:
    timesheet = _lock_timesheet(db, timesheet_id)
    if timesheet.overall_status != TimesheetStatus.IN_REVIEW:
        raise InvalidStateError(f"Timesheet cannot be approved while {timesheet.overall_status.value}")
    normalized_comment = _normalize_comment(comment, required=False, action="approve")
    approval = _actionable_approval(timesheet, actor, stage)

    now = _utcnow()
    acting_stage = approval.approver_role
    approval.status = ApprovalStatus.APPROVED
    approval.acted_at = now
    approval.acted_by_id = actor.employee_id
    approval.comment = normalized_comment
    _close_pending(
        timesheet,
        status=ApprovalStatus.AUTO_CLOSED,
        now=now,
        comment=f"Closed after {acting_stage.value} approval by another approver",
        role=acting_stage,
    )
    _append_history(
        timesheet,
        stage=WorkflowStage(acting_stage.value),
        action=WorkflowAction.APPROVED,
        actor_id=actor.employee_id,
        comment=normalized_comment,
        now=now,
    )

    following = next_stage(acting_stage)
    if following is not None:
        _open_stage(db, timesheet, following, now=now)
    else:
        _ensure_cycle_complete(timesheet)
        timesheet.overall_status = TimesheetStatus.APPROVED

    db.commit()
    db.refresh(timesheet)
    _log_transition(timesheet, action=WorkflowAction.APPROVED, actor=actor, stage=WorkflowStage(acting_stage.value))
    return timesheet


def reject_timesheet(
    db: Session,
    *,
    actor: Actor,
    timesheet_id: int,
    stage: ApproverRole | None = None,
    comment: str | None = None,
) -> Timesheet:
    timesheet = _lock_timesheet(db, timesheet_id)
    if timesheet.overall_status != TimesheetStatus.IN_REVIEW:
        raise InvalidStateError(f"Timesheet cannot be rejected while {timesheet.overall_status.value}")
    normalized_comment = _normalize_comment(comment, required=True, action="reject")
    approval = _actionable_approval(timesheet, actor, stage)

    now = _utcnow()
    acting_stage = approval.approver_role
    approval.status = ApprovalStatus.REJECTED
    approval.acted_at = now
    approval.acted_by_id = actor.employee_id
    approval.comment = normalized_comment
    _close_pending(
        timesheet,
        status=ApprovalStatus.AUTO_CLOSED,
        now=now,
        comment=f"Closed after {acting_stage.value} rejection",
    )
    timesheet.overall_status = TimesheetStatus.REJECTED
    _append_history(
        timesheet,
        stage=WorkflowStage(acting_stage.value),
        action=WorkflowAction.REJECTED,
        actor_id=actor.employee_id,
        comment=normalized_comment,
        now=now,
    )

    db.commit()
    db.refresh(timesheet)
    _log_transition(timesheet, action=WorkflowAction.REJECTED, actor=actor, stage=WorkflowStage(acting_stage.value))
    return timesheet


def _can_reopen(timesheet: Timesheet, actor: Actor) -> bool:
    if actor.is_admin or actor.has_role(ROLE_GM):
        return True
    if not actor.has_any_role(APPROVER_ROLES):
        return False
    return any(
        actor.employee_id in (item.approver_id, item.acted_by_id)
        for item in timesheet.approvals
    )


def reopen_timesheet(
    db: Session,
    *,
    actor: Actor,
    timesheet_id: int,
    comment: str | None = None,
) -> Timesheet:
    timesheet = _lock_timesheet(db, timesheet_id)
    if timesheet.overall_status not in REOPENABLE_STATUSES:
        raise InvalidStateError(f"Timesheet cannot be reopened while {timesheet.overall_status.value}")
    normalized_comment = _normalize_comment(comment, required=True, action="reopen")
    if not _can_reopen(timesheet, actor):
        raise AuthorizationError("Only an approver of this timesheet or an admin can reopen it")

    now = _utcnow()
    _close_pending(timesheet, status=ApprovalStatus.REOPENED, now=now, comment=normalized_comment)
    timesheet.overall_status = TimesheetStatus.REOPENED
    stage = _actor_stage(actor)
    _append_history(
        timesheet,
        stage=stage,
        action=WorkflowAction.REOPENED,
        actor_id=actor.employee_id,
        comment=normalized_comment,
        now=now,
    )

    db.commit()
    db.refresh(timesheet)
    _log_transition(timesheet, action=WorkflowAction.REOPENED, actor=actor, stage=stage)
    return timesheet


def workflow_status(timesheet: Timesheet) -> dict[str, Any]:
    stages: dict[str, dict[str, int]] = {
        role.value: {"total": 0, "approved": 0, "pending": 0, "rejected": 0} for role in STAGE_ORDER
    }
    for item in cycle_approvals(timesheet):
        counts = stages[item.approver_role.value]
        counts["total"] += 1
        if item.status == ApprovalStatus.APPROVED:
            counts["approved"] += 1
        elif item.status == ApprovalStatus.PENDING:
            counts["pending"] += 1
        elif item.status == ApprovalStatus.REJECTED:
            counts["rejected"] += 1

    stage = current_stage(timesheet)
    return {
        "timesheet_id": timesheet.id,
        "overall_status": timesheet.overall_status.value,
        "cycle": timesheet.submission_count,
        "current_stage": stage.value if stage is not None else None,
        "stages": stages,
    }


def list_pending_approvals(db: Session, *, actor: Actor) -> list[TimesheetApproval]:
    roles = [ApproverRole(role) for role in APPROVER_ROLES if actor.has_role(role)]
    if not roles:
        return []
    stmt = (
        select(TimesheetApproval)
        .join(Timesheet, Timesheet.id == TimesheetApproval.timesheet_id)
        .where(
            TimesheetApproval.status == ApprovalStatus.PENDING,
            TimesheetApproval.approver_role.in_(roles),
            TimesheetApproval.cycle == Timesheet.submission_count,
            or_(TimesheetApproval.approver_id == actor.employee_id, TimesheetApproval.approver_id.is_(None)),
            Timesheet.overall_status == TimesheetStatus.IN_REVIEW,
            Timesheet.employee_id != actor.employee_id,
        )
        .order_by(TimesheetApproval.created_at.asc(), TimesheetApproval.id.asc())
    )
    return list(db.scalars(stmt).all())


def list_history(db: Session, *, actor: Actor, timesheet_id: int) -> list[TimesheetWorkflowHistory]:
    timesheet = get_timesheet(db, actor=actor, timesheet_id=timesheet_id)
    return list(timesheet.history)


def _chat_role(timesheet: Timesheet, actor: Actor) -> ChatSenderRole:
    if timesheet.employee_id == actor.employee_id:
        return ChatSenderRole.EMPLOYEE
    return ChatSenderRole(_actor_stage(actor).value)


def post_chat_message(
    db: Session,
    *,
    actor: Actor,
    timesheet_id: int,
    message: str,
    parent_id: int | None = None,
) -> TimesheetChat:
    timesheet = get_timesheet(db, actor=actor, timesheet_id=timesheet_id)
    text_value = (message or "").strip()
    if not text_value:
        raise ValidationError("message must not be empty")
    if len(text_value) > COMMENT_MAX_LENGTH:
        raise ValidationError(f"message must be at most {COMMENT_MAX_LENGTH} characters")

    parent: TimesheetChat | None = None
    if parent_id is not None:
        parent = db.get(TimesheetChat, parent_id)
        if parent is None or parent.timesheet_id != timesheet.id:
            raise ValidationError("parent message must belong to the same timesheet")

    chat = TimesheetChat(
        timesheet_id=timesheet.id,
        parent_id=parent.id if parent is not None else None,
        sender_id=actor.employee_id,
        sender_role=_chat_role(timesheet, actor),
        message=text_value,
        created_at=_utcnow(),
    )
    db.add(chat)
    db.commit()
    db.refresh(chat)
    return chat


def list_chat(db: Session, *, actor: Actor, timesheet_id: int) -> list[TimesheetChat]:
    timesheet = get_timesheet(db, actor=actor, timesheet_id=timesheet_id)
    return [item for item in timesheet.chats if item.parent_id is None]


def delete_chat_message(db: Session, *, actor: Actor, timesheet_id: int, message_id: int) -> None:
    chat = db.get(TimesheetChat, message_id)
    if chat is None or chat.timesheet_id != timesheet_id:
        raise NotFoundError("Message not found")
    if chat.sender_id != actor.employee_id and not actor.has_role(ROLE_ADMIN):
        raise AuthorizationError("Only the sender or an admin can delete a message")
    db.delete(chat)
    db.commit()

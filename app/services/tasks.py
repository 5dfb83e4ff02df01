from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import nulls_last, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models import (
    Employee,
    Project,
    Task,
    TaskActivityAction,
    TaskActivityLog,
    TaskKind,
    TaskPermissionLevel,
    TaskStatus,
    TaskTimeLog,
)
from app.schemas import AssignmentUpdateRequest, TaskAssignRequest, TaskCreateRequest, TaskUpdateRequest
from app.security import Actor
from app.services.analytics import refresh_daily_analytics
from app.services.workload import recalculate_workload

logger = logging.getLogger("app.tasks")

FLAG_FIELDS = frozenset({"is_pinned", "is_important"})
PROGRESS_FIELDS = frozenset({"status", "progress_points", "notes", "actual_hours"})
DETAIL_FIELDS = frozenset({"title", "description", "due_date", "estimated_hours"})
WORKLOAD_FIELDS = frozenset({"status", "estimated_hours", "employee_id"})

_FLAG_ACTIONS: dict[str, tuple[TaskActivityAction, TaskActivityAction]] = {
    "is_pinned": (TaskActivityAction.PINNED, TaskActivityAction.UNPINNED),
    "is_important": (TaskActivityAction.MARKED_IMPORTANT, TaskActivityAction.UNMARKED_IMPORTANT),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stringify(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


@dataclass(slots=True)
class DerivedChanges:
    """Employees and days whose workload/analytics projections need a refresh."""

    workload_employee_ids: set[int] = field(default_factory=set)
    analytics_days: set[tuple[int, date]] = field(default_factory=set)

    def merge(self, other: DerivedChanges) -> None:
        self.workload_employee_ids |= other.workload_employee_ids
        self.analytics_days |= other.analytics_days


def refresh_derived(db: Session, changes: DerivedChanges) -> None:
    db.flush()
    for employee_id in sorted(changes.workload_employee_ids):
        recalculate_workload(db, employee_id=employee_id, commit=False)
    for employee_id, day in sorted(changes.analytics_days):
        refresh_daily_analytics(db, employee_id=employee_id, day=day, commit=False)


def log_activity(
    db: Session,
    *,
    task: Task,
    employee_id: int,
    action: TaskActivityAction,
    field_changed: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
    notes: str | None = None,
) -> TaskActivityLog:
    entry = TaskActivityLog(
        task_kind=task.kind,
        task_id=task.id,
        employee_id=employee_id,
        action=action,
        field_changed=field_changed,
        old_value=_stringify(old_value),
        new_value=_stringify(new_value),
        notes=notes,
        performed_at=_utcnow(),
    )
    db.add(entry)
    return entry


def _track(changes: DerivedChanges, task: Task, *, workload: bool = False, day: date | None = None) -> None:
    if workload and task.kind == TaskKind.ASSIGNED:
        changes.workload_employee_ids.add(task.employee_id)
    if day is not None:
        changes.analytics_days.add((task.employee_id, day))


def _set_field(db: Session, task: Task, name: str, value: Any, *, actor_id: int) -> bool:
    old_value = getattr(task, name)
    if old_value == value:
        return False
    setattr(task, name, value)
    if name in _FLAG_ACTIONS:
        on_action, off_action = _FLAG_ACTIONS[name]
        action = on_action if value else off_action
    else:
        action = TaskActivityAction.UPDATED
    log_activity(db, task=task, employee_id=actor_id, action=action, field_changed=name, old_value=old_value, new_value=value)
    return True


def apply_status_change(db: Session, task: Task, *, status: TaskStatus, actor_id: int) -> DerivedChanges:
    changes = DerivedChanges()
    old_status = task.status
    if old_status == status:
        return changes

    previously_completed_on = task.completed_at.date() if task.completed_at is not None else None
    task.status = status
    if status == TaskStatus.DONE:
        task.completed_at = _utcnow()
        task.progress_points = 100
        action = TaskActivityAction.COMPLETED
    else:
        task.completed_at = None
        action = TaskActivityAction.BLOCKED if status == TaskStatus.BLOCKED else TaskActivityAction.STATUS_CHANGED

    log_activity(db, task=task, employee_id=actor_id, action=action, field_changed="status", old_value=old_status, new_value=status)
    _track(changes, task, workload=True)
    if status == TaskStatus.DONE:
        _track(changes, task, day=task.completed_at.date())
    if previously_completed_on is not None:
        _track(changes, task, day=previously_completed_on)
    return changes


def apply_reassignment(db: Session, task: Task, *, new_assignee_id: int, actor_id: int) -> DerivedChanges:
    changes = DerivedChanges()
    if task.kind != TaskKind.ASSIGNED:
        raise ValidationError("Only assigned tasks can be reassigned")
    if task.employee_id == new_assignee_id:
        return changes

    assignee = db.get(Employee, new_assignee_id)
    if assignee is None or not assignee.is_active:
        raise NotFoundError("Assignee not found or inactive")
    if task.source_task_id is not None:
        duplicate = db.scalar(
            select(Task.id).where(
                Task.source_task_id == task.source_task_id,
                Task.employee_id == new_assignee_id,
            )
        )
        if duplicate is not None:
            raise ConflictError("Task is already assigned to this employee")

    previous_assignee_id = task.employee_id
    _track(changes, task, workload=True)
    task.employee_id = new_assignee_id
    task.assigned_at = _utcnow()
    task.assigned_by_id = actor_id
    log_activity(
        db,
        task=task,
        employee_id=actor_id,
        action=TaskActivityAction.UPDATED,
        field_changed="employee_id",
        old_value=previous_assignee_id,
        new_value=new_assignee_id,
    )
    _track(changes, task, workload=True)
    if task.completed_at is not None:
        changes.analytics_days.add((previous_assignee_id, task.completed_at.date()))
        _track(changes, task, day=task.completed_at.date())
    return changes


def apply_due_date(db: Session, task: Task, *, due_date: date | None, actor_id: int) -> DerivedChanges:
    _set_field(db, task, "due_date", due_date, actor_id=actor_id)
    return DerivedChanges()


def apply_importance(db: Session, task: Task, *, is_important: bool, actor_id: int) -> DerivedChanges:
    _set_field(db, task, "is_important", is_important, actor_id=actor_id)
    return DerivedChanges()


def apply_delete(db: Session, task: Task, *, actor_id: int) -> DerivedChanges:
    """Delete ``task``; a source task takes each of its assignments with it, logged and tracked."""
    changes = DerivedChanges()
    if task.kind != TaskKind.ASSIGNED:
        assignments = db.scalars(select(Task).where(Task.source_task_id == task.id).order_by(Task.id)).all()
        for assignment in assignments:
            changes.merge(apply_delete(db, assignment, actor_id=actor_id))
    _track(changes, task, workload=True, day=task.created_at.date() if task.created_at else None)
    if task.completed_at is not None:
        _track(changes, task, day=task.completed_at.date())
    log_activity(db, task=task, employee_id=actor_id, action=TaskActivityAction.DELETED, notes=task.title)
    db.delete(task)
    return changes


def _ensure_can_edit(task: Task, actor: Actor, fields: set[str]) -> None:
    if task.employee_id != actor.employee_id:
        if actor.is_manager:
            return
        raise NotFoundError("Task not found")
    if task.kind != TaskKind.ASSIGNED or actor.is_manager:
        return

    level = task.permission_level or TaskPermissionLevel.EDIT_PROGRESS
    if level == TaskPermissionLevel.VIEW_ONLY:
        allowed = FLAG_FIELDS
    elif level == TaskPermissionLevel.EDIT_PROGRESS:
        allowed = FLAG_FIELDS | PROGRESS_FIELDS
    else:
        allowed = FLAG_FIELDS | PROGRESS_FIELDS | DETAIL_FIELDS
    forbidden = sorted(set(fields) - allowed)
    if forbidden:
        raise AuthorizationError(f"Permission level {level.value} does not allow changing: {', '.join(forbidden)}")


def get_task(db: Session, *, task_id: int, actor: Actor) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    if task.employee_id != actor.employee_id and not actor.is_manager:
        raise NotFoundError("Task not found")
    return task


def list_tasks(
    db: Session,
    *,
    employee_id: int,
    kind: TaskKind | None = None,
    status: TaskStatus | None = None,
    important_only: bool = False,
) -> list[Task]:
    stmt = (
        select(Task)
        .where(Task.employee_id == employee_id)
        .order_by(Task.is_pinned.desc(), nulls_last(Task.due_date.asc()), Task.id.asc())
    )
    if kind is not None:
        stmt = stmt.where(Task.kind == kind)
    if status is not None:
        stmt = stmt.where(Task.status == status)
    if important_only:
        stmt = stmt.where(Task.is_important.is_(True))
    return list(db.scalars(stmt).all())


def list_activity(db: Session, *, task: Task) -> list[TaskActivityLog]:
    stmt = (
        select(TaskActivityLog)
        .where(TaskActivityLog.task_kind == task.kind, TaskActivityLog.task_id == task.id)
        .order_by(TaskActivityLog.performed_at.asc(), TaskActivityLog.id.asc())
    )
    return list(db.scalars(stmt).all())


def create_task(db: Session, *, actor: Actor, payload: TaskCreateRequest) -> Task:
    if payload.kind == TaskKind.ASSIGNED:
        raise ValidationError("Assigned tasks are created through task assignment")
    if payload.kind == TaskKind.PROJECT:
        if payload.project_id is None:
            raise ValidationError("project_id is required for project tasks")
        if db.get(Project, payload.project_id) is None:
            raise NotFoundError("Project not found")

    now = _utcnow()
    task = Task(
        kind=payload.kind,
        employee_id=actor.employee_id,
        project_id=payload.project_id,
        title=payload.title,
        description=payload.description,
        status=TaskStatus.TODO,
        progress_points=0,
        estimated_hours=payload.estimated_hours,
        is_pinned=payload.is_pinned,
        is_important=payload.is_important,
        notes=payload.notes,
        due_date=payload.due_date,
        created_at=now,
    )
    db.add(task)
    db.flush()
    log_activity(db, task=task, employee_id=actor.employee_id, action=TaskActivityAction.CREATED)

    changes = DerivedChanges()
    _track(changes, task, day=now.date())
    refresh_derived(db, changes)
    db.commit()
    db.refresh(task)
    return task


def update_task(db: Session, *, actor: Actor, task_id: int, payload: TaskUpdateRequest) -> Task:
    task = get_task(db, task_id=task_id, actor=actor)
    values = payload.model_dump(exclude_unset=True)
    if not values:
        return task
    _ensure_can_edit(task, actor, set(values))

    changes = DerivedChanges()
    status = values.pop("status", None)
    if "title" in values and not values["title"]:
        raise ValidationError("title must not be empty")
    for name, value in values.items():
        changed = _set_field(db, task, name, value, actor_id=actor.employee_id)
        if changed and name in WORKLOAD_FIELDS:
            _track(changes, task, workload=True)
        if changed and name == "progress_points" and task.completed_at is not None:
            _track(changes, task, day=task.completed_at.date())
    if status is not None:
        changes.merge(apply_status_change(db, task, status=status, actor_id=actor.employee_id))

    refresh_derived(db, changes)
    db.commit()
    db.refresh(task)
    return task


def change_task_status(db: Session, *, actor: Actor, task_id: int, status: TaskStatus) -> Task:
    task = get_task(db, task_id=task_id, actor=actor)
    _ensure_can_edit(task, actor, {"status"})
    changes = apply_status_change(db, task, status=status, actor_id=actor.employee_id)
    refresh_derived(db, changes)
    db.commit()
    db.refresh(task)
    return task


def log_time(
    db: Session,
    *,
    actor: Actor,
    task_id: int,
    hours: Decimal,
    logged_on: date | None = None,
    description: str | None = None,
) -> TaskTimeLog:
    if hours < Decimal("0.1") or hours > Decimal("24"):
        raise ValidationError("hours must be between 0.1 and 24")
    task = get_task(db, task_id=task_id, actor=actor)
    if task.employee_id != actor.employee_id:
        raise AuthorizationError("Only the task owner can log time")
    _ensure_can_edit(task, actor, {"actual_hours"})

    day = logged_on or _utcnow().date()
    if day > _utcnow().date():
        raise ValidationError("logged_on must not be in the future")

    entry = TaskTimeLog(task_id=task.id, employee_id=actor.employee_id, hours=hours, logged_on=day, description=description)
    db.add(entry)
    previous_actual = task.actual_hours
    task.actual_hours = (previous_actual or Decimal("0")) + hours
    log_activity(
        db,
        task=task,
        employee_id=actor.employee_id,
        action=TaskActivityAction.TIME_LOGGED,
        field_changed="actual_hours",
        old_value=previous_actual,
        new_value=task.actual_hours,
        notes=description,
    )

    changes = DerivedChanges()
    _track(changes, task, day=day)
    refresh_derived(db, changes)
    db.commit()
    db.refresh(entry)
    return entry


def delete_task(db: Session, *, actor: Actor, task_id: int) -> None:
    task = get_task(db, task_id=task_id, actor=actor)
    if task.kind == TaskKind.ASSIGNED and not actor.is_manager:
        raise AuthorizationError("Assigned tasks can only be removed by a manager")
    changes = apply_delete(db, task, actor_id=actor.employee_id)
    refresh_derived(db, changes)
    db.commit()


def assign_task(db: Session, *, actor: Actor, payload: TaskAssignRequest) -> Task:
    if not actor.is_manager:
        raise AuthorizationError("Manager role required to assign tasks")
    source = db.get(Task, payload.task_id)
    if source is None:
        raise NotFoundError("Task not found")
    if source.kind == TaskKind.ASSIGNED:
        raise ValidationError("An assignment cannot be assigned again; assign its source task")
    assignee = db.get(Employee, payload.employee_id)
    if assignee is None or not assignee.is_active:
        raise NotFoundError("Employee not found or inactive")

    duplicate = db.scalar(
        select(Task.id).where(Task.source_task_id == source.id, Task.employee_id == payload.employee_id)
    )
    if duplicate is not None:
        raise ConflictError("Task is already assigned to this employee")

    now = _utcnow()
    task = Task(
        kind=TaskKind.ASSIGNED,
        employee_id=payload.employee_id,
        project_id=source.project_id,
        title=source.title,
        description=source.description,
        status=TaskStatus.TODO,
        progress_points=0,
        estimated_hours=payload.estimated_hours if payload.estimated_hours is not None else source.estimated_hours,
        is_pinned=False,
        is_important=payload.is_important,
        due_date=payload.due_date if payload.due_date is not None else source.due_date,
        source_task_id=source.id,
        assigned_by_id=actor.employee_id,
        permission_level=payload.permission_level,
        assignment_notes=payload.assignment_notes,
        assigned_at=now,
        created_at=now,
    )
    db.add(task)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Task is already assigned to this employee") from exc

    log_activity(db, task=task, employee_id=actor.employee_id, action=TaskActivityAction.CREATED, notes=payload.assignment_notes)
    changes = DerivedChanges()
    _track(changes, task, workload=True, day=now.date())
    refresh_derived(db, changes)
    db.commit()
    db.refresh(task)

    logger.info(
        "task_assigned",
        extra={
            "task_id": task.id,
            "source_task_id": source.id,
            "assignee_id": payload.employee_id,
            "assigned_by_id": actor.employee_id,
        },
    )
    return task


def update_assignment(db: Session, *, actor: Actor, task_id: int, payload: AssignmentUpdateRequest) -> Task:
    if not actor.is_manager:
        raise AuthorizationError("Manager role required to update assignments")
    task = db.get(Task, task_id)
    if task is None or task.kind != TaskKind.ASSIGNED:
        raise NotFoundError("Assigned task not found")

    changes = DerivedChanges()
    for name, value in payload.model_dump(exclude_unset=True).items():
        changed = _set_field(db, task, name, value, actor_id=actor.employee_id)
        if changed and name in WORKLOAD_FIELDS:
            _track(changes, task, workload=True)

    refresh_derived(db, changes)
    db.commit()
    db.refresh(task)
    return task


def submit_task_feedback(
    db: Session,
    *,
    actor: Actor,
    task_id: int,
    feedback: str,
    rating: int | None = None,
) -> Task:
    task = db.get(Task, task_id)
    if task is None or task.kind != TaskKind.ASSIGNED or task.employee_id != actor.employee_id:
        raise NotFoundError("Assigned task not found")
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError("rating must be between 1 and 5")

    task.completion_feedback = feedback
    if rating is not None:
        task.completion_rating = rating
    task.feedback_submitted_at = _utcnow()
    log_activity(db, task=task, employee_id=actor.employee_id, action=TaskActivityAction.FEEDBACK_SUBMITTED, notes=feedback)
    db.commit()
    db.refresh(task)
    return task

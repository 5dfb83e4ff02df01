from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import ApiError, AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from app.models import BulkOperationStatus, BulkOperationType, BulkTaskOperation, Task, TaskKind, TaskStatus
from app.security import Actor
from app.services.tasks import (
    DerivedChanges,
    apply_delete,
    apply_due_date,
    apply_importance,
    apply_reassignment,
    apply_status_change,
    refresh_derived,
)
from app.settings import get_settings

logger = logging.getLogger("app.bulk_operations")

BulkHandler = Callable[[Session, Task, dict[str, Any], int], DerivedChanges]

_DESCRIPTIONS: dict[BulkOperationType, str] = {
    BulkOperationType.REASSIGN: "reassigned {count} task(s)",
    BulkOperationType.UPDATE_STATUS: "updated status for {count} task(s)",
    BulkOperationType.UPDATE_DUE_DATE: "updated due dates for {count} task(s)",
    BulkOperationType.UPDATE_PRIORITY: "updated priority for {count} task(s)",
    BulkOperationType.BULK_DELETE: "deleted {count} task(s)",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_entry(task_id: Any, message: str) -> dict[str, Any]:
    return {"task_id": task_id, "error": message, "timestamp": _utcnow().isoformat()}


def _parse_operation_type(raw: BulkOperationType | str) -> BulkOperationType:
    try:
        return BulkOperationType(raw)
    except ValueError as exc:
        raise ValueError(f"Unknown operation_type: {raw}") from exc


def normalize_task_ids(raw: Any) -> list[int]:
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ValueError("task_ids must be a non-empty list")
    max_tasks = get_settings().bulk_operation_max_tasks
    if len(raw) > max_tasks:
        raise ValueError(f"task_ids must not contain more than {max_tasks} items")
    for item in raw:
        if isinstance(item, bool) or not isinstance(item, int) or item <= 0:
            raise ValueError(f"task_ids must contain positive integers, got {item!r}")
    return list(raw)


def normalize_operation_data(operation_type: BulkOperationType, raw: Any) -> dict[str, Any]:
    data = raw if isinstance(raw, dict) else {}
    if operation_type == BulkOperationType.REASSIGN:
        value = data.get("new_assignee_id")
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError("new_assignee_id must be a positive integer")
        return {"new_assignee_id": value}
    if operation_type == BulkOperationType.UPDATE_STATUS:
        try:
            status = TaskStatus(str(data.get("new_status") or ""))
        except ValueError as exc:
            allowed = ", ".join(item.value for item in TaskStatus)
            raise ValueError(f"new_status must be one of: {allowed}") from exc
        return {"new_status": status.value}
    if operation_type == BulkOperationType.UPDATE_DUE_DATE:
        value = data.get("new_due_date")
        try:
            due_date = value if isinstance(value, date) else date.fromisoformat(str(value or ""))
        except ValueError as exc:
            raise ValueError("new_due_date must be an ISO date (YYYY-MM-DD)") from exc
        return {"new_due_date": due_date.isoformat()}
    if operation_type == BulkOperationType.UPDATE_PRIORITY:
        value = data.get("is_important")
        if not isinstance(value, bool):
            raise ValueError("is_important must be a boolean")
        return {"is_important": value}
    return {}


def _reassign(db: Session, task: Task, data: dict[str, Any], actor_id: int) -> DerivedChanges:
    return apply_reassignment(db, task, new_assignee_id=int(data["new_assignee_id"]), actor_id=actor_id)


def _update_status(db: Session, task: Task, data: dict[str, Any], actor_id: int) -> DerivedChanges:
    return apply_status_change(db, task, status=TaskStatus(data["new_status"]), actor_id=actor_id)


def _update_due_date(db: Session, task: Task, data: dict[str, Any], actor_id: int) -> DerivedChanges:
    return apply_due_date(db, task, due_date=date.fromisoformat(data["new_due_date"]), actor_id=actor_id)


def _update_priority(db: Session, task: Task, data: dict[str, Any], actor_id: int) -> DerivedChanges:
    return apply_importance(db, task, is_important=bool(data["is_important"]), actor_id=actor_id)


def _bulk_delete(db: Session, task: Task, data: dict[str, Any], actor_id: int) -> DerivedChanges:
    return apply_delete(db, task, actor_id=actor_id)


_HANDLERS: dict[BulkOperationType, BulkHandler] = {
    BulkOperationType.REASSIGN: _reassign,
    BulkOperationType.UPDATE_STATUS: _update_status,
    BulkOperationType.UPDATE_DUE_DATE: _update_due_date,
    BulkOperationType.UPDATE_PRIORITY: _update_priority,
    BulkOperationType.BULK_DELETE: _bulk_delete,
}


def _apply_item(db: Session, operation: BulkTaskOperation, task_id: int, actor_id: int) -> DerivedChanges:
    handler = _HANDLERS[operation.operation_type]
    with db.begin_nested():
        task = db.get(Task, task_id)
        if task is None:
            raise NotFoundError("Task not found")
        if task.kind != TaskKind.ASSIGNED:
            raise ValidationError("Only assigned tasks can be changed in bulk")
        changes = handler(db, task, operation.operation_data, actor_id)
        db.flush()
    return changes


def create_bulk_operation(
    db: Session,
    *,
    actor: Actor,
    operation_type: BulkOperationType | str,
    task_ids: Any,
    operation_data: Any,
    notes: str | None = None,
) -> BulkTaskOperation:
    if not actor.is_manager:
        raise AuthorizationError("Manager role required for bulk operations")

    raw_ids = list(task_ids) if isinstance(task_ids, (list, tuple)) else []
    now = _utcnow()
    operation = BulkTaskOperation(
        initiated_by_id=actor.employee_id,
        operation_type=None,
        task_ids=raw_ids,
        operation_data=operation_data if isinstance(operation_data, dict) else {},
        status=BulkOperationStatus.PENDING,
        notes=notes,
        total_tasks=len(raw_ids),
        processed_tasks=0,
        failed_tasks=0,
        error_log=[],
        created_at=now,
    )

    try:
        operation.operation_type = _parse_operation_type(operation_type)
        operation.task_ids = normalize_task_ids(task_ids)
        operation.operation_data = normalize_operation_data(operation.operation_type, operation_data)
    except ValueError as exc:
        operation.status = BulkOperationStatus.FAILED
        operation.error_log = [_error_entry(None, str(exc))]
        operation.completed_at = now
        db.add(operation)
        db.commit()
        db.refresh(operation)
        logger.warning(
            "bulk_operation_rejected",
            extra={
                "operation_id": operation.id,
                "operation_type": operation.operation_type.value if operation.operation_type else str(operation_type),
                "initiated_by_id": actor.employee_id,
                "error": str(exc),
            },
        )
        return operation

    db.add(operation)
    db.commit()
    db.refresh(operation)
    return process_bulk_operation(db, operation=operation, actor=actor)


def process_bulk_operation(db: Session, *, operation: BulkTaskOperation, actor: Actor) -> BulkTaskOperation:
    if operation.status != BulkOperationStatus.PENDING:
        raise InvalidStateError(f"Bulk operation is already {operation.status.value}")

    operation_id = operation.id
    operation.status = BulkOperationStatus.IN_PROGRESS
    operation.started_at = _utcnow()
    db.commit()

    changes = DerivedChanges()
    errors: list[dict[str, Any]] = []
    processed = 0
    failed = 0
    seen: set[int] = set()
    try:
        for task_id in list(operation.task_ids):
            processed += 1
            try:
                if task_id in seen:
                    raise ValidationError("Duplicate task id")
                seen.add(task_id)
                changes.merge(_apply_item(db, operation, task_id, actor.employee_id))
            except ApiError as exc:
                failed += 1
                errors.append(_error_entry(task_id, exc.message))
            except Exception as exc:
                failed += 1
                errors.append(_error_entry(task_id, f"{exc.__class__.__name__}: {exc}"))
                logger.warning(
                    "bulk_operation_item_error",
                    exc_info=True,
                    extra={"operation_id": operation_id, "task_id": task_id},
                )
            operation.processed_tasks = processed
            operation.failed_tasks = failed

        refresh_derived(db, changes)
        operation.error_log = errors
        operation.status = BulkOperationStatus.COMPLETED
        operation.completed_at = _utcnow()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("bulk_operation_failed", extra={"operation_id": operation_id})
        operation = db.get(BulkTaskOperation, operation_id)
        if operation is None:
            raise
        operation.status = BulkOperationStatus.FAILED
        operation.processed_tasks = 0
        operation.failed_tasks = operation.total_tasks
        operation.error_log = [_error_entry(None, f"Bulk operation could not be applied: {exc.__class__.__name__}")]
        operation.completed_at = _utcnow()
        db.commit()

    db.refresh(operation)
    logger.info(
        "bulk_operation_finished",
        extra={
            "operation_id": operation.id,
            "operation_type": operation.operation_type.value,
            "status": operation.status.value,
            "total_tasks": operation.total_tasks,
            "processed_tasks": operation.processed_tasks,
            "failed_tasks": operation.failed_tasks,
        },
    )
    return operation


def get_operation(db: Session, *, actor: Actor, operation_id: int) -> BulkTaskOperation:
    operation = db.get(BulkTaskOperation, operation_id)
    if operation is None or (operation.initiated_by_id != actor.employee_id and not actor.is_admin):
        raise NotFoundError("Bulk operation not found")
    return operation


def list_operations(
    db: Session,
    *,
    actor: Actor,
    status: BulkOperationStatus | None = None,
    limit: int = 50,
) -> list[BulkTaskOperation]:
    stmt = select(BulkTaskOperation).order_by(BulkTaskOperation.created_at.desc(), BulkTaskOperation.id.desc())
    if not actor.is_admin:
        stmt = stmt.where(BulkTaskOperation.initiated_by_id == actor.employee_id)
    if status is not None:
        stmt = stmt.where(BulkTaskOperation.status == status)
    return list(db.scalars(stmt.limit(max(1, min(limit, 200)))).all())


def operation_description(operation: BulkTaskOperation) -> str:
    template = _DESCRIPTIONS.get(operation.operation_type, "performed a bulk operation on {count} task(s)")
    return template.format(count=operation.total_tasks)

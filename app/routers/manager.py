from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import get_db
from app.errors import NotFoundError
from app.models import BulkOperationStatus, BulkTaskOperation, EmployeeWorkloadCapacity, TaskKind
from app.schemas import (
    AnalyticsRebuildRequest,
    AssignmentUpdateRequest,
    BulkOperationCreateRequest,
    BulkOperationRead,
    ProductivityAnalyticsRead,
    ProductivitySummaryRead,
    TaskAssignRequest,
    TaskRead,
    WorkloadCapacityUpdateRequest,
    WorkloadCheckRead,
    WorkloadDistributionRead,
    WorkloadRead,
)
from app.security import MANAGER_ROLES, Actor, require_roles
from app.services.analytics import analytics_summary, rebuild_analytics
from app.services.bulk_operations import (
    create_bulk_operation,
    get_operation,
    list_operations,
    operation_description,
)
from app.services.tasks import assign_task, delete_task, get_task, update_assignment
from app.services.workload import (
    available_capacity,
    can_take_additional_hours,
    current_week_start,
    get_workload,
    list_week_workloads,
    recalculate_workload,
    update_capacity,
    week_start_for,
    workload_distribution,
    workload_heatmap,
    workload_recommendations,
)

router = APIRouter(prefix="/api/manager", tags=["manager"])
require_manager = require_roles(*MANAGER_ROLES)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _workload_read(row: EmployeeWorkloadCapacity) -> WorkloadRead:
    return WorkloadRead.model_validate(row).model_copy(
        update={
            "available_capacity": available_capacity(row),
            "recommendations": workload_recommendations(row),
        }
    )


def _operation_read(operation: BulkTaskOperation) -> BulkOperationRead:
    return BulkOperationRead.model_validate(operation).model_copy(
        update={"description": operation_description(operation)}
    )


@router.post("/assignments", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_assignment(
    payload: TaskAssignRequest,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> TaskRead:
    task = assign_task(db, actor=actor, payload=payload)
    log_audit(
        db,
        actor=actor,
        action="TASK_ASSIGNED",
        success=True,
        entity_type="task",
        entity_id=task.id,
        details={"source_task_id": task.source_task_id, "employee_id": task.employee_id},
        request_id=_request_id(request),
    )
    return task


@router.patch("/assignments/{task_id}", response_model=TaskRead)
def patch_assignment(
    task_id: int,
    payload: AssignmentUpdateRequest,
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> TaskRead:
    return update_assignment(db, actor=actor, task_id=task_id, payload=payload)


@router.delete("/assignments/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_assignment(
    task_id: int,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> Response:
    task = get_task(db, task_id=task_id, actor=actor)
    if task.kind != TaskKind.ASSIGNED:
        raise NotFoundError("Assigned task not found")
    employee_id = task.employee_id
    delete_task(db, actor=actor, task_id=task_id)
    log_audit(
        db,
        actor=actor,
        action="TASK_ASSIGNMENT_REMOVED",
        success=True,
        entity_type="task",
        entity_id=task_id,
        details={"employee_id": employee_id},
        request_id=_request_id(request),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/workload", response_model=list[WorkloadRead])
def get_week_workloads(
    week_start: date | None = None,
    _actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[WorkloadRead]:
    return [_workload_read(row) for row in list_week_workloads(db, week_start=week_start)]


@router.get("/workload/distribution", response_model=WorkloadDistributionRead)
def get_workload_distribution(
    week_start: date | None = None,
    _actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> WorkloadDistributionRead:
    rows = list_week_workloads(db, week_start=week_start)
    return WorkloadDistributionRead(
        week_start_date=week_start_for(week_start) if week_start is not None else current_week_start(),
        counts=workload_distribution(rows),
        heatmap=workload_heatmap(rows),
    )


@router.get("/workload/{employee_id}", response_model=WorkloadRead)
def get_employee_workload(
    employee_id: int,
    week_start: date | None = None,
    _actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> WorkloadRead:
    return _workload_read(get_workload(db, employee_id=employee_id, week_start=week_start))


@router.post("/workload/{employee_id}/recalculate", response_model=WorkloadRead)
def post_workload_recalculate(
    employee_id: int,
    week_start: date | None = None,
    _actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> WorkloadRead:
    return _workload_read(recalculate_workload(db, employee_id=employee_id, week_start=week_start))


@router.put("/workload/{employee_id}/capacity", response_model=WorkloadRead)
def put_workload_capacity(
    employee_id: int,
    payload: WorkloadCapacityUpdateRequest,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> WorkloadRead:
    row = update_capacity(
        db,
        employee_id=employee_id,
        weekly_capacity_hours=payload.weekly_capacity_hours,
        week_start=payload.week_start,
    )
    log_audit(
        db,
        actor=actor,
        action="WORKLOAD_CAPACITY_UPDATED",
        success=True,
        entity_type="employee",
        entity_id=employee_id,
        details={
            "week_start": row.week_start_date.isoformat(),
            "weekly_capacity_hours": row.weekly_capacity_hours,
        },
        request_id=_request_id(request),
    )
    return _workload_read(row)


@router.get("/workload/{employee_id}/check", response_model=WorkloadCheckRead)
def get_workload_check(
    employee_id: int,
    hours: Decimal = Query(ge=0, le=168),
    week_start: date | None = None,
    _actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> WorkloadCheckRead:
    row = get_workload(db, employee_id=employee_id, week_start=week_start)
    return WorkloadCheckRead(
        employee_id=employee_id,
        hours=hours,
        can_take_additional_hours=can_take_additional_hours(row, hours),
    )


@router.get("/analytics/{employee_id}", response_model=ProductivitySummaryRead)
def get_analytics_summary(
    employee_id: int,
    start: date | None = None,
    end: date | None = None,
    _actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> ProductivitySummaryRead:
    end_date = end or datetime.now(timezone.utc).date()
    start_date = start or end_date - timedelta(days=29)
    return ProductivitySummaryRead.model_validate(
        analytics_summary(db, employee_id=employee_id, start=start_date, end=end_date),
        from_attributes=True,
    )


@router.post("/analytics/{employee_id}/rebuild", response_model=list[ProductivityAnalyticsRead])
def post_analytics_rebuild(
    employee_id: int,
    payload: AnalyticsRebuildRequest,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[ProductivityAnalyticsRead]:
    rows = rebuild_analytics(db, employee_id=employee_id, start=payload.start, end=payload.end)
    result = [ProductivityAnalyticsRead.model_validate(row) for row in rows]
    log_audit(
        db,
        actor=actor,
        action="ANALYTICS_REBUILT",
        success=True,
        entity_type="employee",
        entity_id=employee_id,
        details={"start": payload.start.isoformat(), "end": payload.end.isoformat(), "days": len(rows)},
        request_id=_request_id(request),
    )
    return result


@router.post("/bulk-operations", response_model=BulkOperationRead, status_code=status.HTTP_201_CREATED)
def post_bulk_operation(
    payload: BulkOperationCreateRequest,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> BulkOperationRead:
    operation = create_bulk_operation(
        db,
        actor=actor,
        operation_type=payload.operation_type,
        task_ids=payload.task_ids,
        operation_data=payload.operation_data,
        notes=payload.notes,
    )
    result = _operation_read(operation)
    log_audit(
        db,
        actor=actor,
        action="BULK_OPERATION_EXECUTED",
        success=operation.status != BulkOperationStatus.FAILED,
        entity_type="bulk_task_operation",
        entity_id=operation.id,
        details={
            "operation_type": operation.operation_type.value if operation.operation_type else payload.operation_type,
            "status": operation.status.value,
            "total_tasks": operation.total_tasks,
            "failed_tasks": operation.failed_tasks,
        },
        request_id=_request_id(request),
    )
    return result


@router.get("/bulk-operations", response_model=list[BulkOperationRead])
def get_bulk_operations(
    status_filter: BulkOperationStatus | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[BulkOperationRead]:
    return [
        _operation_read(item)
        for item in list_operations(db, actor=actor, status=status_filter, limit=limit)
    ]


@router.get("/bulk-operations/{operation_id}", response_model=BulkOperationRead)
def get_bulk_operation(
    operation_id: int,
    actor: Actor = Depends(require_manager),
    db: Session = Depends(get_db),
) -> BulkOperationRead:
    return _operation_read(get_operation(db, actor=actor, operation_id=operation_id))

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.models import Employee, EmployeeWorkloadCapacity, Task, TaskKind, TaskStatus, WorkloadStatus
from app.settings import get_settings

logger = logging.getLogger("app.workload")

ACTIVE_TASK_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.TODO, TaskStatus.DOING)
MAX_WEEKLY_CAPACITY_HOURS = 168
TWO_PLACES = Decimal("0.01")

WORKLOAD_STATUS_COLORS: dict[WorkloadStatus, str] = {
    WorkloadStatus.UNDER_UTILIZED: "#90EE90",
    WorkloadStatus.OPTIMAL: "#32CD32",
    WorkloadStatus.OVER_LOADED: "#FFA500",
    WorkloadStatus.CRITICAL: "#FF6347",
}


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def week_start_for(value: date) -> date:
    return value - timedelta(days=value.weekday())


def current_week_start() -> date:
    return week_start_for(datetime.now(timezone.utc).date())


def compute_workload_percentage(planned_hours: Any, capacity_hours: Any) -> Decimal:
    capacity = _to_decimal(capacity_hours)
    if capacity <= 0:
        return Decimal("0.00")
    percentage = _to_decimal(planned_hours) / capacity * Decimal("100")
    return percentage.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def classify_workload(percentage: Any) -> WorkloadStatus:
    settings = get_settings()
    value = _to_decimal(percentage)
    if value < _to_decimal(settings.workload_optimal_min_percent):
        return WorkloadStatus.UNDER_UTILIZED
    if value <= _to_decimal(settings.workload_optimal_max_percent):
        return WorkloadStatus.OPTIMAL
    if value <= _to_decimal(settings.workload_overload_max_percent):
        return WorkloadStatus.OVER_LOADED
    return WorkloadStatus.CRITICAL


def apply_planned_hours(row: EmployeeWorkloadCapacity, planned_hours: Any) -> EmployeeWorkloadCapacity:
    row.current_planned_hours = _to_decimal(planned_hours).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    row.workload_percentage = compute_workload_percentage(row.current_planned_hours, row.weekly_capacity_hours)
    row.workload_status = classify_workload(row.workload_percentage)
    return row


def available_capacity(row: EmployeeWorkloadCapacity) -> Decimal:
    remaining = _to_decimal(row.weekly_capacity_hours) - _to_decimal(row.current_planned_hours)
    return max(Decimal("0"), remaining)


def can_take_additional_hours(row: EmployeeWorkloadCapacity, hours: Any) -> bool:
    limit_percent = _to_decimal(get_settings().workload_max_overcommit_percent)
    limit = _to_decimal(row.weekly_capacity_hours) * limit_percent / Decimal("100")
    return _to_decimal(row.current_planned_hours) + _to_decimal(hours) <= limit


def planned_hours_for_employee(db: Session, employee_id: int) -> Decimal:
    stmt = select(func.coalesce(func.sum(Task.estimated_hours), 0)).where(
        Task.employee_id == employee_id,
        Task.kind == TaskKind.ASSIGNED,
        Task.status.in_(ACTIVE_TASK_STATUSES),
    )
    return _to_decimal(db.scalar(stmt))


def _lock_workload_row(db: Session, *, employee_id: int, week_start: date) -> EmployeeWorkloadCapacity:
    settings = get_settings()
    db.execute(
        pg_insert(EmployeeWorkloadCapacity)
        .values(
            employee_id=employee_id,
            week_start_date=week_start,
            weekly_capacity_hours=settings.workload_default_capacity_hours,
            current_planned_hours=Decimal("0"),
            workload_percentage=Decimal("0"),
            workload_status=WorkloadStatus.UNDER_UTILIZED,
        )
        .on_conflict_do_nothing(index_elements=["employee_id", "week_start_date"])
    )
    row = db.scalar(
        select(EmployeeWorkloadCapacity)
        .where(
            EmployeeWorkloadCapacity.employee_id == employee_id,
            EmployeeWorkloadCapacity.week_start_date == week_start,
        )
        .with_for_update()
    )
    if row is None:
        raise RuntimeError(f"Workload row could not be locked for employee {employee_id} week {week_start}")
    return row


def recalculate_workload(
    db: Session,
    *,
    employee_id: int,
    week_start: date | None = None,
    commit: bool = True,
) -> EmployeeWorkloadCapacity:
    target_week = week_start_for(week_start) if week_start is not None else current_week_start()
    row = _lock_workload_row(db, employee_id=employee_id, week_start=target_week)
    apply_planned_hours(row, planned_hours_for_employee(db, employee_id))
    if commit:
        db.commit()
        db.refresh(row)

    logger.info(
        "workload_recalculated",
        extra={
            "employee_id": employee_id,
            "week_start": target_week.isoformat(),
            "planned_hours": str(row.current_planned_hours),
            "workload_percentage": str(row.workload_percentage),
            "workload_status": row.workload_status.value,
        },
    )
    return row


def recalculate_many(
    db: Session,
    *,
    employee_ids: Iterable[int],
    week_start: date | None = None,
) -> list[EmployeeWorkloadCapacity]:
    rows = [
        recalculate_workload(db, employee_id=employee_id, week_start=week_start, commit=False)
        for employee_id in sorted(set(employee_ids))
    ]
    db.commit()
    return rows


def update_capacity(
    db: Session,
    *,
    employee_id: int,
    weekly_capacity_hours: int,
    week_start: date | None = None,
) -> EmployeeWorkloadCapacity:
    if weekly_capacity_hours < 0 or weekly_capacity_hours > MAX_WEEKLY_CAPACITY_HOURS:
        raise ValidationError(f"weekly_capacity_hours must be between 0 and {MAX_WEEKLY_CAPACITY_HOURS}")
    if db.get(Employee, employee_id) is None:
        raise NotFoundError("Employee not found")

    target_week = week_start_for(week_start) if week_start is not None else current_week_start()
    row = _lock_workload_row(db, employee_id=employee_id, week_start=target_week)
    row.weekly_capacity_hours = weekly_capacity_hours
    apply_planned_hours(row, planned_hours_for_employee(db, employee_id))
    db.commit()
    db.refresh(row)
    return row


def get_workload(db: Session, *, employee_id: int, week_start: date | None = None) -> EmployeeWorkloadCapacity:
    target_week = week_start_for(week_start) if week_start is not None else current_week_start()
    row = db.scalar(
        select(EmployeeWorkloadCapacity).where(
            EmployeeWorkloadCapacity.employee_id == employee_id,
            EmployeeWorkloadCapacity.week_start_date == target_week,
        )
    )
    if row is None:
        raise NotFoundError("Workload not calculated for this week")
    return row


def list_week_workloads(
    db: Session,
    *,
    week_start: date | None = None,
    employee_ids: Iterable[int] | None = None,
) -> list[EmployeeWorkloadCapacity]:
    target_week = week_start_for(week_start) if week_start is not None else current_week_start()
    stmt = (
        select(EmployeeWorkloadCapacity)
        .where(EmployeeWorkloadCapacity.week_start_date == target_week)
        .order_by(EmployeeWorkloadCapacity.employee_id.asc())
    )
    if employee_ids is not None:
        stmt = stmt.where(EmployeeWorkloadCapacity.employee_id.in_(list(employee_ids)))
    return list(db.scalars(stmt).all())


def workload_distribution(rows: Iterable[EmployeeWorkloadCapacity]) -> dict[str, int]:
    counts = {status.value: 0 for status in WorkloadStatus}
    for row in rows:
        counts[row.workload_status.value] += 1
    return counts


def workload_recommendations(row: EmployeeWorkloadCapacity) -> list[str]:
    percentage = _to_decimal(row.workload_percentage)
    if row.workload_status == WorkloadStatus.UNDER_UTILIZED:
        return [
            "Consider assigning additional tasks",
            f"Available capacity: {Decimal('100') - percentage}%",
        ]
    if row.workload_status == WorkloadStatus.OVER_LOADED:
        return [
            "Consider redistributing some tasks",
            f"Overload by: {percentage - Decimal('100')}%",
        ]
    if row.workload_status == WorkloadStatus.CRITICAL:
        return [
            "Urgent: Redistribute tasks immediately",
            f"Critical overload: {percentage - Decimal('100')}%",
        ]
    return ["Workload is well balanced"]


def workload_heatmap(rows: Iterable[EmployeeWorkloadCapacity]) -> list[dict[str, Any]]:
    return [
        {
            "employee_id": row.employee_id,
            "capacity_hours": row.weekly_capacity_hours,
            "planned_hours": row.current_planned_hours,
            "percentage": row.workload_percentage,
            "status": row.workload_status.value,
            "color": WORKLOAD_STATUS_COLORS[row.workload_status],
        }
        for row in rows
    ]

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from app.errors import ValidationError
from app.models import EmployeeProductivityAnalytics, Task, TaskStatus, TaskTimeLog
from app.settings import get_settings

logger = logging.getLogger("app.analytics")

TREND_INCREASING = "increasing"
TREND_DECREASING = "decreasing"
TREND_STABLE = "stable"
TREND_INSUFFICIENT_DATA = "insufficient_data"

MAX_REBUILD_DAYS = 366


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def next_streak(*, tasks_completed: int, previous_day_streak: int, previous_max_streak: int) -> tuple[int, int]:
    """Return (streak_days, max_streak) for a day given the day before it."""
    streak = previous_day_streak + 1 if tasks_completed > 0 else 0
    return streak, max(previous_max_streak, streak)


def collect_daily_counts(db: Session, *, employee_id: int, day: date) -> dict[str, Any]:
    start, end = _day_bounds(day)
    completed_on_day = and_(
        Task.status == TaskStatus.DONE,
        Task.completed_at >= start,
        Task.completed_at < end,
    )
    created_on_day = and_(Task.created_at >= start, Task.created_at < end)
    task_stmt = select(
        func.count(Task.id).filter(completed_on_day),
        func.count(Task.id).filter(created_on_day),
        func.coalesce(func.sum(Task.progress_points).filter(completed_on_day), 0),
    ).where(Task.employee_id == employee_id)
    tasks_completed, tasks_created, progress_points = db.execute(task_stmt).one()

    hours_stmt = select(func.coalesce(func.sum(TaskTimeLog.hours), 0)).where(
        TaskTimeLog.employee_id == employee_id,
        TaskTimeLog.logged_on == day,
    )
    hours_logged = db.scalar(hours_stmt)

    return {
        "tasks_completed": int(tasks_completed or 0),
        "tasks_created": int(tasks_created or 0),
        "total_progress_points": int(progress_points or 0),
        "hours_logged": Decimal(str(hours_logged or 0)),
    }


def _get_row(db: Session, *, employee_id: int, day: date) -> EmployeeProductivityAnalytics | None:
    return db.scalar(
        select(EmployeeProductivityAnalytics).where(
            EmployeeProductivityAnalytics.employee_id == employee_id,
            EmployeeProductivityAnalytics.date == day,
        )
    )


def _max_streak_before(db: Session, *, employee_id: int, day: date) -> int:
    value = db.scalar(
        select(func.coalesce(func.max(EmployeeProductivityAnalytics.max_streak), 0)).where(
            EmployeeProductivityAnalytics.employee_id == employee_id,
            EmployeeProductivityAnalytics.date < day,
        )
    )
    return int(value or 0)


def _lock_row(db: Session, *, employee_id: int, day: date) -> EmployeeProductivityAnalytics:
    db.execute(
        pg_insert(EmployeeProductivityAnalytics)
        .values(employee_id=employee_id, date=day)
        .on_conflict_do_nothing(index_elements=["employee_id", "date"])
    )
    row = db.scalar(
        select(EmployeeProductivityAnalytics)
        .where(
            EmployeeProductivityAnalytics.employee_id == employee_id,
            EmployeeProductivityAnalytics.date == day,
        )
        .with_for_update()
    )
    if row is None:
        raise RuntimeError(f"Analytics row could not be locked for employee {employee_id} on {day}")
    return row


def _propagate_streaks(
    db: Session,
    *,
    employee_id: int,
    after: date,
    previous_streak: int,
    running_max: int,
) -> int:
    later_rows = db.scalars(
        select(EmployeeProductivityAnalytics)
        .where(
            EmployeeProductivityAnalytics.employee_id == employee_id,
            EmployeeProductivityAnalytics.date > after,
        )
        .order_by(EmployeeProductivityAnalytics.date.asc())
        .with_for_update()
    ).all()

    last_day = after
    for row in later_rows:
        carried = previous_streak if row.date == last_day + timedelta(days=1) else 0
        row.streak_days, running_max = next_streak(
            tasks_completed=row.tasks_completed,
            previous_day_streak=carried,
            previous_max_streak=running_max,
        )
        row.max_streak = running_max
        previous_streak = row.streak_days
        last_day = row.date
    return len(later_rows)


def rebuild_analytics(
    db: Session,
    *,
    employee_id: int,
    start: date,
    end: date,
    commit: bool = True,
) -> list[EmployeeProductivityAnalytics]:
    if end < start:
        raise ValidationError("end must be greater than or equal to start")
    if (end - start).days + 1 > MAX_REBUILD_DAYS:
        raise ValidationError(f"range must not exceed {MAX_REBUILD_DAYS} days")

    previous = _get_row(db, employee_id=employee_id, day=start - timedelta(days=1))
    previous_streak = previous.streak_days if previous is not None else 0
    running_max = _max_streak_before(db, employee_id=employee_id, day=start)

    rows: list[EmployeeProductivityAnalytics] = []
    day = start
    while day <= end:
        row = _lock_row(db, employee_id=employee_id, day=day)
        counts = collect_daily_counts(db, employee_id=employee_id, day=day)
        row.tasks_completed = counts["tasks_completed"]
        row.tasks_created = counts["tasks_created"]
        row.total_progress_points = counts["total_progress_points"]
        row.hours_logged = counts["hours_logged"]
        row.streak_days, running_max = next_streak(
            tasks_completed=row.tasks_completed,
            previous_day_streak=previous_streak,
            previous_max_streak=running_max,
        )
        row.max_streak = running_max
        previous_streak = row.streak_days
        rows.append(row)
        day += timedelta(days=1)

    propagated = _propagate_streaks(
        db,
        employee_id=employee_id,
        after=end,
        previous_streak=previous_streak,
        running_max=running_max,
    )
    if commit:
        db.commit()

    logger.info(
        "analytics_rebuilt",
        extra={
            "employee_id": employee_id,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "days": len(rows),
            "propagated_rows": propagated,
        },
    )
    return rows


def refresh_daily_analytics(
    db: Session,
    *,
    employee_id: int,
    day: date,
    commit: bool = True,
) -> EmployeeProductivityAnalytics:
    return rebuild_analytics(db, employee_id=employee_id, start=day, end=day, commit=commit)[0]


def classify_trend(
    rows: Sequence[EmployeeProductivityAnalytics],
    *,
    as_of: date,
    window_days: int | None = None,
    threshold_percent: float | None = None,
) -> str:
    settings = get_settings()
    window = window_days if window_days is not None else settings.analytics_trend_window_days
    threshold = Decimal(str(threshold_percent if threshold_percent is not None else settings.analytics_trend_threshold_percent))
    if window <= 0:
        raise ValidationError("trend window must be positive")

    oldest = as_of - timedelta(days=2 * window - 1)
    completed_by_day = {row.date: int(row.tasks_completed or 0) for row in rows if oldest <= row.date <= as_of}
    if len(completed_by_day) < window:
        return TREND_INSUFFICIENT_DATA

    recent_start = as_of - timedelta(days=window - 1)
    recent_total = sum(value for day, value in completed_by_day.items() if day >= recent_start)
    prior_total = sum(value for day, value in completed_by_day.items() if day < recent_start)
    recent = Decimal(recent_total) / window
    prior = Decimal(prior_total) / window

    ratio = threshold / Decimal("100")
    if recent > prior * (1 + ratio):
        return TREND_INCREASING
    if recent < prior * (1 - ratio):
        return TREND_DECREASING
    return TREND_STABLE


def productivity_score(row: EmployeeProductivityAnalytics) -> float:
    tasks_completed = Decimal(int(row.tasks_completed or 0))
    progress_points = Decimal(int(row.total_progress_points or 0))
    hours_logged = Decimal(str(row.hours_logged or 0))
    streak_days = Decimal(int(row.streak_days or 0))

    score = tasks_completed * 10 * Decimal("0.4")
    score += progress_points / 10 * Decimal("0.3")
    if hours_logged > 0:
        efficiency = tasks_completed / hours_logged
        score += efficiency * 100 * Decimal("0.2")
    score += streak_days * 2 * Decimal("0.1")
    return round(float(min(score, Decimal("100"))), 2)


def list_analytics(
    db: Session,
    *,
    employee_id: int,
    start: date,
    end: date,
) -> list[EmployeeProductivityAnalytics]:
    if end < start:
        raise ValidationError("end must be greater than or equal to start")
    stmt = (
        select(EmployeeProductivityAnalytics)
        .where(
            EmployeeProductivityAnalytics.employee_id == employee_id,
            EmployeeProductivityAnalytics.date >= start,
            EmployeeProductivityAnalytics.date <= end,
        )
        .order_by(EmployeeProductivityAnalytics.date.asc())
    )
    return list(db.scalars(stmt).all())


def summarize_analytics(
    rows: Sequence[EmployeeProductivityAnalytics],
    *,
    end: date,
    trend_rows: Sequence[EmployeeProductivityAnalytics] | None = None,
) -> dict[str, Any]:
    ordered = sorted(rows, key=lambda item: item.date)
    latest = ordered[-1] if ordered else None
    current_streak = 0
    if latest is not None and latest.date >= end - timedelta(days=1):
        current_streak = int(latest.streak_days or 0)

    return {
        "days": len(ordered),
        "tasks_completed": sum(int(row.tasks_completed or 0) for row in ordered),
        "tasks_created": sum(int(row.tasks_created or 0) for row in ordered),
        "total_progress_points": sum(int(row.total_progress_points or 0) for row in ordered),
        "hours_logged": sum((Decimal(str(row.hours_logged or 0)) for row in ordered), Decimal("0")),
        "current_streak": current_streak,
        "max_streak": max((int(row.max_streak or 0) for row in ordered), default=0),
        "trend": classify_trend(trend_rows if trend_rows is not None else ordered, as_of=end),
        "average_productivity_score": (
            round(sum(productivity_score(row) for row in ordered) / len(ordered), 2) if ordered else 0.0
        ),
    }


def analytics_summary(db: Session, *, employee_id: int, start: date, end: date) -> dict[str, Any]:
    rows = list_analytics(db, employee_id=employee_id, start=start, end=end)
    window = get_settings().analytics_trend_window_days
    trend_start = end - timedelta(days=2 * window - 1)
    if trend_start < start:
        trend_rows = list_analytics(db, employee_id=employee_id, start=trend_start, end=end)
    else:
        trend_rows = [row for row in rows if row.date >= trend_start]

    summary = summarize_analytics(rows, end=end, trend_rows=trend_rows)
    summary.update(
        {
            "employee_id": employee_id,
            "start": start,
            "end": end,
            "daily": rows,
        }
    )
    return summary

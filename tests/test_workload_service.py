from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy.dialects import postgresql

from app.errors import NotFoundError, ValidationError
from app.models import Employee, EmployeeWorkloadCapacity, Task, TaskKind, TaskStatus, WorkloadStatus
from app.services.workload import (
    apply_planned_hours,
    available_capacity,
    can_take_additional_hours,
    classify_workload,
    compute_workload_percentage,
    get_workload,
    planned_hours_for_employee,
    recalculate_workload,
    update_capacity,
    week_start_for,
    workload_distribution,
    workload_heatmap,
    workload_recommendations,
)


def _row(
    *,
    employee_id: int = 7,
    week_start: date = date(2026, 3, 2),
    capacity: int = 40,
    planned: str = "0",
) -> EmployeeWorkloadCapacity:
    row = EmployeeWorkloadCapacity(
        employee_id=employee_id,
        week_start_date=week_start,
        weekly_capacity_hours=capacity,
        current_planned_hours=Decimal("0"),
        workload_percentage=Decimal("0"),
        workload_status=WorkloadStatus.UNDER_UTILIZED,
    )
    return apply_planned_hours(row, Decimal(planned))


class _FakeWorkloadDB:
    def __init__(self, *, planned_hours: Decimal, row: EmployeeWorkloadCapacity | None = None):
        self.planned_hours = planned_hours
        self.row = row
        self.employees = {7: Employee(id=7, full_name="Ada Demir", is_active=True)}
        self.executed: list[object] = []
        self.commits = 0

    def execute(self, statement):  # type: ignore[no-untyped-def]
        # INSERT ... ON CONFLICT DO NOTHING creates the row on first use.
        self.executed.append(statement)
        if self.row is None:
            self.row = EmployeeWorkloadCapacity(
                id=1,
                employee_id=7,
                week_start_date=date(2026, 3, 2),
                weekly_capacity_hours=40,
                current_planned_hours=Decimal("0"),
                workload_percentage=Decimal("0"),
                workload_status=WorkloadStatus.UNDER_UTILIZED,
            )

    def scalar(self, statement):  # type: ignore[no-untyped-def]
        sql = str(statement)
        if "sum(tasks.estimated_hours)" in sql:
            return self.planned_hours
        if "employee_workload_capacity" in sql:
            return self.row
        return None

    def get(self, model, pk):  # type: ignore[no-untyped-def]
        if model is Employee:
            return self.employees.get(pk)
        return None

    def commit(self) -> None:
        self.commits += 1

    def refresh(self, _obj: object) -> None:
        return


class WorkloadClassificationTests(unittest.TestCase):
    def test_boundaries(self) -> None:
        cases = [
            ("69.99", WorkloadStatus.UNDER_UTILIZED),
            ("70", WorkloadStatus.OPTIMAL),
            ("100", WorkloadStatus.OPTIMAL),
            ("100.01", WorkloadStatus.OVER_LOADED),
            ("120", WorkloadStatus.OVER_LOADED),
            ("120.01", WorkloadStatus.CRITICAL),
        ]
        for percentage, expected in cases:
            with self.subTest(percentage=percentage):
                self.assertEqual(classify_workload(Decimal(percentage)), expected)

    def test_twenty_five_of_forty_hours_is_under_utilized(self) -> None:
        row = _row(capacity=40, planned="25")

        self.assertEqual(row.workload_percentage, Decimal("62.50"))
        self.assertEqual(row.workload_status, WorkloadStatus.UNDER_UTILIZED)

    def test_percentage_rounds_half_up_to_two_places(self) -> None:
        self.assertEqual(compute_workload_percentage(Decimal("1"), 3), Decimal("33.33"))
        self.assertEqual(compute_workload_percentage(Decimal("2"), 3), Decimal("66.67"))
        self.assertEqual(compute_workload_percentage(Decimal("0.00025"), Decimal("1")), Decimal("0.03"))

    def test_zero_capacity_yields_zero_percent(self) -> None:
        row = _row(capacity=0, planned="12")

        self.assertEqual(row.workload_percentage, Decimal("0.00"))
        self.assertEqual(row.workload_status, WorkloadStatus.UNDER_UTILIZED)

    def test_week_start_is_monday(self) -> None:
        self.assertEqual(week_start_for(date(2026, 3, 5)), date(2026, 3, 2))
        self.assertEqual(week_start_for(date(2026, 3, 2)), date(2026, 3, 2))
        self.assertEqual(week_start_for(date(2026, 3, 8)), date(2026, 3, 2))

    def test_capacity_helpers(self) -> None:
        row = _row(capacity=40, planned="44")

        self.assertEqual(available_capacity(row), Decimal("0"))
        self.assertTrue(can_take_additional_hours(row, Decimal("4")))
        self.assertFalse(can_take_additional_hours(row, Decimal("4.01")))
        self.assertEqual(available_capacity(_row(capacity=40, planned="30")), Decimal("10.00"))

    def test_recommendations_follow_status(self) -> None:
        self.assertEqual(workload_recommendations(_row(planned="36")), ["Workload is well balanced"])
        self.assertEqual(
            workload_recommendations(_row(planned="20")),
            ["Consider assigning additional tasks", "Available capacity: 50.00%"],
        )
        self.assertEqual(
            workload_recommendations(_row(planned="60"))[0],
            "Urgent: Redistribute tasks immediately",
        )

    def test_distribution_and_heatmap(self) -> None:
        rows = [
            _row(employee_id=1, planned="20"),
            _row(employee_id=2, planned="36"),
            _row(employee_id=3, planned="44"),
            _row(employee_id=4, planned="60"),
            _row(employee_id=5, planned="38"),
        ]

        counts = workload_distribution(rows)
        heatmap = workload_heatmap(rows)

        self.assertEqual(
            counts,
            {"under_utilized": 1, "optimal": 2, "over_loaded": 1, "critical": 1},
        )
        self.assertEqual(heatmap[3]["status"], "critical")
        self.assertEqual(heatmap[3]["color"], "#FF6347")
        self.assertEqual(heatmap[0]["employee_id"], 1)


class WorkloadRecalculationTests(unittest.TestCase):
    def test_recalculate_is_idempotent(self) -> None:
        fake_db = _FakeWorkloadDB(planned_hours=Decimal("25"))

        first = recalculate_workload(fake_db, employee_id=7, week_start=date(2026, 3, 4))  # type: ignore[arg-type]
        snapshot = (first.current_planned_hours, first.workload_percentage, first.workload_status)
        second = recalculate_workload(fake_db, employee_id=7, week_start=date(2026, 3, 4))  # type: ignore[arg-type]

        self.assertIs(first, second)
        self.assertEqual(
            (second.current_planned_hours, second.workload_percentage, second.workload_status),
            snapshot,
        )
        self.assertEqual(snapshot, (Decimal("25.00"), Decimal("62.50"), WorkloadStatus.UNDER_UTILIZED))
        self.assertEqual(fake_db.commits, 2)

    def test_recalculate_without_commit_leaves_transaction_open(self) -> None:
        fake_db = _FakeWorkloadDB(planned_hours=Decimal("48.5"))

        row = recalculate_workload(fake_db, employee_id=7, commit=False)  # type: ignore[arg-type]

        self.assertEqual(row.workload_percentage, Decimal("121.25"))
        self.assertEqual(row.workload_status, WorkloadStatus.CRITICAL)
        self.assertEqual(fake_db.commits, 0)

    def test_update_capacity_reclassifies(self) -> None:
        fake_db = _FakeWorkloadDB(planned_hours=Decimal("30"))

        row = update_capacity(fake_db, employee_id=7, weekly_capacity_hours=30)  # type: ignore[arg-type]

        self.assertEqual(row.weekly_capacity_hours, 30)
        self.assertEqual(row.workload_percentage, Decimal("100.00"))
        self.assertEqual(row.workload_status, WorkloadStatus.OPTIMAL)

    def test_update_capacity_rejects_out_of_range(self) -> None:
        fake_db = _FakeWorkloadDB(planned_hours=Decimal("0"))

        with self.assertRaises(ValidationError):
            update_capacity(fake_db, employee_id=7, weekly_capacity_hours=169)  # type: ignore[arg-type]
        with self.assertRaises(NotFoundError):
            update_capacity(fake_db, employee_id=99, weekly_capacity_hours=20)  # type: ignore[arg-type]

    def test_get_workload_missing_row(self) -> None:
        fake_db = _FakeWorkloadDB(planned_hours=Decimal("0"))

        with self.assertRaises(NotFoundError):
            get_workload(fake_db, employee_id=7)  # type: ignore[arg-type]


class _TaskSumDB:
    """Evaluates the planned-hours query against in-memory tasks using its compiled bind params."""

    def __init__(self, tasks: list[Task]):
        self.tasks = tasks
        self.params: dict[str, object] = {}

    def scalar(self, statement):  # type: ignore[no-untyped-def]
        self.params = statement.compile(dialect=postgresql.dialect()).params
        matching = [
            task
            for task in self.tasks
            if task.employee_id == self.params["employee_id_1"]
            and task.kind == self.params["kind_1"]
            and task.status in self.params["status_1"]
        ]
        return sum((task.estimated_hours for task in matching if task.estimated_hours is not None), Decimal("0"))


def _planned_task(task_id: int, status: TaskStatus, hours: str | None, *, kind: TaskKind = TaskKind.ASSIGNED, employee_id: int = 7) -> Task:
    return Task(
        id=task_id,
        kind=kind,
        employee_id=employee_id,
        title=f"Task {task_id}",
        status=status,
        estimated_hours=Decimal(hours) if hours is not None else None,
    )


class PlannedHoursQueryTests(unittest.TestCase):
    def test_only_active_assigned_tasks_of_the_employee_count(self) -> None:
        fake_db = _TaskSumDB([
            _planned_task(1, TaskStatus.TODO, "10"),
            _planned_task(2, TaskStatus.DOING, "15"),
            _planned_task(3, TaskStatus.BLOCKED, "100"),
            _planned_task(4, TaskStatus.DONE, "5"),
            _planned_task(5, TaskStatus.TODO, "40", kind=TaskKind.PERSONAL),
            _planned_task(6, TaskStatus.DOING, "12", kind=TaskKind.PROJECT),
            _planned_task(7, TaskStatus.TODO, "30", employee_id=8),
            _planned_task(8, TaskStatus.TODO, None),
        ])

        planned = planned_hours_for_employee(fake_db, 7)  # type: ignore[arg-type]

        self.assertEqual(planned, Decimal("25"))
        self.assertEqual(fake_db.params["employee_id_1"], 7)
        self.assertEqual(fake_db.params["kind_1"], TaskKind.ASSIGNED)
        self.assertEqual(list(fake_db.params["status_1"]), [TaskStatus.TODO, TaskStatus.DOING])


if __name__ == "__main__":
    unittest.main()

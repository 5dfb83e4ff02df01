from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from unittest.mock import patch

from app.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models import (
    Employee,
    Task,
    TaskActivityAction,
    TaskActivityLog,
    TaskKind,
    TaskPermissionLevel,
    TaskStatus,
    TaskTimeLog,
)
from app.schemas import TaskAssignRequest, TaskCreateRequest, TaskUpdateRequest
from app.security import Actor
from app.services.tasks import (
    assign_task,
    change_task_status,
    create_task,
    delete_task,
    get_task,
    log_time,
    submit_task_feedback,
    update_task,
)

OWNER = Actor(employee_id=1, roles=frozenset({"employee"}))
COLLEAGUE = Actor(employee_id=2, roles=frozenset({"employee"}))
MANAGER = Actor(employee_id=50, roles=frozenset({"employee", "dm"}))


def _task(
    task_id: int,
    *,
    kind: TaskKind = TaskKind.ASSIGNED,
    employee_id: int = 1,
    permission_level: TaskPermissionLevel | None = TaskPermissionLevel.EDIT_PROGRESS,
    source_task_id: int | None = None,
) -> Task:
    return Task(
        id=task_id,
        kind=kind,
        employee_id=employee_id,
        title="Prepare quarterly report",
        status=TaskStatus.TODO,
        progress_points=0,
        estimated_hours=Decimal("6"),
        is_pinned=False,
        is_important=False,
        permission_level=permission_level if kind == TaskKind.ASSIGNED else None,
        source_task_id=source_task_id,
        created_at=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
    )


class _ScalarResult:
    def __init__(self, rows):
        self._rows = rows

    def all(self):  # type: ignore[no-untyped-def]
        return self._rows


class FakeTaskDB:
    def __init__(self, tasks: list[Task] | None = None, *, duplicate_id: int | None = None):
        self.tasks = {task.id: task for task in tasks or []}
        self.employees = {
            1: Employee(id=1, full_name="Ada Demir", is_active=True),
            2: Employee(id=2, full_name="Deniz Kaya", is_active=True),
            3: Employee(id=3, full_name="Former Staff", is_active=False),
        }
        self.duplicate_id = duplicate_id
        self.added: list[object] = []
        self.deleted: list[object] = []
        self.commits = 0
        self._ids = count(200)

    def get(self, model, pk):  # type: ignore[no-untyped-def]
        if model is Task:
            return self.tasks.get(pk)
        if model is Employee:
            return self.employees.get(pk)
        return None

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        return self.duplicate_id

    def scalars(self, statement):  # type: ignore[no-untyped-def]
        source_id = statement.compile().params["source_task_id_1"]
        return _ScalarResult(
            [task for task in self.tasks.values() if task.source_task_id == source_id and task not in self.deleted]
        )

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def delete(self, obj: object) -> None:
        self.deleted.append(obj)

    def flush(self) -> None:
        for obj in self.added:
            if isinstance(obj, (Task, TaskTimeLog)) and obj.id is None:
                obj.id = next(self._ids)
                if isinstance(obj, Task):
                    self.tasks[obj.id] = obj

    def commit(self) -> None:
        self.commits += 1
        self.flush()

    def rollback(self) -> None:
        return

    def refresh(self, _obj: object) -> None:
        return

    def activity(self) -> list[TaskActivityLog]:
        return [item for item in self.added if isinstance(item, TaskActivityLog)]


@patch("app.services.tasks.refresh_daily_analytics")
@patch("app.services.tasks.recalculate_workload")
class TaskPermissionTests(unittest.TestCase):
    def test_view_only_assignment_allows_flags_only(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1, permission_level=TaskPermissionLevel.VIEW_ONLY)])

        update_task(fake_db, actor=OWNER, task_id=1, payload=TaskUpdateRequest(is_pinned=True))  # type: ignore[arg-type]
        with self.assertRaises(AuthorizationError):
            update_task(fake_db, actor=OWNER, task_id=1, payload=TaskUpdateRequest(progress_points=40))  # type: ignore[arg-type]

        self.assertTrue(fake_db.tasks[1].is_pinned)
        self.assertEqual(fake_db.tasks[1].progress_points, 0)
        self.assertEqual(fake_db.activity()[0].action, TaskActivityAction.PINNED)

    def test_edit_progress_cannot_change_details(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1)])

        update_task(fake_db, actor=OWNER, task_id=1, payload=TaskUpdateRequest(progress_points=40, notes="halfway"))  # type: ignore[arg-type]
        with self.assertRaises(AuthorizationError) as ctx:
            update_task(fake_db, actor=OWNER, task_id=1, payload=TaskUpdateRequest(title="Renamed"))  # type: ignore[arg-type]

        self.assertIn("title", ctx.exception.message)
        self.assertEqual(fake_db.tasks[1].progress_points, 40)

    def test_full_edit_can_change_details(self, workload_mock, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1, permission_level=TaskPermissionLevel.FULL_EDIT)])

        task = update_task(
            fake_db,  # type: ignore[arg-type]
            actor=OWNER,
            task_id=1,
            payload=TaskUpdateRequest(title="Renamed", estimated_hours=Decimal("10")),
        )

        self.assertEqual(task.title, "Renamed")
        self.assertEqual(task.estimated_hours, Decimal("10"))
        workload_mock.assert_called_once_with(fake_db, employee_id=1, commit=False)

    def test_manager_overrides_permission_level(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1, permission_level=TaskPermissionLevel.VIEW_ONLY)])

        task = update_task(fake_db, actor=MANAGER, task_id=1, payload=TaskUpdateRequest(title="Escalated"))  # type: ignore[arg-type]

        self.assertEqual(task.title, "Escalated")

    def test_other_employee_cannot_see_task(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1)])

        with self.assertRaises(NotFoundError):
            get_task(fake_db, task_id=1, actor=COLLEAGUE)  # type: ignore[arg-type]
        with self.assertRaises(NotFoundError):
            change_task_status(fake_db, actor=COLLEAGUE, task_id=1, status=TaskStatus.DONE)  # type: ignore[arg-type]

    def test_personal_tasks_ignore_permission_level(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1, kind=TaskKind.PERSONAL)])

        task = update_task(fake_db, actor=OWNER, task_id=1, payload=TaskUpdateRequest(title="Dentist"))  # type: ignore[arg-type]

        self.assertEqual(task.title, "Dentist")


@patch("app.services.tasks.refresh_daily_analytics")
@patch("app.services.tasks.recalculate_workload")
class TaskLifecycleTests(unittest.TestCase):
    def test_create_personal_task(self, workload_mock, analytics_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB()

        task = create_task(fake_db, actor=OWNER, payload=TaskCreateRequest(title="Book travel"))  # type: ignore[arg-type]

        self.assertEqual(task.kind, TaskKind.PERSONAL)
        self.assertEqual(task.employee_id, 1)
        self.assertEqual(task.status, TaskStatus.TODO)
        self.assertEqual(fake_db.activity()[0].action, TaskActivityAction.CREATED)
        workload_mock.assert_not_called()
        analytics_mock.assert_called_once()
        self.assertEqual(analytics_mock.call_args.kwargs["employee_id"], 1)

    def test_create_rejects_assigned_kind_and_missing_project(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB()

        with self.assertRaises(ValidationError):
            create_task(fake_db, actor=OWNER, payload=TaskCreateRequest(kind=TaskKind.ASSIGNED, title="x"))  # type: ignore[arg-type]
        with self.assertRaises(ValidationError):
            create_task(fake_db, actor=OWNER, payload=TaskCreateRequest(kind=TaskKind.PROJECT, title="x"))  # type: ignore[arg-type]
        with self.assertRaises(NotFoundError):
            create_task(
                fake_db,  # type: ignore[arg-type]
                actor=OWNER,
                payload=TaskCreateRequest(kind=TaskKind.PROJECT, title="x", project_id=4),
            )

    def test_done_sets_completion_and_refreshes_projections(self, workload_mock, analytics_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1)])

        task = change_task_status(fake_db, actor=OWNER, task_id=1, status=TaskStatus.DONE)  # type: ignore[arg-type]

        self.assertEqual(task.progress_points, 100)
        self.assertIsNotNone(task.completed_at)
        self.assertEqual(fake_db.activity()[-1].action, TaskActivityAction.COMPLETED)
        workload_mock.assert_called_once_with(fake_db, employee_id=1, commit=False)
        analytics_mock.assert_called_once_with(fake_db, employee_id=1, day=task.completed_at.date(), commit=False)

    def test_reopening_done_task_clears_completion(self, _workload, analytics_mock) -> None:  # type: ignore[no-untyped-def]
        task = _task(1)
        task.status = TaskStatus.DONE
        task.completed_at = datetime(2026, 3, 3, 15, 0, tzinfo=timezone.utc)
        fake_db = FakeTaskDB([task])

        change_task_status(fake_db, actor=OWNER, task_id=1, status=TaskStatus.DOING)  # type: ignore[arg-type]

        self.assertIsNone(task.completed_at)
        analytics_mock.assert_called_once_with(fake_db, employee_id=1, day=date(2026, 3, 3), commit=False)

    def test_log_time_accumulates_actual_hours(self, _workload, analytics_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1)])
        day = datetime.now(timezone.utc).date() - timedelta(days=1)

        log_time(fake_db, actor=OWNER, task_id=1, hours=Decimal("1.5"), logged_on=day)  # type: ignore[arg-type]
        entry = log_time(fake_db, actor=OWNER, task_id=1, hours=Decimal("2"), logged_on=day)  # type: ignore[arg-type]

        self.assertEqual(fake_db.tasks[1].actual_hours, Decimal("3.5"))
        self.assertEqual(entry.logged_on, day)
        self.assertEqual(analytics_mock.call_args.kwargs["day"], day)

    def test_log_time_rejects_bad_input(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1), _task(2, permission_level=TaskPermissionLevel.VIEW_ONLY)])
        tomorrow = datetime.now(timezone.utc).date() + timedelta(days=1)

        with self.assertRaises(ValidationError):
            log_time(fake_db, actor=OWNER, task_id=1, hours=Decimal("0.05"))  # type: ignore[arg-type]
        with self.assertRaises(ValidationError):
            log_time(fake_db, actor=OWNER, task_id=1, hours=Decimal("25"))  # type: ignore[arg-type]
        with self.assertRaises(ValidationError):
            log_time(fake_db, actor=OWNER, task_id=1, hours=Decimal("1"), logged_on=tomorrow)  # type: ignore[arg-type]
        with self.assertRaises(AuthorizationError):
            log_time(fake_db, actor=OWNER, task_id=2, hours=Decimal("1"))  # type: ignore[arg-type]
        with self.assertRaises(AuthorizationError):
            log_time(fake_db, actor=MANAGER, task_id=1, hours=Decimal("1"))  # type: ignore[arg-type]

    def test_only_manager_deletes_assigned_task(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1)])

        with self.assertRaises(AuthorizationError):
            delete_task(fake_db, actor=OWNER, task_id=1)  # type: ignore[arg-type]
        delete_task(fake_db, actor=MANAGER, task_id=1)  # type: ignore[arg-type]

        self.assertEqual(fake_db.deleted, [fake_db.tasks[1]])
        self.assertEqual(fake_db.activity()[-1].action, TaskActivityAction.DELETED)

    def test_deleting_source_task_removes_its_assignments(self, workload_mock, analytics_mock) -> None:  # type: ignore[no-untyped-def]
        done_copy = _task(10, employee_id=1, source_task_id=9)
        done_copy.status = TaskStatus.DONE
        done_copy.completed_at = datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc)
        fake_db = FakeTaskDB([
            _task(9, kind=TaskKind.PROJECT, employee_id=MANAGER.employee_id),
            done_copy,
            _task(11, employee_id=2, source_task_id=9),
            _task(12, employee_id=2),
        ])

        delete_task(fake_db, actor=MANAGER, task_id=9)  # type: ignore[arg-type]

        self.assertEqual([task.id for task in fake_db.deleted], [10, 11, 9])
        deleted_activity = [
            (entry.task_kind, entry.task_id) for entry in fake_db.activity() if entry.action == TaskActivityAction.DELETED
        ]
        self.assertEqual(
            deleted_activity,
            [(TaskKind.ASSIGNED, 10), (TaskKind.ASSIGNED, 11), (TaskKind.PROJECT, 9)],
        )
        self.assertEqual(
            sorted(call.kwargs["employee_id"] for call in workload_mock.call_args_list),
            [1, 2],
        )
        refreshed_days = {(call.kwargs["employee_id"], call.kwargs["day"]) for call in analytics_mock.call_args_list}
        self.assertEqual(
            refreshed_days,
            {
                (1, date(2026, 3, 2)),
                (1, date(2026, 3, 4)),
                (2, date(2026, 3, 2)),
                (MANAGER.employee_id, date(2026, 3, 2)),
            },
        )
        self.assertEqual(fake_db.commits, 1)

    def test_feedback_requires_own_assignment(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(1), _task(2, kind=TaskKind.PERSONAL)])

        task = submit_task_feedback(fake_db, actor=OWNER, task_id=1, feedback="Clear brief", rating=4)  # type: ignore[arg-type]

        self.assertEqual(task.completion_rating, 4)
        self.assertIsNotNone(task.feedback_submitted_at)
        with self.assertRaises(NotFoundError):
            submit_task_feedback(fake_db, actor=OWNER, task_id=2, feedback="n/a")  # type: ignore[arg-type]
        with self.assertRaises(ValidationError):
            submit_task_feedback(fake_db, actor=OWNER, task_id=1, feedback="n/a", rating=6)  # type: ignore[arg-type]


@patch("app.services.tasks.refresh_daily_analytics")
@patch("app.services.tasks.recalculate_workload")
class TaskAssignmentTests(unittest.TestCase):
    def test_assign_copies_source_task(self, workload_mock, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(9, kind=TaskKind.PROJECT, employee_id=MANAGER.employee_id)])

        task = assign_task(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            payload=TaskAssignRequest(task_id=9, employee_id=2, permission_level=TaskPermissionLevel.VIEW_ONLY),
        )

        self.assertEqual(task.kind, TaskKind.ASSIGNED)
        self.assertEqual(task.source_task_id, 9)
        self.assertEqual(task.employee_id, 2)
        self.assertEqual(task.assigned_by_id, MANAGER.employee_id)
        self.assertEqual(task.estimated_hours, Decimal("6"))
        self.assertEqual(task.permission_level, TaskPermissionLevel.VIEW_ONLY)
        workload_mock.assert_called_once_with(fake_db, employee_id=2, commit=False)

    def test_assign_rejects_duplicates_and_non_managers(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([_task(9, kind=TaskKind.PROJECT, employee_id=MANAGER.employee_id)], duplicate_id=12)
        payload = TaskAssignRequest(task_id=9, employee_id=2)

        with self.assertRaises(ConflictError):
            assign_task(fake_db, actor=MANAGER, payload=payload)  # type: ignore[arg-type]
        with self.assertRaises(AuthorizationError):
            assign_task(fake_db, actor=OWNER, payload=payload)  # type: ignore[arg-type]

    def test_assign_rejects_inactive_employee_and_assigned_source(self, _workload, _analytics) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeTaskDB([
            _task(9, kind=TaskKind.PROJECT, employee_id=MANAGER.employee_id),
            _task(10, source_task_id=9),
        ])

        with self.assertRaises(NotFoundError):
            assign_task(fake_db, actor=MANAGER, payload=TaskAssignRequest(task_id=9, employee_id=3))  # type: ignore[arg-type]
        with self.assertRaises(ValidationError):
            assign_task(fake_db, actor=MANAGER, payload=TaskAssignRequest(task_id=10, employee_id=2))  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import contextlib
import unittest
from datetime import datetime, timezone
from itertools import count
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.errors import AuthorizationError, InvalidStateError, NotFoundError
from app.models import (
    BulkOperationStatus,
    BulkOperationType,
    BulkTaskOperation,
    Employee,
    Task,
    TaskKind,
    TaskPermissionLevel,
    TaskStatus,
)
from app.security import Actor
from app.services.bulk_operations import (
    create_bulk_operation,
    get_operation,
    normalize_operation_data,
    normalize_task_ids,
    operation_description,
    process_bulk_operation,
)

MANAGER = Actor(employee_id=50, roles=frozenset({"employee", "dm"}))
EMPLOYEE = Actor(employee_id=1, roles=frozenset({"employee"}))


def _task(task_id: int, *, kind: TaskKind = TaskKind.ASSIGNED, employee_id: int = 1) -> Task:
    return Task(
        id=task_id,
        kind=kind,
        employee_id=employee_id,
        title=f"Task {task_id}",
        status=TaskStatus.TODO,
        progress_points=0,
        is_pinned=False,
        is_important=False,
        permission_level=TaskPermissionLevel.EDIT_PROGRESS if kind == TaskKind.ASSIGNED else None,
        created_at=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
    )


class FakeBulkDB:
    def __init__(self, tasks: list[Task], *, fail_on_commit: int | None = None):
        self.tasks = {task.id: task for task in tasks}
        self.employees = {2: Employee(id=2, full_name="Deniz Kaya", is_active=True)}
        self.operations: dict[int, BulkTaskOperation] = {}
        self.added: list[object] = []
        self.deleted: list[object] = []
        self.fail_on_commit = fail_on_commit
        self.commits = 0
        self.rollbacks = 0
        self._ids = count(1)

    def begin_nested(self):  # type: ignore[no-untyped-def]
        return contextlib.nullcontext()

    def get(self, model, pk):  # type: ignore[no-untyped-def]
        if model is Task:
            return self.tasks.get(pk)
        if model is Employee:
            return self.employees.get(pk)
        if model is BulkTaskOperation:
            return self.operations.get(pk)
        return None

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        return None

    def add(self, obj: object) -> None:
        self.added.append(obj)
        if isinstance(obj, BulkTaskOperation):
            obj.id = next(self._ids)
            self.operations[obj.id] = obj

    def delete(self, obj: object) -> None:
        self.deleted.append(obj)
        if isinstance(obj, Task):
            self.tasks.pop(obj.id, None)

    def flush(self) -> None:
        return

    def commit(self) -> None:
        self.commits += 1
        if self.fail_on_commit is not None and self.commits == self.fail_on_commit:
            raise OperationalError("COMMIT", {}, Exception("connection lost"))

    def rollback(self) -> None:
        self.rollbacks += 1

    def refresh(self, _obj: object) -> None:
        return


class NormalizationTests(unittest.TestCase):
    def test_task_ids_keep_every_submitted_entry(self) -> None:
        self.assertEqual(normalize_task_ids([3, 1, 3, 2]), [3, 1, 3, 2])

    def test_task_ids_limit_counts_repeats(self) -> None:
        with patch("app.services.bulk_operations.get_settings") as settings_mock:
            settings_mock.return_value.bulk_operation_max_tasks = 2
            with self.assertRaises(ValueError):
                normalize_task_ids([1, 1, 1])

    def test_task_ids_reject_bad_values(self) -> None:
        for raw in ([], "1,2", [1, "2"], [0], [True], None):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    normalize_task_ids(raw)

    def test_operation_data_per_type(self) -> None:
        self.assertEqual(
            normalize_operation_data(BulkOperationType.UPDATE_STATUS, {"new_status": "done"}),
            {"new_status": "done"},
        )
        self.assertEqual(
            normalize_operation_data(BulkOperationType.UPDATE_DUE_DATE, {"new_due_date": "2026-04-01"}),
            {"new_due_date": "2026-04-01"},
        )
        self.assertEqual(normalize_operation_data(BulkOperationType.BULK_DELETE, None), {})
        with self.assertRaises(ValueError):
            normalize_operation_data(BulkOperationType.REASSIGN, {"new_assignee_id": "2"})
        with self.assertRaises(ValueError):
            normalize_operation_data(BulkOperationType.UPDATE_STATUS, {"new_status": "finished"})
        with self.assertRaises(ValueError):
            normalize_operation_data(BulkOperationType.UPDATE_PRIORITY, {"is_important": "yes"})


@patch("app.services.bulk_operations.refresh_derived")
class BulkOperationTests(unittest.TestCase):
    def test_partial_failures_are_recorded_per_item(self, refresh_mock) -> None:  # type: ignore[no-untyped-def]
        tasks = [_task(task_id) for task_id in range(1, 8)]
        tasks.append(_task(10, kind=TaskKind.PERSONAL))
        fake_db = FakeBulkDB(tasks)

        operation = create_bulk_operation(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            operation_type="update_status",
            task_ids=list(range(1, 11)),
            operation_data={"new_status": "done"},
        )

        self.assertEqual(operation.status, BulkOperationStatus.COMPLETED)
        self.assertEqual(operation.total_tasks, 10)
        self.assertEqual(operation.processed_tasks, 10)
        self.assertEqual(operation.failed_tasks, 3)
        self.assertEqual([entry["task_id"] for entry in operation.error_log], [8, 9, 10])
        self.assertEqual(operation.error_log[0]["error"], "Task not found")
        self.assertIn("timestamp", operation.error_log[0])
        for task_id in range(1, 8):
            self.assertEqual(fake_db.tasks[task_id].status, TaskStatus.DONE)
            self.assertEqual(fake_db.tasks[task_id].progress_points, 100)
        self.assertEqual(fake_db.tasks[10].status, TaskStatus.TODO)
        self.assertIsNotNone(operation.started_at)
        self.assertIsNotNone(operation.completed_at)
        changes = refresh_mock.call_args.args[1]
        self.assertEqual(changes.workload_employee_ids, {1})

    def test_reassign_moves_tasks(self, _refresh_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeBulkDB([_task(1), _task(2)])

        operation = create_bulk_operation(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            operation_type=BulkOperationType.REASSIGN,
            task_ids=[1, 2],
            operation_data={"new_assignee_id": 2},
        )

        self.assertEqual(operation.failed_tasks, 0)
        self.assertEqual({task.employee_id for task in fake_db.tasks.values()}, {2})
        self.assertEqual(operation_description(operation), "reassigned 2 task(s)")

    def test_bulk_delete_removes_assigned_tasks(self, _refresh_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeBulkDB([_task(1), _task(2)])

        operation = create_bulk_operation(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            operation_type="bulk_delete",
            task_ids=[1, 2],
            operation_data={},
        )

        self.assertEqual(operation.status, BulkOperationStatus.COMPLETED)
        self.assertEqual(fake_db.tasks, {})

    def test_malformed_task_ids_fail_the_operation(self, refresh_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeBulkDB([_task(1)])

        operation = create_bulk_operation(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            operation_type="update_priority",
            task_ids=[1, "two"],
            operation_data={"is_important": True},
        )

        self.assertEqual(operation.status, BulkOperationStatus.FAILED)
        self.assertEqual(len(operation.error_log), 1)
        self.assertIsNone(operation.error_log[0]["task_id"])
        self.assertEqual(operation.processed_tasks, 0)
        self.assertFalse(fake_db.tasks[1].is_important)
        refresh_mock.assert_not_called()

    def test_unknown_operation_type_is_stored_as_failed(self, refresh_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeBulkDB([_task(1)])

        operation = create_bulk_operation(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            operation_type="archive",
            task_ids=[1, 1],
            operation_data={"reason": "cleanup"},
        )

        self.assertEqual(fake_db.added, [operation])
        self.assertEqual(fake_db.operations[operation.id], operation)
        self.assertEqual(operation.status, BulkOperationStatus.FAILED)
        self.assertIsNone(operation.operation_type)
        self.assertEqual(operation.task_ids, [1, 1])
        self.assertEqual(operation.operation_data, {"reason": "cleanup"})
        self.assertEqual(operation.total_tasks, 2)
        self.assertEqual(operation.processed_tasks, 0)
        self.assertEqual(operation.error_log[0]["task_id"], None)
        self.assertEqual(operation.error_log[0]["error"], "Unknown operation_type: archive")
        self.assertIsNotNone(operation.completed_at)
        self.assertEqual(operation_description(operation), "performed a bulk operation on 2 task(s)")
        self.assertFalse(fake_db.tasks[1].is_important)
        refresh_mock.assert_not_called()

    def test_repeated_task_id_is_counted_as_failed_item(self, _refresh_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeBulkDB([_task(1), _task(2)])

        operation = create_bulk_operation(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            operation_type="update_status",
            task_ids=[1, 1, 2],
            operation_data={"new_status": "doing"},
        )

        self.assertEqual(operation.status, BulkOperationStatus.COMPLETED)
        self.assertEqual(operation.task_ids, [1, 1, 2])
        self.assertEqual(operation.total_tasks, 3)
        self.assertEqual(operation.processed_tasks, 3)
        self.assertEqual(operation.failed_tasks, 1)
        self.assertEqual(operation.progress_percentage, 100.0)
        self.assertEqual(len(operation.error_log), 1)
        self.assertEqual(operation.error_log[0]["task_id"], 1)
        self.assertEqual(operation.error_log[0]["error"], "Duplicate task id")
        self.assertEqual(fake_db.tasks[1].status, TaskStatus.DOING)
        self.assertEqual(fake_db.tasks[2].status, TaskStatus.DOING)

    def test_requires_manager_role(self, _refresh_mock) -> None:  # type: ignore[no-untyped-def]
        with self.assertRaises(AuthorizationError):
            create_bulk_operation(
                FakeBulkDB([]),  # type: ignore[arg-type]
                actor=EMPLOYEE,
                operation_type="bulk_delete",
                task_ids=[1],
                operation_data={},
            )

    def test_commit_failure_marks_operation_failed(self, _refresh_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeBulkDB([_task(1), _task(2), _task(3)], fail_on_commit=3)

        operation = create_bulk_operation(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            operation_type="update_status",
            task_ids=[1, 2, 3],
            operation_data={"new_status": "doing"},
        )

        self.assertEqual(operation.status, BulkOperationStatus.FAILED)
        self.assertEqual(operation.processed_tasks, 0)
        self.assertEqual(operation.failed_tasks, 3)
        self.assertEqual(fake_db.rollbacks, 1)
        self.assertIn("OperationalError", operation.error_log[0]["error"])

    def test_finished_operation_cannot_be_processed_again(self, _refresh_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeBulkDB([_task(1)])
        operation = create_bulk_operation(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            operation_type="update_priority",
            task_ids=[1],
            operation_data={"is_important": True},
        )

        with self.assertRaises(InvalidStateError):
            process_bulk_operation(fake_db, operation=operation, actor=MANAGER)  # type: ignore[arg-type]

    def test_operations_are_visible_to_initiator_only(self, _refresh_mock) -> None:  # type: ignore[no-untyped-def]
        fake_db = FakeBulkDB([_task(1)])
        operation = create_bulk_operation(
            fake_db,  # type: ignore[arg-type]
            actor=MANAGER,
            operation_type="update_priority",
            task_ids=[1],
            operation_data={"is_important": True},
        )
        other_manager = Actor(employee_id=51, roles=frozenset({"employee", "gm"}))
        admin = Actor(employee_id=99, roles=frozenset({"employee", "admin"}))

        self.assertIs(get_operation(fake_db, actor=MANAGER, operation_id=operation.id), operation)  # type: ignore[arg-type]
        self.assertIs(get_operation(fake_db, actor=admin, operation_id=operation.id), operation)  # type: ignore[arg-type]
        with self.assertRaises(NotFoundError):
            get_operation(fake_db, actor=other_manager, operation_id=operation.id)  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()

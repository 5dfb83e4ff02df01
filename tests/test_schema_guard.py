from __future__ import annotations

import unittest
from unittest.mock import patch

from app.services.schema_guard import REQUIRED_ENUM_VALUES, REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


def _complete_columns() -> dict[str, set[str]]:
    return {table: set(columns) | {"created_at"} for table, columns in REQUIRED_TABLE_COLUMNS.items()}


def _complete_enums() -> list[dict[str, object]]:
    return [{"name": name, "labels": sorted(values)} for name, values in REQUIRED_ENUM_VALUES.items()]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(columns_by_table=_complete_columns(), enums=_complete_enums())
        fake_engine = _FakeEngine("0003_workload_analytics_bulk")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_columns(self) -> None:
        columns = _complete_columns()
        columns["timesheet_approvals"].discard("cycle")
        columns["employee_workload_capacity"].discard("workload_status")
        del columns["bulk_task_operations"]
        enums = [
            item if item["name"] != "timesheet_approval_status" else {"name": item["name"], "labels": ["pending"]}
            for item in _complete_enums()
        ]
        fake_inspector = _FakeInspector(columns_by_table=columns, enums=enums)
        fake_engine = _FakeEngine("")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:timesheet_approvals:cycle", result.issues)
        self.assertIn("MISSING_COLUMNS:employee_workload_capacity:workload_status", result.issues)
        self.assertIn("TABLE_UNREADABLE:bulk_task_operations:KeyError", result.issues)
        self.assertTrue(
            any(item.startswith("MISSING_ENUM_VALUES:timesheet_approval_status:") for item in result.issues)
        )
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_verify_runtime_schema_warns_when_enum_missing(self) -> None:
        enums = [item for item in _complete_enums() if item["name"] != "workload_status"]
        fake_inspector = _FakeInspector(columns_by_table=_complete_columns(), enums=enums)

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0003_workload_analytics_bulk"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.warnings, ["ENUM_NOT_FOUND:workload_status"])
        self.assertEqual(result.to_dict()["warning_count"], 1)


if __name__ == "__main__":
    unittest.main()

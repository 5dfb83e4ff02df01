#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.settings import get_settings

EXPECTED_HEAD = "0003_workload_analytics_bulk"


def run() -> dict:
    database_url = get_settings().database_url
    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        required_by_revision = {
            "0001+": ["employees", "departments", "projects", "tasks", "task_time_logs", "task_activity_logs"],
            "0002+": ["timesheets", "timesheet_rows", "timesheet_approvals", "timesheet_workflow_history"],
            "0003+": ["employee_workload_capacity", "employee_productivity_analytics", "bulk_task_operations"],
        }
        missing = {
            rev: [table for table in required if table not in tables]
            for rev, required in required_by_revision.items()
        }
        missing = {rev: tables_ for rev, tables_ in missing.items() if tables_}
        add("missing_tables_by_revision", "warn" if missing else "ok", missing)

        if "timesheet_rows" in tables:
            bad_totals = conn.execute(
                text(
                    """
                    select id
                    from timesheet_rows
                    where total_hours <> hours_monday + hours_tuesday + hours_wednesday
                        + hours_thursday + hours_friday + hours_saturday + hours_sunday
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "timesheet_row_total_mismatch",
                "fail" if bad_totals else "ok",
                {"sample_ids": [row[0] for row in bad_totals]},
            )

        if "timesheet_approvals" in tables:
            duplicate_approvals = conn.execute(
                text(
                    """
                    select timesheet_id, cycle, approver_role, count(*)
                    from timesheet_approvals
                    where status = 'approved'
                    group by timesheet_id, cycle, approver_role
                    having count(*) > 1
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "timesheet_duplicate_stage_approval",
                "fail" if duplicate_approvals else "ok",
                {"rows": [list(row) for row in duplicate_approvals]},
            )

            approved_incomplete = conn.execute(
                text(
                    """
                    select t.id
                    from timesheets t
                    where t.overall_status = 'approved'
                      and (
                        select count(distinct a.approver_role)
                        from timesheet_approvals a
                        where a.timesheet_id = t.id
                          and a.cycle = t.submission_count
                          and a.status = 'approved'
                      ) < 3
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "timesheet_approved_without_all_stages",
                "fail" if approved_incomplete else "ok",
                {"sample_ids": [row[0] for row in approved_incomplete]},
            )

        if "bulk_task_operations" in tables:
            stuck_operations = conn.execute(
                text(
                    """
                    select id
                    from bulk_task_operations
                    where status = 'in_progress'
                      and started_at < now() - interval '1 hour'
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "bulk_operation_stuck_in_progress",
                "warn" if stuck_operations else "ok",
                {"sample_ids": [row[0] for row in stuck_operations]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))

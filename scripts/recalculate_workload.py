#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from pathlib import Path

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.db import SessionLocal
from app.logging_utils import setup_json_logging
from app.models import Employee
from app.services.workload import recalculate_many


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recalculate weekly workload rows.")
    parser.add_argument(
        "--employee",
        type=int,
        action="append",
        dest="employee_ids",
        help="Employee id to recalculate; repeatable. Defaults to every active employee.",
    )
    parser.add_argument(
        "--week",
        type=date.fromisoformat,
        default=None,
        help="Any date inside the target week (YYYY-MM-DD). Defaults to the current week.",
    )
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> dict:
    args = parse_args(argv)
    setup_json_logging(service="workload-recalculate")
    with SessionLocal() as db:
        employee_ids = args.employee_ids
        if not employee_ids:
            employee_ids = list(db.scalars(select(Employee.id).where(Employee.is_active.is_(True))).all())
        rows = recalculate_many(db, employee_ids=employee_ids, week_start=args.week)
        return {
            "recalculated": len(rows),
            "rows": [
                {
                    "employee_id": row.employee_id,
                    "week_start_date": row.week_start_date.isoformat(),
                    "planned_hours": str(row.current_planned_hours),
                    "workload_percentage": str(row.workload_percentage),
                    "workload_status": row.workload_status.value,
                }
                for row in rows
            ],
        }


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))

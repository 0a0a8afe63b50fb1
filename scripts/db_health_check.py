#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


EXPECTED_HEAD = "0001_deduction_engine"

REQUIRED_TABLES = (
    "companies",
    "company_deduction_policies",
    "employees",
    "shift_definitions",
    "shift_assignments",
    "attendance_records",
    "monthly_grace_balances",
    "deduction_records",
    "audit_logs",
)


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def ledger_checks() -> list[tuple[str, str]]:
    """(check name, SQL returning offending rows) pairs for the grace ledger invariants."""
    return [
        (
            "grace_used_exceeds_allowance",
            """
            select b.id, b.employee_id, b.month, b.year, b.grace_minutes_used, p.monthly_grace_minutes
            from monthly_grace_balances b
            join employees e on e.id = b.employee_id
            left join company_deduction_policies p on p.company_id = e.company_id
            where b.grace_minutes_used > coalesce(p.monthly_grace_minutes, 60)
            limit 20
            """,
        ),
        (
            "negative_ledger_counters",
            """
            select id, employee_id, month, year
            from monthly_grace_balances
            where total_late_minutes < 0
               or grace_minutes_used < 0
               or deducted_minutes < 0
               or total_deduction_amount < 0
               or late_count < 0
            limit 20
            """,
        ),
        (
            "deduction_sum_mismatch",
            """
            select b.id, b.employee_id, b.month, b.year, b.total_deduction_amount, coalesce(d.active_total, 0)
            from monthly_grace_balances b
            left join (
                select employee_id, effective_month, effective_year, sum(amount) as active_total
                from deduction_records
                where status <> 'CANCELLED'
                group by employee_id, effective_month, effective_year
            ) d
              on d.employee_id = b.employee_id
             and d.effective_month = b.month
             and d.effective_year = b.year
            where b.total_deduction_amount <> coalesce(d.active_total, 0)
            limit 20
            """,
        ),
        (
            "cancelled_but_applied",
            """
            select id, employee_id
            from deduction_records
            where status = 'CANCELLED' and applied_to_payroll = true
            limit 20
            """,
        ),
        (
            "multiple_open_attendance",
            """
            select employee_id, count(*)
            from attendance_records
            where check_in_utc is not null and check_out_utc is null
            group by employee_id
            having count(*) > 1
            """,
        ),
    ]


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database_url": database_url,
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

        missing = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing else "ok", {"tables": missing})
        if missing:
            return report

        for name, sql in ledger_checks():
            rows = conn.execute(text(sql)).fetchall()
            add(
                name,
                "fail" if rows else "ok",
                {"rows": [[str(value) for value in row] for row in rows]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))

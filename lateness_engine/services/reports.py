from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lateness_engine.models import DeductionRecord, DeductionStatus, DeductionType, Employee, MonthlyGraceBalance
from lateness_engine.services.deduction_calc import money
from lateness_engine.services.grace_ledger import remaining_grace
from lateness_engine.services.policies import get_company_policy, get_employee


def _balance_view(balance: MonthlyGraceBalance | None, *, month: int, year: int, monthly_grace_minutes: int) -> dict[str, Any]:
    if balance is None:
        return {
            "month": month,
            "year": year,
            "total_late_minutes": 0,
            "grace_minutes_used": 0,
            "deducted_minutes": 0,
            "total_deduction_amount": Decimal("0.00"),
            "late_count": 0,
            "monthly_grace_minutes": monthly_grace_minutes,
            "remaining_grace_minutes": monthly_grace_minutes,
        }
    return {
        "month": month,
        "year": year,
        "total_late_minutes": balance.total_late_minutes,
        "grace_minutes_used": balance.grace_minutes_used,
        "deducted_minutes": balance.deducted_minutes,
        "total_deduction_amount": money(Decimal(balance.total_deduction_amount)),
        "late_count": balance.late_count,
        "monthly_grace_minutes": monthly_grace_minutes,
        "remaining_grace_minutes": remaining_grace(balance, monthly_grace_minutes),
    }


def get_employee_monthly_report(db: Session, employee_id: int, month: int, year: int) -> dict[str, Any]:
    employee = get_employee(db, employee_id)
    policy = get_company_policy(db, employee.company_id)

    balance = db.scalar(
        select(MonthlyGraceBalance).where(
            MonthlyGraceBalance.employee_id == employee_id,
            MonthlyGraceBalance.month == month,
            MonthlyGraceBalance.year == year,
        )
    )
    deductions = list(
        db.scalars(
            select(DeductionRecord)
            .where(
                DeductionRecord.employee_id == employee_id,
                DeductionRecord.effective_month == month,
                DeductionRecord.effective_year == year,
            )
            .order_by(DeductionRecord.created_at.asc(), DeductionRecord.id.asc())
        ).all()
    )

    active_total = Decimal("0")
    cancelled_total = Decimal("0")
    for deduction in deductions:
        if deduction.status == DeductionStatus.CANCELLED:
            cancelled_total += Decimal(deduction.amount)
        else:
            active_total += Decimal(deduction.amount)

    return {
        "employee_id": employee.id,
        "full_name": employee.full_name,
        "balance": _balance_view(balance, month=month, year=year, monthly_grace_minutes=policy.monthly_grace_minutes),
        "deductions": deductions,
        "active_deduction_total": money(active_total),
        "cancelled_deduction_total": money(cancelled_total),
    }


def get_grace_balance_alerts(db: Session, company_id: int, month: int, year: int) -> list[dict[str, Any]]:
    """Employees whose grace usage for the month reached the company's alert percentage."""
    policy = get_company_policy(db, company_id)
    allowance = policy.monthly_grace_minutes

    rows = db.execute(
        select(Employee, MonthlyGraceBalance)
        .join(MonthlyGraceBalance, MonthlyGraceBalance.employee_id == Employee.id)
        .where(
            Employee.company_id == company_id,
            MonthlyGraceBalance.month == month,
            MonthlyGraceBalance.year == year,
        )
        .order_by(MonthlyGraceBalance.grace_minutes_used.desc(), Employee.id.asc())
    ).all()

    alerts: list[dict[str, Any]] = []
    for employee, balance in rows:
        used = balance.grace_minutes_used or 0
        if allowance <= 0:
            usage = 100.0
        else:
            usage = round(used * 100 / allowance, 1)
        exhausted = used >= allowance
        if not exhausted and usage < policy.notify_at_percentage:
            continue
        alerts.append(
            {
                "employee_id": employee.id,
                "full_name": employee.full_name,
                "grace_minutes_used": used,
                "monthly_grace_minutes": allowance,
                "usage_percentage": usage,
                "exhausted": exhausted,
            }
        )
    return alerts


def get_company_monthly_stats(db: Session, company_id: int, month: int, year: int) -> dict[str, Any]:
    ledger_totals = db.execute(
        select(
            func.count(MonthlyGraceBalance.id),
            func.coalesce(func.sum(MonthlyGraceBalance.total_late_minutes), 0),
            func.coalesce(func.sum(MonthlyGraceBalance.grace_minutes_used), 0),
        )
        .join(Employee, Employee.id == MonthlyGraceBalance.employee_id)
        .where(
            Employee.company_id == company_id,
            MonthlyGraceBalance.month == month,
            MonthlyGraceBalance.year == year,
            MonthlyGraceBalance.late_count > 0,
        )
    ).one()

    grouped = db.execute(
        select(
            DeductionRecord.status,
            DeductionRecord.type,
            func.count(DeductionRecord.id),
            func.coalesce(func.sum(DeductionRecord.amount), 0),
        )
        .where(
            DeductionRecord.company_id == company_id,
            DeductionRecord.effective_month == month,
            DeductionRecord.effective_year == year,
        )
        .group_by(DeductionRecord.status, DeductionRecord.type)
    ).all()

    buckets: dict[tuple[DeductionStatus, DeductionType], dict[str, Any]] = defaultdict(
        lambda: {"count": 0, "total_amount": Decimal("0")}
    )
    for status, deduction_type, count, total in grouped:
        bucket = buckets[(status, deduction_type)]
        bucket["count"] += int(count)
        bucket["total_amount"] += Decimal(str(total))

    by_status = [
        {
            "status": status,
            "type": deduction_type,
            "count": values["count"],
            "total_amount": money(values["total_amount"]),
        }
        for (status, deduction_type), values in sorted(buckets.items(), key=lambda item: (item[0][0].value, item[0][1].value))
    ]
    active_total = sum(
        (item["total_amount"] for item in by_status if item["status"] != DeductionStatus.CANCELLED),
        Decimal("0"),
    )

    return {
        "company_id": company_id,
        "month": month,
        "year": year,
        "employees_with_lateness": int(ledger_totals[0]),
        "total_late_minutes": int(ledger_totals[1]),
        "total_grace_minutes_used": int(ledger_totals[2]),
        "by_status": by_status,
        "active_deduction_total": money(active_total),
    }

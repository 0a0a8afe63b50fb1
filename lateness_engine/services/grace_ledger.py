from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lateness_engine.errors import LedgerConflictError, LedgerConsistencyError
from lateness_engine.models import MonthlyGraceBalance
from lateness_engine.services.deduction_calc import BalanceSnapshot, LedgerDelta, money

logger = logging.getLogger("lateness_engine.grace_ledger")

_COUNTERS = ("late_minutes", "grace_minutes", "deducted_minutes", "late_count")


def lock_balance(db: Session, *, employee_id: int, month: int, year: int) -> MonthlyGraceBalance | None:
    return db.scalar(
        select(MonthlyGraceBalance)
        .where(
            MonthlyGraceBalance.employee_id == employee_id,
            MonthlyGraceBalance.month == month,
            MonthlyGraceBalance.year == year,
        )
        .with_for_update()
    )


def get_or_create_balance(db: Session, *, employee_id: int, month: int, year: int) -> MonthlyGraceBalance:
    """Locked balance row for the employee-month, created with zero counters on first use.

    Callers hold the employee row lock, so two creators for the same month
    only race when that discipline is bypassed; the unique constraint then
    surfaces as ``LedgerConflictError`` and the whole transaction is retried
    by the client.
    """
    balance = lock_balance(db, employee_id=employee_id, month=month, year=year)
    if balance is not None:
        return balance

    balance = MonthlyGraceBalance(
        employee_id=employee_id,
        month=month,
        year=year,
        total_late_minutes=0,
        grace_minutes_used=0,
        deducted_minutes=0,
        total_deduction_amount=Decimal("0.00"),
        late_count=0,
    )
    db.add(balance)
    try:
        db.flush()
    except IntegrityError as exc:
        raise LedgerConflictError("Grace balance for this month was created concurrently. Retry the request.") from exc

    logger.info(
        "grace_balance_created",
        extra={"employee_id": employee_id, "month": month, "year": year},
    )
    return balance


def snapshot(balance: MonthlyGraceBalance) -> BalanceSnapshot:
    return BalanceSnapshot(
        grace_minutes_used=balance.grace_minutes_used or 0,
        late_count=balance.late_count or 0,
    )


def remaining_grace(balance: MonthlyGraceBalance, monthly_grace_minutes: int) -> int:
    return max(0, monthly_grace_minutes - (balance.grace_minutes_used or 0))


def apply_lateness(balance: MonthlyGraceBalance, delta: LedgerDelta) -> MonthlyGraceBalance:
    for name in _COUNTERS:
        if getattr(delta, name) < 0:
            raise LedgerConsistencyError(f"Ledger delta has a negative {name}.")
    if delta.amount < 0:
        raise LedgerConsistencyError("Ledger delta has a negative amount.")

    balance.total_late_minutes = (balance.total_late_minutes or 0) + delta.late_minutes
    balance.grace_minutes_used = (balance.grace_minutes_used or 0) + delta.grace_minutes
    balance.deducted_minutes = (balance.deducted_minutes or 0) + delta.deducted_minutes
    balance.total_deduction_amount = money(Decimal(balance.total_deduction_amount or 0) + delta.amount)
    balance.late_count = (balance.late_count or 0) + delta.late_count
    return balance


def reverse(balance: MonthlyGraceBalance, delta: LedgerDelta) -> MonthlyGraceBalance:
    after = {
        "total_late_minutes": (balance.total_late_minutes or 0) - delta.late_minutes,
        "grace_minutes_used": (balance.grace_minutes_used or 0) - delta.grace_minutes,
        "deducted_minutes": (balance.deducted_minutes or 0) - delta.deducted_minutes,
        "total_deduction_amount": money(Decimal(balance.total_deduction_amount or 0) - delta.amount),
        "late_count": (balance.late_count or 0) - delta.late_count,
    }
    negative = [name for name, value in after.items() if value < 0]
    if negative:
        logger.error(
            "grace_balance_underflow",
            extra={
                "balance_id": balance.id,
                "employee_id": balance.employee_id,
                "month": balance.month,
                "year": balance.year,
                "counters": negative,
            },
        )
        raise LedgerConsistencyError(
            f"Reversal would drive {', '.join(negative)} negative for balance {balance.id}."
        )

    for name, value in after.items():
        setattr(balance, name, value)
    return balance

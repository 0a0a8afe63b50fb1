from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from lateness_engine.audit import log_audit
from lateness_engine.errors import (
    AlreadyAppliedError,
    DeductionNotFoundError,
    InvalidDeductionStateError,
    LedgerConflictError,
    LedgerConsistencyError,
)
from lateness_engine.models import (
    AttendanceRecord,
    AuditActorType,
    DeductionRecord,
    DeductionStatus,
    DeductionType,
    Employee,
)
from lateness_engine.services.deduction_calc import CompanyPolicyConfig, DeductionBreakdown, LedgerDelta, money
from lateness_engine.services.grace_ledger import lock_balance, reverse
from lateness_engine.services.policies import get_employee
from lateness_engine.settings import get_settings

logger = logging.getLogger("lateness_engine.deduction_issuer")

RATE_PLACES = Decimal("0.0001")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fmt(value: Decimal | None) -> str:
    if value is None:
        return "-"
    text = format(value.quantize(RATE_PLACES, rounding=ROUND_HALF_UP), "f")
    return text.rstrip("0").rstrip(".") if "." in text else text


def _amount(value: Decimal | None) -> str:
    if value is None:
        return "-"
    return format(money(value), "f")


def render_justification(breakdown: DeductionBreakdown) -> str:
    if breakdown.kind == DeductionType.EARLY_LEAVE.value:
        parts = [f"Left {breakdown.late_minutes} min before shift end (threshold {breakdown.daily_threshold} min)."]
        parts.append(f"{breakdown.deduct_minutes} min deducted at {_fmt(breakdown.base_rate)}/min.")
    else:
        parts = [f"Late {breakdown.late_minutes} min (daily threshold {breakdown.daily_threshold} min)."]
        if breakdown.immediate_deduct:
            parts.append(f"{breakdown.immediate_deduct} min over the threshold deducted directly.")
        parts.append(
            f"{breakdown.use_grace_minutes} of {breakdown.grace_eligible_minutes} threshold min covered by grace "
            f"({breakdown.remaining_grace_after} of {breakdown.monthly_grace_minutes} monthly grace min left)."
        )
        if breakdown.additional_deduct:
            parts.append(f"{breakdown.additional_deduct} min deducted after grace ran out.")
        parts.append(
            f"Violation #{breakdown.prior_violations + 1} this month, multiplier x{_fmt(breakdown.multiplier)}."
        )
        if breakdown.policy_mode == "TIERED":
            if breakdown.tier_min_minutes is None:
                parts.append("No deduction tier matched.")
            else:
                parts.append(
                    f"Tier from {breakdown.tier_min_minutes} min: {_fmt(breakdown.tier_deduction_days)} day(s) "
                    f"at daily salary {_amount(breakdown.daily_salary)}."
                )
        else:
            parts.append(
                f"{breakdown.deduct_minutes} min at {_fmt(breakdown.effective_rate)}/min."
            )

    if breakdown.is_capped:
        parts.append(
            f"Amount {_amount(breakdown.original_amount)} capped at daily maximum {_amount(breakdown.max_deduction_amount)}."
        )
    parts.append(f"Total deduction: {_amount(breakdown.total_deduction)}.")
    return " ".join(parts)


def issue_deduction(
    db: Session,
    *,
    employee: Employee,
    attendance: AttendanceRecord,
    breakdown: DeductionBreakdown,
    deduction_type: DeductionType,
    policy: CompanyPolicyConfig,
    effective_month: int,
    effective_year: int,
) -> DeductionRecord:
    """Stage a deduction record for ``attendance`` in the caller's transaction.

    With review required the record waits as PENDING; otherwise it is
    approved on the spot by the system actor. Zero-amount events still get a
    record so their ledger increments can be cancelled; they carry
    ``is_financial: false`` and never wait for review.
    """
    settings = get_settings()
    now = _utcnow()
    is_financial = breakdown.total_deduction > 0
    needs_review = policy.require_deduction_review and is_financial

    record = DeductionRecord(
        company_id=employee.company_id,
        employee_id=employee.id,
        source_attendance_id=attendance.id,
        type=deduction_type,
        amount=breakdown.total_deduction,
        minutes_deducted=breakdown.deduct_minutes,
        breakdown={**breakdown.to_dict(), "is_financial": is_financial},
        justification=render_justification(breakdown),
        status=DeductionStatus.PENDING if needs_review else DeductionStatus.APPROVED,
        effective_month=effective_month,
        effective_year=effective_year,
        applied_to_payroll=False,
        approved_by=None if needs_review else settings.system_actor_id,
        approved_at=None if needs_review else now,
        notes=[],
    )
    db.add(record)
    db.flush()

    log_audit(
        db,
        actor_type=AuditActorType.SYSTEM,
        actor_id=settings.system_actor_id,
        action="DEDUCTION_ISSUED",
        entity_type="deduction",
        entity_id=record.id,
        details={
            "employee_id": employee.id,
            "attendance_id": attendance.id,
            "type": deduction_type.value,
            "amount": str(record.amount),
            "status": record.status.value,
        },
    )
    logger.info(
        "deduction_issued",
        extra={
            "deduction_id": record.id,
            "employee_id": employee.id,
            "type": deduction_type.value,
            "amount": str(record.amount),
            "status": record.status.value,
            "is_capped": breakdown.is_capped,
            "is_financial": is_financial,
        },
    )
    return record


def get_deduction(db: Session, deduction_id: int, *, for_update: bool = False) -> DeductionRecord:
    stmt = select(DeductionRecord).where(DeductionRecord.id == deduction_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    record = db.scalar(stmt)
    if record is None:
        raise DeductionNotFoundError(deduction_id)
    return record


def approve_deduction(db: Session, deduction_id: int, *, actor_id: str) -> DeductionRecord:
    try:
        record = get_deduction(db, deduction_id, for_update=True)
        if record.status == DeductionStatus.APPROVED:
            db.commit()
            return record
        if record.status != DeductionStatus.PENDING:
            raise InvalidDeductionStateError(
                f"Deduction {deduction_id} is {record.status.value} and cannot be approved."
            )

        record.status = DeductionStatus.APPROVED
        record.approved_by = actor_id
        record.approved_at = _utcnow()
        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id=actor_id,
            action="DEDUCTION_APPROVED",
            entity_type="deduction",
            entity_id=record.id,
            details={"employee_id": record.employee_id, "amount": str(record.amount)},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(record)
    return record


def mark_applied_to_payroll(db: Session, deduction_ids: list[int], *, actor_id: str) -> list[DeductionRecord]:
    records: list[DeductionRecord] = []
    now = _utcnow()
    try:
        for deduction_id in sorted(set(deduction_ids)):
            record = get_deduction(db, deduction_id, for_update=True)
            if record.status != DeductionStatus.APPROVED:
                raise InvalidDeductionStateError(
                    f"Deduction {deduction_id} is {record.status.value}; only approved deductions reach payroll."
                )
            if not record.applied_to_payroll:
                record.applied_to_payroll = True
                record.applied_at = now
                log_audit(
                    db,
                    actor_type=AuditActorType.ADMIN,
                    actor_id=actor_id,
                    action="DEDUCTION_APPLIED_TO_PAYROLL",
                    entity_type="deduction",
                    entity_id=record.id,
                    details={"employee_id": record.employee_id, "amount": str(record.amount)},
                )
            records.append(record)
        db.commit()
    except Exception:
        db.rollback()
        raise

    for record in records:
        db.refresh(record)
    return records


def cancel_deduction(db: Session, deduction_id: int, *, actor_id: str, reason: str) -> DeductionRecord:
    """Cancel a deduction and hand its minutes and money back to the monthly ledger.

    Locks follow the same order as check-in and check-out: employee, then
    grace balance, then the deduction row.
    """
    try:
        unlocked = get_deduction(db, deduction_id)
        get_employee(db, unlocked.employee_id, for_update=True)
        balance = lock_balance(
            db,
            employee_id=unlocked.employee_id,
            month=unlocked.effective_month,
            year=unlocked.effective_year,
        )
        record = get_deduction(db, deduction_id, for_update=True)

        if record.status == DeductionStatus.CANCELLED:
            db.commit()
            logger.info("deduction_cancel_noop", extra={"deduction_id": deduction_id})
            return record
        if record.applied_to_payroll:
            raise AlreadyAppliedError(deduction_id)
        if balance is None:
            raise LedgerConsistencyError(
                f"No grace balance for {record.effective_month:02d}/{record.effective_year} "
                f"backs deduction {deduction_id}."
            )

        delta = LedgerDelta.from_dict((record.breakdown or {}).get("ledger") or {})
        reverse(balance, delta)

        now = _utcnow()
        record.status = DeductionStatus.CANCELLED
        record.cancelled_by = actor_id
        record.cancelled_at = now
        record.cancellation_reason = reason
        record.notes = [
            *(record.notes or []),
            {"ts_utc": now.isoformat(), "actor_id": actor_id, "action": "CANCELLED", "note": reason},
        ]

        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id=actor_id,
            action="DEDUCTION_CANCELLED",
            entity_type="deduction",
            entity_id=record.id,
            details={
                "employee_id": record.employee_id,
                "amount": str(record.amount),
                "reason": reason,
                "ledger": delta.to_dict(),
            },
        )
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise LedgerConflictError() from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(record)
    logger.info(
        "deduction_cancelled",
        extra={
            "deduction_id": record.id,
            "employee_id": record.employee_id,
            "amount": str(record.amount),
            "actor_id": actor_id,
        },
    )
    return record

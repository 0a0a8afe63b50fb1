from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from lateness_engine.errors import DuplicateAttendanceError, LedgerConflictError, NoOpenAttendanceError
from lateness_engine.models import (
    AttendanceRecord,
    AttendanceStatus,
    Company,
    DeductionStatus,
    DeductionType,
    Employee,
)
from lateness_engine.services.clock import company_timezone, local_day, month_key, normalize_ts
from lateness_engine.services.deduction_calc import (
    CompanyPolicyConfig,
    DeductionResult,
    calculate_early_checkout_deduction,
    calculate_late_deduction,
    eligibility_skip_reason,
)
from lateness_engine.services.deduction_issuer import issue_deduction
from lateness_engine.services.grace_ledger import apply_lateness, get_or_create_balance, snapshot
from lateness_engine.services.lateness import (
    checkin_status,
    checkout_status,
    early_leave_minutes,
    late_minutes,
    work_hours,
)
from lateness_engine.services.policies import get_company_policy, get_employee, get_employee_overrides
from lateness_engine.services.shift_resolver import resolve_shift, shift_window
from lateness_engine.settings import get_settings

logger = logging.getLogger("lateness_engine.attendance")


@dataclass(frozen=True)
class DeductionSummary:
    total_deduction: Decimal
    deduct_minutes: int
    use_grace_minutes: int
    multiplier: Decimal
    is_capped: bool
    deduction_id: int | None = None
    status: DeductionStatus | None = None
    skip_reason: str | None = None


@dataclass(frozen=True)
class CheckInOutcome:
    attendance_id: int
    status: AttendanceStatus
    late_minutes: int
    used_default_shift: bool
    deduction_summary: DeductionSummary | None = None


@dataclass(frozen=True)
class CheckOutOutcome:
    attendance_id: int
    status: AttendanceStatus
    early_leave_minutes: int
    worked_hours: float
    overtime_hours: float
    deduction_summary: DeductionSummary | None = None


def _summary(result: DeductionResult, *, deduction_id: int | None = None, status: DeductionStatus | None = None) -> DeductionSummary:
    return DeductionSummary(
        total_deduction=result.total_deduction,
        deduct_minutes=result.deduct_minutes,
        use_grace_minutes=result.use_grace_minutes,
        multiplier=result.multiplier,
        is_capped=result.is_capped,
        deduction_id=deduction_id,
        status=status,
        skip_reason=result.skip_reason.value if result.skip_reason else None,
    )


def _company_zone(db: Session, company_id: int) -> ZoneInfo:
    company = db.get(Company, company_id)
    return company_timezone(company.timezone if company else None)


def _find_open_record(db: Session, *, employee_id: int, ts_utc: datetime) -> AttendanceRecord | None:
    lookback = timedelta(hours=max(1, get_settings().checkout_lookback_hours))
    return db.scalar(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.check_in_utc.is_not(None),
            AttendanceRecord.check_out_utc.is_(None),
            AttendanceRecord.check_in_utc >= ts_utc - lookback,
            AttendanceRecord.check_in_utc <= ts_utc,
        )
        .order_by(AttendanceRecord.check_in_utc.desc(), AttendanceRecord.id.desc())
        .limit(1)
    )


def _record_for_day(db: Session, *, employee_id: int, day_date: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.calendar_date == day_date,
        )
    )


def _apply_late_deduction(
    db: Session,
    *,
    employee: Employee,
    record: AttendanceRecord,
    policy: CompanyPolicyConfig,
    minutes_late: int,
) -> DeductionSummary:
    overrides = get_employee_overrides(employee)
    skip_reason = eligibility_skip_reason(policy, overrides)
    if skip_reason is not None:
        logger.info(
            "late_deduction_skipped",
            extra={"employee_id": employee.id, "attendance_id": record.id, "reason": skip_reason.value},
        )
        return _summary(DeductionResult(skip_reason=skip_reason))

    month, year = month_key(record.calendar_date)
    balance = get_or_create_balance(db, employee_id=employee.id, month=month, year=year)
    result = calculate_late_deduction(
        late_minutes=minutes_late,
        balance=snapshot(balance),
        policy=policy,
        overrides=overrides,
    )
    breakdown = result.breakdown
    apply_lateness(balance, breakdown.ledger)
    db.flush()

    logger.info(
        "late_deduction_computed",
        extra={
            "employee_id": employee.id,
            "attendance_id": record.id,
            "late_minutes": minutes_late,
            "use_grace_minutes": breakdown.use_grace_minutes,
            "deduct_minutes": breakdown.deduct_minutes,
            "multiplier": str(breakdown.multiplier),
            "total_deduction": str(breakdown.total_deduction),
            "is_capped": breakdown.is_capped,
        },
    )

    deduction = issue_deduction(
        db,
        employee=employee,
        attendance=record,
        breakdown=breakdown,
        deduction_type=DeductionType.LATE,
        policy=policy,
        effective_month=month,
        effective_year=year,
    )
    return _summary(result, deduction_id=deduction.id, status=deduction.status)


def _apply_early_deduction(
    db: Session,
    *,
    employee: Employee,
    record: AttendanceRecord,
    policy: CompanyPolicyConfig,
    minutes_early: int,
) -> DeductionSummary:
    result = calculate_early_checkout_deduction(
        early_minutes=minutes_early,
        policy=policy,
        overrides=get_employee_overrides(employee),
    )
    if result.skipped:
        logger.info(
            "early_checkout_deduction_skipped",
            extra={"employee_id": employee.id, "attendance_id": record.id, "reason": result.skip_reason.value},
        )
        return _summary(result)

    breakdown = result.breakdown
    if breakdown.deduct_minutes <= 0:
        return _summary(result)

    month, year = month_key(record.calendar_date)
    balance = get_or_create_balance(db, employee_id=employee.id, month=month, year=year)
    apply_lateness(balance, breakdown.ledger)
    db.flush()

    logger.info(
        "early_checkout_deduction_computed",
        extra={
            "employee_id": employee.id,
            "attendance_id": record.id,
            "early_minutes": minutes_early,
            "deduct_minutes": breakdown.deduct_minutes,
            "total_deduction": str(breakdown.total_deduction),
            "is_capped": breakdown.is_capped,
        },
    )

    deduction = issue_deduction(
        db,
        employee=employee,
        attendance=record,
        breakdown=breakdown,
        deduction_type=DeductionType.EARLY_LEAVE,
        policy=policy,
        effective_month=month,
        effective_year=year,
    )
    return _summary(result, deduction_id=deduction.id, status=deduction.status)


def on_check_in(
    db: Session,
    *,
    company_id: int,
    employee_id: int,
    ts_utc: datetime | None = None,
) -> CheckInOutcome:
    """Record a check-in and settle any lateness deduction in one transaction.

    The attendance row, the monthly grace ledger and the deduction record are
    committed together; any failure (calculator errors included) rolls the
    whole check-in back.
    """
    ts = normalize_ts(ts_utc)
    try:
        employee = get_employee(db, employee_id, company_id=company_id, for_update=True)
        tz = _company_zone(db, company_id)
        day_date = local_day(ts, tz)

        record = _record_for_day(db, employee_id=employee_id, day_date=day_date)
        if record is not None and record.check_in_utc is not None:
            raise DuplicateAttendanceError(
                f"Employee {employee_id} already checked in on {day_date.isoformat()}."
            )
        open_record = _find_open_record(db, employee_id=employee_id, ts_utc=ts)
        if open_record is not None:
            raise DuplicateAttendanceError(
                f"Employee {employee_id} has an open check-in from {open_record.calendar_date.isoformat()}."
            )

        shift = resolve_shift(db, company_id=company_id, employee_id=employee_id, day_date=day_date)
        shift_start_utc, _ = shift_window(shift, day_date, tz)
        policy = get_company_policy(db, company_id)
        minutes_late = late_minutes(shift_start_utc, ts, policy.late_grace_period_minutes)

        if record is None:
            record = AttendanceRecord(
                company_id=company_id,
                employee_id=employee_id,
                calendar_date=day_date,
            )
            db.add(record)
        record.check_in_utc = ts
        record.late_minutes = minutes_late
        record.status = checkin_status(minutes_late)
        record.shift_id = shift.shift_id
        record.flags = {**(record.flags or {}), "shift_source": shift.source}
        db.flush()

        summary = None
        if minutes_late > 0:
            summary = _apply_late_deduction(
                db,
                employee=employee,
                record=record,
                policy=policy,
                minutes_late=minutes_late,
            )
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise LedgerConflictError() from exc
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateAttendanceError() from exc
    except Exception:
        db.rollback()
        raise

    logger.info(
        "attendance_checked_in",
        extra={
            "employee_id": employee_id,
            "attendance_id": record.id,
            "calendar_date": day_date.isoformat(),
            "status": record.status.value,
            "late_minutes": minutes_late,
            "shift_source": shift.source,
        },
    )
    return CheckInOutcome(
        attendance_id=record.id,
        status=record.status,
        late_minutes=minutes_late,
        used_default_shift=shift.used_default,
        deduction_summary=summary,
    )


def on_check_out(
    db: Session,
    *,
    company_id: int,
    employee_id: int,
    ts_utc: datetime | None = None,
) -> CheckOutOutcome:
    ts = normalize_ts(ts_utc)
    try:
        employee = get_employee(db, employee_id, company_id=company_id, for_update=True)
        tz = _company_zone(db, company_id)

        record = _find_open_record(db, employee_id=employee_id, ts_utc=ts)
        if record is None:
            raise NoOpenAttendanceError()

        day_date = record.calendar_date
        shift = resolve_shift(db, company_id=company_id, employee_id=employee_id, day_date=day_date)
        _, shift_end_utc = shift_window(shift, day_date, tz)
        policy = get_company_policy(db, company_id)

        minutes_early = early_leave_minutes(shift_end_utc, ts, policy.early_leave_grace_period_minutes)
        hours = work_hours(
            check_in=record.check_in_utc,
            check_out=ts,
            shift_end=shift_end_utc,
            break_minutes=shift.break_minutes,
            overtime_min_hours=float(policy.overtime_min_hours),
        )

        record.check_out_utc = ts
        record.early_leave_minutes = minutes_early
        record.worked_hours = hours.worked_hours
        record.overtime_hours = hours.overtime_hours
        record.status = checkout_status(record.status, minutes_early)
        db.flush()

        summary = None
        if minutes_early > 0:
            summary = _apply_early_deduction(
                db,
                employee=employee,
                record=record,
                policy=policy,
                minutes_early=minutes_early,
            )
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise LedgerConflictError() from exc
    except Exception:
        db.rollback()
        raise

    logger.info(
        "attendance_checked_out",
        extra={
            "employee_id": employee_id,
            "attendance_id": record.id,
            "calendar_date": day_date.isoformat(),
            "status": record.status.value,
            "early_leave_minutes": minutes_early,
            "worked_hours": hours.worked_hours,
            "overtime_hours": hours.overtime_hours,
        },
    )
    return CheckOutOutcome(
        attendance_id=record.id,
        status=record.status,
        early_leave_minutes=minutes_early,
        worked_hours=hours.worked_hours,
        overtime_hours=hours.overtime_hours,
        deduction_summary=summary,
    )


def get_attendance_day(db: Session, *, employee_id: int, day_date: date) -> AttendanceRecord:
    """Persisted record for the day, or an unsaved ABSENT record when there is none."""
    employee = get_employee(db, employee_id)
    record = _record_for_day(db, employee_id=employee_id, day_date=day_date)
    if record is not None:
        return record
    return AttendanceRecord(
        id=None,
        company_id=employee.company_id,
        employee_id=employee_id,
        calendar_date=day_date,
        late_minutes=0,
        early_leave_minutes=0,
        status=AttendanceStatus.ABSENT,
        flags={},
    )

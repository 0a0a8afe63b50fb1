from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Literal
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from lateness_engine.errors import InvalidShiftConfigurationError
from lateness_engine.models import ShiftAssignment, ShiftDefinition
from lateness_engine.services.clock import combine_utc
from lateness_engine.settings import get_settings

logger = logging.getLogger("lateness_engine.shift_resolver")

ShiftSource = Literal["ASSIGNMENT", "DEFAULT"]


@dataclass(frozen=True)
class ShiftEnd:
    time_of_day: time
    day_offset: int


@dataclass(frozen=True)
class ResolvedShift:
    shift_id: int | None
    name: str
    start_time_local: time
    end: ShiftEnd
    break_minutes: int
    source: ShiftSource

    @property
    def used_default(self) -> bool:
        return self.source == "DEFAULT"

    @property
    def is_overnight(self) -> bool:
        return self.end.day_offset > 0


def _minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def validate_shift_definition(
    *,
    start_time_local: time,
    end_time_local: time,
    is_overnight: bool,
    break_minutes: int = 0,
) -> ShiftEnd:
    start_minutes = _minutes_of_day(start_time_local)
    end_minutes = _minutes_of_day(end_time_local)
    if start_minutes == end_minutes:
        raise InvalidShiftConfigurationError("Shift start and end times must differ.")
    crosses_midnight = end_minutes < start_minutes
    if crosses_midnight != bool(is_overnight):
        raise InvalidShiftConfigurationError(
            "Overnight flag does not match shift times "
            f"({start_time_local.strftime('%H:%M')}-{end_time_local.strftime('%H:%M')}, "
            f"is_overnight={bool(is_overnight)})."
        )
    if break_minutes < 0:
        raise InvalidShiftConfigurationError("Break minutes cannot be negative.")
    return ShiftEnd(time_of_day=end_time_local, day_offset=1 if crosses_midnight else 0)


def default_shift() -> ResolvedShift:
    settings = get_settings()
    end = validate_shift_definition(
        start_time_local=settings.default_shift_start,
        end_time_local=settings.default_shift_end,
        is_overnight=settings.default_shift_end < settings.default_shift_start,
    )
    return ResolvedShift(
        shift_id=None,
        name="Default",
        start_time_local=settings.default_shift_start,
        end=end,
        break_minutes=0,
        source="DEFAULT",
    )


def apply_default_shift(shift: ShiftDefinition | None) -> ResolvedShift:
    if shift is None:
        return default_shift()

    end = validate_shift_definition(
        start_time_local=shift.start_time_local,
        end_time_local=shift.end_time_local,
        is_overnight=shift.is_overnight,
        break_minutes=shift.break_minutes or 0,
    )
    return ResolvedShift(
        shift_id=shift.id,
        name=shift.name,
        start_time_local=shift.start_time_local,
        end=end,
        break_minutes=max(0, shift.break_minutes or 0),
        source="ASSIGNMENT",
    )


def find_assigned_shift(
    db: Session,
    *,
    company_id: int,
    employee_id: int,
    day_date: date,
) -> ShiftDefinition | None:
    assignment = db.scalar(
        select(ShiftAssignment)
        .options(selectinload(ShiftAssignment.shift))
        .where(
            ShiftAssignment.company_id == company_id,
            ShiftAssignment.employee_id == employee_id,
            ShiftAssignment.calendar_date == day_date,
        )
    )
    if assignment is None:
        return None
    return assignment.shift


def resolve_shift(
    db: Session,
    *,
    company_id: int,
    employee_id: int,
    day_date: date,
) -> ResolvedShift:
    """Shift for a company-local calendar date, falling back to the default schedule.

    ``day_date`` must already be the company-local date; no timezone math
    happens here.
    """
    shift = find_assigned_shift(db, company_id=company_id, employee_id=employee_id, day_date=day_date)
    resolved = apply_default_shift(shift)
    if resolved.used_default:
        logger.info(
            "shift_default_used",
            extra={
                "company_id": company_id,
                "employee_id": employee_id,
                "day_date": day_date.isoformat(),
            },
        )
    return resolved


def shift_window(resolved: ResolvedShift, day_date: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start_utc = combine_utc(day_date, resolved.start_time_local, tz)
    end_utc = combine_utc(day_date, resolved.end.time_of_day, tz, day_offset=resolved.end.day_offset)
    return start_utc, end_utc

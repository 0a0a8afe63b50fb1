from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from lateness_engine.models import AttendanceStatus
from lateness_engine.services.clock import normalize_ts


@dataclass(frozen=True)
class WorkHours:
    worked_hours: float
    overtime_hours: float


def _whole_minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def late_minutes(boundary: datetime, actual: datetime, grace_period_minutes: int) -> int:
    boundary = normalize_ts(boundary)
    actual = normalize_ts(actual)
    if actual <= boundary + timedelta(minutes=max(0, grace_period_minutes)):
        return 0
    return max(0, _whole_minutes(actual - boundary))


def early_leave_minutes(boundary: datetime, actual: datetime, grace_period_minutes: int) -> int:
    boundary = normalize_ts(boundary)
    actual = normalize_ts(actual)
    if actual >= boundary - timedelta(minutes=max(0, grace_period_minutes)):
        return 0
    return max(0, _whole_minutes(boundary - actual))


def checkin_status(minutes_late: int) -> AttendanceStatus:
    return AttendanceStatus.LATE if minutes_late > 0 else AttendanceStatus.PRESENT


def checkout_status(current: AttendanceStatus, minutes_early: int) -> AttendanceStatus:
    # LATE wins over EARLY_LEAVE; the early minutes stay on the record either way.
    if minutes_early > 0 and current == AttendanceStatus.PRESENT:
        return AttendanceStatus.EARLY_LEAVE
    return current


def work_hours(
    *,
    check_in: datetime,
    check_out: datetime,
    shift_end: datetime,
    break_minutes: int,
    overtime_min_hours: float,
) -> WorkHours:
    check_in = normalize_ts(check_in)
    check_out = normalize_ts(check_out)
    shift_end = normalize_ts(shift_end)

    elapsed_minutes = max(0.0, (check_out - check_in).total_seconds() / 60)
    worked = max(0.0, elapsed_minutes - max(0, break_minutes)) / 60

    overtime = 0.0
    if check_out > shift_end:
        extra_hours = (check_out - shift_end).total_seconds() / 3600
        if extra_hours >= max(0.0, overtime_min_hours):
            overtime = extra_hours

    return WorkHours(worked_hours=round(worked, 2), overtime_hours=round(overtime, 2))

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lateness_engine.settings import get_settings

logger = logging.getLogger("lateness_engine.clock")

FALLBACK_TIMEZONE = "Africa/Cairo"


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    # Naive values come back from backends without tz support; they are stored as UTC.
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


@lru_cache
def _zone(raw_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown_timezone", extra={"timezone": raw_name, "fallback": FALLBACK_TIMEZONE})
        return ZoneInfo(FALLBACK_TIMEZONE)


def company_timezone(raw_name: str | None) -> ZoneInfo:
    name = (raw_name or "").strip() or (get_settings().attendance_timezone or "").strip() or FALLBACK_TIMEZONE
    return _zone(name)


def local_day(ts_utc: datetime, tz: ZoneInfo) -> date:
    return normalize_ts(ts_utc).astimezone(tz).date()


def combine_utc(day_date: date, time_of_day: time, tz: ZoneInfo, *, day_offset: int = 0) -> datetime:
    local_dt = datetime.combine(day_date + timedelta(days=day_offset), time_of_day, tzinfo=tz)
    return local_dt.astimezone(timezone.utc)


def month_key(day_date: date) -> tuple[int, int]:
    return day_date.month, day_date.year

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo
import unittest

from db_support import SqliteTestCase

from lateness_engine.errors import InvalidShiftConfigurationError
from lateness_engine.models import ShiftDefinition
from lateness_engine.services.shift_resolver import (
    apply_default_shift,
    resolve_shift,
    shift_window,
    validate_shift_definition,
)


class ShiftDefinitionValidationTests(unittest.TestCase):
    def test_overnight_shift_ends_next_day(self) -> None:
        end = validate_shift_definition(start_time_local=time(22), end_time_local=time(6), is_overnight=True)

        self.assertEqual(end.time_of_day, time(6))
        self.assertEqual(end.day_offset, 1)

    def test_identical_start_and_end_is_rejected(self) -> None:
        with self.assertRaises(InvalidShiftConfigurationError):
            validate_shift_definition(start_time_local=time(9), end_time_local=time(9), is_overnight=False)

    def test_overnight_flag_must_match_times(self) -> None:
        with self.assertRaises(InvalidShiftConfigurationError):
            validate_shift_definition(start_time_local=time(22), end_time_local=time(6), is_overnight=False)
        with self.assertRaises(InvalidShiftConfigurationError):
            validate_shift_definition(start_time_local=time(9), end_time_local=time(17), is_overnight=True)

    def test_negative_break_is_rejected(self) -> None:
        with self.assertRaises(InvalidShiftConfigurationError):
            validate_shift_definition(
                start_time_local=time(9),
                end_time_local=time(17),
                is_overnight=False,
                break_minutes=-5,
            )


class DefaultShiftTests(unittest.TestCase):
    def test_missing_shift_falls_back_to_default_schedule(self) -> None:
        resolved = apply_default_shift(None)

        self.assertTrue(resolved.used_default)
        self.assertIsNone(resolved.shift_id)
        self.assertEqual(resolved.start_time_local, time(9))
        self.assertEqual(resolved.end.time_of_day, time(17))
        self.assertEqual(resolved.break_minutes, 0)
        self.assertFalse(resolved.is_overnight)

    def test_assigned_shift_is_kept(self) -> None:
        shift = ShiftDefinition(
            id=4,
            company_id=1,
            name="Night",
            start_time_local=time(22),
            end_time_local=time(6),
            is_overnight=True,
            break_minutes=30,
        )

        resolved = apply_default_shift(shift)

        self.assertFalse(resolved.used_default)
        self.assertEqual(resolved.shift_id, 4)
        self.assertTrue(resolved.is_overnight)
        self.assertEqual(resolved.break_minutes, 30)


class ShiftWindowTests(unittest.TestCase):
    def test_overnight_window_spans_midnight(self) -> None:
        resolved = apply_default_shift(
            ShiftDefinition(
                id=1,
                company_id=1,
                name="Night",
                start_time_local=time(22),
                end_time_local=time(6),
                is_overnight=True,
                break_minutes=0,
            )
        )

        start, end = shift_window(resolved, date(2026, 3, 2), ZoneInfo("UTC"))

        self.assertEqual(start, datetime(2026, 3, 2, 22, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2026, 3, 3, 6, tzinfo=timezone.utc))

    def test_window_uses_company_timezone(self) -> None:
        start, end = shift_window(apply_default_shift(None), date(2026, 1, 15), ZoneInfo("Africa/Cairo"))

        self.assertEqual(start, datetime(2026, 1, 15, 7, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2026, 1, 15, 15, tzinfo=timezone.utc))


class ResolveShiftTests(SqliteTestCase):
    def test_exact_date_assignment_is_used(self) -> None:
        company = self.seed_company()
        employee = self.seed_employee(company)
        shift = self.seed_shift(company, name="Early", start=time(7), end=time(15))
        self.assign_shift(employee, shift, date(2026, 3, 2))

        resolved = resolve_shift(self.db, company_id=company.id, employee_id=employee.id, day_date=date(2026, 3, 2))

        self.assertEqual(resolved.shift_id, shift.id)
        self.assertEqual(resolved.source, "ASSIGNMENT")
        self.assertEqual(resolved.start_time_local, time(7))

    def test_other_days_fall_back_and_log(self) -> None:
        company = self.seed_company()
        employee = self.seed_employee(company)
        shift = self.seed_shift(company, name="Early", start=time(7), end=time(15))
        self.assign_shift(employee, shift, date(2026, 3, 2))

        with self.assertLogs("lateness_engine.shift_resolver", level="INFO") as captured:
            resolved = resolve_shift(
                self.db,
                company_id=company.id,
                employee_id=employee.id,
                day_date=date(2026, 3, 3),
            )

        self.assertTrue(resolved.used_default)
        self.assertTrue(any("shift_default_used" in line for line in captured.output))


if __name__ == "__main__":
    unittest.main()

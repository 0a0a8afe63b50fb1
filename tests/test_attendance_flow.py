from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
import unittest
from unittest.mock import patch

from db_support import LATE_POLICY, RATE_TWO, SqliteTestCase, utc_at

from lateness_engine.errors import (
    DuplicateAttendanceError,
    EmployeeNotFoundError,
    LedgerConflictError,
    NoOpenAttendanceError,
    PolicyConfigurationError,
)
from lateness_engine.models import (
    AttendanceRecord,
    AttendanceStatus,
    DeductionRecord,
    DeductionStatus,
    DeductionType,
    MonthlyGraceBalance,
)
from lateness_engine.services.attendance import get_attendance_day, on_check_in, on_check_out
from lateness_engine.services.deduction_issuer import cancel_deduction, get_deduction
from lateness_engine.services.grace_ledger import get_or_create_balance


class CheckInFlowTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.company = self.seed_company(policy=dict(LATE_POLICY))
        self.employee = self.seed_employee(self.company, late_deduction_rate=RATE_TWO)

    def _check_in(self, ts: datetime):  # type: ignore[no-untyped-def]
        return on_check_in(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=ts)

    def _check_out(self, ts: datetime):  # type: ignore[no-untyped-def]
        return on_check_out(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=ts)

    def test_late_check_in_books_grace_and_deduction(self) -> None:
        with self.assertLogs("lateness_engine.attendance", level="INFO") as captured:
            outcome = self._check_in(utc_at(2, 9, 20))

        self.assertEqual(outcome.status, AttendanceStatus.LATE)
        self.assertEqual(outcome.late_minutes, 20)
        self.assertTrue(outcome.used_default_shift)
        summary = outcome.deduction_summary
        self.assertEqual(summary.total_deduction, Decimal("10.00"))
        self.assertEqual(summary.deduct_minutes, 5)
        self.assertEqual(summary.use_grace_minutes, 15)
        self.assertEqual(summary.multiplier, Decimal("1.0"))
        self.assertEqual(summary.status, DeductionStatus.PENDING)
        self.assertIsNone(summary.skip_reason)

        balance = self.balance_for(self.employee, month=3, year=2026)
        self.assertEqual(balance.total_late_minutes, 20)
        self.assertEqual(balance.grace_minutes_used, 15)
        self.assertEqual(balance.deducted_minutes, 5)
        self.assertEqual(Decimal(balance.total_deduction_amount), Decimal("10.00"))
        self.assertEqual(balance.late_count, 1)
        self.assertTrue(any("late_deduction_computed" in line for line in captured.output))
        self.assertTrue(any("attendance_checked_in" in line for line in captured.output))

    def test_on_time_check_in_touches_no_ledger(self) -> None:
        outcome = self._check_in(utc_at(2, 9, 10))

        self.assertEqual(outcome.status, AttendanceStatus.PRESENT)
        self.assertEqual(outcome.late_minutes, 0)
        self.assertIsNone(outcome.deduction_summary)
        self.assertIsNone(self.balance_for(self.employee, month=3, year=2026))

    def test_lateness_within_grace_uses_monthly_grace_only(self) -> None:
        outcome = self._check_in(utc_at(2, 9, 16))

        self.assertEqual(outcome.late_minutes, 16)
        self.assertEqual(outcome.deduction_summary.total_deduction, Decimal("2.00"))
        self.assertEqual(self.count_rows(DeductionRecord), 1)

    def test_second_check_in_same_day_is_rejected(self) -> None:
        self._check_in(utc_at(2, 9, 20))

        with self.assertRaises(DuplicateAttendanceError):
            self._check_in(utc_at(2, 9, 25))

        self.assertEqual(self.count_rows(AttendanceRecord), 1)
        self.assertEqual(self.balance_for(self.employee, month=3, year=2026).late_count, 1)

    def test_open_record_from_yesterday_blocks_check_in(self) -> None:
        self._check_in(utc_at(2, 9, 0))

        with self.assertRaises(DuplicateAttendanceError) as raised:
            self._check_in(utc_at(3, 9, 0))

        self.assertIn("open check-in from 2026-03-02", raised.exception.message)
        self.assertEqual(self.count_rows(AttendanceRecord), 1)

    def test_unknown_employee(self) -> None:
        with self.assertRaises(EmployeeNotFoundError):
            on_check_in(self.db, company_id=self.company.id, employee_id=999, ts_utc=utc_at(2, 9))

    def test_calculator_failure_rolls_back_the_check_in(self) -> None:
        no_rate = self.seed_employee(self.company, full_name="No Rate")

        with self.assertRaises(PolicyConfigurationError):
            on_check_in(self.db, company_id=self.company.id, employee_id=no_rate.id, ts_utc=utc_at(2, 9, 20))

        self.assertEqual(self.count_rows(AttendanceRecord), 0)
        self.assertIsNone(self.balance_for(no_rate, month=3, year=2026))
        self.assertEqual(self.count_rows(DeductionRecord), 0)

    def test_escalation_over_consecutive_days(self) -> None:
        totals = []
        for day in (2, 3, 4):
            outcome = self._check_in(utc_at(day, 9, 20))
            totals.append(outcome.deduction_summary.total_deduction)
            self._check_out(utc_at(day, 17, 0))

        self.assertEqual(totals, [Decimal("10.00"), Decimal("20.00"), Decimal("30.00")])
        balance = self.balance_for(self.employee, month=3, year=2026)
        self.assertEqual(balance.late_count, 3)
        self.assertEqual(balance.grace_minutes_used, 45)
        self.assertEqual(Decimal(balance.total_deduction_amount), Decimal("60.00"))

    def test_cancelling_restores_grace_for_the_next_check_in(self) -> None:
        first = self._check_in(utc_at(2, 9, 20))
        self._check_out(utc_at(2, 17, 0))
        cancel_deduction(self.db, first.deduction_summary.deduction_id, actor_id="hr-7", reason="Traffic accident")

        second = self._check_in(utc_at(3, 9, 20))

        self.assertEqual(second.deduction_summary.multiplier, Decimal("1.0"))
        self.assertEqual(second.deduction_summary.total_deduction, Decimal("10.00"))
        balance = self.balance_for(self.employee, month=3, year=2026)
        self.assertEqual(balance.late_count, 1)
        self.assertEqual(balance.grace_minutes_used, 15)


class ZeroAmountLatenessTests(SqliteTestCase):
    def test_grace_only_lateness_is_recorded_and_cancellable(self) -> None:
        company = self.seed_company(policy={**LATE_POLICY, "late_grace_period_minutes": 5})
        employee = self.seed_employee(company, late_deduction_rate=RATE_TWO)

        outcome = on_check_in(self.db, company_id=company.id, employee_id=employee.id, ts_utc=utc_at(2, 9, 10))

        summary = outcome.deduction_summary
        self.assertEqual(outcome.late_minutes, 10)
        self.assertEqual(summary.total_deduction, Decimal("0.00"))
        self.assertEqual(summary.use_grace_minutes, 10)
        self.assertIsNotNone(summary.deduction_id)
        self.assertEqual(summary.status, DeductionStatus.APPROVED)

        deduction = get_deduction(self.db, summary.deduction_id)
        self.assertFalse(deduction.breakdown["is_financial"])
        self.assertEqual(deduction.approved_by, "system")
        balance = self.balance_for(employee, month=3, year=2026)
        self.assertEqual(balance.grace_minutes_used, 10)
        self.assertEqual(balance.late_count, 1)

        cancel_deduction(self.db, summary.deduction_id, actor_id="hr-7", reason="Badge reader down")

        balance = self.balance_for(employee, month=3, year=2026)
        self.assertEqual(balance.total_late_minutes, 0)
        self.assertEqual(balance.grace_minutes_used, 0)
        self.assertEqual(balance.late_count, 0)

    def test_unmatched_tier_still_leaves_a_record(self) -> None:
        company = self.seed_company(
            policy={**LATE_POLICY, "deduction_tiers": [{"min_minutes": 30, "deduction_days": "1"}]}
        )
        employee = self.seed_employee(company, base_salary=Decimal("2200"))

        outcome = on_check_in(self.db, company_id=company.id, employee_id=employee.id, ts_utc=utc_at(2, 9, 20))

        deduction = get_deduction(self.db, outcome.deduction_summary.deduction_id)
        self.assertEqual(Decimal(deduction.amount), Decimal("0.00"))
        self.assertEqual(deduction.minutes_deducted, 5)
        self.assertFalse(deduction.breakdown["is_financial"])
        self.assertEqual(deduction.breakdown["ledger"]["deducted_minutes"], 5)
        self.assertEqual(self.balance_for(employee, month=3, year=2026).deducted_minutes, 5)


class StaleLedgerFlowTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.company = self.seed_company(policy=dict(LATE_POLICY))
        self.employee = self.seed_employee(self.company, late_deduction_rate=RATE_TWO)

    def _bump_in_other_session(self, balance_id: int) -> None:
        other = self.session_factory()
        try:
            row = other.get(MonthlyGraceBalance, balance_id)
            row.total_late_minutes += 7
            other.commit()
        finally:
            other.close()

    def test_stale_balance_rejects_check_in(self) -> None:
        balance = get_or_create_balance(self.db, employee_id=self.employee.id, month=3, year=2026)
        self.db.commit()
        self._bump_in_other_session(balance.id)

        with patch("lateness_engine.services.attendance.get_or_create_balance", return_value=balance):
            with self.assertRaises(LedgerConflictError):
                on_check_in(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 9, 20))

        self.assertEqual(self.count_rows(AttendanceRecord), 0)
        self.assertEqual(self.count_rows(DeductionRecord), 0)
        stored = self.balance_for(self.employee, month=3, year=2026)
        self.assertEqual(stored.total_late_minutes, 7)
        self.assertEqual(stored.late_count, 0)

    def test_stale_balance_rejects_cancellation(self) -> None:
        outcome = on_check_in(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 9, 20))
        balance = self.balance_for(self.employee, month=3, year=2026)
        self._bump_in_other_session(balance.id)

        with patch("lateness_engine.services.deduction_issuer.lock_balance", return_value=balance):
            with self.assertRaises(LedgerConflictError):
                cancel_deduction(self.db, outcome.deduction_summary.deduction_id, actor_id="hr-7", reason="Storm")

        self.assertEqual(get_deduction(self.db, outcome.deduction_summary.deduction_id).status, DeductionStatus.PENDING)
        stored = self.balance_for(self.employee, month=3, year=2026)
        self.assertEqual(stored.total_late_minutes, 27)
        self.assertEqual(stored.late_count, 1)


class DeductionEligibilityFlowTests(SqliteTestCase):
    def test_disabled_policy_skips_without_ledger(self) -> None:
        company = self.seed_company(policy={**LATE_POLICY, "auto_deduction_enabled": False})
        employee = self.seed_employee(company, late_deduction_rate=RATE_TWO)

        outcome = on_check_in(self.db, company_id=company.id, employee_id=employee.id, ts_utc=utc_at(2, 9, 20))

        self.assertEqual(outcome.status, AttendanceStatus.LATE)
        self.assertEqual(outcome.deduction_summary.skip_reason, "DISABLED_GLOBALLY")
        self.assertEqual(outcome.deduction_summary.total_deduction, Decimal("0"))
        self.assertIsNone(self.balance_for(employee, month=3, year=2026))

    def test_company_without_policy_uses_disabled_defaults(self) -> None:
        company = self.seed_company()
        employee = self.seed_employee(company)

        outcome = on_check_in(self.db, company_id=company.id, employee_id=employee.id, ts_utc=utc_at(2, 9, 40))

        self.assertEqual(outcome.late_minutes, 40)
        self.assertEqual(outcome.deduction_summary.skip_reason, "DISABLED_GLOBALLY")

    def test_excluded_employee_is_skipped(self) -> None:
        company = self.seed_company(policy=dict(LATE_POLICY))
        employee = self.seed_employee(company, late_deduction_rate=RATE_TWO, enable_auto_deduction=False)

        outcome = on_check_in(self.db, company_id=company.id, employee_id=employee.id, ts_utc=utc_at(2, 9, 20))

        self.assertEqual(outcome.deduction_summary.skip_reason, "EMPLOYEE_EXCLUDED")
        self.assertEqual(self.count_rows(DeductionRecord), 0)


class CheckOutFlowTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.company = self.seed_company(policy=dict(LATE_POLICY))
        self.employee = self.seed_employee(self.company, late_deduction_rate=RATE_TWO)

    def test_early_leave_is_deducted_without_grace(self) -> None:
        on_check_in(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 9, 0))

        outcome = on_check_out(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 16, 0))

        self.assertEqual(outcome.status, AttendanceStatus.EARLY_LEAVE)
        self.assertEqual(outcome.early_leave_minutes, 60)
        self.assertEqual(outcome.worked_hours, 7.0)
        self.assertEqual(outcome.deduction_summary.total_deduction, Decimal("120.00"))

        deduction = get_deduction(self.db, outcome.deduction_summary.deduction_id)
        self.assertEqual(deduction.type, DeductionType.EARLY_LEAVE)
        self.assertEqual(deduction.breakdown["ledger"]["late_count"], 0)

        balance = self.balance_for(self.employee, month=3, year=2026)
        self.assertEqual(balance.late_count, 0)
        self.assertEqual(balance.grace_minutes_used, 0)
        self.assertEqual(balance.deducted_minutes, 60)
        self.assertEqual(Decimal(balance.total_deduction_amount), Decimal("120.00"))

    def test_late_status_survives_early_checkout(self) -> None:
        on_check_in(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 9, 20))

        outcome = on_check_out(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 16, 0))

        self.assertEqual(outcome.status, AttendanceStatus.LATE)
        self.assertEqual(outcome.early_leave_minutes, 60)
        self.assertEqual(self.count_rows(DeductionRecord), 2)

    def test_checkout_after_shift_end_records_overtime(self) -> None:
        on_check_in(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 9, 0))

        outcome = on_check_out(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 18, 30))

        self.assertEqual(outcome.status, AttendanceStatus.PRESENT)
        self.assertEqual(outcome.early_leave_minutes, 0)
        self.assertEqual(outcome.overtime_hours, 1.5)
        self.assertIsNone(outcome.deduction_summary)

    def test_checkout_without_open_record(self) -> None:
        with self.assertRaises(NoOpenAttendanceError):
            on_check_out(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 17))

    def test_second_checkout_is_rejected(self) -> None:
        on_check_in(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 9, 0))
        on_check_out(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 17, 0))

        with self.assertRaises(NoOpenAttendanceError):
            on_check_out(self.db, company_id=self.company.id, employee_id=self.employee.id, ts_utc=utc_at(2, 17, 5))

    def test_disabled_early_checkout_keeps_status_but_skips_deduction(self) -> None:
        company = self.seed_company(policy={**LATE_POLICY, "early_checkout_enabled": False})
        employee = self.seed_employee(company, late_deduction_rate=RATE_TWO)
        on_check_in(self.db, company_id=company.id, employee_id=employee.id, ts_utc=utc_at(2, 9, 0))

        outcome = on_check_out(self.db, company_id=company.id, employee_id=employee.id, ts_utc=utc_at(2, 16, 0))

        self.assertEqual(outcome.status, AttendanceStatus.EARLY_LEAVE)
        self.assertEqual(outcome.deduction_summary.skip_reason, "EARLY_CHECKOUT_DISABLED")
        self.assertIsNone(self.balance_for(employee, month=3, year=2026))


class ShiftAwareFlowTests(SqliteTestCase):
    def test_overnight_shift_spans_two_calendar_days(self) -> None:
        company = self.seed_company(policy=dict(LATE_POLICY))
        employee = self.seed_employee(company, late_deduction_rate=RATE_TWO)
        night = self.seed_shift(company, name="Night", start=time(22), end=time(6), is_overnight=True)
        self.assign_shift(employee, night, date(2026, 3, 2))

        checked_in = on_check_in(self.db, company_id=company.id, employee_id=employee.id, ts_utc=utc_at(2, 22, 30))
        checked_out = on_check_out(self.db, company_id=company.id, employee_id=employee.id, ts_utc=utc_at(3, 5, 0))

        self.assertEqual(checked_in.late_minutes, 30)
        self.assertFalse(checked_in.used_default_shift)
        self.assertEqual(checked_out.attendance_id, checked_in.attendance_id)
        self.assertEqual(checked_out.early_leave_minutes, 60)
        self.assertEqual(checked_out.worked_hours, 6.5)

    def test_company_timezone_decides_shift_start(self) -> None:
        company = self.seed_company(timezone="Africa/Cairo", policy=dict(LATE_POLICY))
        employee = self.seed_employee(company, late_deduction_rate=RATE_TWO)

        outcome = on_check_in(
            self.db,
            company_id=company.id,
            employee_id=employee.id,
            ts_utc=datetime(2026, 1, 15, 7, 20, tzinfo=timezone.utc),
        )

        self.assertEqual(outcome.late_minutes, 20)
        record = get_attendance_day(self.db, employee_id=employee.id, day_date=date(2026, 1, 15))
        self.assertEqual(record.id, outcome.attendance_id)
        self.assertIsNotNone(self.balance_for(employee, month=1, year=2026))


class AttendanceDayTests(SqliteTestCase):
    def test_missing_day_reads_as_absent(self) -> None:
        company = self.seed_company()
        employee = self.seed_employee(company)

        record = get_attendance_day(self.db, employee_id=employee.id, day_date=date(2026, 3, 9))

        self.assertIsNone(record.id)
        self.assertEqual(record.status, AttendanceStatus.ABSENT)
        self.assertEqual(record.calendar_date, date(2026, 3, 9))
        self.assertEqual(self.count_rows(AttendanceRecord), 0)


if __name__ == "__main__":
    unittest.main()

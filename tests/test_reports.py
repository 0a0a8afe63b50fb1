from __future__ import annotations

from decimal import Decimal
import unittest

from db_support import LATE_POLICY, RATE_TWO, SqliteTestCase, utc_at

from lateness_engine.models import DeductionStatus, DeductionType, MonthlyGraceBalance
from lateness_engine.services.attendance import on_check_in, on_check_out
from lateness_engine.services.deduction_issuer import cancel_deduction
from lateness_engine.services.reports import (
    get_company_monthly_stats,
    get_employee_monthly_report,
    get_grace_balance_alerts,
)


class MonthlyReportTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.company = self.seed_company(policy=dict(LATE_POLICY))
        self.alice = self.seed_employee(self.company, full_name="Alice", late_deduction_rate=RATE_TWO)
        self.bob = self.seed_employee(self.company, full_name="Bob", late_deduction_rate=RATE_TWO)

        self._check_in(self.alice, utc_at(2, 9, 20))
        self._check_out(self.alice, utc_at(2, 16, 0))
        second = self._check_in(self.alice, utc_at(3, 9, 20))
        cancel_deduction(self.db, second.deduction_summary.deduction_id, actor_id="hr-7", reason="Metro outage")
        self._check_in(self.bob, utc_at(2, 9, 20))

    def _check_in(self, employee, ts):  # type: ignore[no-untyped-def]
        return on_check_in(self.db, company_id=self.company.id, employee_id=employee.id, ts_utc=ts)

    def _check_out(self, employee, ts):  # type: ignore[no-untyped-def]
        return on_check_out(self.db, company_id=self.company.id, employee_id=employee.id, ts_utc=ts)

    def test_employee_report_splits_active_and_cancelled(self) -> None:
        report = get_employee_monthly_report(self.db, self.alice.id, 3, 2026)

        self.assertEqual(report["full_name"], "Alice")
        self.assertEqual(len(report["deductions"]), 3)
        self.assertEqual(report["active_deduction_total"], Decimal("130.00"))
        self.assertEqual(report["cancelled_deduction_total"], Decimal("20.00"))

        balance = report["balance"]
        self.assertEqual(balance["total_late_minutes"], 20)
        self.assertEqual(balance["grace_minutes_used"], 15)
        self.assertEqual(balance["deducted_minutes"], 65)
        self.assertEqual(balance["total_deduction_amount"], Decimal("130.00"))
        self.assertEqual(balance["late_count"], 1)
        self.assertEqual(balance["remaining_grace_minutes"], 45)

    def test_empty_month_reports_full_allowance(self) -> None:
        report = get_employee_monthly_report(self.db, self.alice.id, 4, 2026)

        self.assertEqual(report["deductions"], [])
        self.assertEqual(report["balance"]["late_count"], 0)
        self.assertEqual(report["balance"]["remaining_grace_minutes"], 60)
        self.assertEqual(report["active_deduction_total"], Decimal("0.00"))

    def test_company_stats_group_by_status_and_type(self) -> None:
        stats = get_company_monthly_stats(self.db, self.company.id, 3, 2026)

        self.assertEqual(stats["employees_with_lateness"], 2)
        self.assertEqual(stats["total_late_minutes"], 40)
        self.assertEqual(stats["total_grace_minutes_used"], 30)
        self.assertEqual(
            [(item["status"], item["type"], item["count"], item["total_amount"]) for item in stats["by_status"]],
            [
                (DeductionStatus.CANCELLED, DeductionType.LATE, 1, Decimal("20.00")),
                (DeductionStatus.PENDING, DeductionType.EARLY_LEAVE, 1, Decimal("120.00")),
                (DeductionStatus.PENDING, DeductionType.LATE, 2, Decimal("20.00")),
            ],
        )
        self.assertEqual(stats["active_deduction_total"], Decimal("140.00"))


class GraceAlertTests(SqliteTestCase):
    def _balance(self, employee, *, used: int) -> None:  # type: ignore[no-untyped-def]
        self.db.add(
            MonthlyGraceBalance(
                employee_id=employee.id,
                month=3,
                year=2026,
                total_late_minutes=used,
                grace_minutes_used=used,
                deducted_minutes=0,
                total_deduction_amount=Decimal("0.00"),
                late_count=1,
            )
        )
        self.db.commit()

    def test_alerts_start_at_notify_percentage(self) -> None:
        company = self.seed_company(policy={"monthly_grace_minutes": 60, "notify_at_percentage": 75})
        near = self.seed_employee(company, full_name="Near")
        calm = self.seed_employee(company, full_name="Calm")
        spent = self.seed_employee(company, full_name="Spent")
        self._balance(near, used=45)
        self._balance(calm, used=15)
        self._balance(spent, used=60)

        alerts = get_grace_balance_alerts(self.db, company.id, 3, 2026)

        self.assertEqual([alert["full_name"] for alert in alerts], ["Spent", "Near"])
        self.assertTrue(alerts[0]["exhausted"])
        self.assertEqual(alerts[0]["usage_percentage"], 100.0)
        self.assertFalse(alerts[1]["exhausted"])
        self.assertEqual(alerts[1]["usage_percentage"], 75.0)

    def test_other_months_are_ignored(self) -> None:
        company = self.seed_company(policy={"monthly_grace_minutes": 60})
        employee = self.seed_employee(company)
        self._balance(employee, used=60)

        self.assertEqual(get_grace_balance_alerts(self.db, company.id, 4, 2026), [])


if __name__ == "__main__":
    unittest.main()

"""Attendance, grace ledger and deduction schema

Revision ID: 0001_deduction_engine
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_deduction_engine"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

attendance_status = postgresql.ENUM(
    "PRESENT",
    "LATE",
    "EARLY_LEAVE",
    "ABSENT",
    "ON_LEAVE",
    name="attendance_status",
    create_type=False,
)
deduction_type = postgresql.ENUM(
    "LATE",
    "EARLY_LEAVE",
    name="deduction_type",
    create_type=False,
)
deduction_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "CANCELLED",
    name="deduction_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    attendance_status.create(bind, checkfirst=True)
    deduction_type.create(bind, checkfirst=True)
    deduction_status.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "company_deduction_policies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("auto_deduction_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("require_deduction_review", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("late_grace_period_minutes", sa.Integer(), nullable=False, server_default=sa.text("15")),
        sa.Column("early_leave_grace_period_minutes", sa.Integer(), nullable=False, server_default=sa.text("15")),
        sa.Column("monthly_grace_minutes", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("late_threshold_minutes", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("first_violation_multiplier", sa.Numeric(6, 2), nullable=False, server_default=sa.text("1.00")),
        sa.Column("second_violation_multiplier", sa.Numeric(6, 2), nullable=False, server_default=sa.text("2.00")),
        sa.Column("third_violation_multiplier", sa.Numeric(6, 2), nullable=False, server_default=sa.text("3.00")),
        sa.Column("max_daily_deduction_days", sa.Numeric(6, 2), nullable=False, server_default=sa.text("1.00")),
        sa.Column(
            "deduction_tiers",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("deduction_rate_per_minute", sa.Numeric(12, 4), nullable=True),
        sa.Column("early_checkout_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("early_checkout_threshold_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("working_days_per_month", sa.Integer(), nullable=False, server_default=sa.text("22")),
        sa.Column("working_hours_per_day", sa.Integer(), nullable=False, server_default=sa.text("8")),
        sa.Column("overtime_min_hours", sa.Numeric(6, 2), nullable=False, server_default=sa.text("1.00")),
        sa.Column("notify_at_percentage", sa.Integer(), nullable=False, server_default=sa.text("75")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("company_id", name="uq_company_deduction_policies_company_id"),
        sa.CheckConstraint("working_days_per_month > 0", name="ck_company_deduction_policies_working_days"),
        sa.CheckConstraint("working_hours_per_day > 0", name="ck_company_deduction_policies_working_hours"),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("enable_auto_deduction", sa.Boolean(), nullable=True),
        sa.Column("late_deduction_rate", sa.Numeric(12, 4), nullable=True),
        sa.Column("base_salary", sa.Numeric(12, 2), nullable=True),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_employees_company_id", "employees", ["company_id"], unique=False)

    op.create_table(
        "shift_definitions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("start_time_local", sa.Time(timezone=False), nullable=False),
        sa.Column("end_time_local", sa.Time(timezone=False), nullable=False),
        sa.Column("break_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_overnight", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("company_id", "name", name="uq_shift_definitions_company_name"),
        sa.CheckConstraint("break_minutes >= 0", name="ck_shift_definitions_break_minutes"),
    )
    op.create_index("ix_shift_definitions_company_id", "shift_definitions", ["company_id"], unique=False)

    op.create_table(
        "shift_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("calendar_date", sa.Date(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shift_definitions.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("employee_id", "calendar_date", name="uq_shift_assignments_employee_date"),
    )
    op.create_index("ix_shift_assignments_company_id", "shift_assignments", ["company_id"], unique=False)
    op.create_index("ix_shift_assignments_employee_id", "shift_assignments", ["employee_id"], unique=False)

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("calendar_date", sa.Date(), nullable=False),
        sa.Column("check_in_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("late_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("early_leave_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("worked_hours", sa.Float(), nullable=True),
        sa.Column("overtime_hours", sa.Float(), nullable=True),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column(
            "flags",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shift_definitions.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("employee_id", "calendar_date", name="uq_attendance_records_employee_date"),
    )
    op.create_index("ix_attendance_records_company_id", "attendance_records", ["company_id"], unique=False)
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"], unique=False)
    op.create_index("ix_attendance_records_calendar_date", "attendance_records", ["calendar_date"], unique=False)
    op.create_index(
        "ix_attendance_records_open",
        "attendance_records",
        ["employee_id", "check_in_utc"],
        unique=False,
        postgresql_where=sa.text("check_out_utc IS NULL"),
    )

    op.create_table(
        "monthly_grace_balances",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("total_late_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grace_minutes_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("deducted_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_deduction_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("late_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "month", "year", name="uq_monthly_grace_balances_employee_month"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_monthly_grace_balances_month"),
        sa.CheckConstraint(
            "total_late_minutes >= 0 AND grace_minutes_used >= 0 AND deducted_minutes >= 0 "
            "AND total_deduction_amount >= 0 AND late_count >= 0",
            name="ck_monthly_grace_balances_non_negative",
        ),
    )
    op.create_index("ix_monthly_grace_balances_employee_id", "monthly_grace_balances", ["employee_id"], unique=False)

    op.create_table(
        "deduction_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("source_attendance_id", sa.Integer(), nullable=False),
        sa.Column("type", deduction_type, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("minutes_deducted", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "breakdown",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("justification", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("status", deduction_status, nullable=False),
        sa.Column("effective_month", sa.Integer(), nullable=False),
        sa.Column("effective_year", sa.Integer(), nullable=False),
        sa.Column("applied_to_payroll", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=255), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=1000), nullable=True),
        sa.Column(
            "notes",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["source_attendance_id"], ["attendance_records.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("source_attendance_id", "type", name="uq_deduction_records_attendance_type"),
        sa.CheckConstraint("amount >= 0", name="ck_deduction_records_amount_non_negative"),
    )
    op.create_index("ix_deduction_records_company_id", "deduction_records", ["company_id"], unique=False)
    op.create_index("ix_deduction_records_employee_id", "deduction_records", ["employee_id"], unique=False)
    op.create_index(
        "ix_deduction_records_source_attendance_id",
        "deduction_records",
        ["source_attendance_id"],
        unique=False,
    )
    op.create_index("ix_deduction_records_status", "deduction_records", ["status"], unique=False)
    op.create_index(
        "ix_deduction_records_employee_period",
        "deduction_records",
        ["employee_id", "effective_year", "effective_month"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("deduction_records")
    op.drop_table("monthly_grace_balances")
    op.drop_index("ix_attendance_records_open", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_table("shift_assignments")
    op.drop_table("shift_definitions")
    op.drop_table("employees")
    op.drop_table("company_deduction_policies")
    op.drop_table("companies")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    deduction_status.drop(bind, checkfirst=True)
    deduction_type.drop(bind, checkfirst=True)
    attendance_status.drop(bind, checkfirst=True)

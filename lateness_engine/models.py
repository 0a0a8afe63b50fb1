from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lateness_engine.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    LATE = "LATE"
    EARLY_LEAVE = "EARLY_LEAVE"
    ABSENT = "ABSENT"
    ON_LEAVE = "ON_LEAVE"


class DeductionType(str, enum.Enum):
    LATE = "LATE"
    EARLY_LEAVE = "EARLY_LEAVE"


class DeductionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    employees: Mapped[list[Employee]] = relationship(back_populates="company")
    policy: Mapped[CompanyPolicy | None] = relationship(back_populates="company", uselist=False)


class CompanyPolicy(Base):
    __tablename__ = "company_deduction_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    auto_deduction_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    require_deduction_review: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    late_grace_period_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=15, server_default=text("15")
    )
    early_leave_grace_period_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=15, server_default=text("15")
    )
    monthly_grace_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=60, server_default=text("60")
    )
    late_threshold_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=10, server_default=text("10")
    )
    first_violation_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, default=Decimal("1.00"), server_default=text("1.00")
    )
    second_violation_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, default=Decimal("2.00"), server_default=text("2.00")
    )
    third_violation_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, default=Decimal("3.00"), server_default=text("3.00")
    )
    max_daily_deduction_days: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, default=Decimal("1.00"), server_default=text("1.00")
    )
    deduction_tiers: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    deduction_rate_per_minute: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    early_checkout_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    early_checkout_threshold_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    working_days_per_month: Mapped[int] = mapped_column(
        Integer, nullable=False, default=22, server_default=text("22")
    )
    working_hours_per_day: Mapped[int] = mapped_column(
        Integer, nullable=False, default=8, server_default=text("8")
    )
    overtime_min_hours: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, default=Decimal("1.00"), server_default=text("1.00")
    )
    notify_at_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=75, server_default=text("75")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    company: Mapped[Company] = relationship(back_populates="policy")


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    enable_auto_deduction: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    late_deduction_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    base_salary: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    company: Mapped[Company] = relationship(back_populates="employees")
    shift_assignments: Mapped[list[ShiftAssignment]] = relationship(back_populates="employee")
    attendance_records: Mapped[list[AttendanceRecord]] = relationship(back_populates="employee")


class ShiftDefinition(Base):
    __tablename__ = "shift_definitions"
    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_shift_definitions_company_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_time_local: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    end_time_local: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_overnight: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    assignments: Mapped[list[ShiftAssignment]] = relationship(back_populates="shift")


class ShiftAssignment(Base):
    __tablename__ = "shift_assignments"
    __table_args__ = (
        UniqueConstraint("employee_id", "calendar_date", name="uq_shift_assignments_employee_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    calendar_date: Mapped[date] = mapped_column(Date, nullable=False)
    shift_id: Mapped[int] = mapped_column(
        ForeignKey("shift_definitions.id", ondelete="RESTRICT"),
        nullable=False,
    )

    employee: Mapped[Employee] = relationship(back_populates="shift_assignments")
    shift: Mapped[ShiftDefinition] = relationship(back_populates="assignments")


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "calendar_date", name="uq_attendance_records_employee_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    calendar_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    check_in_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    early_leave_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    worked_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    overtime_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
        default=AttendanceStatus.PRESENT,
    )
    shift_id: Mapped[int | None] = mapped_column(
        ForeignKey("shift_definitions.id", ondelete="SET NULL"),
        nullable=True,
    )
    flags: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    employee: Mapped[Employee] = relationship(back_populates="attendance_records")
    deductions: Mapped[list[DeductionRecord]] = relationship(back_populates="source_attendance")


class MonthlyGraceBalance(Base):
    __tablename__ = "monthly_grace_balances"
    __table_args__ = (
        UniqueConstraint("employee_id", "month", "year", name="uq_monthly_grace_balances_employee_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    total_late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    grace_minutes_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    deducted_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    total_deduction_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00"), server_default=text("0")
    )
    late_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    __mapper_args__ = {"version_id_col": version}


class DeductionRecord(Base):
    __tablename__ = "deduction_records"
    __table_args__ = (
        UniqueConstraint("source_attendance_id", "type", name="uq_deduction_records_attendance_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_attendance_id: Mapped[int] = mapped_column(
        ForeignKey("attendance_records.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    type: Mapped[DeductionType] = mapped_column(
        Enum(DeductionType, name="deduction_type"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    minutes_deducted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    breakdown: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    justification: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[DeductionStatus] = mapped_column(
        Enum(DeductionStatus, name="deduction_status"),
        nullable=False,
        index=True,
    )
    effective_month: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_year: Mapped[int] = mapped_column(Integer, nullable=False)
    applied_to_payroll: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    notes: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    source_attendance: Mapped[AttendanceRecord] = relationship(back_populates="deductions")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

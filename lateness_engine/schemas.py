from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from lateness_engine.models import AttendanceStatus, DeductionStatus, DeductionType


class CheckInRequest(BaseModel):
    company_id: int = Field(ge=1)
    employee_id: int = Field(ge=1)
    ts_utc: datetime | None = None


class CheckOutRequest(BaseModel):
    company_id: int = Field(ge=1)
    employee_id: int = Field(ge=1)
    ts_utc: datetime | None = None


class DeductionSummaryRead(BaseModel):
    deduction_id: int | None = None
    status: DeductionStatus | None = None
    skip_reason: str | None = None
    total_deduction: Decimal
    deduct_minutes: int
    use_grace_minutes: int
    multiplier: Decimal
    is_capped: bool

    model_config = ConfigDict(from_attributes=True)


class CheckInResponse(BaseModel):
    attendance_id: int
    status: AttendanceStatus
    late_minutes: int
    used_default_shift: bool
    deduction_summary: DeductionSummaryRead | None = None

    model_config = ConfigDict(from_attributes=True)


class CheckOutResponse(BaseModel):
    attendance_id: int
    status: AttendanceStatus
    early_leave_minutes: int
    worked_hours: float
    overtime_hours: float
    deduction_summary: DeductionSummaryRead | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceDayRead(BaseModel):
    id: int | None = None
    employee_id: int
    calendar_date: date
    check_in_utc: datetime | None = None
    check_out_utc: datetime | None = None
    late_minutes: int = 0
    early_leave_minutes: int = 0
    worked_hours: float | None = None
    overtime_hours: float | None = None
    status: AttendanceStatus
    shift_id: int | None = None

    model_config = ConfigDict(from_attributes=True)


class DeductionTierSchema(BaseModel):
    min_minutes: int = Field(ge=0)
    deduction_days: Decimal = Field(ge=0)


_NULLABLE_POLICY_FIELDS = {"deduction_rate_per_minute"}


class CompanyPolicyUpdateRequest(BaseModel):
    auto_deduction_enabled: bool | None = None
    require_deduction_review: bool | None = None
    late_grace_period_minutes: int | None = Field(default=None, ge=0, le=720)
    early_leave_grace_period_minutes: int | None = Field(default=None, ge=0, le=720)
    monthly_grace_minutes: int | None = Field(default=None, ge=0, le=10000)
    late_threshold_minutes: int | None = Field(default=None, ge=0, le=720)
    first_violation_multiplier: Decimal | None = Field(default=None, ge=0, le=100)
    second_violation_multiplier: Decimal | None = Field(default=None, ge=0, le=100)
    third_violation_multiplier: Decimal | None = Field(default=None, ge=0, le=100)
    max_daily_deduction_days: Decimal | None = Field(default=None, ge=0, le=31)
    deduction_tiers: list[DeductionTierSchema] | None = None
    deduction_rate_per_minute: Decimal | None = Field(default=None, ge=0)
    early_checkout_enabled: bool | None = None
    early_checkout_threshold_minutes: int | None = Field(default=None, ge=0, le=720)
    working_days_per_month: int | None = Field(default=None, ge=1, le=31)
    working_hours_per_day: int | None = Field(default=None, ge=1, le=24)
    overtime_min_hours: Decimal | None = Field(default=None, ge=0, le=24)
    notify_at_percentage: int | None = Field(default=None, ge=1, le=100)

    @model_validator(mode="after")
    def validate_explicit_nulls(self) -> "CompanyPolicyUpdateRequest":
        for name in self.model_fields_set:
            if name in _NULLABLE_POLICY_FIELDS:
                continue
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class CompanyPolicyRead(BaseModel):
    company_id: int
    auto_deduction_enabled: bool
    require_deduction_review: bool
    late_grace_period_minutes: int
    early_leave_grace_period_minutes: int
    monthly_grace_minutes: int
    late_threshold_minutes: int
    first_violation_multiplier: Decimal
    second_violation_multiplier: Decimal
    third_violation_multiplier: Decimal
    max_daily_deduction_days: Decimal
    deduction_tiers: list[DeductionTierSchema]
    deduction_rate_per_minute: Decimal | None = None
    early_checkout_enabled: bool
    early_checkout_threshold_minutes: int
    working_days_per_month: int
    working_hours_per_day: int
    overtime_min_hours: Decimal
    notify_at_percentage: int

    model_config = ConfigDict(from_attributes=True)


class DeductionCancelRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class DeductionApplyRequest(BaseModel):
    deduction_ids: list[int] = Field(min_length=1)


class DeductionRead(BaseModel):
    id: int
    company_id: int
    employee_id: int
    source_attendance_id: int
    type: DeductionType
    amount: Decimal
    minutes_deducted: int
    status: DeductionStatus
    justification: str
    breakdown: dict[str, Any]
    effective_month: int
    effective_year: int
    applied_to_payroll: bool
    applied_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    notes: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GraceBalanceRead(BaseModel):
    month: int
    year: int
    total_late_minutes: int
    grace_minutes_used: int
    deducted_minutes: int
    total_deduction_amount: Decimal
    late_count: int
    monthly_grace_minutes: int
    remaining_grace_minutes: int


class EmployeeMonthlyReportRead(BaseModel):
    employee_id: int
    full_name: str
    balance: GraceBalanceRead
    deductions: list[DeductionRead]
    active_deduction_total: Decimal
    cancelled_deduction_total: Decimal


class GraceAlertRead(BaseModel):
    employee_id: int
    full_name: str
    grace_minutes_used: int
    monthly_grace_minutes: int
    usage_percentage: float
    exhausted: bool


class DeductionStatusStatRead(BaseModel):
    status: DeductionStatus
    type: DeductionType
    count: int
    total_amount: Decimal


class CompanyMonthlyStatsRead(BaseModel):
    company_id: int
    month: int
    year: int
    employees_with_lateness: int
    total_late_minutes: int
    total_grace_minutes_used: int
    by_status: list[DeductionStatusStatRead]
    active_deduction_total: Decimal

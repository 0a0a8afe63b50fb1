from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session

from lateness_engine.db import get_db
from lateness_engine.errors import ApiError
from lateness_engine.schemas import (
    CompanyMonthlyStatsRead,
    CompanyPolicyRead,
    CompanyPolicyUpdateRequest,
    DeductionApplyRequest,
    DeductionCancelRequest,
    DeductionRead,
    DeductionTierSchema,
    EmployeeMonthlyReportRead,
    GraceAlertRead,
    GraceBalanceRead,
)
from lateness_engine.services.deduction_calc import CompanyPolicyConfig
from lateness_engine.services.deduction_issuer import (
    approve_deduction,
    cancel_deduction,
    get_deduction,
    mark_applied_to_payroll,
)
from lateness_engine.services.policies import get_company_policy, upsert_company_policy
from lateness_engine.services.reports import (
    get_company_monthly_stats,
    get_employee_monthly_report,
    get_grace_balance_alerts,
)

router = APIRouter(tags=["admin"])


def require_actor(
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> str:
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise ApiError(status_code=400, code="ACTOR_REQUIRED", message="X-Actor-Id header is required.")
    request.state.actor = "admin"
    request.state.actor_id = actor_id
    return actor_id


def _policy_read(config: CompanyPolicyConfig) -> CompanyPolicyRead:
    return CompanyPolicyRead(
        company_id=config.company_id,
        auto_deduction_enabled=config.auto_deduction_enabled,
        require_deduction_review=config.require_deduction_review,
        late_grace_period_minutes=config.late_grace_period_minutes,
        early_leave_grace_period_minutes=config.early_leave_grace_period_minutes,
        monthly_grace_minutes=config.monthly_grace_minutes,
        late_threshold_minutes=config.late_threshold_minutes,
        first_violation_multiplier=config.first_violation_multiplier,
        second_violation_multiplier=config.second_violation_multiplier,
        third_violation_multiplier=config.third_violation_multiplier,
        max_daily_deduction_days=config.max_daily_deduction_days,
        deduction_tiers=[
            DeductionTierSchema(min_minutes=tier.min_minutes, deduction_days=tier.deduction_days)
            for tier in config.tiers
        ],
        deduction_rate_per_minute=config.deduction_rate_per_minute,
        early_checkout_enabled=config.early_checkout_enabled,
        early_checkout_threshold_minutes=config.early_checkout_threshold_minutes,
        working_days_per_month=config.working_days_per_month,
        working_hours_per_day=config.working_hours_per_day,
        overtime_min_hours=config.overtime_min_hours,
        notify_at_percentage=config.notify_at_percentage,
    )


@router.get("/api/admin/companies/{company_id}/deduction-policy", response_model=CompanyPolicyRead)
def read_deduction_policy(
    company_id: int,
    db: Session = Depends(get_db),
) -> CompanyPolicyRead:
    return _policy_read(get_company_policy(db, company_id))


@router.put("/api/admin/companies/{company_id}/deduction-policy", response_model=CompanyPolicyRead)
def update_deduction_policy(
    company_id: int,
    payload: CompanyPolicyUpdateRequest,
    actor_id: str = Depends(require_actor),
    db: Session = Depends(get_db),
) -> CompanyPolicyRead:
    upsert_company_policy(db, company_id, payload, actor_id=actor_id)
    return _policy_read(get_company_policy(db, company_id))


@router.get("/api/admin/deductions/{deduction_id}", response_model=DeductionRead)
def read_deduction(
    deduction_id: int,
    db: Session = Depends(get_db),
) -> DeductionRead:
    return DeductionRead.model_validate(get_deduction(db, deduction_id))


@router.post("/api/admin/deductions/{deduction_id}/approve", response_model=DeductionRead)
def approve(
    deduction_id: int,
    actor_id: str = Depends(require_actor),
    db: Session = Depends(get_db),
) -> DeductionRead:
    return DeductionRead.model_validate(approve_deduction(db, deduction_id, actor_id=actor_id))


@router.post("/api/admin/deductions/{deduction_id}/cancel", response_model=DeductionRead)
def cancel(
    deduction_id: int,
    payload: DeductionCancelRequest,
    actor_id: str = Depends(require_actor),
    db: Session = Depends(get_db),
) -> DeductionRead:
    record = cancel_deduction(db, deduction_id, actor_id=actor_id, reason=payload.reason)
    return DeductionRead.model_validate(record)


@router.post("/api/admin/deductions/apply-to-payroll", response_model=list[DeductionRead])
def apply_to_payroll(
    payload: DeductionApplyRequest,
    actor_id: str = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[DeductionRead]:
    records = mark_applied_to_payroll(db, payload.deduction_ids, actor_id=actor_id)
    return [DeductionRead.model_validate(record) for record in records]


@router.get("/api/admin/employees/{employee_id}/deduction-report", response_model=EmployeeMonthlyReportRead)
def employee_deduction_report(
    employee_id: int,
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
) -> EmployeeMonthlyReportRead:
    report = get_employee_monthly_report(db, employee_id, month, year)
    return EmployeeMonthlyReportRead(
        employee_id=report["employee_id"],
        full_name=report["full_name"],
        balance=GraceBalanceRead(**report["balance"]),
        deductions=[DeductionRead.model_validate(item) for item in report["deductions"]],
        active_deduction_total=report["active_deduction_total"],
        cancelled_deduction_total=report["cancelled_deduction_total"],
    )


@router.get("/api/admin/companies/{company_id}/grace-alerts", response_model=list[GraceAlertRead])
def grace_alerts(
    company_id: int,
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
) -> list[GraceAlertRead]:
    return [GraceAlertRead(**item) for item in get_grace_balance_alerts(db, company_id, month, year)]


@router.get("/api/admin/companies/{company_id}/deduction-stats", response_model=CompanyMonthlyStatsRead)
def company_deduction_stats(
    company_id: int,
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
) -> CompanyMonthlyStatsRead:
    return CompanyMonthlyStatsRead(**get_company_monthly_stats(db, company_id, month, year))

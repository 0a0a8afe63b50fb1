from __future__ import annotations

import logging
import threading
import time as time_module
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from lateness_engine.audit import log_audit
from lateness_engine.errors import ApiError, EmployeeNotFoundError
from lateness_engine.models import AuditActorType, Company, CompanyPolicy, Employee
from lateness_engine.schemas import CompanyPolicyUpdateRequest
from lateness_engine.services.deduction_calc import (
    CompanyPolicyConfig,
    EmployeeOverrides,
    parse_tiers,
    validate_policy,
)
from lateness_engine.settings import get_settings

logger = logging.getLogger("lateness_engine.policies")

_LOCK = threading.Lock()
_POLICY_CACHE: dict[int, tuple[float, CompanyPolicyConfig]] = {}


def invalidate_policy_cache(company_id: int | None = None) -> None:
    with _LOCK:
        if company_id is None:
            _POLICY_CACHE.clear()
        else:
            _POLICY_CACHE.pop(company_id, None)


def policy_to_config(company_id: int, row: CompanyPolicy | None) -> CompanyPolicyConfig:
    if row is None:
        return CompanyPolicyConfig(company_id=company_id)
    return CompanyPolicyConfig(
        company_id=company_id,
        auto_deduction_enabled=bool(row.auto_deduction_enabled),
        require_deduction_review=bool(row.require_deduction_review),
        late_grace_period_minutes=row.late_grace_period_minutes,
        early_leave_grace_period_minutes=row.early_leave_grace_period_minutes,
        monthly_grace_minutes=row.monthly_grace_minutes,
        late_threshold_minutes=row.late_threshold_minutes,
        first_violation_multiplier=Decimal(row.first_violation_multiplier),
        second_violation_multiplier=Decimal(row.second_violation_multiplier),
        third_violation_multiplier=Decimal(row.third_violation_multiplier),
        max_daily_deduction_days=Decimal(row.max_daily_deduction_days),
        tiers=parse_tiers(row.deduction_tiers),
        deduction_rate_per_minute=(
            Decimal(row.deduction_rate_per_minute) if row.deduction_rate_per_minute is not None else None
        ),
        early_checkout_enabled=bool(row.early_checkout_enabled),
        early_checkout_threshold_minutes=row.early_checkout_threshold_minutes,
        working_days_per_month=row.working_days_per_month,
        working_hours_per_day=row.working_hours_per_day,
        overtime_min_hours=Decimal(row.overtime_min_hours),
        notify_at_percentage=row.notify_at_percentage,
    )


def get_company_policy(db: Session, company_id: int) -> CompanyPolicyConfig:
    """Immutable policy snapshot for a company.

    Snapshots are cached for ``policy_cache_seconds``. A company without a
    policy row gets the defaults, which leave auto-deduction disabled.
    """
    ttl = max(0, get_settings().policy_cache_seconds)
    now = time_module.monotonic()
    with _LOCK:
        cached = _POLICY_CACHE.get(company_id)
        if cached is not None and now - cached[0] < ttl:
            return cached[1]

    row = db.scalar(select(CompanyPolicy).where(CompanyPolicy.company_id == company_id))
    if row is None:
        logger.info("policy_defaults_used", extra={"company_id": company_id})
    config = policy_to_config(company_id, row)
    logger.debug("policy_cache_miss", extra={"company_id": company_id})

    if ttl > 0:
        with _LOCK:
            _POLICY_CACHE[company_id] = (now, config)
    return config


def get_employee(
    db: Session,
    employee_id: int,
    *,
    company_id: int | None = None,
    for_update: bool = False,
) -> Employee:
    stmt = select(Employee).where(Employee.id == employee_id)
    if company_id is not None:
        stmt = stmt.where(Employee.company_id == company_id)
    if for_update:
        stmt = stmt.with_for_update()
    employee = db.scalar(stmt)
    if employee is None:
        raise EmployeeNotFoundError(employee_id)
    return employee


def get_employee_overrides(employee: Employee) -> EmployeeOverrides:
    return EmployeeOverrides(
        enable_auto_deduction=employee.enable_auto_deduction,
        late_deduction_rate=(
            Decimal(employee.late_deduction_rate) if employee.late_deduction_rate is not None else None
        ),
        base_salary=Decimal(employee.base_salary) if employee.base_salary is not None else None,
    )


def _serialize_tiers(raw_tiers: list[Any]) -> list[dict[str, Any]]:
    return [
        {"min_minutes": tier.min_minutes, "deduction_days": str(tier.deduction_days)}
        for tier in parse_tiers(raw_tiers)
    ]


def upsert_company_policy(
    db: Session,
    company_id: int,
    payload: CompanyPolicyUpdateRequest,
    *,
    actor_id: str,
) -> CompanyPolicy:
    company = db.get(Company, company_id)
    if company is None:
        raise ApiError(status_code=404, code="COMPANY_NOT_FOUND", message=f"Company {company_id} not found.")

    changes = payload.model_dump(exclude_unset=True)
    if "deduction_tiers" in changes:
        changes["deduction_tiers"] = _serialize_tiers(changes["deduction_tiers"] or [])

    row = db.scalar(select(CompanyPolicy).where(CompanyPolicy.company_id == company_id))
    created = row is None
    if row is None:
        row = CompanyPolicy(company_id=company_id, deduction_tiers=[])
        db.add(row)

    for name, value in changes.items():
        setattr(row, name, value)
    db.flush()

    try:
        validate_policy(policy_to_config(company_id, row))
    except ApiError:
        db.rollback()
        raise

    audit_details = {
        name: (str(value) if isinstance(value, Decimal) else value) for name, value in changes.items()
    }
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="DEDUCTION_POLICY_UPDATED" if not created else "DEDUCTION_POLICY_CREATED",
        entity_type="company_policy",
        entity_id=company_id,
        details=audit_details,
    )
    db.commit()
    db.refresh(row)
    invalidate_policy_cache(company_id)
    return row

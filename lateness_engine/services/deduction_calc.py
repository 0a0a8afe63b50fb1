"""Late and early-checkout deduction arithmetic.

Everything in this module is pure: callers pass in the policy, the
employee overrides and a snapshot of the monthly grace balance, and get
back a breakdown that records every intermediate value. Persisting the
result (ledger update, deduction record) is the caller's job.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Union

from lateness_engine.errors import LedgerConsistencyError, PolicyConfigurationError

CENT = Decimal("0.01")
ZERO = Decimal("0")


class SkipReason(str, enum.Enum):
    DISABLED_GLOBALLY = "DISABLED_GLOBALLY"
    EMPLOYEE_EXCLUDED = "EMPLOYEE_EXCLUDED"
    EARLY_CHECKOUT_DISABLED = "EARLY_CHECKOUT_DISABLED"


@dataclass(frozen=True)
class DeductionTier:
    min_minutes: int
    deduction_days: Decimal


@dataclass(frozen=True)
class CompanyPolicyConfig:
    company_id: int
    auto_deduction_enabled: bool = False
    require_deduction_review: bool = True
    late_grace_period_minutes: int = 15
    early_leave_grace_period_minutes: int = 15
    monthly_grace_minutes: int = 60
    late_threshold_minutes: int = 10
    first_violation_multiplier: Decimal = Decimal("1.0")
    second_violation_multiplier: Decimal = Decimal("2.0")
    third_violation_multiplier: Decimal = Decimal("3.0")
    max_daily_deduction_days: Decimal = Decimal("1.0")
    tiers: tuple[DeductionTier, ...] = ()
    deduction_rate_per_minute: Decimal | None = None
    early_checkout_enabled: bool = True
    early_checkout_threshold_minutes: int = 0
    working_days_per_month: int = 22
    working_hours_per_day: int = 8
    overtime_min_hours: Decimal = Decimal("1.0")
    notify_at_percentage: int = 75


@dataclass(frozen=True)
class EmployeeOverrides:
    enable_auto_deduction: bool | None = None
    late_deduction_rate: Decimal | None = None
    base_salary: Decimal | None = None


@dataclass(frozen=True)
class BalanceSnapshot:
    grace_minutes_used: int = 0
    late_count: int = 0


@dataclass(frozen=True)
class LedgerDelta:
    late_minutes: int = 0
    grace_minutes: int = 0
    deducted_minutes: int = 0
    amount: Decimal = ZERO
    late_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "late_minutes": self.late_minutes,
            "grace_minutes": self.grace_minutes,
            "deducted_minutes": self.deducted_minutes,
            "amount": str(self.amount),
            "late_count": self.late_count,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LedgerDelta:
        try:
            return cls(
                late_minutes=int(raw["late_minutes"]),
                grace_minutes=int(raw["grace_minutes"]),
                deducted_minutes=int(raw["deducted_minutes"]),
                amount=Decimal(str(raw["amount"])),
                late_count=int(raw["late_count"]),
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise LedgerConsistencyError(f"Stored ledger delta is malformed: {exc!r}") from exc


@dataclass(frozen=True)
class PerMinute:
    rate: Decimal | None


@dataclass(frozen=True)
class Tiered:
    tiers: tuple[DeductionTier, ...]


PolicyMode = Union[PerMinute, Tiered]


@dataclass(frozen=True)
class DeductionBreakdown:
    kind: str
    late_minutes: int
    daily_threshold: int
    grace_eligible_minutes: int
    immediate_deduct: int
    monthly_grace_minutes: int
    remaining_grace_before: int
    use_grace_minutes: int
    additional_deduct: int
    deduct_minutes: int
    prior_violations: int
    multiplier: Decimal
    policy_mode: str
    base_rate: Decimal | None
    effective_rate: Decimal | None
    tier_min_minutes: int | None
    tier_deduction_days: Decimal | None
    daily_salary: Decimal | None
    original_amount: Decimal
    max_deduction_amount: Decimal | None
    is_capped: bool
    total_deduction: Decimal
    ledger: LedgerDelta = field(default_factory=LedgerDelta)

    @property
    def remaining_grace_after(self) -> int:
        return max(0, self.remaining_grace_before - self.use_grace_minutes)

    def to_dict(self) -> dict[str, Any]:
        def _dec(value: Decimal | None) -> str | None:
            return None if value is None else str(value)

        return {
            "kind": self.kind,
            "late_minutes": self.late_minutes,
            "daily_threshold": self.daily_threshold,
            "grace_eligible_minutes": self.grace_eligible_minutes,
            "immediate_deduct": self.immediate_deduct,
            "monthly_grace_minutes": self.monthly_grace_minutes,
            "remaining_grace_before": self.remaining_grace_before,
            "use_grace_minutes": self.use_grace_minutes,
            "additional_deduct": self.additional_deduct,
            "remaining_grace_after": self.remaining_grace_after,
            "deduct_minutes": self.deduct_minutes,
            "prior_violations": self.prior_violations,
            "multiplier": _dec(self.multiplier),
            "policy_mode": self.policy_mode,
            "base_rate": _dec(self.base_rate),
            "effective_rate": _dec(self.effective_rate),
            "tier_min_minutes": self.tier_min_minutes,
            "tier_deduction_days": _dec(self.tier_deduction_days),
            "daily_salary": _dec(self.daily_salary),
            "original_amount": _dec(self.original_amount),
            "max_deduction_amount": _dec(self.max_deduction_amount),
            "is_capped": self.is_capped,
            "total_deduction": _dec(self.total_deduction),
            "ledger": self.ledger.to_dict(),
        }


@dataclass(frozen=True)
class DeductionResult:
    skip_reason: SkipReason | None = None
    breakdown: DeductionBreakdown | None = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    @property
    def total_deduction(self) -> Decimal:
        return self.breakdown.total_deduction if self.breakdown else ZERO

    @property
    def deduct_minutes(self) -> int:
        return self.breakdown.deduct_minutes if self.breakdown else 0

    @property
    def use_grace_minutes(self) -> int:
        return self.breakdown.use_grace_minutes if self.breakdown else 0

    @property
    def multiplier(self) -> Decimal:
        return self.breakdown.multiplier if self.breakdown else Decimal("1")

    @property
    def is_capped(self) -> bool:
        return bool(self.breakdown and self.breakdown.is_capped)


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field_name: str, *, allow_none: bool = False) -> Decimal | None:
    if value is None:
        if allow_none:
            return None
        raise PolicyConfigurationError(f"{field_name} is required.")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise PolicyConfigurationError(f"{field_name} is not a number: {value!r}") from exc
    if not result.is_finite():
        raise PolicyConfigurationError(f"{field_name} must be finite, got {value!r}.")
    if result < 0:
        raise PolicyConfigurationError(f"{field_name} cannot be negative, got {value!r}.")
    return result


def parse_tiers(raw_tiers: Any) -> tuple[DeductionTier, ...]:
    if not raw_tiers:
        return ()
    if not isinstance(raw_tiers, (list, tuple)):
        raise PolicyConfigurationError("Deduction tiers must be a list.")

    tiers: list[DeductionTier] = []
    for index, raw in enumerate(raw_tiers):
        if isinstance(raw, DeductionTier):
            tiers.append(raw)
            continue
        if not isinstance(raw, dict):
            raise PolicyConfigurationError(f"Deduction tier #{index} must be an object.")
        min_minutes = raw.get("min_minutes", raw.get("minMinutes"))
        deduction_days = raw.get("deduction_days", raw.get("deductionDays"))
        try:
            min_minutes_int = int(min_minutes)
        except (TypeError, ValueError) as exc:
            raise PolicyConfigurationError(f"Deduction tier #{index} has invalid min_minutes.") from exc
        if min_minutes_int < 0:
            raise PolicyConfigurationError(f"Deduction tier #{index} has negative min_minutes.")
        tiers.append(
            DeductionTier(
                min_minutes=min_minutes_int,
                deduction_days=to_decimal(deduction_days, f"tiers[{index}].deduction_days"),
            )
        )

    tiers.sort(key=lambda item: item.min_minutes)
    seen: set[int] = set()
    for tier in tiers:
        if tier.min_minutes in seen:
            raise PolicyConfigurationError(f"Duplicate deduction tier for {tier.min_minutes} minutes.")
        seen.add(tier.min_minutes)
    return tuple(tiers)


def validate_policy(policy: CompanyPolicyConfig) -> None:
    for name in (
        "late_grace_period_minutes",
        "early_leave_grace_period_minutes",
        "monthly_grace_minutes",
        "late_threshold_minutes",
        "early_checkout_threshold_minutes",
    ):
        if getattr(policy, name) < 0:
            raise PolicyConfigurationError(f"{name} cannot be negative.")
    if policy.working_days_per_month <= 0:
        raise PolicyConfigurationError("working_days_per_month must be positive.")
    if policy.working_hours_per_day <= 0:
        raise PolicyConfigurationError("working_hours_per_day must be positive.")
    for name in (
        "first_violation_multiplier",
        "second_violation_multiplier",
        "third_violation_multiplier",
        "max_daily_deduction_days",
        "overtime_min_hours",
    ):
        to_decimal(getattr(policy, name), name)
    to_decimal(policy.deduction_rate_per_minute, "deduction_rate_per_minute", allow_none=True)


def daily_salary(policy: CompanyPolicyConfig, overrides: EmployeeOverrides) -> Decimal | None:
    salary = to_decimal(overrides.base_salary, "base_salary", allow_none=True)
    if salary is None or salary == 0:
        return None
    return salary / Decimal(policy.working_days_per_month)


def base_rate_per_minute(policy: CompanyPolicyConfig, overrides: EmployeeOverrides) -> Decimal | None:
    personal = to_decimal(overrides.late_deduction_rate, "late_deduction_rate", allow_none=True)
    if personal is not None:
        return personal
    company = to_decimal(policy.deduction_rate_per_minute, "deduction_rate_per_minute", allow_none=True)
    if company is not None:
        return company
    per_day = daily_salary(policy, overrides)
    if per_day is None:
        return None
    return per_day / Decimal(policy.working_hours_per_day) / Decimal(60)


def resolve_policy_mode(policy: CompanyPolicyConfig, overrides: EmployeeOverrides) -> PolicyMode:
    tiers = parse_tiers(policy.tiers)
    if tiers:
        return Tiered(tiers=tiers)
    return PerMinute(rate=base_rate_per_minute(policy, overrides))


def select_tier(tiers: tuple[DeductionTier, ...], late_minutes: int) -> DeductionTier | None:
    selected: DeductionTier | None = None
    for tier in tiers:
        if tier.min_minutes <= late_minutes and (selected is None or tier.min_minutes > selected.min_minutes):
            selected = tier
    return selected


def escalation_multiplier(prior_violations: int, policy: CompanyPolicyConfig) -> Decimal:
    if prior_violations <= 0:
        value = policy.first_violation_multiplier
        name = "first_violation_multiplier"
    elif prior_violations == 1:
        value = policy.second_violation_multiplier
        name = "second_violation_multiplier"
    else:
        value = policy.third_violation_multiplier
        name = "third_violation_multiplier"
    return to_decimal(value, name)


def eligibility_skip_reason(policy: CompanyPolicyConfig, overrides: EmployeeOverrides) -> SkipReason | None:
    if not policy.auto_deduction_enabled:
        return SkipReason.DISABLED_GLOBALLY
    if overrides.enable_auto_deduction is False:
        return SkipReason.EMPLOYEE_EXCLUDED
    return None


def _apply_cap(amount: Decimal, per_day: Decimal | None, policy: CompanyPolicyConfig) -> tuple[Decimal, Decimal | None, bool]:
    cap_days = to_decimal(policy.max_daily_deduction_days, "max_daily_deduction_days")
    if per_day is None or cap_days == 0:
        return amount, None, False
    max_amount = money(per_day * cap_days)
    if amount > max_amount:
        return max_amount, max_amount, True
    return amount, max_amount, False


def calculate_late_deduction(
    *,
    late_minutes: int,
    balance: BalanceSnapshot,
    policy: CompanyPolicyConfig,
    overrides: EmployeeOverrides,
) -> DeductionResult:
    if late_minutes < 0:
        raise PolicyConfigurationError("late_minutes cannot be negative.")

    skip_reason = eligibility_skip_reason(policy, overrides)
    if skip_reason is not None:
        return DeductionResult(skip_reason=skip_reason)

    validate_policy(policy)

    threshold = policy.late_threshold_minutes
    if late_minutes > threshold:
        immediate_deduct = late_minutes - threshold
        grace_eligible = threshold
    else:
        immediate_deduct = 0
        grace_eligible = late_minutes

    remaining_grace = policy.monthly_grace_minutes - balance.grace_minutes_used
    if grace_eligible <= remaining_grace:
        use_grace = grace_eligible
        additional_deduct = 0
    else:
        use_grace = max(remaining_grace, 0)
        additional_deduct = grace_eligible - use_grace

    deduct_minutes = immediate_deduct + additional_deduct

    prior_violations = max(0, balance.late_count)
    multiplier = escalation_multiplier(prior_violations, policy)

    mode = resolve_policy_mode(policy, overrides)
    per_day = daily_salary(policy, overrides)
    base_rate: Decimal | None = None
    effective_rate: Decimal | None = None
    tier: DeductionTier | None = None

    if isinstance(mode, Tiered):
        if per_day is None:
            raise PolicyConfigurationError("Tiered deductions need a base salary for the employee.")
        tier = select_tier(mode.tiers, late_minutes)
        amount = money(tier.deduction_days * per_day) if tier is not None else ZERO
        policy_mode = "TIERED"
    else:
        base_rate = mode.rate
        policy_mode = "PER_MINUTE"
        if base_rate is None:
            if deduct_minutes > 0:
                raise PolicyConfigurationError(
                    "No deduction rate available: set a personal rate, a company rate or a base salary."
                )
            amount = ZERO
        else:
            effective_rate = base_rate * multiplier
            amount = money(Decimal(deduct_minutes) * effective_rate)

    total, max_amount, is_capped = _apply_cap(amount, per_day, policy)

    breakdown = DeductionBreakdown(
        kind="LATE",
        late_minutes=late_minutes,
        daily_threshold=threshold,
        grace_eligible_minutes=grace_eligible,
        immediate_deduct=immediate_deduct,
        monthly_grace_minutes=policy.monthly_grace_minutes,
        remaining_grace_before=remaining_grace,
        use_grace_minutes=use_grace,
        additional_deduct=additional_deduct,
        deduct_minutes=deduct_minutes,
        prior_violations=prior_violations,
        multiplier=multiplier,
        policy_mode=policy_mode,
        base_rate=base_rate,
        effective_rate=effective_rate,
        tier_min_minutes=tier.min_minutes if tier else None,
        tier_deduction_days=tier.deduction_days if tier else None,
        daily_salary=money(per_day) if per_day is not None else None,
        original_amount=amount,
        max_deduction_amount=max_amount,
        is_capped=is_capped,
        total_deduction=total,
        ledger=LedgerDelta(
            late_minutes=late_minutes,
            grace_minutes=use_grace,
            deducted_minutes=deduct_minutes,
            amount=total,
            late_count=1,
        ),
    )
    return DeductionResult(breakdown=breakdown)


def calculate_early_checkout_deduction(
    *,
    early_minutes: int,
    policy: CompanyPolicyConfig,
    overrides: EmployeeOverrides,
) -> DeductionResult:
    if early_minutes < 0:
        raise PolicyConfigurationError("early_minutes cannot be negative.")

    skip_reason = eligibility_skip_reason(policy, overrides)
    if skip_reason is not None:
        return DeductionResult(skip_reason=skip_reason)
    if not policy.early_checkout_enabled:
        return DeductionResult(skip_reason=SkipReason.EARLY_CHECKOUT_DISABLED)

    validate_policy(policy)

    threshold = policy.early_checkout_threshold_minutes
    deduct_minutes = early_minutes if early_minutes > threshold else 0
    base_rate = base_rate_per_minute(policy, overrides)
    per_day = daily_salary(policy, overrides)

    if base_rate is None:
        if deduct_minutes > 0:
            raise PolicyConfigurationError(
                "No deduction rate available: set a personal rate, a company rate or a base salary."
            )
        amount = ZERO
    else:
        amount = money(Decimal(deduct_minutes) * base_rate)

    total, max_amount, is_capped = _apply_cap(amount, per_day, policy)

    breakdown = DeductionBreakdown(
        kind="EARLY_LEAVE",
        late_minutes=early_minutes,
        daily_threshold=threshold,
        grace_eligible_minutes=0,
        immediate_deduct=deduct_minutes,
        monthly_grace_minutes=0,
        remaining_grace_before=0,
        use_grace_minutes=0,
        additional_deduct=0,
        deduct_minutes=deduct_minutes,
        prior_violations=0,
        multiplier=Decimal("1"),
        policy_mode="PER_MINUTE",
        base_rate=base_rate,
        effective_rate=base_rate,
        tier_min_minutes=None,
        tier_deduction_days=None,
        daily_salary=money(per_day) if per_day is not None else None,
        original_amount=amount,
        max_deduction_amount=max_amount,
        is_capped=is_capped,
        total_deduction=total,
        ledger=LedgerDelta(
            late_minutes=0,
            grace_minutes=0,
            deducted_minutes=deduct_minutes,
            amount=total,
            late_count=0,
        ),
    )
    return DeductionResult(breakdown=breakdown)

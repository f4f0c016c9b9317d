from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import math

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from sijil_api.db.models import Matter, Tenant, User
from sijil_api.errors import PlanLimitError


@dataclass(frozen=True)
class PlanLimits:
    max_users: int
    max_matters: int
    max_storage_mb: int
    templates_enabled: bool
    email_integration: bool
    calendar_sync: bool


PLAN_LIMITS: dict[str, PlanLimits] = {
    "TRIAL": PlanLimits(2, 10, 100, True, False, True),
    "SOLO": PlanLimits(1, 50, 500, True, True, True),
    "TEAM": PlanLimits(5, 200, 2000, True, True, True),
    "BUSINESS": PlanLimits(20, 1000, 10000, True, True, True),
    "ENTERPRISE": PlanLimits(999, 99999, 100000, True, True, True),
}
DEFAULT_PLAN = "TRIAL"
FEATURES = ("templates_enabled", "email_integration", "calendar_sync")


@dataclass(frozen=True)
class LimitCheckResult:
    allowed: bool
    limit: int
    current: int
    reason: str | None = None


@dataclass(frozen=True)
class TrialStatus:
    ends_at: datetime | None
    days_left: int
    is_expired: bool
    status: str


def get_plan_limits(plan: str | None) -> PlanLimits:
    return PLAN_LIMITS.get((plan or "").upper(), PLAN_LIMITS[DEFAULT_PLAN])


def _check(current: int, limit: int, reason: str) -> LimitCheckResult:
    if current >= limit:
        return LimitCheckResult(allowed=False, limit=limit, current=current, reason=reason)
    return LimitCheckResult(allowed=True, limit=limit, current=current)


def check_user_limit(session: Session, tenant: Tenant) -> LimitCheckResult:
    current = session.scalar(
        select(func.count())
        .select_from(User)
        .where(User.tenant_id == tenant.id, User.is_active.is_(True))
    )
    return _check(int(current or 0), get_plan_limits(tenant.plan).max_users, "user_limit_reached")


def check_matter_limit(session: Session, tenant: Tenant) -> LimitCheckResult:
    current = session.scalar(
        select(func.count()).select_from(Matter).where(Matter.tenant_id == tenant.id)
    )
    return _check(
        int(current or 0), get_plan_limits(tenant.plan).max_matters, "matter_limit_reached"
    )


def check_feature(tenant: Tenant, feature: str) -> LimitCheckResult:
    if feature not in FEATURES:
        raise ValueError(f"Unknown plan feature: {feature}")
    enabled = bool(getattr(get_plan_limits(tenant.plan), feature))
    if not enabled:
        return LimitCheckResult(allowed=False, limit=0, current=0, reason="feature_not_in_plan")
    return LimitCheckResult(allowed=True, limit=1, current=0)


def enforce(result: LimitCheckResult, message: str) -> None:
    if not result.allowed:
        raise PlanLimitError(message, reason=result.reason)


def trial_status(tenant: Tenant, *, now: datetime | None = None) -> TrialStatus:
    current = now or datetime.now(timezone.utc)
    ends_at = tenant.trial_ends_at
    if ends_at is None or tenant.plan != DEFAULT_PLAN:
        return TrialStatus(
            ends_at=ends_at,
            days_left=0,
            is_expired=tenant.plan_status == "expired",
            status=tenant.plan_status,
        )
    remaining_seconds = (ends_at - current).total_seconds()
    days_left = max(math.ceil(remaining_seconds / 86400), 0)
    is_expired = current >= ends_at or tenant.plan_status == "expired"
    return TrialStatus(ends_at=ends_at, days_left=days_left, is_expired=is_expired, status=tenant.plan_status)

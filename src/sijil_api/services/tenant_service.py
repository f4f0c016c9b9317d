from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import Tenant, utcnow
from sijil_api.errors import NotFoundError
from sijil_api.schemas import (
    LimitCheckOut,
    SubscriptionStatusOut,
    TenantSettingsOut,
    TenantSettingsUpdate,
    TrialStatusOut,
)
from sijil_api.security import CurrentUser
from sijil_api.services import plan_limits
from sijil_api.services.audit_service import AuditService


class TenantService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        audit: AuditService,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit
        self._now = now_fn or utcnow

    def get(self, tenant_id: str) -> TenantSettingsOut:
        with self.session_factory() as session:
            return TenantSettingsOut.model_validate(self._get_tenant(session, tenant_id))

    def update(self, actor: CurrentUser, payload: TenantSettingsUpdate) -> TenantSettingsOut:
        changes = payload.model_dump(exclude_unset=True)
        with self.session_factory.begin() as session:
            tenant = self._get_tenant(session, actor.tenant_id)
            for field_name, value in changes.items():
                if field_name == "firm_name" and value is not None:
                    value = value.strip()
                setattr(tenant, field_name, value)
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="TENANT_SETTINGS_UPDATED",
                entity="Tenant",
                entity_id=tenant.id,
                metadata={"fields": sorted(changes)},
            )
            return TenantSettingsOut.model_validate(tenant)

    def subscription_status(self, tenant_id: str) -> SubscriptionStatusOut:
        with self.session_factory() as session:
            tenant = self._get_tenant(session, tenant_id)
            limits = plan_limits.get_plan_limits(tenant.plan)
            trial = plan_limits.trial_status(tenant, now=self._now())
            users = plan_limits.check_user_limit(session, tenant)
            matters = plan_limits.check_matter_limit(session, tenant)
            return SubscriptionStatusOut(
                plan=tenant.plan,
                plan_status=tenant.plan_status,
                trial=TrialStatusOut(
                    ends_at=trial.ends_at,
                    days_left=trial.days_left,
                    is_expired=trial.is_expired,
                    status=trial.status,
                ),
                users=LimitCheckOut(**asdict(users)),
                matters=LimitCheckOut(**asdict(matters)),
                features={
                    feature: bool(getattr(limits, feature)) for feature in plan_limits.FEATURES
                },
            )

    @staticmethod
    def _get_tenant(session: Session, tenant_id: str) -> Tenant:
        tenant = session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        return tenant

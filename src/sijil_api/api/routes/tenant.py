from __future__ import annotations

from fastapi import APIRouter, Depends

from sijil_api.api.dependencies import CurrentUserDependency, require_roles
from sijil_api.schemas import SubscriptionStatusOut, TenantSettingsOut, TenantSettingsUpdate
from sijil_api.security import ROLE_PARTNER, CurrentUser
from sijil_api.services.tenant_service import TenantService


def build_tenant_router(
    tenant_service: TenantService,
    *,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/tenant", tags=["tenant"])
    partner = require_roles(current_user, ROLE_PARTNER)

    @router.get("/settings", response_model=TenantSettingsOut)
    def get_settings(actor: CurrentUser = Depends(current_user)) -> TenantSettingsOut:
        return tenant_service.get(actor.tenant_id)

    @router.patch("/settings", response_model=TenantSettingsOut)
    def update_settings(
        payload: TenantSettingsUpdate, actor: CurrentUser = Depends(partner)
    ) -> TenantSettingsOut:
        return tenant_service.update(actor, payload)

    @router.get("/subscription", response_model=SubscriptionStatusOut)
    def subscription(actor: CurrentUser = Depends(current_user)) -> SubscriptionStatusOut:
        return tenant_service.subscription_status(actor.tenant_id)

    return router

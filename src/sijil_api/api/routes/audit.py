from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from sijil_api.api.dependencies import CurrentUserDependency, require_roles
from sijil_api.schemas import AuditLogOut, Page
from sijil_api.security import ROLE_LAWYER, ROLE_PARTNER, CurrentUser
from sijil_api.services.audit_service import AuditService


def build_audit_router(audit_service: AuditService, *, current_user: CurrentUserDependency) -> APIRouter:
    router = APIRouter(prefix="/api/audit", tags=["audit"])
    reviewer = require_roles(current_user, ROLE_PARTNER, ROLE_LAWYER)

    @router.get("", response_model=Page[AuditLogOut])
    def list_audit_logs(
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
        actor: CurrentUser = Depends(reviewer),
    ) -> Page[AuditLogOut]:
        return audit_service.list(actor.tenant_id, page=page, page_size=page_size)

    return router

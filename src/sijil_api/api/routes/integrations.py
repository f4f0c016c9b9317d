from __future__ import annotations

from fastapi import APIRouter, Depends

from sijil_api.api.dependencies import CurrentUserDependency
from sijil_api.integrations.najiz_service import NajizIntegrationService
from sijil_api.schemas import IntegrationOut, IntegrationTestResult, NajizConnectRequest
from sijil_api.security import CurrentUser


def build_integrations_router(
    najiz_service: NajizIntegrationService,
    *,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/integrations/najiz", tags=["integrations"])

    @router.get("", response_model=IntegrationOut)
    def get_integration(actor: CurrentUser = Depends(current_user)) -> IntegrationOut:
        return najiz_service.get(actor)

    @router.post("/connect", response_model=IntegrationOut)
    def connect(
        payload: NajizConnectRequest, actor: CurrentUser = Depends(current_user)
    ) -> IntegrationOut:
        return najiz_service.connect(actor, payload)

    @router.post("/test", response_model=IntegrationTestResult)
    def test_connection(actor: CurrentUser = Depends(current_user)) -> IntegrationTestResult:
        return najiz_service.test(actor)

    @router.post("/disconnect", response_model=IntegrationOut)
    def disconnect(actor: CurrentUser = Depends(current_user)) -> IntegrationOut:
        return najiz_service.disconnect(actor)

    return router

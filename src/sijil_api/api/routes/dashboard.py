from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from sijil_api.api.dependencies import CurrentUserDependency
from sijil_api.schemas import DashboardOut, SearchResults
from sijil_api.security import CurrentUser
from sijil_api.services.dashboard_service import DashboardService
from sijil_api.services.search_service import SearchService


def build_dashboard_router(
    dashboard_service: DashboardService,
    *,
    search_service: SearchService,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api", tags=["dashboard"])

    @router.get("/dashboard", response_model=DashboardOut)
    def dashboard(actor: CurrentUser = Depends(current_user)) -> DashboardOut:
        return dashboard_service.summary(actor)

    @router.get("/search", response_model=SearchResults)
    def search(
        q: str = Query("", max_length=200),
        actor: CurrentUser = Depends(current_user),
    ) -> SearchResults:
        return search_service.search(actor, q)

    return router

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from sijil_api.api.dependencies import CurrentUserDependency
from sijil_api.schemas import (
    MatterCreate,
    MatterDetailOut,
    MatterMembersUpdate,
    MatterOut,
    MatterStatus,
    MatterUpdate,
    Page,
    SuccessResponse,
)
from sijil_api.security import CurrentUser
from sijil_api.services.matter_service import MatterService


def build_matters_router(
    matter_service: MatterService,
    *,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/matters", tags=["matters"])

    @router.get("", response_model=Page[MatterOut])
    def list_matters(
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
        search: str | None = Query(None, max_length=200),
        status_filter: MatterStatus | None = Query(None, alias="status"),
        assignee_id: str | None = None,
        actor: CurrentUser = Depends(current_user),
    ) -> Page[MatterOut]:
        return matter_service.list(
            actor,
            page=page,
            page_size=page_size,
            search=search,
            status=status_filter,
            assignee_id=assignee_id,
        )

    @router.post("", response_model=MatterDetailOut, status_code=status.HTTP_201_CREATED)
    def create_matter(
        payload: MatterCreate, actor: CurrentUser = Depends(current_user)
    ) -> MatterDetailOut:
        return matter_service.create(actor, payload)

    @router.get("/{matter_id}", response_model=MatterDetailOut)
    def get_matter(matter_id: str, actor: CurrentUser = Depends(current_user)) -> MatterDetailOut:
        return matter_service.get(actor, matter_id)

    @router.patch("/{matter_id}", response_model=MatterDetailOut)
    def update_matter(
        matter_id: str, payload: MatterUpdate, actor: CurrentUser = Depends(current_user)
    ) -> MatterDetailOut:
        return matter_service.update(actor, matter_id, payload)

    @router.put("/{matter_id}/members", response_model=MatterDetailOut)
    def update_members(
        matter_id: str, payload: MatterMembersUpdate, actor: CurrentUser = Depends(current_user)
    ) -> MatterDetailOut:
        return matter_service.update_members(actor, matter_id, payload.member_ids)

    @router.delete("/{matter_id}", response_model=SuccessResponse)
    def delete_matter(matter_id: str, actor: CurrentUser = Depends(current_user)) -> SuccessResponse:
        matter_service.remove(actor, matter_id)
        return SuccessResponse()

    return router

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from sijil_api.api.dependencies import CurrentUserDependency, require_roles
from sijil_api.schemas import (
    InvitationCreateRequest,
    InvitationOut,
    Page,
    SuccessResponse,
    UserCreateRequest,
    UserOut,
    UserRoleUpdate,
    UserStatusUpdate,
)
from sijil_api.security import ROLE_PARTNER, CurrentUser
from sijil_api.services.user_service import UserService


def build_users_router(
    user_service: UserService,
    *,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/users", tags=["users"])
    partner = require_roles(current_user, ROLE_PARTNER)

    @router.get("", response_model=Page[UserOut])
    def list_users(
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
        actor: CurrentUser = Depends(partner),
    ) -> Page[UserOut]:
        return user_service.list(actor, page=page, page_size=page_size)

    @router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
    def create_user(payload: UserCreateRequest, actor: CurrentUser = Depends(partner)) -> UserOut:
        return user_service.create(actor, payload)

    @router.get("/invitations", response_model=list[InvitationOut])
    def list_invitations(actor: CurrentUser = Depends(partner)) -> list[InvitationOut]:
        return user_service.list_invitations(actor)

    @router.post(
        "/invitations", response_model=InvitationOut, status_code=status.HTTP_201_CREATED
    )
    def invite_user(
        payload: InvitationCreateRequest, actor: CurrentUser = Depends(partner)
    ) -> InvitationOut:
        return user_service.invite(actor, payload)

    @router.delete("/invitations/{invitation_id}", response_model=SuccessResponse)
    def revoke_invitation(
        invitation_id: str, actor: CurrentUser = Depends(partner)
    ) -> SuccessResponse:
        return user_service.revoke_invitation(actor, invitation_id)

    @router.patch("/{user_id}/role", response_model=UserOut)
    def update_role(
        user_id: str, payload: UserRoleUpdate, actor: CurrentUser = Depends(partner)
    ) -> UserOut:
        return user_service.update_role(actor, user_id, payload.role)

    @router.patch("/{user_id}/status", response_model=UserOut)
    def update_status(
        user_id: str, payload: UserStatusUpdate, actor: CurrentUser = Depends(partner)
    ) -> UserOut:
        return user_service.update_status(actor, user_id, payload.is_active)

    return router

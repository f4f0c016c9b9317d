from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends, Request, status

from sijil_api.api.dependencies import CurrentUserDependency, request_origin
from sijil_api.schemas import (
    AuthTokensResponse,
    InvitationAcceptRequest,
    LoginRequest,
    LogoutRequest,
    PasswordResetRequest,
    PasswordResetUpdateRequest,
    PasswordResetVerifyRequest,
    RefreshRequest,
    SignupRequest,
    SuccessResponse,
)
from sijil_api.security import CurrentUser
from sijil_api.services.auth_service import AuthService


def build_auth_router(
    auth_service: AuthService,
    *,
    current_user: CurrentUserDependency,
    signup_limit: Callable[[Request], None],
    login_limit: Callable[[Request], None],
    refresh_limit: Callable[[Request], None],
    password_reset_limit: Callable[[Request], None],
) -> APIRouter:
    router = APIRouter(prefix="/api/auth", tags=["auth"])

    @router.post(
        "/signup",
        response_model=AuthTokensResponse,
        status_code=status.HTTP_201_CREATED,
        dependencies=[Depends(signup_limit)],
    )
    def signup(payload: SignupRequest, request: Request) -> AuthTokensResponse:
        ip, user_agent = request_origin(request)
        return auth_service.signup(payload, ip=ip, user_agent=user_agent)

    @router.post("/login", response_model=AuthTokensResponse, dependencies=[Depends(login_limit)])
    def login(payload: LoginRequest, request: Request) -> AuthTokensResponse:
        ip, user_agent = request_origin(request)
        return auth_service.login(payload, ip=ip, user_agent=user_agent)

    @router.post(
        "/refresh", response_model=AuthTokensResponse, dependencies=[Depends(refresh_limit)]
    )
    def refresh(payload: RefreshRequest, request: Request) -> AuthTokensResponse:
        ip, user_agent = request_origin(request)
        return auth_service.refresh(payload.refresh_token, ip=ip, user_agent=user_agent)

    @router.post("/logout", response_model=SuccessResponse)
    def logout(
        payload: LogoutRequest | None = None,
        actor: CurrentUser = Depends(current_user),
    ) -> SuccessResponse:
        return auth_service.logout(actor, payload.refresh_token if payload else None)

    @router.post(
        "/password-reset/request",
        response_model=SuccessResponse,
        dependencies=[Depends(password_reset_limit)],
    )
    def request_password_reset(payload: PasswordResetRequest, request: Request) -> SuccessResponse:
        ip, user_agent = request_origin(request)
        return auth_service.request_password_reset(payload, ip=ip, user_agent=user_agent)

    @router.post(
        "/password-reset/verify",
        response_model=SuccessResponse,
        dependencies=[Depends(password_reset_limit)],
    )
    def verify_password_reset(payload: PasswordResetVerifyRequest) -> SuccessResponse:
        return auth_service.verify_password_reset(payload)

    @router.post(
        "/password-reset/update",
        response_model=SuccessResponse,
        dependencies=[Depends(password_reset_limit)],
    )
    def reset_password(payload: PasswordResetUpdateRequest, request: Request) -> SuccessResponse:
        ip, user_agent = request_origin(request)
        return auth_service.reset_password(payload, ip=ip, user_agent=user_agent)

    @router.post(
        "/invitations/accept",
        response_model=AuthTokensResponse,
        status_code=status.HTTP_201_CREATED,
        dependencies=[Depends(signup_limit)],
    )
    def accept_invitation(payload: InvitationAcceptRequest, request: Request) -> AuthTokensResponse:
        ip, user_agent = request_origin(request)
        return auth_service.accept_invitation(payload, ip=ip, user_agent=user_agent)

    return router

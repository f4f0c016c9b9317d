from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from sijil_api.errors import AuthError, ForbiddenError, RateLimitError
from sijil_api.middleware import RateLimiter, resolve_client_id
from sijil_api.security import CurrentUser, TokenIssuer
from sijil_api.telemetry import RequestMetrics


CurrentUserDependency = Callable[[Request], CurrentUser]


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Missing bearer token")
    return token.strip()


def request_origin(request: Request) -> tuple[str, str | None]:
    return resolve_client_id(request), request.headers.get("user-agent")


def build_current_user_dependency(token_issuer: TokenIssuer) -> CurrentUserDependency:
    def current_user(request: Request) -> CurrentUser:
        claims = token_issuer.verify_access_token(_bearer_token(request))
        ip, user_agent = request_origin(request)
        return CurrentUser(
            user_id=claims.user_id,
            tenant_id=claims.tenant_id,
            role=claims.role,
            email=claims.email,
            ip=ip,
            user_agent=user_agent,
        )

    return current_user


def require_roles(current_user: CurrentUserDependency, *roles: str) -> CurrentUserDependency:
    allowed = frozenset(roles)

    def role_guard(actor: CurrentUser = Depends(current_user)) -> CurrentUser:
        if actor.role not in allowed:
            raise ForbiddenError("Insufficient role")
        return actor

    return role_guard


def build_rate_limit_dependency(
    limiter: RateLimiter,
    *,
    scope: str,
    request_metrics: RequestMetrics | None = None,
) -> Callable[[Request], None]:
    def enforce_rate_limit(request: Request) -> None:
        result = limiter.check(f"{scope}:{resolve_client_id(request)}")
        if result.allowed:
            return
        if request_metrics is not None:
            request_metrics.record_rate_limited(scope=scope)
        raise RateLimitError(
            "Too many requests; please retry later",
            retry_after_seconds=result.retry_after_seconds(),
            limit=result.limit,
            remaining=result.remaining,
        )

    return enforce_rate_limit

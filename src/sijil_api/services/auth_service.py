from __future__ import annotations

from datetime import datetime, timedelta
import hmac
import logging
import secrets
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import (
    Invitation,
    PasswordResetToken,
    RefreshToken,
    Tenant,
    User,
    utcnow,
)
from sijil_api.errors import AuthError, BadRequestError, ConflictError, NotFoundError
from sijil_api.schemas import (
    AuthTokensResponse,
    AuthUser,
    InvitationAcceptRequest,
    LoginRequest,
    PasswordResetRequest,
    PasswordResetUpdateRequest,
    PasswordResetVerifyRequest,
    SignupRequest,
    SuccessResponse,
)
from sijil_api.security import (
    ROLE_PARTNER,
    CurrentUser,
    PasswordHasher,
    TokenIssuer,
    hash_token,
)
from sijil_api.services import plan_limits
from sijil_api.services.account_notifier import AccountNotifier, LoggingAccountNotifier
from sijil_api.services.audit_service import AuditService


LOGGER = logging.getLogger(__name__)
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_RESET_CODE = "Reset code is invalid or expired"
INVALID_INVITATION = "Invitation is invalid or expired"
DEFAULT_PASSWORD_RESET_TTL_MINUTES = 30


class AuthService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        token_issuer: TokenIssuer,
        password_hasher: PasswordHasher,
        audit: AuditService,
        trial_days: int = 14,
        notifier: AccountNotifier | None = None,
        password_reset_ttl_minutes: int = DEFAULT_PASSWORD_RESET_TTL_MINUTES,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.token_issuer = token_issuer
        self.password_hasher = password_hasher
        self.audit = audit
        self.trial_days = max(trial_days, 0)
        self.notifier = notifier or LoggingAccountNotifier()
        self.password_reset_ttl = timedelta(minutes=max(password_reset_ttl_minutes, 1))
        self._now = now_fn or utcnow

    def signup(
        self,
        payload: SignupRequest,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthTokensResponse:
        now = self._now()
        with self.session_factory.begin() as session:
            tenant = Tenant(
                firm_name=payload.firm_name.strip(),
                language=payload.language,
                hijri_display=payload.hijri_display,
                retention_days=payload.retention_days,
                plan="TRIAL",
                plan_status="trial",
                trial_ends_at=now + timedelta(days=self.trial_days),
            )
            session.add(tenant)
            session.flush()
            user = User(
                tenant_id=tenant.id,
                name=payload.name.strip(),
                email=payload.email.strip().lower(),
                password_hash=self.password_hasher.hash(payload.password),
                role=ROLE_PARTNER,
                is_active=True,
            )
            session.add(user)
            session.flush()
            response = self._issue_tokens(session, user)
            self.audit.record(
                session,
                tenant_id=tenant.id,
                user_id=user.id,
                action="TENANT_SIGNUP",
                entity="Tenant",
                entity_id=tenant.id,
                ip=ip,
                user_agent=user_agent,
            )
        LOGGER.info("Tenant signed up", extra={"tenant_id": response.user.tenant_id})
        return response

    def login(
        self,
        payload: LoginRequest,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthTokensResponse:
        email = payload.email.strip().lower()
        failure: str | None = None
        response: AuthTokensResponse | None = None
        with self.session_factory.begin() as session:
            user = session.scalars(
                select(User).where(
                    User.tenant_id == payload.tenant_id,
                    User.email == email,
                    User.is_active.is_(True),
                )
            ).first()
            if user is None:
                failure = "user_not_found"
                # Audit rows need an existing tenant to hang off.
                if session.get(Tenant, payload.tenant_id) is not None:
                    self.audit.record(
                        session,
                        tenant_id=payload.tenant_id,
                        action="LOGIN_FAILED",
                        entity="User",
                        ip=ip,
                        user_agent=user_agent,
                        metadata={"email": email, "reason": failure},
                    )
            elif not self.password_hasher.verify(payload.password, user.password_hash):
                failure = "invalid_password"
                self.audit.record(
                    session,
                    tenant_id=user.tenant_id,
                    user_id=user.id,
                    action="LOGIN_FAILED",
                    entity="User",
                    entity_id=user.id,
                    ip=ip,
                    user_agent=user_agent,
                    metadata={"reason": failure},
                )
            else:
                response = self._issue_tokens(session, user)
                self.audit.record(
                    session,
                    tenant_id=user.tenant_id,
                    user_id=user.id,
                    action="LOGIN_SUCCESS",
                    entity="User",
                    entity_id=user.id,
                    ip=ip,
                    user_agent=user_agent,
                )

        if response is None:
            LOGGER.info("Login rejected", extra={"reason": failure})
            raise AuthError(INVALID_CREDENTIALS)
        return response

    def refresh(
        self,
        refresh_token: str,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthTokensResponse:
        claims = self.token_issuer.verify_refresh_token(refresh_token)
        now = self._now()
        with self.session_factory.begin() as session:
            user = session.scalars(
                select(User).where(
                    User.id == claims.user_id,
                    User.tenant_id == claims.tenant_id,
                    User.is_active.is_(True),
                )
            ).first()
            if user is None:
                raise AuthError("Invalid refresh token")

            stored = session.get(RefreshToken, claims.token_id)
            if (
                stored is None
                or stored.user_id != user.id
                or stored.revoked_at is not None
                or stored.expires_at <= now
                or not hmac.compare_digest(stored.token_hash, hash_token(refresh_token))
            ):
                raise AuthError("Invalid refresh token")

            stored.revoked_at = now
            response = self._issue_tokens(session, user)
            self.audit.record(
                session,
                tenant_id=user.tenant_id,
                user_id=user.id,
                action="TOKEN_REFRESH",
                entity="User",
                entity_id=user.id,
                ip=ip,
                user_agent=user_agent,
            )
        return response

    def logout(self, actor: CurrentUser, refresh_token: str | None = None) -> SuccessResponse:
        now = self._now()
        with self.session_factory.begin() as session:
            statement = select(RefreshToken).where(
                RefreshToken.user_id == actor.user_id,
                RefreshToken.tenant_id == actor.tenant_id,
                RefreshToken.revoked_at.is_(None),
            )
            if refresh_token:
                statement = statement.where(
                    RefreshToken.token_hash == hash_token(refresh_token)
                )
            revoked = 0
            for stored in session.scalars(statement):
                stored.revoked_at = now
                revoked += 1
            self.audit.record_for(
                session,
                actor,
                action="LOGOUT",
                entity="User",
                entity_id=actor.user_id,
                metadata={"scope": "single" if refresh_token else "all", "revoked": revoked},
            )
        return SuccessResponse(success=True)

    def request_password_reset(
        self,
        payload: PasswordResetRequest,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> SuccessResponse:
        """Issue a one-time reset code; the response is identical for unknown accounts."""
        email = payload.email.strip().lower()
        now = self._now()
        delivery: tuple[str, str, str, datetime] | None = None
        with self.session_factory.begin() as session:
            user = self._active_user(session, payload.tenant_id, email)
            if user is not None:
                # A new code supersedes any outstanding one.
                for pending in session.scalars(
                    select(PasswordResetToken).where(
                        PasswordResetToken.user_id == user.id,
                        PasswordResetToken.used_at.is_(None),
                    )
                ):
                    pending.used_at = now
                code = secrets.token_urlsafe(32)
                expires_at = now + self.password_reset_ttl
                session.add(
                    PasswordResetToken(
                        tenant_id=user.tenant_id,
                        user_id=user.id,
                        token_hash=hash_token(code),
                        expires_at=expires_at,
                    )
                )
                self.audit.record(
                    session,
                    tenant_id=user.tenant_id,
                    user_id=user.id,
                    action="PASSWORD_RESET_REQUESTED",
                    entity="User",
                    entity_id=user.id,
                    ip=ip,
                    user_agent=user_agent,
                )
                delivery = (user.email, user.tenant_id, code, expires_at)

        if delivery is None:
            LOGGER.info("Password reset requested for unknown account")
            return SuccessResponse(success=True)

        recipient, tenant_id, code, expires_at = delivery
        try:
            self.notifier.send_password_reset(
                recipient=recipient, tenant_id=tenant_id, code=code, expires_at=expires_at
            )
        except Exception:
            # A delivery error must not reveal that the account exists.
            LOGGER.exception("Password reset delivery failed", extra={"tenant_id": tenant_id})
        return SuccessResponse(success=True)

    def verify_password_reset(self, payload: PasswordResetVerifyRequest) -> SuccessResponse:
        with self.session_factory() as session:
            self._usable_reset_token(session, payload, self._now())
        return SuccessResponse(success=True)

    def reset_password(
        self,
        payload: PasswordResetUpdateRequest,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> SuccessResponse:
        now = self._now()
        with self.session_factory.begin() as session:
            user, token = self._usable_reset_token(session, payload, now)
            token.used_at = now
            user.password_hash = self.password_hasher.hash(payload.password)
            revoked = 0
            for stored in session.scalars(
                select(RefreshToken).where(
                    RefreshToken.user_id == user.id,
                    RefreshToken.revoked_at.is_(None),
                )
            ):
                stored.revoked_at = now
                revoked += 1
            self.audit.record(
                session,
                tenant_id=user.tenant_id,
                user_id=user.id,
                action="PASSWORD_RESET_COMPLETED",
                entity="User",
                entity_id=user.id,
                ip=ip,
                user_agent=user_agent,
                metadata={"revoked_sessions": revoked},
            )
        return SuccessResponse(success=True)

    def accept_invitation(
        self,
        payload: InvitationAcceptRequest,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthTokensResponse:
        now = self._now()
        with self.session_factory.begin() as session:
            invitation = session.scalars(
                select(Invitation).where(Invitation.token_hash == hash_token(payload.token))
            ).first()
            if (
                invitation is None
                or invitation.accepted_at is not None
                or invitation.revoked_at is not None
                or invitation.expires_at <= now
            ):
                raise BadRequestError(INVALID_INVITATION)

            existing = session.scalars(
                select(User.id).where(
                    User.tenant_id == invitation.tenant_id, User.email == invitation.email
                )
            ).first()
            if existing is not None:
                raise ConflictError("Email already used in this tenant")
            tenant = session.get(Tenant, invitation.tenant_id)
            if tenant is None:
                raise NotFoundError("Tenant not found")
            plan_limits.enforce(
                plan_limits.check_user_limit(session, tenant),
                "User limit reached for the current plan",
            )

            user = User(
                tenant_id=invitation.tenant_id,
                name=payload.name.strip(),
                email=invitation.email,
                password_hash=self.password_hasher.hash(payload.password),
                role=invitation.role,
                is_active=True,
            )
            session.add(user)
            session.flush()
            invitation.accepted_at = now
            response = self._issue_tokens(session, user)
            self.audit.record(
                session,
                tenant_id=invitation.tenant_id,
                user_id=user.id,
                action="INVITATION_ACCEPTED",
                entity="Invitation",
                entity_id=invitation.id,
                ip=ip,
                user_agent=user_agent,
                metadata={"role": user.role},
            )
        LOGGER.info("Invitation accepted", extra={"tenant_id": response.user.tenant_id})
        return response

    @staticmethod
    def _active_user(session: Session, tenant_id: str, email: str) -> User | None:
        return session.scalars(
            select(User).where(
                User.tenant_id == tenant_id,
                User.email == email,
                User.is_active.is_(True),
            )
        ).first()

    def _usable_reset_token(
        self, session: Session, payload: PasswordResetVerifyRequest, now: datetime
    ) -> tuple[User, PasswordResetToken]:
        user = self._active_user(session, payload.tenant_id, payload.email.strip().lower())
        if user is None:
            raise BadRequestError(INVALID_RESET_CODE)
        token = session.scalars(
            select(PasswordResetToken).where(
                PasswordResetToken.user_id == user.id,
                PasswordResetToken.token_hash == hash_token(payload.code.strip()),
                PasswordResetToken.used_at.is_(None),
            )
        ).first()
        if token is None or token.expires_at <= now:
            raise BadRequestError(INVALID_RESET_CODE)
        return user, token

    def _issue_tokens(self, session: Session, user: User) -> AuthTokensResponse:
        pair = self.token_issuer.issue(
            user_id=user.id,
            tenant_id=user.tenant_id,
            role=user.role,
            email=user.email,
        )
        session.add(
            RefreshToken(
                id=pair.refresh_token_id,
                tenant_id=user.tenant_id,
                user_id=user.id,
                token_hash=hash_token(pair.refresh_token),
                expires_at=pair.refresh_expires_at,
            )
        )
        return AuthTokensResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            user=AuthUser(
                id=user.id,
                tenant_id=user.tenant_id,
                email=user.email,
                role=user.role,
                name=user.name,
            ),
        )

from __future__ import annotations

from datetime import datetime, timedelta
import logging
import secrets
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import Invitation, Tenant, User, utcnow
from sijil_api.errors import ConflictError, IntegrationError, NotFoundError
from sijil_api.schemas import (
    InvitationCreateRequest,
    InvitationOut,
    Page,
    SuccessResponse,
    UserCreateRequest,
    UserOut,
)
from sijil_api.security import CurrentUser, PasswordHasher, hash_token
from sijil_api.services import plan_limits
from sijil_api.services.account_notifier import AccountNotifier, LoggingAccountNotifier
from sijil_api.services.audit_service import AuditService


LOGGER = logging.getLogger(__name__)
INVITATION_TTLS = {"24h": timedelta(hours=24), "7d": timedelta(days=7)}


class UserService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        password_hasher: PasswordHasher,
        audit: AuditService,
        notifier: AccountNotifier | None = None,
        app_base_url: str = "http://localhost:3000",
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.password_hasher = password_hasher
        self.audit = audit
        self.notifier = notifier or LoggingAccountNotifier()
        self.app_base_url = app_base_url.rstrip("/")
        self._now = now_fn or utcnow

    def list(self, actor: CurrentUser, *, page: int = 1, page_size: int = 20) -> Page[UserOut]:
        with self.session_factory() as session:
            total = session.scalar(
                select(func.count()).select_from(User).where(User.tenant_id == actor.tenant_id)
            )
            users = session.scalars(
                select(User)
                .where(User.tenant_id == actor.tenant_id)
                .order_by(User.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            data = [UserOut.model_validate(user) for user in users]
        return Page[UserOut](data=data, total=int(total or 0), page=page, page_size=page_size)

    def create(self, actor: CurrentUser, payload: UserCreateRequest) -> UserOut:
        email = payload.email.strip().lower()
        with self.session_factory.begin() as session:
            existing = session.scalars(
                select(User.id).where(User.tenant_id == actor.tenant_id, User.email == email)
            ).first()
            if existing is not None:
                raise ConflictError("Email already used in this tenant")
            tenant = session.get(Tenant, actor.tenant_id)
            if tenant is None:
                raise NotFoundError("Tenant not found")
            plan_limits.enforce(
                plan_limits.check_user_limit(session, tenant),
                "User limit reached for the current plan",
            )
            user = User(
                tenant_id=actor.tenant_id,
                name=payload.name.strip(),
                email=email,
                password_hash=self.password_hasher.hash(payload.password),
                role=payload.role,
                is_active=True,
            )
            session.add(user)
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="USER_CREATED",
                entity="User",
                entity_id=user.id,
                metadata={"role": user.role},
            )
            return UserOut.model_validate(user)

    def update_role(self, actor: CurrentUser, user_id: str, role: str) -> UserOut:
        with self.session_factory.begin() as session:
            user = self._get_user(session, actor.tenant_id, user_id)
            previous = user.role
            user.role = role
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="USER_ROLE_UPDATED",
                entity="User",
                entity_id=user.id,
                metadata={"from": previous, "to": role},
            )
            return UserOut.model_validate(user)

    def update_status(self, actor: CurrentUser, user_id: str, is_active: bool) -> UserOut:
        with self.session_factory.begin() as session:
            user = self._get_user(session, actor.tenant_id, user_id)
            if is_active and not user.is_active:
                tenant = session.get(Tenant, actor.tenant_id)
                if tenant is not None:
                    plan_limits.enforce(
                        plan_limits.check_user_limit(session, tenant),
                        "User limit reached for the current plan",
                    )
            user.is_active = is_active
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="USER_ENABLED" if is_active else "USER_DISABLED",
                entity="User",
                entity_id=user.id,
            )
            return UserOut.model_validate(user)

    def invite(self, actor: CurrentUser, payload: InvitationCreateRequest) -> InvitationOut:
        """Create a hashed, expiring invitation and hand the raw link to the notifier.

        Delivery runs inside the transaction, so a failed send leaves no invitation behind.
        """
        email = payload.email.strip().lower()
        now = self._now()
        with self.session_factory.begin() as session:
            existing = session.scalars(
                select(User.id).where(User.tenant_id == actor.tenant_id, User.email == email)
            ).first()
            if existing is not None:
                raise ConflictError("Email already used in this tenant")
            tenant = session.get(Tenant, actor.tenant_id)
            if tenant is None:
                raise NotFoundError("Tenant not found")
            plan_limits.enforce(
                plan_limits.check_user_limit(session, tenant),
                "User limit reached for the current plan",
            )

            # Re-inviting an address replaces its pending invitation.
            for pending in session.scalars(
                select(Invitation).where(
                    Invitation.tenant_id == actor.tenant_id,
                    Invitation.email == email,
                    Invitation.accepted_at.is_(None),
                    Invitation.revoked_at.is_(None),
                )
            ):
                pending.revoked_at = now

            token = secrets.token_urlsafe(32)
            invitation = Invitation(
                tenant_id=actor.tenant_id,
                email=email,
                role=payload.role,
                token_hash=hash_token(token),
                invited_by_id=actor.user_id,
                expires_at=now + INVITATION_TTLS[payload.expires_in],
            )
            session.add(invitation)
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="USER_INVITED",
                entity="Invitation",
                entity_id=invitation.id,
                metadata={"role": invitation.role, "expires_in": payload.expires_in},
            )
            result = InvitationOut.model_validate(invitation)
            try:
                self.notifier.send_invitation(
                    recipient=email,
                    tenant_id=actor.tenant_id,
                    firm_name=tenant.firm_name,
                    role=invitation.role,
                    invite_url=f"{self.app_base_url}/invite/{token}",
                    expires_at=result.expires_at,
                )
            except Exception as exc:
                LOGGER.warning(
                    "Invitation delivery failed", extra={"tenant_id": actor.tenant_id}
                )
                raise IntegrationError("Invitation delivery failed") from exc
        return result

    def list_invitations(self, actor: CurrentUser) -> list[InvitationOut]:
        now = self._now()
        with self.session_factory() as session:
            invitations = session.scalars(
                select(Invitation)
                .where(
                    Invitation.tenant_id == actor.tenant_id,
                    Invitation.accepted_at.is_(None),
                    Invitation.revoked_at.is_(None),
                    Invitation.expires_at > now,
                )
                .order_by(Invitation.created_at.desc())
                .limit(50)
            ).all()
            return [InvitationOut.model_validate(invitation) for invitation in invitations]

    def revoke_invitation(self, actor: CurrentUser, invitation_id: str) -> SuccessResponse:
        now = self._now()
        with self.session_factory.begin() as session:
            invitation = session.scalars(
                select(Invitation).where(
                    Invitation.id == invitation_id, Invitation.tenant_id == actor.tenant_id
                )
            ).first()
            if invitation is None:
                raise NotFoundError("Invitation not found")
            if invitation.accepted_at is not None:
                raise ConflictError("Invitation already accepted")
            if invitation.revoked_at is None:
                invitation.revoked_at = now
                self.audit.record_for(
                    session,
                    actor,
                    action="INVITATION_REVOKED",
                    entity="Invitation",
                    entity_id=invitation.id,
                    metadata={"email": invitation.email},
                )
        return SuccessResponse(success=True)

    @staticmethod
    def _get_user(session: Session, tenant_id: str, user_id: str) -> User:
        user = session.scalars(
            select(User).where(User.id == user_id, User.tenant_id == tenant_id)
        ).first()
        if user is None:
            raise NotFoundError("User not found")
        return user

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import ColumnElement, func, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import (
    BillingQuote,
    Document,
    Invoice,
    Matter,
    MatterMember,
    MatterTimelineEvent,
    Task,
    Tenant,
    User,
)
from sijil_api.db.session import with_tenant
from sijil_api.errors import ConflictError, ForbiddenError, NotFoundError
from sijil_api.schemas import (
    MatterClientSummary,
    MatterCreate,
    MatterDetailOut,
    MatterOut,
    MatterUpdate,
    Page,
    TimelineEventOut,
)
from sijil_api.security import CurrentUser
from sijil_api.services import plan_limits
from sijil_api.services.audit_service import AuditService
from sijil_api.services.client_service import get_client, like_pattern


TIMELINE_LIMIT = 100


def matter_visibility_clause(actor: CurrentUser) -> ColumnElement[bool] | None:
    """Partners see everything; everyone else sees public matters and their own."""
    if actor.is_partner:
        return None
    member_matters = select(MatterMember.matter_id).where(
        MatterMember.tenant_id == actor.tenant_id,
        MatterMember.user_id == actor.user_id,
    )
    return or_(
        Matter.is_private.is_(False),
        Matter.assignee_id == actor.user_id,
        Matter.id.in_(member_matters),
    )


def ensure_matter_access(matter: Matter, actor: CurrentUser) -> None:
    if actor.is_partner or not matter.is_private:
        return
    if matter.assignee_id == actor.user_id:
        return
    if any(member.user_id == actor.user_id for member in matter.members):
        return
    raise ForbiddenError("Private matter access denied")


def get_matter(session: Session, actor: CurrentUser, matter_id: str) -> Matter:
    matter = session.scalars(
        select(Matter).where(Matter.id == matter_id, Matter.tenant_id == actor.tenant_id)
    ).first()
    if matter is None:
        raise NotFoundError("Matter not found")
    ensure_matter_access(matter, actor)
    return matter


class MatterService:
    def __init__(self, session_factory: sessionmaker[Session], *, audit: AuditService) -> None:
        self.session_factory = session_factory
        self.audit = audit

    def list(
        self,
        actor: CurrentUser,
        *,
        page: int = 1,
        page_size: int = 20,
        search: str | None = None,
        status: str | None = None,
        assignee_id: str | None = None,
    ) -> Page[MatterOut]:
        statement = with_tenant(select(Matter), Matter, actor.tenant_id)
        visibility = matter_visibility_clause(actor)
        if visibility is not None:
            statement = statement.where(visibility)
        if status:
            statement = statement.where(Matter.status == status)
        if assignee_id:
            statement = statement.where(Matter.assignee_id == assignee_id)
        if search and search.strip():
            pattern = like_pattern(search)
            statement = statement.where(
                or_(
                    func.lower(Matter.title).like(pattern, escape="\\"),
                    func.lower(Matter.description).like(pattern, escape="\\"),
                )
            )

        with self.session_factory() as session:
            total = session.scalar(select(func.count()).select_from(statement.subquery()))
            matters = session.scalars(
                statement.order_by(Matter.updated_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            data = [MatterOut.model_validate(matter) for matter in matters]
        return Page[MatterOut](data=data, total=int(total or 0), page=page, page_size=page_size)

    def create(self, actor: CurrentUser, payload: MatterCreate) -> MatterDetailOut:
        with self.session_factory.begin() as session:
            get_client(session, actor.tenant_id, payload.client_id)
            tenant = session.get(Tenant, actor.tenant_id)
            if tenant is None:
                raise NotFoundError("Tenant not found")
            plan_limits.enforce(
                plan_limits.check_matter_limit(session, tenant),
                "Matter limit reached for the current plan",
            )
            if payload.assignee_id:
                self._require_active_users(session, actor.tenant_id, [payload.assignee_id])

            matter = Matter(
                tenant_id=actor.tenant_id,
                client_id=payload.client_id,
                title=payload.title.strip(),
                description=payload.description,
                status=payload.status,
                assignee_id=payload.assignee_id,
                is_private=payload.is_private,
            )
            session.add(matter)
            session.flush()
            member_ids = self._normalize_members(payload.member_ids, actor, payload.assignee_id)
            self._replace_members(session, matter, member_ids)
            self._add_timeline(
                session, matter, actor, "MATTER_CREATED", {"title": matter.title}
            )
            self.audit.record_for(
                session, actor, action="MATTER_CREATED", entity="Matter", entity_id=matter.id
            )
            session.flush()
            return self._detail(session, matter)

    def get(self, actor: CurrentUser, matter_id: str) -> MatterDetailOut:
        with self.session_factory() as session:
            return self._detail(session, get_matter(session, actor, matter_id))

    def update(self, actor: CurrentUser, matter_id: str, payload: MatterUpdate) -> MatterDetailOut:
        changes = payload.model_dump(exclude_unset=True)
        member_ids = changes.pop("member_ids", None)
        with self.session_factory.begin() as session:
            matter = get_matter(session, actor, matter_id)
            if changes.get("assignee_id"):
                self._require_active_users(session, actor.tenant_id, [changes["assignee_id"]])
            for field_name, value in changes.items():
                if field_name == "title" and value is not None:
                    value = value.strip()
                setattr(matter, field_name, value)
            if member_ids is not None:
                normalized = self._normalize_members(member_ids, actor, matter.assignee_id)
                self._replace_members(session, matter, normalized)
            fields = sorted(changes) + (["member_ids"] if member_ids is not None else [])
            self._add_timeline(session, matter, actor, "MATTER_UPDATED", {"fields": fields})
            self.audit.record_for(
                session,
                actor,
                action="MATTER_UPDATED",
                entity="Matter",
                entity_id=matter.id,
                metadata={"fields": fields},
            )
            session.flush()
            return self._detail(session, matter)

    def update_members(
        self, actor: CurrentUser, matter_id: str, member_ids: list[str]
    ) -> MatterDetailOut:
        with self.session_factory.begin() as session:
            matter = get_matter(session, actor, matter_id)
            normalized = self._normalize_members(member_ids, actor, matter.assignee_id)
            self._replace_members(session, matter, normalized)
            self._add_timeline(
                session, matter, actor, "MATTER_MEMBERS_UPDATED", {"member_ids": normalized}
            )
            self.audit.record_for(
                session,
                actor,
                action="MATTER_MEMBERS_UPDATED",
                entity="Matter",
                entity_id=matter.id,
                metadata={"member_count": len(normalized)},
            )
            session.flush()
            return self._detail(session, matter)

    def remove(self, actor: CurrentUser, matter_id: str) -> None:
        with self.session_factory.begin() as session:
            matter = get_matter(session, actor, matter_id)
            for model in (BillingQuote, Invoice):
                linked = session.scalars(
                    select(model.id).where(
                        model.tenant_id == actor.tenant_id, model.matter_id == matter.id
                    )
                ).first()
                if linked is not None:
                    raise ConflictError("Matter has billing records and cannot be deleted")
            for model in (Task, Document):
                session.execute(
                    update(model)
                    .where(model.tenant_id == actor.tenant_id, model.matter_id == matter.id)
                    .values(matter_id=None)
                )
            session.delete(matter)
            self.audit.record_for(
                session, actor, action="MATTER_DELETED", entity="Matter", entity_id=matter_id
            )

    @staticmethod
    def _normalize_members(
        member_ids: Iterable[str], actor: CurrentUser, assignee_id: str | None
    ) -> list[str]:
        ordered: dict[str, None] = {}
        for member_id in [*member_ids, actor.user_id, assignee_id]:
            if member_id and member_id.strip():
                ordered[member_id.strip()] = None
        return list(ordered)

    def _replace_members(self, session: Session, matter: Matter, member_ids: list[str]) -> None:
        self._require_active_users(session, matter.tenant_id, member_ids)
        wanted = set(member_ids)
        for member in list(matter.members):
            if member.user_id not in wanted:
                matter.members.remove(member)
        existing = {member.user_id for member in matter.members}
        for member_id in member_ids:
            if member_id not in existing:
                matter.members.append(
                    MatterMember(tenant_id=matter.tenant_id, matter_id=matter.id, user_id=member_id)
                )

    @staticmethod
    def _require_active_users(session: Session, tenant_id: str, user_ids: list[str]) -> None:
        if not user_ids:
            return
        found = set(
            session.scalars(
                select(User.id).where(
                    User.tenant_id == tenant_id,
                    User.id.in_(user_ids),
                    User.is_active.is_(True),
                )
            )
        )
        if set(user_ids) - found:
            raise NotFoundError("User not found")

    @staticmethod
    def _add_timeline(
        session: Session,
        matter: Matter,
        actor: CurrentUser,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        session.add(
            MatterTimelineEvent(
                tenant_id=matter.tenant_id,
                matter_id=matter.id,
                actor_id=actor.user_id,
                event_type=event_type,
                payload=payload,
            )
        )

    @staticmethod
    def _detail(session: Session, matter: Matter) -> MatterDetailOut:
        timeline = session.scalars(
            select(MatterTimelineEvent)
            .where(MatterTimelineEvent.matter_id == matter.id)
            .order_by(MatterTimelineEvent.created_at.desc(), MatterTimelineEvent.id.desc())
            .limit(TIMELINE_LIMIT)
        ).all()
        base = MatterOut.model_validate(matter)
        return MatterDetailOut(
            **base.model_dump(),
            client=MatterClientSummary.model_validate(matter.client),
            member_ids=[member.user_id for member in matter.members],
            timeline=[TimelineEventOut.model_validate(event) for event in timeline],
        )

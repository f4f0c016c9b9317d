from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import BillingQuote, Client, Document, Invoice, Matter
from sijil_api.db.session import with_tenant
from sijil_api.errors import ConflictError, NotFoundError
from sijil_api.schemas import ClientCreate, ClientOut, ClientUpdate, Page
from sijil_api.security import CurrentUser
from sijil_api.services.audit_service import AuditService


def like_pattern(search: str) -> str:
    escaped = search.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class ClientService:
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
        archived: bool | None = None,
    ) -> Page[ClientOut]:
        statement = with_tenant(select(Client), Client, actor.tenant_id)
        if search and search.strip():
            pattern = like_pattern(search)
            statement = statement.where(
                or_(
                    func.lower(Client.name).like(pattern, escape="\\"),
                    func.lower(Client.email).like(pattern, escape="\\"),
                    func.lower(Client.phone).like(pattern, escape="\\"),
                )
            )
        if archived is not None:
            statement = statement.where(Client.is_archived.is_(archived))

        with self.session_factory() as session:
            total = session.scalar(select(func.count()).select_from(statement.subquery()))
            clients = session.scalars(
                statement.order_by(Client.updated_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            data = [ClientOut.model_validate(client) for client in clients]
        return Page[ClientOut](data=data, total=int(total or 0), page=page, page_size=page_size)

    def create(self, actor: CurrentUser, payload: ClientCreate) -> ClientOut:
        with self.session_factory.begin() as session:
            client = Client(tenant_id=actor.tenant_id, **payload.model_dump())
            session.add(client)
            session.flush()
            self.audit.record_for(
                session, actor, action="CLIENT_CREATED", entity="Client", entity_id=client.id
            )
            return ClientOut.model_validate(client)

    def get(self, actor: CurrentUser, client_id: str) -> ClientOut:
        with self.session_factory() as session:
            return ClientOut.model_validate(get_client(session, actor.tenant_id, client_id))

    def update(self, actor: CurrentUser, client_id: str, payload: ClientUpdate) -> ClientOut:
        changes = payload.model_dump(exclude_unset=True)
        with self.session_factory.begin() as session:
            client = get_client(session, actor.tenant_id, client_id)
            for field_name, value in changes.items():
                setattr(client, field_name, value)
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="CLIENT_UPDATED",
                entity="Client",
                entity_id=client.id,
                metadata={"fields": sorted(changes)},
            )
            return ClientOut.model_validate(client)

    def set_archived(self, actor: CurrentUser, client_id: str, archived: bool) -> ClientOut:
        with self.session_factory.begin() as session:
            client = get_client(session, actor.tenant_id, client_id)
            client.is_archived = archived
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="CLIENT_ARCHIVED" if archived else "CLIENT_UNARCHIVED",
                entity="Client",
                entity_id=client.id,
            )
            return ClientOut.model_validate(client)

    def remove(self, actor: CurrentUser, client_id: str) -> None:
        with self.session_factory.begin() as session:
            client = get_client(session, actor.tenant_id, client_id)
            for model in (Matter, BillingQuote, Invoice, Document):
                linked = session.scalars(
                    select(model.id).where(
                        model.tenant_id == actor.tenant_id, model.client_id == client.id
                    )
                ).first()
                if linked is not None:
                    raise ConflictError("Client has linked records; archive it instead")
            session.delete(client)
            self.audit.record_for(
                session, actor, action="CLIENT_DELETED", entity="Client", entity_id=client_id
            )


def get_client(session: Session, tenant_id: str, client_id: str) -> Client:
    client = session.scalars(
        select(Client).where(Client.id == client_id, Client.tenant_id == tenant_id)
    ).first()
    if client is None:
        raise NotFoundError("Client not found")
    return client

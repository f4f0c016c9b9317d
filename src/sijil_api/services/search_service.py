from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import Client, Document, Invoice, Matter
from sijil_api.schemas import SearchHit, SearchResults
from sijil_api.security import CurrentUser
from sijil_api.services.client_service import like_pattern
from sijil_api.services.matter_service import matter_visibility_clause


RESULTS_PER_GROUP = 5
MIN_QUERY_LENGTH = 2


class SearchService:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def search(self, actor: CurrentUser, query: str) -> SearchResults:
        text = (query or "").strip()
        if len(text) < MIN_QUERY_LENGTH:
            return SearchResults(query=text, clients=[], matters=[], documents=[], invoices=[])

        pattern = like_pattern(text)
        visibility = matter_visibility_clause(actor)
        visible_matters = select(Matter.id).where(Matter.tenant_id == actor.tenant_id)
        if visibility is not None:
            visible_matters = visible_matters.where(visibility)

        clients_stmt = select(Client).where(
            Client.tenant_id == actor.tenant_id,
            or_(
                func.lower(Client.name).like(pattern, escape="\\"),
                func.lower(Client.email).like(pattern, escape="\\"),
                func.lower(Client.phone).like(pattern, escape="\\"),
            ),
        )
        matters_stmt = select(Matter).where(
            Matter.tenant_id == actor.tenant_id,
            func.lower(Matter.title).like(pattern, escape="\\"),
        )
        if visibility is not None:
            matters_stmt = matters_stmt.where(visibility)
        documents_stmt = select(Document).where(
            Document.tenant_id == actor.tenant_id,
            func.lower(Document.title).like(pattern, escape="\\"),
            or_(Document.matter_id.is_(None), Document.matter_id.in_(visible_matters)),
        )
        invoices_stmt = select(Invoice).where(
            Invoice.tenant_id == actor.tenant_id,
            func.lower(Invoice.number).like(pattern, escape="\\"),
        )

        with self.session_factory() as session:
            clients = self._rows(session, clients_stmt.order_by(Client.updated_at.desc()))
            matters = self._rows(session, matters_stmt.order_by(Matter.updated_at.desc()))
            documents = self._rows(session, documents_stmt.order_by(Document.updated_at.desc()))
            invoices = self._rows(session, invoices_stmt.order_by(Invoice.issued_at.desc()))
            return SearchResults(
                query=text,
                clients=[
                    SearchHit(kind="client", id=item.id, title=item.name, subtitle=item.email or item.phone)
                    for item in clients
                ],
                matters=[
                    SearchHit(kind="matter", id=item.id, title=item.title, subtitle=item.status)
                    for item in matters
                ],
                documents=[
                    SearchHit(kind="document", id=item.id, title=item.title) for item in documents
                ],
                invoices=[
                    SearchHit(
                        kind="invoice",
                        id=item.id,
                        title=item.number,
                        subtitle=item.client.name if item.client else None,
                    )
                    for item in invoices
                ],
            )

    @staticmethod
    def _rows(session: Session, statement) -> list:
        return list(session.scalars(statement.limit(RESULTS_PER_GROUP)).unique().all())

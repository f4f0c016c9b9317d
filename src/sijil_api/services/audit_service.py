from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import AuditLog
from sijil_api.schemas import AuditLogOut, Page
from sijil_api.security import CurrentUser


AUDIT_LOGGER = logging.getLogger("sijil_api.audit")


class AuditService:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def record(
        self,
        session: Session,
        *,
        tenant_id: str,
        action: str,
        entity: str,
        user_id: str | None = None,
        entity_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Add an audit row to the caller's unit of work."""
        entry = AuditLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            entity=entity,
            entity_id=entity_id,
            ip=ip,
            user_agent=user_agent,
            metadata_json=metadata,
        )
        session.add(entry)
        AUDIT_LOGGER.info(
            "audit_event",
            extra={
                "tenant_id": tenant_id,
                "user_id": user_id,
                "action": action,
                "entity": entity,
                "entity_id": entity_id,
            },
        )
        return entry

    def record_for(
        self,
        session: Session,
        actor: CurrentUser,
        *,
        action: str,
        entity: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog:
        return self.record(
            session,
            tenant_id=actor.tenant_id,
            user_id=actor.user_id,
            action=action,
            entity=entity,
            entity_id=entity_id,
            ip=actor.ip,
            user_agent=actor.user_agent,
            metadata=metadata,
        )

    def log(self, **kwargs: Any) -> None:
        with self.session_factory.begin() as session:
            self.record(session, **kwargs)

    def list(self, tenant_id: str, *, page: int = 1, page_size: int = 20) -> Page[AuditLogOut]:
        with self.session_factory() as session:
            total = session.scalar(
                select(func.count()).select_from(AuditLog).where(AuditLog.tenant_id == tenant_id)
            )
            rows = session.scalars(
                select(AuditLog)
                .where(AuditLog.tenant_id == tenant_id)
                .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            data = [
                AuditLogOut(
                    id=row.id,
                    user_id=row.user_id,
                    action=row.action,
                    entity=row.entity,
                    entity_id=row.entity_id,
                    ip=row.ip,
                    user_agent=row.user_agent,
                    metadata=row.metadata_json,
                    created_at=row.created_at,
                )
                for row in rows
            ]
        return Page[AuditLogOut](data=data, total=int(total or 0), page=page, page_size=page_size)

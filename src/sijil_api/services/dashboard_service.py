from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import Invoice, Matter, Task, utcnow
from sijil_api.schemas import DashboardOut, DashboardWidget, InvoiceOut, MatterOut, TaskOut
from sijil_api.security import CurrentUser
from sijil_api.services.matter_service import matter_visibility_clause


WIDGET_LIMIT = 10
UPCOMING_WINDOW = timedelta(days=7)
STALE_AFTER = timedelta(days=14)


class DashboardService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self._now = now_fn or utcnow

    def summary(self, actor: CurrentUser) -> DashboardOut:
        now = self._now()
        open_tasks = select(Task).where(Task.tenant_id == actor.tenant_id, Task.status != "DONE")
        overdue = open_tasks.where(Task.due_date.is_not(None), Task.due_date < now)
        upcoming = open_tasks.where(
            Task.due_date.is_not(None),
            Task.due_date >= now,
            Task.due_date <= now + UPCOMING_WINDOW,
        )
        stale = select(Matter).where(
            Matter.tenant_id == actor.tenant_id,
            Matter.status != "CLOSED",
            Matter.updated_at < now - STALE_AFTER,
        )
        visibility = matter_visibility_clause(actor)
        if visibility is not None:
            stale = stale.where(visibility)
        unpaid = select(Invoice).where(
            Invoice.tenant_id == actor.tenant_id, Invoice.status == "UNPAID"
        )

        with self.session_factory() as session:
            return DashboardOut(
                overdue_tasks=self._widget(session, overdue, Task.due_date.asc(), TaskOut),
                upcoming_deadlines=self._widget(session, upcoming, Task.due_date.asc(), TaskOut),
                stale_matters=self._widget(session, stale, Matter.updated_at.asc(), MatterOut),
                unpaid_invoices=self._widget(session, unpaid, Invoice.issued_at.asc(), InvoiceOut),
            )

    @staticmethod
    def _widget(session: Session, statement, order_by, schema) -> DashboardWidget:
        count = session.scalar(select(func.count()).select_from(statement.subquery()))
        rows = session.scalars(statement.order_by(order_by).limit(WIDGET_LIMIT)).all()
        return DashboardWidget[schema](
            count=int(count or 0), items=[schema.model_validate(row) for row in rows]
        )

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
import re
from typing import Callable, Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from sijil_api.db.models import BillingQuote, Invoice, Tenant, User, as_utc, utcnow
from sijil_api.db.session import with_tenant
from sijil_api.errors import ConflictError, NotFoundError, ValidationFailedError
from sijil_api.schemas import (
    ConvertQuoteRequest,
    InvoiceOut,
    MarkPaidRequest,
    Page,
    QuoteCreate,
    QuoteOut,
)
from sijil_api.security import CurrentUser
from sijil_api.services.audit_service import AuditService
from sijil_api.services.client_service import get_client, like_pattern
from sijil_api.services.invoice_pdf import InvoicePdfData, build_invoice_pdf
from sijil_api.services.matter_service import get_matter
from sijil_api.services.pdf_export import INVOICE_PDF_CIRCUIT, GuardedPdfExporter


QUOTE_PREFIX = "Q"
INVOICE_PREFIX = "INV"
CENT = Decimal("0.01")

_NUMBER_SUFFIX = re.compile(r"^\d+$")


def parse_number_suffix(number: str | None) -> int:
    """Numeric part after the last ``-``; anything else counts as 0."""
    if not number:
        return 0
    suffix = number.rsplit("-", 1)[-1]
    return int(suffix) if _NUMBER_SUFFIX.match(suffix) else 0


def next_free_number(prefix: str, existing: Iterable[str]) -> str:
    """One past the highest numeric suffix among ``{prefix}-`` numbers.

    Custom numbers that do not follow the pattern never lower the sequence.
    """
    marker = f"{prefix}-"
    highest = max(
        (parse_number_suffix(number) for number in existing if number.startswith(marker)),
        default=0,
    )
    return f"{prefix}-{highest + 1:04d}"


def compute_total(subtotal: Decimal, tax: Decimal) -> Decimal:
    return (Decimal(subtotal) + Decimal(tax)).quantize(CENT, rounding=ROUND_HALF_UP)


class BillingService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        audit: AuditService,
        pdf_exporter: GuardedPdfExporter,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit
        self.pdf_exporter = pdf_exporter
        self._now = now_fn or utcnow

    # Quotes

    def list_quotes(
        self,
        actor: CurrentUser,
        *,
        page: int = 1,
        page_size: int = 20,
        status: str | None = None,
    ) -> Page[QuoteOut]:
        statement = with_tenant(select(BillingQuote), BillingQuote, actor.tenant_id)
        if status:
            statement = statement.where(BillingQuote.status == status)
        with self.session_factory() as session:
            total = session.scalar(select(func.count()).select_from(statement.subquery()))
            quotes = session.scalars(
                statement.order_by(BillingQuote.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            data = [QuoteOut.model_validate(quote) for quote in quotes]
        return Page[QuoteOut](data=data, total=int(total or 0), page=page, page_size=page_size)

    def create_quote(self, actor: CurrentUser, payload: QuoteCreate) -> QuoteOut:
        with self.session_factory.begin() as session:
            get_client(session, actor.tenant_id, payload.client_id)
            if payload.matter_id:
                matter = get_matter(session, actor, payload.matter_id)
                if matter.client_id != payload.client_id:
                    raise ValidationFailedError("Matter does not belong to the selected client")

            if payload.number:
                number = payload.number.strip()
                exists = session.scalar(
                    select(BillingQuote.id).where(
                        BillingQuote.tenant_id == actor.tenant_id, BillingQuote.number == number
                    )
                )
                if exists:
                    raise ConflictError("Quote number already exists")
            else:
                number = self._next_number(session, BillingQuote, QUOTE_PREFIX, actor.tenant_id)

            subtotal = Decimal(payload.subtotal).quantize(CENT, rounding=ROUND_HALF_UP)
            tax = Decimal(payload.tax).quantize(CENT, rounding=ROUND_HALF_UP)
            quote = BillingQuote(
                tenant_id=actor.tenant_id,
                client_id=payload.client_id,
                matter_id=payload.matter_id,
                number=number,
                status="SENT",
                subtotal=subtotal,
                tax=tax,
                total=compute_total(subtotal, tax),
                created_by_id=actor.user_id,
            )
            session.add(quote)
            try:
                session.flush()
            except IntegrityError as exc:
                raise ConflictError("Quote number already exists") from exc
            self.audit.record_for(
                session,
                actor,
                action="QUOTE_CREATED",
                entity="BillingQuote",
                entity_id=quote.id,
                metadata={"number": number, "total": str(quote.total)},
            )
            return QuoteOut.model_validate(quote)

    def convert_quote(
        self,
        actor: CurrentUser,
        quote_id: str,
        payload: ConvertQuoteRequest | None = None,
    ) -> InvoiceOut:
        due_at = as_utc(payload.due_at) if payload else None
        with self.session_factory.begin() as session:
            quote = session.scalars(
                select(BillingQuote).where(
                    BillingQuote.id == quote_id, BillingQuote.tenant_id == actor.tenant_id
                )
            ).first()
            if quote is None:
                raise NotFoundError("Quote not found")

            existing = session.scalars(
                select(Invoice).where(
                    Invoice.quote_id == quote.id, Invoice.tenant_id == actor.tenant_id
                )
            ).first()
            if existing is not None:
                return InvoiceOut.model_validate(existing)
            if quote.status == "REJECTED":
                raise ConflictError("Rejected quotes cannot be converted")

            quote.status = "ACCEPTED"
            invoice = Invoice(
                tenant_id=actor.tenant_id,
                client_id=quote.client_id,
                matter_id=quote.matter_id,
                quote_id=quote.id,
                number=self._next_number(session, Invoice, INVOICE_PREFIX, actor.tenant_id),
                status="UNPAID",
                issued_at=self._now(),
                due_at=due_at,
                subtotal=quote.subtotal,
                tax=quote.tax,
                total=quote.total,
                created_by_id=actor.user_id,
            )
            session.add(invoice)
            try:
                session.flush()
            except IntegrityError as exc:
                raise ConflictError("Invoice number already exists") from exc
            self.audit.record_for(
                session,
                actor,
                action="QUOTE_CONVERTED_TO_INVOICE",
                entity="BillingQuote",
                entity_id=quote.id,
                metadata={"invoice_id": invoice.id, "invoice_number": invoice.number},
            )
            return InvoiceOut.model_validate(invoice)

    # Invoices

    def list_invoices(
        self,
        actor: CurrentUser,
        *,
        page: int = 1,
        page_size: int = 20,
        status: str | None = None,
        search: str | None = None,
    ) -> Page[InvoiceOut]:
        statement = with_tenant(select(Invoice), Invoice, actor.tenant_id)
        if status:
            statement = statement.where(Invoice.status == status)
        if search and search.strip():
            statement = statement.where(
                func.lower(Invoice.number).like(like_pattern(search), escape="\\")
            )
        with self.session_factory() as session:
            total = session.scalar(select(func.count()).select_from(statement.subquery()))
            invoices = session.scalars(
                statement.order_by(Invoice.issued_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            data = [InvoiceOut.model_validate(invoice) for invoice in invoices]
        return Page[InvoiceOut](data=data, total=int(total or 0), page=page, page_size=page_size)

    def get_invoice(self, actor: CurrentUser, invoice_id: str) -> InvoiceOut:
        with self.session_factory() as session:
            return InvoiceOut.model_validate(self._get_invoice(session, actor.tenant_id, invoice_id))

    def mark_paid(
        self,
        actor: CurrentUser,
        invoice_id: str,
        payload: MarkPaidRequest | None = None,
    ) -> InvoiceOut:
        paid_at = (as_utc(payload.paid_at) if payload else None) or self._now()
        with self.session_factory.begin() as session:
            invoice = self._get_invoice(session, actor.tenant_id, invoice_id)
            if invoice.status == "VOID":
                raise ConflictError("Void invoices cannot be marked as paid")
            invoice.status = "PAID"
            invoice.paid_at = paid_at
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="INVOICE_MARKED_PAID",
                entity="Invoice",
                entity_id=invoice.id,
                metadata={"number": invoice.number},
            )
            return InvoiceOut.model_validate(invoice)

    def invoice_pdf_data(self, actor: CurrentUser, invoice_id: str) -> InvoicePdfData:
        with self.session_factory() as session:
            invoice = self._get_invoice(session, actor.tenant_id, invoice_id)
            firm_name = session.scalar(select(Tenant.firm_name).where(Tenant.id == actor.tenant_id))
            creator = session.scalar(
                select(User.name).where(
                    User.id == invoice.created_by_id, User.tenant_id == actor.tenant_id
                )
            )
            return InvoicePdfData(
                firm_name=firm_name or "",
                number=invoice.number,
                status=invoice.status,
                client_name=invoice.client.name if invoice.client else "",
                matter_title=invoice.matter.title if invoice.matter else None,
                issued_at=invoice.issued_at,
                due_at=invoice.due_at,
                paid_at=invoice.paid_at,
                subtotal=invoice.subtotal,
                tax=invoice.tax,
                total=invoice.total,
                created_by=creator,
            )

    async def export_invoice_pdf(self, actor: CurrentUser, invoice_id: str) -> tuple[str, bytes]:
        data = await run_in_threadpool(self.invoice_pdf_data, actor, invoice_id)
        payload = await self.pdf_exporter.render(
            INVOICE_PDF_CIRCUIT, lambda: build_invoice_pdf(data)
        )
        await run_in_threadpool(
            self.audit.log,
            tenant_id=actor.tenant_id,
            user_id=actor.user_id,
            action="INVOICE_PDF_EXPORTED",
            entity="Invoice",
            entity_id=invoice_id,
            ip=actor.ip,
            user_agent=actor.user_agent,
            metadata={"number": data.number},
        )
        return f"{data.number}.pdf", payload

    @staticmethod
    def _next_number(session: Session, model, prefix: str, tenant_id: str) -> str:
        numbers = session.scalars(
            select(model.number).where(
                model.tenant_id == tenant_id, model.number.like(f"{prefix}-%")
            )
        ).all()
        return next_free_number(prefix, numbers)

    @staticmethod
    def _get_invoice(session: Session, tenant_id: str, invoice_id: str) -> Invoice:
        invoice = session.scalars(
            select(Invoice).where(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id)
        ).first()
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

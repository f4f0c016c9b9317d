from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from sijil_api.api.dependencies import CurrentUserDependency, require_roles
from sijil_api.schemas import (
    ConvertQuoteRequest,
    InvoiceOut,
    InvoiceStatus,
    MarkPaidRequest,
    Page,
    QuoteCreate,
    QuoteOut,
    QuoteStatus,
)
from sijil_api.security import ROLE_ACCOUNTANT, ROLE_LAWYER, ROLE_PARTNER, CurrentUser
from sijil_api.services.billing_service import BillingService


def build_billing_router(
    billing_service: BillingService,
    *,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/billing", tags=["billing"])
    billing_user = require_roles(current_user, ROLE_PARTNER, ROLE_LAWYER, ROLE_ACCOUNTANT)

    @router.get("/quotes", response_model=Page[QuoteOut])
    def list_quotes(
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
        status_filter: QuoteStatus | None = Query(None, alias="status"),
        actor: CurrentUser = Depends(billing_user),
    ) -> Page[QuoteOut]:
        return billing_service.list_quotes(
            actor, page=page, page_size=page_size, status=status_filter
        )

    @router.post("/quotes", response_model=QuoteOut, status_code=status.HTTP_201_CREATED)
    def create_quote(payload: QuoteCreate, actor: CurrentUser = Depends(billing_user)) -> QuoteOut:
        return billing_service.create_quote(actor, payload)

    @router.post("/quotes/{quote_id}/convert", response_model=InvoiceOut)
    def convert_quote(
        quote_id: str,
        payload: ConvertQuoteRequest | None = None,
        actor: CurrentUser = Depends(billing_user),
    ) -> InvoiceOut:
        return billing_service.convert_quote(actor, quote_id, payload)

    @router.get("/invoices", response_model=Page[InvoiceOut])
    def list_invoices(
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
        status_filter: InvoiceStatus | None = Query(None, alias="status"),
        search: str | None = Query(None, max_length=100),
        actor: CurrentUser = Depends(billing_user),
    ) -> Page[InvoiceOut]:
        return billing_service.list_invoices(
            actor, page=page, page_size=page_size, status=status_filter, search=search
        )

    @router.get("/invoices/{invoice_id}", response_model=InvoiceOut)
    def get_invoice(invoice_id: str, actor: CurrentUser = Depends(billing_user)) -> InvoiceOut:
        return billing_service.get_invoice(actor, invoice_id)

    @router.post("/invoices/{invoice_id}/pay", response_model=InvoiceOut)
    def mark_paid(
        invoice_id: str,
        payload: MarkPaidRequest | None = None,
        actor: CurrentUser = Depends(billing_user),
    ) -> InvoiceOut:
        return billing_service.mark_paid(actor, invoice_id, payload)

    @router.get("/invoices/{invoice_id}/pdf")
    async def invoice_pdf(invoice_id: str, actor: CurrentUser = Depends(billing_user)) -> Response:
        file_name, payload = await billing_service.export_invoice_pdf(actor, invoice_id)
        return Response(
            content=payload,
            media_type="application/pdf",
            headers={
                "Content-Disposition": f'attachment; filename="{file_name}"',
                "Cache-Control": "no-store",
            },
        )

    return router

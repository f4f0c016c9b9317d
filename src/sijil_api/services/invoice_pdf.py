from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sijil_api.services.doc_engine import EMPTY_VALUE, PdfCanvas


CURRENCY = "SAR"


@dataclass(frozen=True)
class InvoicePdfData:
    firm_name: str
    number: str
    status: str
    client_name: str
    matter_title: str | None
    issued_at: datetime
    due_at: datetime | None
    paid_at: datetime | None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    created_by: str | None


def _format_date(value: datetime | None) -> str:
    return value.date().isoformat() if value else EMPTY_VALUE


def _format_amount(value: Decimal) -> str:
    return f"{value:,.2f} {CURRENCY}"


def build_invoice_pdf(data: InvoicePdfData) -> bytes:
    canvas = PdfCanvas()
    canvas.text("Invoice", size=22, bold=True, color=(0.04, 0.12, 0.23))
    if data.firm_name:
        canvas.text(data.firm_name, color=(0.1, 0.1, 0.1))
    canvas.gap(6)
    canvas.rule()
    canvas.gap(12)

    rows = [
        ("Invoice No", data.number),
        ("Status", data.status),
        ("Client", data.client_name or EMPTY_VALUE),
        ("Matter", data.matter_title or EMPTY_VALUE),
        ("Issued", _format_date(data.issued_at)),
        ("Due", _format_date(data.due_at)),
        ("Paid", _format_date(data.paid_at)),
    ]
    for label, value in rows:
        canvas.text(f"{label}: {value}", size=11, line_spacing=1.4)

    canvas.gap(10)
    canvas.rule()
    canvas.gap(12)
    canvas.text(f"Subtotal: {_format_amount(data.subtotal)}", size=11)
    canvas.text(f"Tax: {_format_amount(data.tax)}", size=11)
    canvas.text(f"Total: {_format_amount(data.total)}", size=13, bold=True)

    if data.created_by:
        canvas.gap(20)
        canvas.text(f"Issued by: {data.created_by}", size=9, color=(0.5, 0.5, 0.5))
    return canvas.to_bytes()

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import update

from conftest import add_member, auth_headers, create_client_record, create_matter, signup
from sijil_api.db.models import BillingQuote, Invoice
from sijil_api.services.billing_service import compute_total, next_free_number, parse_number_suffix


def _quote(client, session, client_id, **fields):
    payload = {"client_id": client_id, "subtotal": "1000.50", "tax": "150.08"}
    payload.update(fields)
    response = client.post("/api/billing/quotes", json=payload, headers=auth_headers(session))
    assert response.status_code == 201, response.text
    return response.json()


def test_number_helpers() -> None:
    assert parse_number_suffix("INV-0042") == 42
    assert parse_number_suffix("2024-Q-7") == 7
    assert parse_number_suffix("custom") == 0
    assert parse_number_suffix(None) == 0
    assert next_free_number("Q", []) == "Q-0001"
    assert next_free_number("INV", ["INV-0009", "INV-0002"]) == "INV-0010"
    assert next_free_number("Q", ["Q-12345"]) == "Q-12346"
    assert next_free_number("Q", ["Q-0003", "RETAINER", "Q-0004-B", "QX-0099"]) == "Q-0004"


def test_compute_total_rounds_half_up() -> None:
    assert compute_total(Decimal("10.005"), Decimal("0")) == Decimal("10.01")
    assert compute_total(Decimal("1.10"), Decimal("0.15")) == Decimal("1.25")


def test_quotes_are_numbered_and_totalled(client) -> None:
    partner = signup(client)
    customer = create_client_record(client, partner)

    first = _quote(client, partner, customer["id"])
    second = _quote(client, partner, customer["id"], subtotal="20", tax="0")

    assert first["number"] == "Q-0001"
    assert first["status"] == "SENT"
    assert Decimal(first["total"]) == Decimal("1150.58")
    assert second["number"] == "Q-0002"

    custom = _quote(client, partner, customer["id"], number="Q-0050")
    assert custom["number"] == "Q-0050"
    assert _quote(client, partner, customer["id"])["number"] == "Q-0051"

    duplicate = client.post(
        "/api/billing/quotes",
        json={"client_id": customer["id"], "subtotal": "1", "number": "Q-0050"},
        headers=auth_headers(partner),
    )
    assert duplicate.status_code == 409


def test_quote_amounts_are_validated(client) -> None:
    partner = signup(client)
    customer = create_client_record(client, partner)

    negative = client.post(
        "/api/billing/quotes",
        json={"client_id": customer["id"], "subtotal": "-1"},
        headers=auth_headers(partner),
    )
    too_precise = client.post(
        "/api/billing/quotes",
        json={"client_id": customer["id"], "subtotal": "1.001"},
        headers=auth_headers(partner),
    )

    assert negative.status_code == 422
    assert too_precise.status_code == 422


def test_quote_matter_must_belong_to_client(client) -> None:
    partner = signup(client)
    first = create_client_record(client, partner)
    second = create_client_record(client, partner, name="Mona Saleh", email="mona@example.test")
    matter = create_matter(client, partner, first["id"])

    response = client.post(
        "/api/billing/quotes",
        json={"client_id": second["id"], "matter_id": matter["id"], "subtotal": "10"},
        headers=auth_headers(partner),
    )

    assert response.status_code == 422
    assert response.json()["error"]["message"] == "Matter does not belong to the selected client"


def test_convert_quote_is_idempotent(client) -> None:
    partner = signup(client)
    headers = auth_headers(partner)
    customer = create_client_record(client, partner)
    quote = _quote(client, partner, customer["id"])

    converted = client.post(
        f"/api/billing/quotes/{quote['id']}/convert",
        json={"due_at": "2030-02-01T00:00:00Z"},
        headers=headers,
    )
    assert converted.status_code == 200
    invoice = converted.json()
    assert invoice["number"] == "INV-0001"
    assert invoice["status"] == "UNPAID"
    assert invoice["quote_id"] == quote["id"]
    assert Decimal(invoice["total"]) == Decimal("1150.58")
    assert invoice["due_at"].startswith("2030-02-01")

    again = client.post(f"/api/billing/quotes/{quote['id']}/convert", headers=headers)
    assert again.status_code == 200
    assert again.json()["id"] == invoice["id"]

    quotes = client.get("/api/billing/quotes", params={"status": "ACCEPTED"}, headers=headers).json()
    assert [item["id"] for item in quotes["data"]] == [quote["id"]]

    invoices = client.get("/api/billing/invoices", headers=headers).json()
    assert invoices["total"] == 1

    audit_actions = [entry["action"] for entry in client.get("/api/audit", headers=headers).json()["data"]]
    assert audit_actions.count("QUOTE_CONVERTED_TO_INVOICE") == 1


def test_rejected_quote_cannot_be_converted(client) -> None:
    partner = signup(client)
    customer = create_client_record(client, partner)
    quote = _quote(client, partner, customer["id"])
    with client.app.state.session_factory.begin() as session:
        session.execute(
            update(BillingQuote).where(BillingQuote.id == quote["id"]).values(status="REJECTED")
        )

    response = client.post(
        f"/api/billing/quotes/{quote['id']}/convert", headers=auth_headers(partner)
    )

    assert response.status_code == 409


def test_mark_paid_and_void_guard(client) -> None:
    partner = signup(client)
    headers = auth_headers(partner)
    customer = create_client_record(client, partner)
    first = client.post(
        f"/api/billing/quotes/{_quote(client, partner, customer['id'])['id']}/convert",
        headers=headers,
    ).json()
    second = client.post(
        f"/api/billing/quotes/{_quote(client, partner, customer['id'])['id']}/convert",
        headers=headers,
    ).json()
    assert second["number"] == "INV-0002"

    paid = client.post(
        f"/api/billing/invoices/{first['id']}/pay",
        json={"paid_at": "2030-03-01T12:00:00Z"},
        headers=headers,
    )
    assert paid.status_code == 200
    assert paid.json()["status"] == "PAID"
    assert paid.json()["paid_at"].startswith("2030-03-01")

    with client.app.state.session_factory.begin() as session:
        session.execute(update(Invoice).where(Invoice.id == second["id"]).values(status="VOID"))
    void_pay = client.post(f"/api/billing/invoices/{second['id']}/pay", headers=headers)
    assert void_pay.status_code == 409

    unpaid = client.get("/api/billing/invoices", params={"status": "PAID"}, headers=headers).json()
    assert [item["number"] for item in unpaid["data"]] == ["INV-0001"]

    searched = client.get("/api/billing/invoices", params={"search": "0002"}, headers=headers).json()
    assert [item["id"] for item in searched["data"]] == [second["id"]]


def test_invoice_pdf_export(client) -> None:
    partner = signup(client)
    headers = auth_headers(partner)
    customer = create_client_record(client, partner)
    invoice = client.post(
        f"/api/billing/quotes/{_quote(client, partner, customer['id'])['id']}/convert",
        headers=headers,
    ).json()

    response = client.get(f"/api/billing/invoices/{invoice['id']}/pdf", headers=headers)

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["cache-control"] == "no-store"
    assert "INV-0001.pdf" in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")

    audit_actions = [entry["action"] for entry in client.get("/api/audit", headers=headers).json()["data"]]
    assert "INVOICE_PDF_EXPORTED" in audit_actions


def test_unknown_invoice_is_not_found(client) -> None:
    partner = signup(client)

    response = client.get("/api/billing/invoices/missing", headers=auth_headers(partner))

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Invoice not found"


def test_billing_is_closed_to_assistants(client) -> None:
    partner = signup(client)
    assistant = add_member(client, partner, email="huda@alnoor.test", role="ASSISTANT")

    response = client.get("/api/billing/quotes", headers=auth_headers(assistant))

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


def test_custom_non_numeric_number_does_not_reset_sequence(client) -> None:
    partner = signup(client)
    customer = create_client_record(client, partner)

    first = _quote(client, partner, customer["id"])
    retainer = _quote(client, partner, customer["id"], number="RETAINER")
    following = _quote(client, partner, customer["id"])

    assert first["number"] == "Q-0001"
    assert retainer["number"] == "RETAINER"
    assert following["number"] == "Q-0002"


def test_number_collision_on_insert_is_a_conflict(client, monkeypatch) -> None:
    partner = signup(client)
    customer = create_client_record(client, partner)
    _quote(client, partner, customer["id"])
    monkeypatch.setattr(
        "sijil_api.services.billing_service.next_free_number", lambda prefix, existing: "Q-0001"
    )

    response = client.post(
        "/api/billing/quotes",
        json={"client_id": customer["id"], "subtotal": "10"},
        headers=auth_headers(partner),
    )

    assert response.status_code == 409
    assert response.json()["error"]["message"] == "Quote number already exists"

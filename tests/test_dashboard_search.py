from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import update

from conftest import add_member, auth_headers, create_client_record, create_matter, signup
from sijil_api.db.models import Matter


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _create_task(client, session, **fields) -> dict:
    response = client.post("/api/tasks", json=fields, headers=auth_headers(session))
    assert response.status_code == 201, response.text
    return response.json()


def test_dashboard_widgets(client) -> None:
    partner = signup(client)
    headers = auth_headers(partner)
    now = datetime.now(timezone.utc)

    overdue = _create_task(client, partner, title="Overdue filing", due_date=_iso(now - timedelta(days=2)))
    _create_task(
        client, partner, title="Done filing", status="DONE", due_date=_iso(now - timedelta(days=2))
    )
    upcoming = _create_task(client, partner, title="Hearing prep", due_date=_iso(now + timedelta(days=3)))
    _create_task(client, partner, title="Next month", due_date=_iso(now + timedelta(days=30)))

    customer = create_client_record(client, partner)
    stale = create_matter(client, partner, customer["id"], title="Dormant claim")
    create_matter(client, partner, customer["id"], title="Active claim")
    with client.app.state.session_factory.begin() as session:
        session.execute(
            update(Matter).where(Matter.id == stale["id"]).values(updated_at=now - timedelta(days=30))
        )

    quote = client.post(
        "/api/billing/quotes",
        json={"client_id": customer["id"], "subtotal": "250"},
        headers=headers,
    ).json()
    invoice = client.post(f"/api/billing/quotes/{quote['id']}/convert", headers=headers).json()

    response = client.get("/api/dashboard", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["overdue_tasks"]["count"] == 1
    assert body["overdue_tasks"]["items"][0]["id"] == overdue["id"]
    assert [item["id"] for item in body["upcoming_deadlines"]["items"]] == [upcoming["id"]]
    assert [item["id"] for item in body["stale_matters"]["items"]] == [stale["id"]]
    assert body["unpaid_invoices"]["count"] == 1
    assert body["unpaid_invoices"]["items"][0]["id"] == invoice["id"]


def test_dashboard_hides_private_stale_matters_from_non_members(client) -> None:
    partner = signup(client)
    customer = create_client_record(client, partner)
    private = create_matter(client, partner, customer["id"], is_private=True)
    lawyer = add_member(client, partner, email="omar@alnoor.test")
    with client.app.state.session_factory.begin() as session:
        session.execute(
            update(Matter)
            .where(Matter.id == private["id"])
            .values(updated_at=datetime.now(timezone.utc) - timedelta(days=30))
        )

    partner_view = client.get("/api/dashboard", headers=auth_headers(partner)).json()
    lawyer_view = client.get("/api/dashboard", headers=auth_headers(lawyer)).json()

    assert partner_view["stale_matters"]["count"] == 1
    assert lawyer_view["stale_matters"]["count"] == 0


def test_search_groups_results_by_kind(client) -> None:
    partner = signup(client)
    headers = auth_headers(partner)
    customer = create_client_record(client, partner, name="Riyadh Trading Co", email="info@riyadh.test")
    create_matter(client, partner, customer["id"], title="Riyadh warehouse lease")
    client.post(
        "/api/documents",
        json={
            "title": "Riyadh lease scan",
            "file_name": "scan.pdf",
            "mime_type": "application/pdf",
            "size": 10,
        },
        headers=headers,
    )
    create_client_record(client, partner, name="Jeddah Imports", email="hello@jeddah.test")

    response = client.get("/api/search", params={"q": "  RIYADH "}, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["query"] == "RIYADH"
    assert [hit["title"] for hit in body["clients"]] == ["Riyadh Trading Co"]
    assert body["clients"][0]["subtitle"] == "info@riyadh.test"
    assert [hit["title"] for hit in body["matters"]] == ["Riyadh warehouse lease"]
    assert [hit["kind"] for hit in body["documents"]] == ["document"]
    assert body["invoices"] == []


def test_search_finds_invoices_by_number(client) -> None:
    partner = signup(client)
    headers = auth_headers(partner)
    customer = create_client_record(client, partner)
    quote = client.post(
        "/api/billing/quotes", json={"client_id": customer["id"], "subtotal": "10"}, headers=headers
    ).json()
    client.post(f"/api/billing/quotes/{quote['id']}/convert", headers=headers)

    body = client.get("/api/search", params={"q": "inv-0001"}, headers=headers).json()

    assert [hit["title"] for hit in body["invoices"]] == ["INV-0001"]
    assert body["invoices"][0]["subtitle"] == "Khalid Al-Harbi"


def test_search_ignores_short_queries(client) -> None:
    partner = signup(client)
    create_client_record(client, partner)

    body = client.get("/api/search", params={"q": "k"}, headers=auth_headers(partner)).json()

    assert body == {"query": "k", "clients": [], "matters": [], "documents": [], "invoices": []}


def test_search_respects_private_matters(client) -> None:
    partner = signup(client)
    customer = create_client_record(client, partner)
    create_matter(client, partner, customer["id"], title="Secret merger", is_private=True)
    lawyer = add_member(client, partner, email="omar@alnoor.test")

    partner_hits = client.get("/api/search", params={"q": "merger"}, headers=auth_headers(partner)).json()
    lawyer_hits = client.get("/api/search", params={"q": "merger"}, headers=auth_headers(lawyer)).json()

    assert len(partner_hits["matters"]) == 1
    assert lawyer_hits["matters"] == []

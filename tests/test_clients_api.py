from __future__ import annotations

from conftest import auth_headers, create_client_record, create_matter, signup


def test_client_crud_and_archive(client) -> None:
    session = signup(client)
    headers = auth_headers(session)
    created = create_client_record(client, session, client_type="COMPANY", commercial_no="1010")

    fetched = client.get(f"/api/clients/{created['id']}", headers=headers)
    updated = client.patch(
        f"/api/clients/{created['id']}", json={"phone": "0555555555"}, headers=headers
    )
    archived = client.post(f"/api/clients/{created['id']}/archive", headers=headers)
    archived_list = client.get("/api/clients", params={"archived": True}, headers=headers)
    active_list = client.get("/api/clients", params={"archived": False}, headers=headers)
    unarchived = client.post(f"/api/clients/{created['id']}/unarchive", headers=headers)

    assert fetched.status_code == 200
    assert fetched.json()["client_type"] == "COMPANY"
    assert updated.json()["phone"] == "0555555555"
    assert archived.json()["is_archived"] is True
    assert [item["id"] for item in archived_list.json()["data"]] == [created["id"]]
    assert active_list.json()["total"] == 0
    assert unarchived.json()["is_archived"] is False

    audit = client.get("/api/audit", headers=headers).json()
    actions = {entry["action"] for entry in audit["data"]}
    assert {"CLIENT_CREATED", "CLIENT_UPDATED", "CLIENT_ARCHIVED", "CLIENT_UNARCHIVED"} <= actions


def test_client_search_is_case_insensitive_across_fields(client) -> None:
    session = signup(client)
    headers = auth_headers(session)
    create_client_record(client, session, name="Nora Trading", email="info@nora.test", phone="011")
    create_client_record(client, session, name="Fahad", email="fahad@mail.test", phone="0509999")

    by_name = client.get("/api/clients", params={"search": "NORA"}, headers=headers).json()
    by_phone = client.get("/api/clients", params={"search": "9999"}, headers=headers).json()
    none = client.get("/api/clients", params={"search": "zzz"}, headers=headers).json()

    assert [item["name"] for item in by_name["data"]] == ["Nora Trading"]
    assert [item["name"] for item in by_phone["data"]] == ["Fahad"]
    assert none["total"] == 0


def test_client_search_treats_wildcards_literally(client) -> None:
    session = signup(client)
    create_client_record(client, session, name="Plain Name")

    response = client.get("/api/clients", params={"search": "%"}, headers=auth_headers(session))

    assert response.json()["total"] == 0


def test_clients_are_tenant_scoped(client) -> None:
    first = signup(client)
    second = signup(client, firm_name="Other Firm", email="owner@other.test")
    created = create_client_record(client, first)

    cross_tenant = client.get(f"/api/clients/{created['id']}", headers=auth_headers(second))
    listing = client.get("/api/clients", headers=auth_headers(second)).json()

    assert cross_tenant.status_code == 404
    assert cross_tenant.json()["error"]["code"] == "NOT_FOUND"
    assert listing["total"] == 0


def test_delete_client_with_linked_matter_conflicts(client) -> None:
    session = signup(client)
    headers = auth_headers(session)
    linked = create_client_record(client, session)
    create_matter(client, session, linked["id"])
    unlinked = create_client_record(client, session, name="No Matters")

    conflict = client.delete(f"/api/clients/{linked['id']}", headers=headers)
    deleted = client.delete(f"/api/clients/{unlinked['id']}", headers=headers)
    missing = client.get(f"/api/clients/{unlinked['id']}", headers=headers)

    assert conflict.status_code == 409
    assert deleted.status_code == 200
    assert deleted.json() == {"success": True}
    assert missing.status_code == 404


def test_client_pagination(client) -> None:
    session = signup(client)
    for index in range(3):
        create_client_record(client, session, name=f"Client {index}")

    page = client.get(
        "/api/clients", params={"page": 2, "page_size": 2}, headers=auth_headers(session)
    ).json()

    assert page["total"] == 3
    assert page["page"] == 2
    assert len(page["data"]) == 1


def test_update_client_rejects_null_name_but_clears_optional_fields(client) -> None:
    session = signup(client)
    headers = auth_headers(session)
    created = create_client_record(client, session)

    null_name = client.patch(f"/api/clients/{created['id']}", json={"name": None}, headers=headers)
    null_type = client.patch(
        f"/api/clients/{created['id']}", json={"client_type": None}, headers=headers
    )
    cleared = client.patch(f"/api/clients/{created['id']}", json={"email": None}, headers=headers)

    assert null_name.status_code == 422
    assert null_name.json()["error"]["code"] == "VALIDATION_ERROR"
    assert null_type.status_code == 422
    assert cleared.status_code == 200
    assert cleared.json()["email"] is None
    assert cleared.json()["name"] == "Khalid Al-Harbi"

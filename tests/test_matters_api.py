from __future__ import annotations

from conftest import add_member, auth_headers, create_client_record, create_matter, signup


def test_create_matter_adds_actor_and_assignee_as_members(client) -> None:
    partner = signup(client)
    lawyer = add_member(client, partner, email="omar@alnoor.test")
    record = create_client_record(client, partner)

    matter = create_matter(
        client, partner, record["id"], assignee_id=lawyer["user"]["id"], description="Lease"
    )

    assert set(matter["member_ids"]) == {partner["user"]["id"], lawyer["user"]["id"]}
    assert matter["client"] == {"id": record["id"], "name": record["name"]}
    assert [event["event_type"] for event in matter["timeline"]] == ["MATTER_CREATED"]


def test_create_matter_for_unknown_client_is_not_found(client) -> None:
    partner = signup(client)

    response = client.post(
        "/api/matters",
        json={"client_id": "missing", "title": "Ghost"},
        headers=auth_headers(partner),
    )

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Client not found"


def test_private_matter_visibility(client) -> None:
    partner = signup(client)
    lawyer = add_member(client, partner, email="omar@alnoor.test")
    record = create_client_record(client, partner)
    private = create_matter(client, partner, record["id"], title="Sealed", is_private=True)
    public = create_matter(client, partner, record["id"], title="Open file")

    lawyer_list = client.get("/api/matters", headers=auth_headers(lawyer)).json()
    partner_list = client.get("/api/matters", headers=auth_headers(partner)).json()
    denied = client.get(f"/api/matters/{private['id']}", headers=auth_headers(lawyer))

    assert [item["id"] for item in lawyer_list["data"]] == [public["id"]]
    assert partner_list["total"] == 2
    assert denied.status_code == 403

    client.put(
        f"/api/matters/{private['id']}/members",
        json={"member_ids": [lawyer["user"]["id"]]},
        headers=auth_headers(partner),
    )
    allowed = client.get(f"/api/matters/{private['id']}", headers=auth_headers(lawyer))
    lawyer_list = client.get("/api/matters", headers=auth_headers(lawyer)).json()

    assert allowed.status_code == 200
    assert lawyer_list["total"] == 2


def test_update_members_always_keeps_actor(client) -> None:
    partner = signup(client)
    lawyer = add_member(client, partner, email="omar@alnoor.test")
    record = create_client_record(client, partner)
    matter = create_matter(client, partner, record["id"])

    response = client.put(
        f"/api/matters/{matter['id']}/members",
        json={"member_ids": [lawyer["user"]["id"], lawyer["user"]["id"]]},
        headers=auth_headers(partner),
    )

    body = response.json()
    assert response.status_code == 200
    assert sorted(body["member_ids"]) == sorted([partner["user"]["id"], lawyer["user"]["id"]])
    assert body["timeline"][0]["event_type"] == "MATTER_MEMBERS_UPDATED"


def test_update_members_rejects_unknown_user(client) -> None:
    partner = signup(client)
    record = create_client_record(client, partner)
    matter = create_matter(client, partner, record["id"])

    response = client.put(
        f"/api/matters/{matter['id']}/members",
        json={"member_ids": ["not-a-user"]},
        headers=auth_headers(partner),
    )

    assert response.status_code == 404


def test_update_matter_records_timeline_and_filters(client) -> None:
    partner = signup(client)
    headers = auth_headers(partner)
    record = create_client_record(client, partner)
    matter = create_matter(client, partner, record["id"])
    create_matter(client, partner, record["id"], title="Employment claim")

    updated = client.patch(
        f"/api/matters/{matter['id']}",
        json={"status": "IN_PROGRESS", "title": "  Lease dispute (appeal) "},
        headers=headers,
    )
    in_progress = client.get("/api/matters", params={"status": "IN_PROGRESS"}, headers=headers)
    searched = client.get("/api/matters", params={"search": "employment"}, headers=headers)

    assert updated.status_code == 200
    assert updated.json()["title"] == "Lease dispute (appeal)"
    assert updated.json()["timeline"][0]["event_type"] == "MATTER_UPDATED"
    assert updated.json()["timeline"][0]["payload"] == {"fields": ["status", "title"]}
    assert [item["id"] for item in in_progress.json()["data"]] == [matter["id"]]
    assert [item["title"] for item in searched.json()["data"]] == ["Employment claim"]


def test_matter_plan_limit(client) -> None:
    partner = signup(client)
    record = create_client_record(client, partner)
    for index in range(10):
        create_matter(client, partner, record["id"], title=f"Matter {index}")

    response = client.post(
        "/api/matters",
        json={"client_id": record["id"], "title": "One too many"},
        headers=auth_headers(partner),
    )

    assert response.status_code == 402
    assert response.json()["error"]["code"] == "PLAN_LIMIT_REACHED"
    assert response.json()["error"]["policy_reason"] == "matter_limit_reached"


def test_delete_matter_unlinks_tasks(client) -> None:
    partner = signup(client)
    headers = auth_headers(partner)
    record = create_client_record(client, partner)
    matter = create_matter(client, partner, record["id"])
    task = client.post(
        "/api/tasks", json={"title": "File memo", "matter_id": matter["id"]}, headers=headers
    ).json()

    deleted = client.delete(f"/api/matters/{matter['id']}", headers=headers)
    fetched_task = client.get(f"/api/tasks/{task['id']}", headers=headers).json()
    missing = client.get(f"/api/matters/{matter['id']}", headers=headers)

    assert deleted.status_code == 200
    assert fetched_task["matter_id"] is None
    assert missing.status_code == 404


def test_update_matter_rejects_null_for_required_fields(client) -> None:
    partner = signup(client)
    headers = auth_headers(partner)
    record = create_client_record(client, partner)
    matter = create_matter(client, partner, record["id"], description="Initial brief")

    null_title = client.patch(f"/api/matters/{matter['id']}", json={"title": None}, headers=headers)
    null_status = client.patch(
        f"/api/matters/{matter['id']}", json={"status": None}, headers=headers
    )
    cleared = client.patch(
        f"/api/matters/{matter['id']}", json={"description": None}, headers=headers
    )

    assert null_title.status_code == 422
    assert null_title.json()["error"]["code"] == "VALIDATION_ERROR"
    assert null_status.status_code == 422
    assert cleared.status_code == 200
    assert cleared.json()["description"] is None
    assert cleared.json()["title"] == "Commercial lease dispute"

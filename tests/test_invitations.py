from __future__ import annotations

from datetime import datetime, timedelta, timezone
import hashlib

from sqlalchemy import select

from conftest import PASSWORD, RecordingAccountNotifier, add_member, auth_headers, signup
from sijil_api.db.models import AuditLog, Invitation


def _invite(client, partner, email: str = "omar@alnoor.test", **fields):
    return client.post(
        "/api/users/invitations",
        json={"email": email, **fields},
        headers=auth_headers(partner),
    )


def _accept(client, token: str, name: str = "Omar Assistant"):
    return client.post(
        "/api/auth/invitations/accept",
        json={"token": token, "name": name, "password": PASSWORD},
    )


def _token(notifier: RecordingAccountNotifier, index: int = -1) -> str:
    return notifier.invitations[index]["invite_url"].rsplit("/", 1)[1]


def test_partner_invites_member_who_accepts(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    partner = signup(client)
    tenant_id = partner["user"]["tenant_id"]

    created = _invite(client, partner, "Omar@alnoor.test", role="ASSISTANT", expires_in="24h")

    assert created.status_code == 201
    invitation = created.json()
    assert invitation["email"] == "omar@alnoor.test"
    assert invitation["role"] == "ASSISTANT"
    assert invitation["invited_by_id"] == partner["user"]["id"]
    assert invitation["accepted_at"] is None
    assert "token" not in invitation

    message = notifier.invitations[0]
    assert message["recipient"] == "omar@alnoor.test"
    assert message["firm_name"] == "Al Noor Law Firm"
    assert message["invite_url"].startswith("https://app.sijil.test/invite/")
    token = _token(notifier)
    with client.app.state.session_factory() as db:
        stored = db.get(Invitation, invitation["id"])
        assert stored.token_hash == hashlib.sha256(token.encode("utf-8")).hexdigest()

    pending = client.get("/api/users/invitations", headers=auth_headers(partner))
    assert [item["id"] for item in pending.json()] == [invitation["id"]]

    accepted = _accept(client, token)
    assert accepted.status_code == 201
    member = accepted.json()["user"]
    assert member["role"] == "ASSISTANT"
    assert member["email"] == "omar@alnoor.test"
    assert member["tenant_id"] == tenant_id

    login = client.post(
        "/api/auth/login",
        json={"tenant_id": tenant_id, "email": "omar@alnoor.test", "password": PASSWORD},
    )
    assert login.status_code == 200
    assert _accept(client, token).status_code == 400
    assert client.get("/api/users/invitations", headers=auth_headers(partner)).json() == []

    with client.app.state.session_factory() as db:
        actions = set(db.scalars(select(AuditLog.action).where(AuditLog.tenant_id == tenant_id)))
    assert {"USER_INVITED", "INVITATION_ACCEPTED"} <= actions


def test_only_partners_manage_invitations(client) -> None:
    partner = signup(client)
    lawyer = add_member(client, partner, email="lawyer@alnoor.test")

    assert _invite(client, lawyer, "new@alnoor.test").status_code == 403
    assert client.get("/api/users/invitations", headers=auth_headers(lawyer)).status_code == 403


def test_revoked_invitation_cannot_be_accepted(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    partner = signup(client)
    invitation_id = _invite(client, partner).json()["id"]

    revoked = client.delete(
        f"/api/users/invitations/{invitation_id}", headers=auth_headers(partner)
    )
    missing = client.delete("/api/users/invitations/missing", headers=auth_headers(partner))

    assert revoked.status_code == 200
    assert missing.status_code == 404
    response = _accept(client, _token(notifier))
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invitation is invalid or expired"

    with client.app.state.session_factory() as db:
        actions = list(db.scalars(select(AuditLog.action)))
    assert "INVITATION_REVOKED" in actions


def test_accepted_invitation_cannot_be_revoked(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    partner = signup(client)
    invitation_id = _invite(client, partner).json()["id"]
    assert _accept(client, _token(notifier)).status_code == 201

    response = client.delete(
        f"/api/users/invitations/{invitation_id}", headers=auth_headers(partner)
    )

    assert response.status_code == 409


def test_reinvite_replaces_pending_invitation(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    partner = signup(client)

    _invite(client, partner)
    second = _invite(client, partner, role="ACCOUNTANT").json()

    pending = client.get("/api/users/invitations", headers=auth_headers(partner)).json()
    assert [item["id"] for item in pending] == [second["id"]]
    assert _accept(client, _token(notifier, 0)).status_code == 400
    accepted = _accept(client, _token(notifier, 1))
    assert accepted.status_code == 201
    assert accepted.json()["user"]["role"] == "ACCOUNTANT"


def test_invitation_for_existing_member_conflicts(client) -> None:
    partner = signup(client)

    response = _invite(client, partner, "SARA@alnoor.test")

    assert response.status_code == 409


def test_invitations_respect_the_user_limit(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    partner = signup(client)
    assert _invite(client, partner, "late@alnoor.test").status_code == 201

    add_member(client, partner, email="omar@alnoor.test")

    blocked_invite = _invite(client, partner, "third@alnoor.test")
    blocked_accept = _accept(client, _token(notifier))
    assert blocked_invite.status_code == 402
    assert blocked_accept.status_code == 402
    assert blocked_accept.json()["error"]["policy_reason"] == "user_limit_reached"


def test_expired_invitation_is_rejected(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    partner = signup(client)
    invitation_id = _invite(client, partner).json()["id"]

    with client.app.state.session_factory.begin() as db:
        db.get(Invitation, invitation_id).expires_at = datetime.now(timezone.utc) - timedelta(
            minutes=1
        )

    assert _accept(client, _token(notifier)).status_code == 400
    assert client.get("/api/users/invitations", headers=auth_headers(partner)).json() == []


def test_failed_invitation_delivery_leaves_nothing_behind(make_client) -> None:
    client = make_client(account_notifier=RecordingAccountNotifier(fail=True))
    partner = signup(client)

    response = _invite(client, partner)

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "INTEGRATION_ERROR"
    assert client.get("/api/users/invitations", headers=auth_headers(partner)).json() == []

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone
import hashlib

from sqlalchemy import select

from conftest import PASSWORD, RecordingAccountNotifier, signup
from sijil_api.db.models import AuditLog, PasswordResetToken

NEW_PASSWORD = "fresh-staple-lantern"


def _actions(client, tenant_id: str) -> list[str]:
    with client.app.state.session_factory() as db:
        return list(db.scalars(select(AuditLog.action).where(AuditLog.tenant_id == tenant_id)))


def _request_reset(client, tenant_id: str, email: str = "sara@alnoor.test"):
    return client.post(
        "/api/auth/password-reset/request", json={"tenant_id": tenant_id, "email": email}
    )


def test_password_reset_replaces_password_and_ends_sessions(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    session = signup(client)
    tenant_id = session["user"]["tenant_id"]

    requested = _request_reset(client, tenant_id, "SARA@alnoor.test")
    assert requested.status_code == 200
    assert requested.json() == {"success": True}
    assert len(notifier.resets) == 1
    message = notifier.resets[0]
    assert message["recipient"] == "sara@alnoor.test"
    assert message["tenant_id"] == tenant_id
    code = message["code"]

    reset_body = {"tenant_id": tenant_id, "email": "sara@alnoor.test", "code": code}
    verified = client.post("/api/auth/password-reset/verify", json=reset_body)
    assert verified.status_code == 200

    updated = client.post(
        "/api/auth/password-reset/update", json={**reset_body, "password": NEW_PASSWORD}
    )
    assert updated.status_code == 200

    reused = client.post(
        "/api/auth/password-reset/update", json={**reset_body, "password": "another-long-pass"}
    )
    assert reused.status_code == 400
    assert reused.json()["error"]["code"] == "BAD_REQUEST"

    stale_refresh = client.post(
        "/api/auth/refresh", json={"refresh_token": session["refresh_token"]}
    )
    assert stale_refresh.status_code == 401

    old_login = client.post(
        "/api/auth/login",
        json={"tenant_id": tenant_id, "email": "sara@alnoor.test", "password": PASSWORD},
    )
    new_login = client.post(
        "/api/auth/login",
        json={"tenant_id": tenant_id, "email": "sara@alnoor.test", "password": NEW_PASSWORD},
    )
    assert old_login.status_code == 401
    assert new_login.status_code == 200

    with client.app.state.session_factory() as db:
        stored = db.scalars(select(PasswordResetToken)).one()
    assert stored.token_hash == hashlib.sha256(code.encode("utf-8")).hexdigest()
    assert stored.used_at is not None

    actions = _actions(client, tenant_id)
    assert "PASSWORD_RESET_REQUESTED" in actions
    assert "PASSWORD_RESET_COMPLETED" in actions


def test_reset_request_looks_the_same_for_unknown_accounts(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    tenant_id = signup(client)["user"]["tenant_id"]

    unknown_email = _request_reset(client, tenant_id, "nobody@alnoor.test")
    unknown_tenant = _request_reset(client, "missing-tenant")

    assert unknown_email.status_code == 200
    assert unknown_tenant.status_code == 200
    assert unknown_email.json() == unknown_tenant.json() == {"success": True}
    assert notifier.resets == []
    assert "PASSWORD_RESET_REQUESTED" not in _actions(client, tenant_id)


def test_reset_delivery_failure_is_not_reported_to_caller(make_client) -> None:
    client = make_client(account_notifier=RecordingAccountNotifier(fail=True))
    tenant_id = signup(client)["user"]["tenant_id"]

    response = _request_reset(client, tenant_id)

    assert response.status_code == 200
    assert response.json() == {"success": True}


def test_new_reset_code_supersedes_the_previous_one(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    tenant_id = signup(client)["user"]["tenant_id"]

    _request_reset(client, tenant_id)
    _request_reset(client, tenant_id)
    first, second = (message["code"] for message in notifier.resets)

    base = {"tenant_id": tenant_id, "email": "sara@alnoor.test"}
    old = client.post("/api/auth/password-reset/verify", json={**base, "code": first})
    new = client.post("/api/auth/password-reset/verify", json={**base, "code": second})

    assert old.status_code == 400
    assert new.status_code == 200


def test_expired_reset_code_is_rejected(make_client) -> None:
    notifier = RecordingAccountNotifier()
    client = make_client(account_notifier=notifier)
    tenant_id = signup(client)["user"]["tenant_id"]
    _request_reset(client, tenant_id)

    with client.app.state.session_factory.begin() as db:
        stored = db.scalars(select(PasswordResetToken)).one()
        stored.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)

    response = client.post(
        "/api/auth/password-reset/update",
        json={
            "tenant_id": tenant_id,
            "email": "sara@alnoor.test",
            "code": notifier.resets[0]["code"],
            "password": NEW_PASSWORD,
        },
    )

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Reset code is invalid or expired"


def test_reset_routes_share_their_own_rate_limit(make_client, settings) -> None:
    client = make_client(
        settings=dataclasses.replace(settings, password_reset_rate_limit_per_minute=2)
    )
    tenant_id = signup(client)["user"]["tenant_id"]

    statuses = [_request_reset(client, tenant_id).status_code for _ in range(2)]
    blocked = client.post(
        "/api/auth/password-reset/verify",
        json={"tenant_id": tenant_id, "email": "sara@alnoor.test", "code": "x" * 43},
    )

    assert statuses == [200, 200]
    assert blocked.status_code == 429
    assert blocked.json()["error"]["code"] == "RATE_LIMITED"
    assert blocked.headers["x-ratelimit-limit"] == "2"
    assert blocked.headers["x-ratelimit-remaining"] == "0"

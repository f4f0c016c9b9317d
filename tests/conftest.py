from __future__ import annotations

import dataclasses
import os
from typing import Any

# Importing sijil_api.main builds a module-level app; keep it off disk.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from sijil_api.db import get_engine  # noqa: E402
from sijil_api.main import create_app  # noqa: E402
from sijil_api.settings import Settings, load_settings  # noqa: E402


OPS_TOKEN = "ops-test-token"
WEBHOOK_SECRET = "whsec-test-secret"
PASSWORD = "correct-horse-battery"


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("ENVIRONMENT", "test")
    for name in ("REDIS_URL", "OPS_BEARER_TOKEN", "WEBHOOK_SIGNING_SECRET"):
        monkeypatch.delenv(name, raising=False)
    return dataclasses.replace(
        load_settings(),
        database_url="sqlite://",
        ops_bearer_token=OPS_TOKEN,
        webhook_signing_secret=WEBHOOK_SECRET,
        app_base_url="https://app.sijil.test",
        storage_endpoint="https://files.sijil.test",
    )


@pytest.fixture
def make_client(settings: Settings):
    def _make(**overrides: Any) -> TestClient:
        app_settings = overrides.pop("settings", settings)
        app = create_app(app_settings, engine=get_engine("sqlite://"), **overrides)
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


def signup(
    client: TestClient,
    *,
    firm_name: str = "Al Noor Law Firm",
    name: str = "Sara Partner",
    email: str = "sara@alnoor.test",
) -> dict[str, Any]:
    response = client.post(
        "/api/auth/signup",
        json={"firm_name": firm_name, "name": name, "email": email, "password": PASSWORD},
    )
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(session: dict[str, Any]) -> dict[str, str]:
    return {"Authorization": f"Bearer {session['access_token']}"}


def add_member(
    client: TestClient,
    partner: dict[str, Any],
    *,
    email: str,
    role: str = "LAWYER",
    name: str = "Team Member",
) -> dict[str, Any]:
    """Create a user under the partner's tenant and log them in."""
    created = client.post(
        "/api/users",
        json={"name": name, "email": email, "password": PASSWORD, "role": role},
        headers=auth_headers(partner),
    )
    assert created.status_code == 201, created.text
    login = client.post(
        "/api/auth/login",
        json={"tenant_id": partner["user"]["tenant_id"], "email": email, "password": PASSWORD},
    )
    assert login.status_code == 200, login.text
    return login.json()


def create_client_record(client: TestClient, session: dict[str, Any], **fields: Any) -> dict[str, Any]:
    payload = {"name": "Khalid Al-Harbi", "email": "khalid@example.test", "phone": "0500000001"}
    payload.update(fields)
    response = client.post("/api/clients", json=payload, headers=auth_headers(session))
    assert response.status_code == 201, response.text
    return response.json()


def create_matter(
    client: TestClient, session: dict[str, Any], client_id: str, **fields: Any
) -> dict[str, Any]:
    payload = {"client_id": client_id, "title": "Commercial lease dispute"}
    payload.update(fields)
    response = client.post("/api/matters", json=payload, headers=auth_headers(session))
    assert response.status_code == 201, response.text
    return response.json()


class RecordingAccountNotifier:
    """Captures reset codes and invitation links instead of emailing them."""

    def __init__(self, *, fail: bool = False) -> None:
        self.resets: list[dict[str, Any]] = []
        self.invitations: list[dict[str, Any]] = []
        self.fail = fail

    def send_password_reset(self, **message: Any) -> None:
        if self.fail:
            raise RuntimeError("smtp unavailable")
        self.resets.append(message)

    def send_invitation(self, **message: Any) -> None:
        if self.fail:
            raise RuntimeError("smtp unavailable")
        self.invitations.append(message)

from __future__ import annotations

import httpx
import pytest
from sqlalchemy import select

from conftest import add_member, auth_headers, signup
from sijil_api.db.models import OrgIntegration
from sijil_api.errors import IntegrationError
from sijil_api.integrations import NajizClient, build_token_url, normalize_base_url
from sijil_api.integrations.najiz_client import parse_retry_after_seconds


class FakeHttpClient:
    """Replays queued responses (or exceptions) in order and records requests."""

    def __init__(self, outcomes: list[httpx.Response | Exception]) -> None:
        self.outcomes = outcomes
        self.requests: list[dict] = []
        self.timeouts: list[float] = []

    def __call__(self, *, timeout: float) -> FakeHttpClient:
        self.timeouts.append(timeout)
        return self

    def __enter__(self) -> FakeHttpClient:
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        self.requests.append({"method": method, "url": url, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(outcomes, **kwargs) -> tuple[NajizClient, FakeHttpClient, list[float]]:
    http = FakeHttpClient(outcomes)
    sleeps: list[float] = []
    client = NajizClient(
        http_client_factory=http,
        sleep_fn=sleeps.append,
        time_fn=lambda: 0.0,
        jitter_fn=lambda: 0.0,
        throttle_seconds=0.0,
        **kwargs,
    )
    return client, http, sleeps


def test_token_url_and_base_url_normalization() -> None:
    assert normalize_base_url(" https://najiz.test/api/ ") == "https://najiz.test/api"
    assert build_token_url("https://najiz.test/api/") == "https://najiz.test/api/oauth/token"
    assert build_token_url("https://najiz.test/oauth2/token") == "https://najiz.test/oauth2/token"


def test_parse_retry_after_seconds() -> None:
    assert parse_retry_after_seconds("2.5") == 2.5
    assert parse_retry_after_seconds("-1") == 0.0
    assert parse_retry_after_seconds("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
    assert parse_retry_after_seconds(None) == 0.0


def test_fetch_retries_transient_status_honouring_retry_after() -> None:
    client, http, sleeps = _client(
        [httpx.Response(503, headers={"retry-after": "2"}), httpx.Response(200, json={"ok": True})]
    )

    response = client.fetch("GET", "https://najiz.test/cases")

    assert response.status_code == 200
    assert len(http.requests) == 2
    assert sleeps == [2.0]


def test_fetch_returns_last_transient_response_when_attempts_run_out() -> None:
    client, http, sleeps = _client(
        [httpx.Response(502), httpx.Response(502), httpx.Response(502)], max_attempts=3
    )

    response = client.fetch("GET", "https://najiz.test/cases")

    assert response.status_code == 502
    assert len(http.requests) == 3
    assert sleeps == [0.3, 0.6]


def test_fetch_does_not_retry_client_errors() -> None:
    client, http, _ = _client([httpx.Response(404)])

    assert client.fetch("GET", "https://najiz.test/cases").status_code == 404
    assert len(http.requests) == 1


def test_fetch_raises_integration_error_after_repeated_timeouts() -> None:
    client, _, _ = _client(
        [httpx.ReadTimeout("slow"), httpx.ReadTimeout("slow")], max_attempts=2
    )

    with pytest.raises(IntegrationError) as exc_info:
        client.fetch("GET", "https://najiz.test/cases")

    assert exc_info.value.message == "Najiz request timed out"
    assert exc_info.value.status_code == 502


def test_fetch_recovers_from_connection_error() -> None:
    client, http, _ = _client([httpx.ConnectError("refused"), httpx.Response(200)])

    assert client.fetch("GET", "https://najiz.test/cases").status_code == 200
    assert len(http.requests) == 2


def test_throttle_spaces_requests_per_host() -> None:
    http = FakeHttpClient([httpx.Response(200), httpx.Response(200), httpx.Response(200)])
    sleeps: list[float] = []
    client = NajizClient(
        http_client_factory=http,
        sleep_fn=sleeps.append,
        time_fn=lambda: 10.0,
        throttle_seconds=0.25,
    )

    client.fetch("GET", "https://najiz.test/a")
    client.fetch("GET", "https://najiz.test/b")
    client.fetch("GET", "https://other.test/a")

    assert sleeps == [0.25]


def test_get_access_token_posts_client_credentials() -> None:
    client, http, _ = _client([httpx.Response(200, json={"access_token": "tok-123"})])

    token = client.get_access_token(
        base_url="https://najiz.test", client_id="cid", client_secret="sec", scope="cases"
    )

    assert token == "tok-123"
    request = http.requests[0]
    assert request["method"] == "POST"
    assert request["url"] == "https://najiz.test/oauth/token"
    assert request["data"] == {
        "grant_type": "client_credentials",
        "client_id": "cid",
        "client_secret": "sec",
        "scope": "cases",
    }
    assert http.timeouts == [12.0]


def test_get_access_token_maps_auth_failures() -> None:
    client, _, _ = _client([httpx.Response(401)])

    with pytest.raises(IntegrationError) as exc_info:
        client.get_access_token(base_url="https://najiz.test", client_id="cid", client_secret="bad")

    assert exc_info.value.message == "Najiz credentials are invalid or lack access"


def test_test_oauth_reports_outcomes_without_raising() -> None:
    ok_client, _, _ = _client([httpx.Response(200, json={"access_token": "tok"})])
    bad_status, _, _ = _client([httpx.Response(403)])
    odd_body, _, _ = _client([httpx.Response(200, content=b"<html>")])
    unreachable, _, _ = _client([httpx.ConnectError("down"), httpx.ConnectError("down")])

    kwargs = {"base_url": "https://najiz.test", "client_id": "cid", "client_secret": "sec"}

    assert ok_client.test_oauth(**kwargs).ok is True
    failed = bad_status.test_oauth(**kwargs)
    assert failed.ok is False
    assert "403" in failed.message
    assert odd_body.test_oauth(**kwargs).message.startswith("Connected but received an unexpected response")
    assert unreachable.test_oauth(**kwargs).message == "Could not connect to Najiz"


def test_integration_lifecycle_over_api(make_client) -> None:
    http = FakeHttpClient(
        [httpx.Response(200, json={"access_token": "tok"}), httpx.Response(401)]
    )
    najiz_client = NajizClient(
        http_client_factory=http,
        sleep_fn=lambda _: None,
        time_fn=lambda: 0.0,
        throttle_seconds=0.0,
    )
    client = make_client(najiz_client=najiz_client)
    partner = signup(client)
    headers = auth_headers(partner)

    assert client.get("/api/integrations/najiz", headers=headers).json()["status"] == "disconnected"
    not_configured = client.post("/api/integrations/najiz/test", headers=headers).json()
    assert not_configured == {
        "ok": False,
        "message": "Integration is not configured",
        "status": "disconnected",
    }

    connected = client.post(
        "/api/integrations/najiz/connect",
        json={
            "base_url": "https://najiz.test/api/",
            "client_id": "cid",
            "client_secret": "super-secret",
        },
        headers=headers,
    )
    assert connected.status_code == 200
    body = connected.json()
    assert body["base_url"] == "https://najiz.test/api"
    assert body["environment"] == "sandbox"
    assert body["has_secret"] is True
    assert "super-secret" not in connected.text

    with client.app.state.session_factory() as session:
        stored = session.scalars(select(OrgIntegration)).one()
        assert "super-secret" not in stored.secret_enc

    passed = client.post("/api/integrations/najiz/test", headers=headers).json()
    assert passed == {"ok": True, "message": "Connected successfully", "status": "connected"}
    assert http.requests[0]["url"] == "https://najiz.test/api/oauth/token"

    failed = client.post("/api/integrations/najiz/test", headers=headers).json()
    assert failed["ok"] is False
    assert failed["status"] == "error"
    current = client.get("/api/integrations/najiz", headers=headers).json()
    assert current["last_error"] == failed["message"]
    assert current["last_tested_at"] is not None

    disconnected = client.post("/api/integrations/najiz/disconnect", headers=headers).json()
    assert disconnected["status"] == "disconnected"
    assert disconnected["has_secret"] is False

    actions = [entry["action"] for entry in client.get("/api/audit", headers=headers).json()["data"]]
    for action in ("INTEGRATION_CONNECTED", "INTEGRATION_TESTED", "INTEGRATION_DISCONNECTED"):
        assert action in actions
    assert actions.count("INTEGRATION_TESTED") == 2


def test_integrations_are_partner_only(client) -> None:
    partner = signup(client)
    lawyer = add_member(client, partner, email="omar@alnoor.test")

    response = client.get("/api/integrations/najiz", headers=auth_headers(lawyer))

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Only partners can manage integrations"

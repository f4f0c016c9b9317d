from __future__ import annotations

from starlette.requests import Request

from sijil_api.middleware.client_ip import resolve_client_id


def _request(peer: str | None, headers: dict[str, str] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/clients",
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ],
        "client": (peer, 50000) if peer is not None else None,
    }
    return Request(scope)


def test_public_peer_ignores_forwarded_headers() -> None:
    request = _request("203.0.113.9", {"x-forwarded-for": "198.51.100.1"})

    assert resolve_client_id(request) == "203.0.113.9"


def test_private_proxy_hop_uses_first_forwarded_address() -> None:
    request = _request("10.0.0.2", {"x-forwarded-for": "198.51.100.1, 10.0.0.5"})

    assert resolve_client_id(request) == "198.51.100.1"


def test_standard_forwarded_header_takes_precedence() -> None:
    request = _request(
        "127.0.0.1",
        {"forwarded": 'for="[2001:db8::1]";proto=https', "x-forwarded-for": "198.51.100.1"},
    )

    assert resolve_client_id(request) == "2001:db8::1"


def test_proxy_hop_with_garbage_headers_falls_back_to_peer() -> None:
    request = _request("192.168.1.10", {"x-forwarded-for": "not-an-ip", "x-real-ip": "nope"})

    assert resolve_client_id(request) == "192.168.1.10"


def test_named_peers_are_prefixed() -> None:
    assert resolve_client_id(_request("TestClient")) == "host:testclient"
    assert resolve_client_id(_request("bad host!")) == "unknown"
    assert resolve_client_id(_request(None, {"x-real-ip": "198.51.100.7"})) == "198.51.100.7"

from __future__ import annotations

import ipaddress
import re

from fastapi import Request

HOST_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._:-]{0,127}$")
FORWARDED_FOR_PATTERN = re.compile(r'for="?\[?([^\]";,]+)', re.IGNORECASE)


def _as_ip(value: str | None) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if not value:
        return None
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


def _is_proxy_hop(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return address.is_private or address.is_loopback or address.is_link_local


def _forwarded_candidates(request: Request) -> list[str]:
    candidates: list[str] = []
    forwarded = request.headers.get("forwarded")
    if forwarded:
        match = FORWARDED_FOR_PATTERN.search(forwarded)
        if match:
            candidates.append(match.group(1))
    x_forwarded_for = request.headers.get("x-forwarded-for")
    if x_forwarded_for:
        candidates.append(x_forwarded_for.split(",")[0])
    x_real_ip = request.headers.get("x-real-ip")
    if x_real_ip:
        candidates.append(x_real_ip)
    return candidates


def _first_forwarded_ip(request: Request) -> str | None:
    for candidate in _forwarded_candidates(request):
        address = _as_ip(candidate)
        if address is not None:
            return str(address)
    return None


def resolve_client_id(request: Request) -> str:
    """Identify the caller for rate limiting and audit records.

    Forwarded headers are honoured only when the direct peer is a private or
    loopback proxy hop. Non-IP peers (the test client, unix sockets) are
    reported as ``host:<name>``.
    """
    peer = request.client.host if request.client else None
    peer_ip = _as_ip(peer)
    if peer_ip is not None:
        if _is_proxy_hop(peer_ip):
            return _first_forwarded_ip(request) or str(peer_ip)
        return str(peer_ip)

    host = (peer or "").strip().lower()
    if HOST_PATTERN.match(host):
        return f"host:{host}"
    return _first_forwarded_ip(request) or "unknown"

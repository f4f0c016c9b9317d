from __future__ import annotations

import hashlib
import hmac
import time


SIGNATURE_SCHEME = "v1"


class WebhookSignatureError(ValueError):
    pass


def _compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def sign_webhook_payload(payload: bytes, secret: str, *, timestamp: int | None = None) -> str:
    issued_at = int(time.time()) if timestamp is None else int(timestamp)
    return f"t={issued_at},{SIGNATURE_SCHEME}={_compute_signature(payload, secret, issued_at)}"


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if not value:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise WebhookSignatureError("Webhook timestamp is not an integer") from exc
        elif key == SIGNATURE_SCHEME:
            signatures.append(value.strip())
    if timestamp is None:
        raise WebhookSignatureError("Webhook signature header has no timestamp")
    if not signatures:
        raise WebhookSignatureError("Webhook signature header has no v1 signature")
    return timestamp, signatures


def verify_webhook_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    *,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> int:
    """Validate a ``t=<unix>,v1=<hex>`` header and return its timestamp."""
    if not secret:
        raise WebhookSignatureError("Webhook signing secret is not configured")
    if not header or not header.strip():
        raise WebhookSignatureError("Missing webhook signature header")

    timestamp, signatures = _parse_header(header)
    current = time.time() if now is None else now
    if tolerance_seconds > 0 and abs(current - timestamp) > tolerance_seconds:
        raise WebhookSignatureError("Webhook timestamp outside the tolerance window")

    expected = _compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("No webhook signature matches the payload")
    return timestamp

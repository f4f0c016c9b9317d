"""AES-256-GCM envelope for integration credentials.

Stored form is JSON ``{"v": 1, "data": <base64url(iv | tag | ciphertext)>}``.
The key is the SHA-256 digest of the configured secret.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


ENVELOPE_VERSION = 1
IV_LENGTH = 12
TAG_LENGTH = 16


class SecretBoxError(Exception):
    pass


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


class SecretBox:
    def __init__(self, secret: str) -> None:
        if not secret or not secret.strip():
            raise ValueError("SecretBox requires a non-empty secret")
        self._aead = AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())

    def encrypt_json(self, value: Any) -> str:
        plaintext = json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext, None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return json.dumps({"v": ENVELOPE_VERSION, "data": _b64url_encode(iv + tag + ciphertext)})

    def decrypt_json(self, envelope: str) -> Any:
        try:
            parsed = json.loads(envelope)
        except (TypeError, json.JSONDecodeError) as exc:
            raise SecretBoxError("Encrypted payload is malformed") from exc
        if not isinstance(parsed, dict) or parsed.get("v") != ENVELOPE_VERSION:
            raise SecretBoxError("Unsupported encrypted payload version")
        data = parsed.get("data")
        if not isinstance(data, str) or not data:
            raise SecretBoxError("Encrypted payload is malformed")
        try:
            raw = _b64url_decode(data)
        except ValueError as exc:
            raise SecretBoxError("Encrypted payload is malformed") from exc
        if len(raw) <= IV_LENGTH + TAG_LENGTH:
            raise SecretBoxError("Encrypted payload is too short")

        iv = raw[:IV_LENGTH]
        tag = raw[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
        ciphertext = raw[IV_LENGTH + TAG_LENGTH :]
        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise SecretBoxError("Unable to decrypt payload") from exc
        return json.loads(plaintext.decode("utf-8"))

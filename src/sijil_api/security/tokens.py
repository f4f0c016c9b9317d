from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
import re
import time
from typing import Callable
import uuid

import jwt

from sijil_api.errors import AuthError


_DURATION_PATTERN = re.compile(r"^([0-9]+)([smhd])$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}
DEFAULT_REFRESH_TTL_SECONDS = 7 * 24 * 60 * 60
_ALGORITHM = "HS256"


def parse_duration_seconds(value: str | None, *, default: int = DEFAULT_REFRESH_TTL_SECONDS) -> int:
    """Parse ``900s``/``15m``/``12h``/``7d`` style durations; unknown formats use ``default``."""
    match = _DURATION_PATTERN.match((value or "").strip())
    if not match:
        return default
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_token_id: str
    refresh_expires_at: datetime


@dataclass(frozen=True)
class AccessClaims:
    user_id: str
    tenant_id: str
    role: str
    email: str


@dataclass(frozen=True)
class RefreshClaims:
    user_id: str
    tenant_id: str
    token_id: str


class TokenIssuer:
    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl: str = "900s",
        refresh_ttl: str = "7d",
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("TokenIssuer requires access and refresh secrets")
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl_seconds = parse_duration_seconds(access_ttl, default=900)
        self.refresh_ttl_seconds = parse_duration_seconds(refresh_ttl)
        self._time_fn = time_fn or time.time

    def issue(self, *, user_id: str, tenant_id: str, role: str, email: str) -> TokenPair:
        issued_at = int(self._time_fn())
        access_payload = {
            "sub": user_id,
            "tenant_id": tenant_id,
            "role": role,
            "email": email,
            "type": "access",
            "iat": issued_at,
            "exp": issued_at + self.access_ttl_seconds,
        }
        token_id = str(uuid.uuid4())
        refresh_expires = issued_at + self.refresh_ttl_seconds
        refresh_payload = {
            "sub": user_id,
            "tenant_id": tenant_id,
            "role": role,
            "email": email,
            "token_id": token_id,
            "type": "refresh",
            "iat": issued_at,
            "exp": refresh_expires,
        }
        return TokenPair(
            access_token=jwt.encode(access_payload, self.access_secret, algorithm=_ALGORITHM),
            refresh_token=jwt.encode(refresh_payload, self.refresh_secret, algorithm=_ALGORITHM),
            refresh_token_id=token_id,
            refresh_expires_at=datetime.fromtimestamp(refresh_expires, tz=timezone.utc),
        )

    def verify_access_token(self, token: str) -> AccessClaims:
        payload = self._decode(token, self.access_secret, message="Invalid access token")
        if payload.get("type") != "access":
            raise AuthError("Invalid access token")
        try:
            return AccessClaims(
                user_id=str(payload["sub"]),
                tenant_id=str(payload["tenant_id"]),
                role=str(payload["role"]),
                email=str(payload.get("email", "")),
            )
        except KeyError as exc:
            raise AuthError("Invalid access token") from exc

    def verify_refresh_token(self, token: str) -> RefreshClaims:
        payload = self._decode(token, self.refresh_secret, message="Invalid refresh token")
        if payload.get("type") != "refresh":
            raise AuthError("Invalid refresh token")
        try:
            return RefreshClaims(
                user_id=str(payload["sub"]),
                tenant_id=str(payload["tenant_id"]),
                token_id=str(payload["token_id"]),
            )
        except KeyError as exc:
            raise AuthError("Invalid refresh token") from exc

    @staticmethod
    def _decode(token: str, secret: str, *, message: str) -> dict:
        try:
            return jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except jwt.InvalidTokenError as exc:
            raise AuthError(message) from exc

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import random
from threading import Lock
import time
from typing import Any, Callable
from urllib.parse import urlsplit

import httpx

from sijil_api.errors import IntegrationError


LOGGER = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
DEFAULT_BACKOFF_SECONDS = 0.3
MAX_BACKOFF_SECONDS = 3.0
TOKEN_TIMEOUT_SECONDS = 12.0
TOKEN_MAX_ATTEMPTS = 2


def normalize_base_url(value: str) -> str:
    return (value or "").strip().rstrip("/")


def build_token_url(base_url: str) -> str:
    trimmed = normalize_base_url(base_url)
    if trimmed.endswith("/oauth/token") or trimmed.endswith("/oauth2/token"):
        return trimmed
    return f"{trimmed}/oauth/token"


def parse_retry_after_seconds(value: str | None) -> float:
    if not value:
        return 0.0
    try:
        seconds = float(value)
    except ValueError:
        return 0.0
    return seconds if seconds > 0 else 0.0


def _throttle_key_for(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme and parts.netloc:
        return f"{parts.scheme}://{parts.netloc}"
    return "najiz"


@dataclass(frozen=True)
class OAuthTestResult:
    ok: bool
    message: str


@dataclass
class NajizClient:
    timeout_seconds: float = 15.0
    max_attempts: int = 3
    throttle_seconds: float = 0.25
    sleep_fn: Callable[[float], None] = time.sleep
    time_fn: Callable[[], float] = time.monotonic
    jitter_fn: Callable[[], float] = field(default=lambda: random.random() * 0.1)
    http_client_factory: Callable[..., httpx.Client] = httpx.Client
    _next_allowed_at: dict[str, float] = field(default_factory=dict, init=False, repr=False)
    _throttle_lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def fetch(
        self,
        method: str,
        url: str,
        *,
        throttle_key: str | None = None,
        max_attempts: int | None = None,
        timeout_seconds: float | None = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """Send a request with per-key throttling and retry on transient failures.

        The final transient response is returned rather than raised so callers
        can report its status.
        """
        attempts = max(1, max_attempts if max_attempts is not None else self.max_attempts)
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        key = (throttle_key or "").strip() or _throttle_key_for(url)

        for attempt in range(1, attempts + 1):
            self._throttle(key)
            try:
                with self.http_client_factory(timeout=timeout) as client:
                    response = client.request(method, url, **request_kwargs)
            except httpx.TimeoutException as exc:
                if attempt == attempts:
                    raise IntegrationError("Najiz request timed out") from exc
                LOGGER.warning(
                    "Najiz request timed out; retrying", extra={"attempt": attempt, "url": url}
                )
                self.sleep_fn(self._backoff(attempt, DEFAULT_BACKOFF_SECONDS))
                continue
            except httpx.HTTPError as exc:
                if attempt == attempts:
                    raise IntegrationError("Could not connect to Najiz") from exc
                LOGGER.warning(
                    "Najiz request failed; retrying", extra={"attempt": attempt, "url": url}
                )
                self.sleep_fn(self._backoff(attempt, DEFAULT_BACKOFF_SECONDS))
                continue

            if (
                response.is_success
                or response.status_code not in TRANSIENT_STATUS_CODES
                or attempt == attempts
            ):
                return response
            retry_after = parse_retry_after_seconds(response.headers.get("retry-after"))
            self.sleep_fn(self._backoff(attempt, retry_after or DEFAULT_BACKOFF_SECONDS))

        raise IntegrationError("Could not connect to Najiz")

    def get_access_token(
        self,
        *,
        base_url: str,
        client_id: str,
        client_secret: str,
        scope: str | None = None,
    ) -> str:
        response = self._request_token(base_url, client_id, client_secret, scope)
        if not response.is_success:
            if response.status_code in (401, 403):
                raise IntegrationError("Najiz credentials are invalid or lack access")
            raise IntegrationError(f"Failed to obtain Najiz access token ({response.status_code})")
        token = self._access_token_from(response)
        if not token:
            raise IntegrationError("Could not read access token from Najiz response")
        return token

    def test_oauth(
        self,
        *,
        base_url: str,
        client_id: str,
        client_secret: str,
        scope: str | None = None,
    ) -> OAuthTestResult:
        try:
            response = self._request_token(base_url, client_id, client_secret, scope)
        except IntegrationError as exc:
            return OAuthTestResult(ok=False, message=exc.message)
        if not response.is_success:
            return OAuthTestResult(
                ok=False,
                message=f"Connection test failed ({response.status_code}); check Najiz credentials",
            )
        if not self._access_token_from(response):
            return OAuthTestResult(
                ok=False,
                message="Connected but received an unexpected response; check Najiz settings",
            )
        return OAuthTestResult(ok=True, message="Connected successfully")

    def _request_token(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        scope: str | None,
    ) -> httpx.Response:
        form = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        }
        if scope:
            form["scope"] = scope
        return self.fetch(
            "POST",
            build_token_url(base_url),
            throttle_key=base_url,
            max_attempts=min(self.max_attempts, TOKEN_MAX_ATTEMPTS),
            timeout_seconds=min(self.timeout_seconds, TOKEN_TIMEOUT_SECONDS),
            data=form,
            headers={"Accept": "application/json"},
        )

    @staticmethod
    def _access_token_from(response: httpx.Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        token = payload.get("access_token") if isinstance(payload, dict) else None
        return token if isinstance(token, str) and token else None

    def _throttle(self, key: str) -> None:
        with self._throttle_lock:
            now = self.time_fn()
            next_allowed_at = self._next_allowed_at.get(key, 0.0)
            wait = next_allowed_at - now
            self._next_allowed_at[key] = max(now, next_allowed_at) + self.throttle_seconds
        if wait > 0:
            self.sleep_fn(wait)

    def _backoff(self, attempt: int, base_seconds: float) -> float:
        return min(MAX_BACKOFF_SECONDS, base_seconds * (2 ** (attempt - 1))) + self.jitter_fn()

from __future__ import annotations

from dataclasses import dataclass
import importlib
import logging
from threading import Lock
import time
from typing import Callable, Protocol


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def retry_after_seconds(self, *, now: float | None = None) -> int:
        current = time.time() if now is None else now
        return max(int(self.reset_at - current + 0.999), 1)


class RateLimiter(Protocol):
    limit: int
    window_seconds: int

    def check(self, key: str) -> RateLimitResult: ...

    def allow(self, key: str) -> bool: ...


class InMemoryRateLimiter:
    """Fixed-window counter kept in process memory."""

    def __init__(
        self,
        limit: int,
        *,
        window_seconds: int = 60,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self.limit = max(limit, 1)
        self.window_seconds = max(int(window_seconds), 1)
        self._time_fn = time_fn or time.time
        self._windows: dict[str, tuple[int, int]] = {}
        self._lock = Lock()

    def check(self, key: str) -> RateLimitResult:
        now = self._time_fn()
        window = int(now // self.window_seconds)
        reset_at = float((window + 1) * self.window_seconds)

        with self._lock:
            current_window, count = self._windows.get(key, (window, 0))
            if current_window != window:
                count = 0
            count += 1
            self._windows[key] = (window, count)
            if len(self._windows) > 10_000:
                self._prune(window)

        return RateLimitResult(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(self.limit - count, 0),
            reset_at=reset_at,
        )

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def _prune(self, window: int) -> None:
        stale = [key for key, (seen_window, _) in self._windows.items() if seen_window != window]
        for key in stale:
            del self._windows[key]


class RedisRateLimiter:
    """Fixed-window rate limiter backed by Redis ``INCR``/``EXPIRE``."""

    def __init__(
        self,
        redis_client,
        *,
        limit: int,
        window_seconds: int = 60,
        prefix: str = "sijil:ratelimit",
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self.redis_client = redis_client
        self.limit = max(limit, 1)
        self.window_seconds = max(int(window_seconds), 1)
        self.prefix = prefix
        self._time_fn = time_fn or time.time

    def check(self, key: str) -> RateLimitResult:
        now = self._time_fn()
        window = int(now // self.window_seconds)
        reset_at = float((window + 1) * self.window_seconds)
        redis_key = f"{self.prefix}:{key}:{window}"
        try:
            value = int(self.redis_client.incr(redis_key))
            if value == 1:
                self.redis_client.expire(redis_key, self.window_seconds + 5)
        except Exception:
            # Fail open.
            LOGGER.warning(
                "Redis rate limiter check failed; allowing request",
                exc_info=True,
                extra={"key": redis_key},
            )
            return RateLimitResult(
                allowed=True, limit=self.limit, remaining=self.limit, reset_at=reset_at
            )
        return RateLimitResult(
            allowed=value <= self.limit,
            limit=self.limit,
            remaining=max(self.limit - value, 0),
            reset_at=reset_at,
        )

    def allow(self, key: str) -> bool:
        return self.check(key).allowed


def build_rate_limiter(
    *,
    limit: int,
    redis_url: str | None,
    window_seconds: int = 60,
    prefix: str = "sijil:ratelimit",
) -> RateLimiter:
    if not redis_url:
        LOGGER.info("Using in-memory rate limiter for %s (redis_url not configured)", prefix)
        return InMemoryRateLimiter(limit, window_seconds=window_seconds)

    try:
        redis = importlib.import_module("redis")

        redis_client = redis.Redis.from_url(
            redis_url,
            socket_timeout=0.5,
            socket_connect_timeout=0.5,
        )
        redis_client.ping()
        LOGGER.info("Using Redis-backed rate limiter for %s", prefix)
        return RedisRateLimiter(
            redis_client, limit=limit, window_seconds=window_seconds, prefix=prefix
        )
    except Exception as exc:
        LOGGER.warning(
            "Redis rate limiter unavailable; falling back to in-memory limiter",
            exc_info=exc,
        )
        return InMemoryRateLimiter(limit, window_seconds=window_seconds)

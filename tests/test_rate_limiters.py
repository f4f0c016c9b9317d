from __future__ import annotations

import dataclasses
import logging
import sys
import types

import pytest

from sijil_api.middleware.rate_limit import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    build_rate_limiter,
)


class _FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, int] = {}
        self.expiries: dict[str, int] = {}

    def incr(self, key: str) -> int:
        self.store[key] = self.store.get(key, 0) + 1
        return self.store[key]

    def expire(self, key: str, ttl_seconds: int) -> None:
        self.expiries[key] = ttl_seconds


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_in_memory_rate_limiter_blocks_after_limit() -> None:
    limiter = InMemoryRateLimiter(2)
    assert limiter.allow("client-a") is True
    assert limiter.allow("client-a") is True
    assert limiter.allow("client-a") is False
    assert limiter.allow("client-b") is True


def test_in_memory_rate_limiter_resets_on_next_window() -> None:
    clock = _Clock(120.0)
    limiter = InMemoryRateLimiter(1, window_seconds=60, time_fn=clock)

    first = limiter.check("client-a")
    blocked = limiter.check("client-a")
    clock.now = 180.0
    after_reset = limiter.check("client-a")

    assert first.allowed is True
    assert first.remaining == 0
    assert blocked.allowed is False
    assert blocked.reset_at == 180.0
    assert blocked.retry_after_seconds(now=150.0) == 30
    assert after_reset.allowed is True


def test_retry_after_is_at_least_one_second() -> None:
    limiter = InMemoryRateLimiter(1, time_fn=_Clock(59.9))
    limiter.check("k")
    result = limiter.check("k")

    assert result.retry_after_seconds(now=60.0) == 1


def test_redis_rate_limiter_blocks_after_limit() -> None:
    fake_redis = _FakeRedis()
    limiter = RedisRateLimiter(fake_redis, limit=2, time_fn=_Clock(600.0))
    assert limiter.allow("client-a") is True
    assert limiter.allow("client-a") is True
    assert limiter.allow("client-a") is False

    assert fake_redis.store == {"sijil:ratelimit:client-a:10": 3}
    assert fake_redis.expiries == {"sijil:ratelimit:client-a:10": 65}


def test_redis_rate_limiter_fails_open(caplog: pytest.LogCaptureFixture) -> None:
    class _BrokenRedis:
        def incr(self, _key: str) -> int:
            raise ConnectionError("redis down")

    limiter = RedisRateLimiter(_BrokenRedis(), limit=1)

    with caplog.at_level(logging.WARNING, logger="sijil_api.middleware.rate_limit"):
        assert limiter.allow("client-a") is True
        assert limiter.allow("client-a") is True

    assert "allowing request" in caplog.text


def test_build_rate_limiter_without_redis_url_is_in_memory() -> None:
    limiter = build_rate_limiter(limit=10, redis_url=None)
    assert isinstance(limiter, InMemoryRateLimiter)


def test_build_rate_limiter_logs_fallback_when_redis_unavailable(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    class _BrokenRedisClient:
        def ping(self) -> None:
            raise RuntimeError("redis unavailable")

    class _BrokenRedis:
        @staticmethod
        def from_url(*_args, **_kwargs):
            return _BrokenRedisClient()

    monkeypatch.setitem(sys.modules, "redis", types.SimpleNamespace(Redis=_BrokenRedis))

    with caplog.at_level(logging.WARNING, logger="sijil_api.middleware.rate_limit"):
        limiter = build_rate_limiter(limit=10, redis_url="redis://localhost:6379/0")

    assert isinstance(limiter, InMemoryRateLimiter)
    assert "falling back to in-memory limiter" in caplog.text


def test_build_rate_limiter_uses_redis_when_available(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    class _HealthyRedisClient(_FakeRedis):
        def ping(self) -> None:
            return None

    class _HealthyRedis:
        @staticmethod
        def from_url(*_args, **_kwargs):
            return _HealthyRedisClient()

    monkeypatch.setitem(sys.modules, "redis", types.SimpleNamespace(Redis=_HealthyRedis))

    limiter = build_rate_limiter(limit=10, redis_url="redis://localhost:6379/0")
    assert isinstance(limiter, RedisRateLimiter)
    assert limiter.allow("client-a") is True


def test_api_requests_are_limited_per_client(make_client, settings) -> None:
    client = make_client(settings=dataclasses.replace(settings, api_rate_limit_per_minute=2))

    first = client.get("/api/tenant/settings")
    second = client.get("/api/tenant/settings")
    third = client.get("/api/tenant/settings")

    assert first.status_code == 401
    assert first.headers["x-ratelimit-limit"] == "2"
    assert first.headers["x-ratelimit-remaining"] == "1"
    assert second.status_code == 401
    assert third.status_code == 429
    assert third.json()["error"]["code"] == "RATE_LIMITED"
    assert int(third.headers["retry-after"]) >= 1
    assert third.headers["x-ratelimit-remaining"] == "0"
    assert "x-trace-id" in third.headers


def test_health_endpoint_is_not_rate_limited(make_client, settings) -> None:
    client = make_client(settings=dataclasses.replace(settings, api_rate_limit_per_minute=1))

    for _ in range(3):
        assert client.get("/healthz").status_code == 200

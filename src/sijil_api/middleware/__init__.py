from sijil_api.middleware.client_ip import resolve_client_id
from sijil_api.middleware.rate_limit import (
    InMemoryRateLimiter,
    RateLimiter,
    RateLimitResult,
    RedisRateLimiter,
    build_rate_limiter,
)

__all__ = [
    "InMemoryRateLimiter",
    "RateLimitResult",
    "RateLimiter",
    "RedisRateLimiter",
    "build_rate_limiter",
    "resolve_client_id",
]

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ApiError(Exception):
    code: str
    message: str
    status_code: int

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)


class AuthError(ApiError):
    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(code="UNAUTHORIZED", message=message, status_code=401)


class ForbiddenError(ApiError):
    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(code="FORBIDDEN", message=message, status_code=403)


class NotFoundError(ApiError):
    def __init__(self, message: str = "Not found") -> None:
        super().__init__(code="NOT_FOUND", message=message, status_code=404)


class ConflictError(ApiError):
    def __init__(self, message: str = "Conflict") -> None:
        super().__init__(code="CONFLICT", message=message, status_code=409)


class ValidationFailedError(ApiError):
    def __init__(self, message: str = "Request validation failed") -> None:
        super().__init__(code="VALIDATION_ERROR", message=message, status_code=422)


class RateLimitError(ApiError):
    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after_seconds: int | None = None,
        limit: int | None = None,
        remaining: int | None = None,
    ) -> None:
        super().__init__(code="RATE_LIMITED", message=message, status_code=429)
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit
        self.remaining = remaining


class PlanLimitError(ApiError):
    def __init__(self, message: str = "Plan limit reached", *, reason: str | None = None) -> None:
        super().__init__(code="PLAN_LIMIT_REACHED", message=message, status_code=402)
        self.policy_reason = reason


class IntegrationError(ApiError):
    def __init__(self, message: str = "Integration request failed") -> None:
        super().__init__(code="INTEGRATION_ERROR", message=message, status_code=502)


class ServiceUnavailableError(ApiError):
    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        *,
        retry_after_seconds: int | None = None,
    ) -> None:
        super().__init__(code="SERVICE_UNAVAILABLE", message=message, status_code=503)
        self.retry_after_seconds = retry_after_seconds


class BadRequestError(ApiError):
    def __init__(self, message: str = "Bad request") -> None:
        super().__init__(code="BAD_REQUEST", message=message, status_code=400)

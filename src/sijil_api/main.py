from __future__ import annotations

import logging
import secrets
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import Engine

from sijil_api.api.dependencies import build_current_user_dependency, build_rate_limit_dependency
from sijil_api.api.routes import (
    build_audit_router,
    build_auth_router,
    build_billing_router,
    build_clients_router,
    build_dashboard_router,
    build_documents_router,
    build_integrations_router,
    build_matters_router,
    build_ops_router,
    build_public_documents_router,
    build_tasks_router,
    build_templates_router,
    build_tenant_router,
    build_users_router,
    build_webhooks_router,
)
from sijil_api.db import build_session_factory, get_engine, init_db
from sijil_api.errors import ApiError, RateLimitError
from sijil_api.integrations import NajizClient, NajizIntegrationService
from sijil_api.middleware import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    build_rate_limiter,
    resolve_client_id,
)
from sijil_api.resilience import CircuitBreaker
from sijil_api.schemas import ErrorEnvelope
from sijil_api.security import PasswordHasher, SecretBox, TokenIssuer
from sijil_api.services import (
    AuditService,
    AuthService,
    BillingService,
    ClientService,
    DashboardService,
    DocumentService,
    GuardedPdfExporter,
    InMemoryReminderQueue,
    MatterService,
    RedisReminderQueue,
    ReminderWorker,
    SearchService,
    ObjectStorage,
    SubscriptionWebhookService,
    TaskService,
    TemplateResolver,
    TemplateService,
    TenantService,
    UserService,
    build_reminder_queue,
    build_s3_client,
)
from sijil_api.services.account_notifier import AccountNotifier
from sijil_api.services.reminder_worker import ReminderNotifier
from sijil_api.settings import Settings, is_hardened_environment, load_settings
from sijil_api.telemetry import EventMetrics, RequestMetrics, generate_trace_id

LOGGER = logging.getLogger(__name__)


def _backend_name(instance: object, *, redis_type: type, memory_type: type) -> str:
    if isinstance(instance, redis_type):
        return "redis"
    if isinstance(instance, memory_type):
        return "in_memory"
    return "unknown"


def _error_response(
    *,
    status_code: int,
    code: str,
    message: str,
    trace_id: str,
    policy_reason: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = ErrorEnvelope(
        error={
            "code": code,
            "message": message,
            "trace_id": trace_id,
            "policy_reason": policy_reason,
        }
    )
    return JSONResponse(
        status_code=status_code,
        content=payload.model_dump(exclude_none=True),
        headers={"x-trace-id": trace_id, **(headers or {})},
    )


def create_app(
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    najiz_client: NajizClient | None = None,
    reminder_notifier: ReminderNotifier | None = None,
    account_notifier: AccountNotifier | None = None,
    storage: ObjectStorage | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    hardened_environment = is_hardened_environment(settings.environment)

    engine = engine or get_engine(settings.database_url)
    init_db(engine)
    session_factory = build_session_factory(engine)

    request_metrics = RequestMetrics()
    event_metrics = EventMetrics()
    token_issuer = TokenIssuer(
        access_secret=settings.jwt_access_secret,
        refresh_secret=settings.jwt_refresh_secret,
        access_ttl=settings.jwt_access_ttl,
        refresh_ttl=settings.jwt_refresh_ttl,
    )
    password_hasher = PasswordHasher()
    audit = AuditService(session_factory)
    breaker = CircuitBreaker(
        failure_threshold=settings.pdf_circuit_failure_threshold,
        cooldown_seconds=settings.pdf_circuit_cooldown_seconds,
        telemetry=event_metrics,
    )
    pdf_exporter = GuardedPdfExporter(
        breaker=breaker,
        timeout_seconds=settings.pdf_export_timeout_seconds,
        request_metrics=request_metrics,
    )
    storage = storage or ObjectStorage(
        build_s3_client(
            endpoint_url=settings.storage_endpoint,
            region=settings.storage_region,
            access_key=settings.storage_access_key,
            secret_key=settings.storage_secret_key,
        ),
        bucket=settings.storage_bucket,
    )
    reminder_queue = build_reminder_queue(redis_url=settings.redis_url)

    auth_service = AuthService(
        session_factory,
        token_issuer=token_issuer,
        password_hasher=password_hasher,
        audit=audit,
        trial_days=settings.trial_days,
        notifier=account_notifier,
        password_reset_ttl_minutes=settings.password_reset_ttl_minutes,
    )
    user_service = UserService(
        session_factory,
        password_hasher=password_hasher,
        audit=audit,
        notifier=account_notifier,
        app_base_url=settings.app_base_url,
    )
    tenant_service = TenantService(session_factory, audit=audit)
    client_service = ClientService(session_factory, audit=audit)
    matter_service = MatterService(session_factory, audit=audit)
    task_service = TaskService(session_factory, audit=audit, reminder_queue=reminder_queue)
    document_service = DocumentService(
        session_factory,
        audit=audit,
        storage=storage,
        app_base_url=settings.app_base_url,
    )
    billing_service = BillingService(session_factory, audit=audit, pdf_exporter=pdf_exporter)
    template_service = TemplateService(
        session_factory,
        audit=audit,
        resolver=TemplateResolver(session_factory),
        pdf_exporter=pdf_exporter,
    )
    dashboard_service = DashboardService(session_factory)
    search_service = SearchService(session_factory)
    najiz_service = NajizIntegrationService(
        session_factory,
        audit=audit,
        secret_box=SecretBox(settings.integration_encryption_key),
        client=najiz_client
        or NajizClient(
            timeout_seconds=settings.najiz_timeout_seconds,
            max_attempts=settings.najiz_max_attempts,
        ),
    )
    subscription_service = SubscriptionWebhookService(
        session_factory,
        audit=audit,
        signing_secret=settings.webhook_signing_secret,
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )
    reminder_worker = ReminderWorker(
        session_factory,
        queue=reminder_queue,
        audit=audit,
        fallback_email=settings.reminder_fallback_email,
        notifier=reminder_notifier,
        telemetry=event_metrics,
    )

    rate_limiter = build_rate_limiter(
        limit=settings.api_rate_limit_per_minute,
        redis_url=settings.redis_url,
    )
    rate_limiter_backend = _backend_name(
        rate_limiter, redis_type=RedisRateLimiter, memory_type=InMemoryRateLimiter
    )
    reminder_queue_backend = _backend_name(
        reminder_queue, redis_type=RedisReminderQueue, memory_type=InMemoryReminderQueue
    )

    def route_limit(scope: str, limit: int):
        limiter = build_rate_limiter(
            limit=limit,
            redis_url=settings.redis_url,
            prefix=f"sijil:ratelimit:{scope}",
        )
        return build_rate_limit_dependency(limiter, scope=scope, request_metrics=request_metrics)

    current_user = build_current_user_dependency(token_issuer)

    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.state.session_factory = session_factory
    app.state.reminder_worker = reminder_worker
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allowed_origins),
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        expose_headers=["x-trace-id", "retry-after", "x-ratelimit-limit", "x-ratelimit-remaining"],
        max_age=600,
    )

    @app.middleware("http")
    async def trace_middleware(request: Request, call_next):
        request.state.trace_id = generate_trace_id()
        start_time = time.perf_counter()
        status_code = 500
        request_path = request.url.path
        is_api_request = request_path.startswith("/api")
        is_ops_request = request_path.startswith("/ops")
        rate_headers: dict[str, str] = {}
        try:
            if is_ops_request:
                if not settings.ops_bearer_token:
                    status_code = 401
                    return _error_response(
                        status_code=status_code,
                        code="UNAUTHORIZED",
                        message="OPS_BEARER_TOKEN must be configured to access ops endpoints",
                        trace_id=request.state.trace_id,
                    )
                auth_header = request.headers.get("authorization", "")
                expected = f"Bearer {settings.ops_bearer_token}"
                if not secrets.compare_digest(auth_header, expected):
                    status_code = 401
                    return _error_response(
                        status_code=status_code,
                        code="UNAUTHORIZED",
                        message="Missing or invalid bearer token",
                        trace_id=request.state.trace_id,
                    )

            if is_api_request:
                result = rate_limiter.check(f"api:{resolve_client_id(request)}")
                rate_headers = {
                    "x-ratelimit-limit": str(result.limit),
                    "x-ratelimit-remaining": str(result.remaining),
                }
                if not result.allowed:
                    request_metrics.record_rate_limited(scope="api")
                    status_code = 429
                    return _error_response(
                        status_code=status_code,
                        code="RATE_LIMITED",
                        message="Request rate exceeded allowed threshold",
                        trace_id=request.state.trace_id,
                        headers={
                            **rate_headers,
                            "retry-after": str(result.retry_after_seconds()),
                        },
                    )

            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-trace-id"] = request.state.trace_id
            for name, value in rate_headers.items():
                response.headers.setdefault(name, value)
            return response
        finally:
            if is_api_request:
                request_metrics.record_api_response(
                    status_code=status_code,
                    duration_seconds=time.perf_counter() - start_time,
                    path=request_path,
                )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return _error_response(
            status_code=422,
            code="VALIDATION_ERROR",
            message="Request validation failed",
            trace_id=getattr(request.state, "trace_id", generate_trace_id()),
        )

    @app.exception_handler(ApiError)
    async def api_exception_handler(request: Request, exc: ApiError):
        headers: dict[str, str] = {}
        retry_after = getattr(exc, "retry_after_seconds", None)
        if retry_after is not None:
            headers["retry-after"] = str(retry_after)
        if isinstance(exc, RateLimitError):
            if exc.limit is not None:
                headers["x-ratelimit-limit"] = str(exc.limit)
            if exc.remaining is not None:
                headers["x-ratelimit-remaining"] = str(exc.remaining)
        return _error_response(
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            trace_id=getattr(request.state, "trace_id", generate_trace_id()),
            policy_reason=getattr(exc, "policy_reason", None),
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        LOGGER.exception("Unhandled API exception", exc_info=exc)
        message = "Unexpected server error"
        if not hardened_environment:
            message = str(exc) or message
        return _error_response(
            status_code=500,
            code="INTERNAL_ERROR",
            message=message,
            trace_id=getattr(request.state, "trace_id", generate_trace_id()),
        )

    app.include_router(
        build_auth_router(
            auth_service,
            current_user=current_user,
            signup_limit=route_limit("signup", settings.signup_rate_limit_per_minute),
            login_limit=route_limit("login", settings.login_rate_limit_per_minute),
            refresh_limit=route_limit("refresh", settings.refresh_rate_limit_per_minute),
            password_reset_limit=route_limit(
                "password_reset", settings.password_reset_rate_limit_per_minute
            ),
        )
    )
    app.include_router(build_users_router(user_service, current_user=current_user))
    app.include_router(build_tenant_router(tenant_service, current_user=current_user))
    app.include_router(build_clients_router(client_service, current_user=current_user))
    app.include_router(build_matters_router(matter_service, current_user=current_user))
    app.include_router(
        build_tasks_router(task_service, tenant_service=tenant_service, current_user=current_user)
    )
    app.include_router(build_documents_router(document_service, current_user=current_user))
    app.include_router(build_public_documents_router(document_service))
    app.include_router(build_billing_router(billing_service, current_user=current_user))
    app.include_router(build_templates_router(template_service, current_user=current_user))
    app.include_router(
        build_dashboard_router(
            dashboard_service, search_service=search_service, current_user=current_user
        )
    )
    app.include_router(build_audit_router(audit, current_user=current_user))
    app.include_router(build_integrations_router(najiz_service, current_user=current_user))
    app.include_router(build_webhooks_router(subscription_service))
    app.include_router(build_ops_router(reminder_worker))

    @app.get("/healthz", tags=["health"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/ops/metrics", tags=["ops"])
    async def ops_metrics() -> dict[str, object]:
        return {
            "request_metrics": request_metrics.snapshot(),
            "rate_limiter": {"backend": rate_limiter_backend},
            "pdf_export_circuits": breaker.snapshot(),
            "reminder_queue": {
                "backend": reminder_queue_backend,
                "size": reminder_queue.size(),
            },
            "events": event_metrics.snapshot(),
        }

    return app


app = create_app()

from __future__ import annotations

from dataclasses import dataclass
import os


HARDENED_ENVIRONMENTS = frozenset({"production", "prod", "ci"})
DEFAULT_DATABASE_URL = "sqlite:///var/sijil.db"
DEV_JWT_ACCESS_SECRET = "dev-access-secret-change-me"
DEV_JWT_REFRESH_SECRET = "dev-refresh-secret-change-me"
DEV_INTEGRATION_ENCRYPTION_KEY = "dev-integration-key-change-me"
DEV_STORAGE_ACCESS_KEY = "minioadmin"
DEV_STORAGE_SECRET_KEY = "minioadmin"


@dataclass(frozen=True)
class Settings:
    app_name: str
    environment: str
    database_url: str
    redis_url: str | None
    jwt_access_secret: str
    jwt_refresh_secret: str
    jwt_access_ttl: str
    jwt_refresh_ttl: str
    api_rate_limit_per_minute: int
    signup_rate_limit_per_minute: int
    login_rate_limit_per_minute: int
    refresh_rate_limit_per_minute: int
    password_reset_rate_limit_per_minute: int
    password_reset_ttl_minutes: int
    cors_allowed_origins: tuple[str, ...]
    app_base_url: str
    storage_endpoint: str
    storage_bucket: str
    storage_region: str
    storage_access_key: str
    storage_secret_key: str
    integration_encryption_key: str
    pdf_export_timeout_seconds: float
    pdf_circuit_failure_threshold: int
    pdf_circuit_cooldown_seconds: float
    najiz_timeout_seconds: float
    najiz_max_attempts: int
    webhook_signing_secret: str | None
    webhook_tolerance_seconds: int
    ops_bearer_token: str | None
    trial_days: int
    reminder_fallback_email: str


def is_hardened_environment(environment: str) -> bool:
    return environment.strip().lower() in HARDENED_ENVIRONMENTS


def parse_str_env(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip()
    if not normalized:
        return default
    return normalized


def parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a numeric value, got {raw!r}") from exc


def parse_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer value, got {raw!r}") from exc


def parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    values = tuple(item.strip() for item in raw.split(",") if item.strip())
    if not values:
        return default
    return values


def load_settings() -> Settings:
    environment = parse_str_env("ENVIRONMENT", "development") or "development"
    hardened_environment = is_hardened_environment(environment)

    database_url = parse_str_env("DATABASE_URL", DEFAULT_DATABASE_URL) or DEFAULT_DATABASE_URL
    jwt_access_secret = parse_str_env("JWT_ACCESS_SECRET")
    jwt_refresh_secret = parse_str_env("JWT_REFRESH_SECRET")
    integration_encryption_key = parse_str_env("INTEGRATION_ENCRYPTION_KEY")
    storage_access_key = parse_str_env("STORAGE_ACCESS_KEY")
    storage_secret_key = parse_str_env("STORAGE_SECRET_KEY")

    if hardened_environment:
        for name, value in (
            ("JWT_ACCESS_SECRET", jwt_access_secret),
            ("JWT_REFRESH_SECRET", jwt_refresh_secret),
            ("INTEGRATION_ENCRYPTION_KEY", integration_encryption_key),
            ("STORAGE_ACCESS_KEY", storage_access_key),
            ("STORAGE_SECRET_KEY", storage_secret_key),
        ):
            if not value:
                raise ValueError(
                    f"{name} is required when ENVIRONMENT is production/prod/ci"
                )
        if database_url.startswith("sqlite"):
            raise ValueError(
                "DATABASE_URL must point to a server database when ENVIRONMENT is production/prod/ci"
            )
        if jwt_access_secret == jwt_refresh_secret:
            raise ValueError(
                "JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ when ENVIRONMENT is production/prod/ci"
            )

    api_rate_limit_per_minute = parse_int_env("API_RATE_LIMIT_PER_MINUTE", 100)
    if api_rate_limit_per_minute < 1:
        raise ValueError("API_RATE_LIMIT_PER_MINUTE must be >= 1")

    pdf_export_timeout_seconds = parse_float_env("PDF_EXPORT_TIMEOUT_SECONDS", 10.0)
    if pdf_export_timeout_seconds <= 0:
        raise ValueError("PDF_EXPORT_TIMEOUT_SECONDS must be > 0")
    pdf_circuit_failure_threshold = parse_int_env("PDF_CIRCUIT_FAILURE_THRESHOLD", 3)
    if pdf_circuit_failure_threshold < 1:
        raise ValueError("PDF_CIRCUIT_FAILURE_THRESHOLD must be >= 1")
    pdf_circuit_cooldown_seconds = parse_float_env("PDF_CIRCUIT_COOLDOWN_SECONDS", 30.0)
    if pdf_circuit_cooldown_seconds <= 0:
        raise ValueError("PDF_CIRCUIT_COOLDOWN_SECONDS must be > 0")

    najiz_max_attempts = parse_int_env("NAJIZ_MAX_ATTEMPTS", 2)
    if najiz_max_attempts < 1:
        raise ValueError("NAJIZ_MAX_ATTEMPTS must be >= 1")

    app_base_url = (parse_str_env("APP_BASE_URL", "http://localhost:3000") or "").rstrip("/")

    return Settings(
        app_name=parse_str_env("API_APP_NAME", "sijil-api") or "sijil-api",
        environment=environment,
        database_url=database_url,
        redis_url=parse_str_env("REDIS_URL"),
        jwt_access_secret=jwt_access_secret or DEV_JWT_ACCESS_SECRET,
        jwt_refresh_secret=jwt_refresh_secret or DEV_JWT_REFRESH_SECRET,
        jwt_access_ttl=parse_str_env("JWT_ACCESS_TTL", "900s") or "900s",
        jwt_refresh_ttl=parse_str_env("JWT_REFRESH_TTL", "7d") or "7d",
        api_rate_limit_per_minute=api_rate_limit_per_minute,
        signup_rate_limit_per_minute=parse_int_env("SIGNUP_RATE_LIMIT_PER_MINUTE", 5),
        login_rate_limit_per_minute=parse_int_env("LOGIN_RATE_LIMIT_PER_MINUTE", 10),
        refresh_rate_limit_per_minute=parse_int_env("REFRESH_RATE_LIMIT_PER_MINUTE", 15),
        password_reset_rate_limit_per_minute=parse_int_env(
            "PASSWORD_RESET_RATE_LIMIT_PER_MINUTE", 5
        ),
        password_reset_ttl_minutes=parse_int_env("PASSWORD_RESET_TTL_MINUTES", 30),
        cors_allowed_origins=parse_csv_env(
            "CORS_ALLOWED_ORIGINS",
            ("http://127.0.0.1:3000", "http://localhost:3000"),
        ),
        app_base_url=app_base_url,
        storage_endpoint=(
            parse_str_env("STORAGE_ENDPOINT", "http://localhost:9000") or ""
        ).rstrip("/"),
        storage_bucket=parse_str_env("STORAGE_BUCKET", "sijil-documents") or "sijil-documents",
        storage_region=parse_str_env("STORAGE_REGION", "us-east-1") or "us-east-1",
        storage_access_key=storage_access_key or DEV_STORAGE_ACCESS_KEY,
        storage_secret_key=storage_secret_key or DEV_STORAGE_SECRET_KEY,
        integration_encryption_key=integration_encryption_key or DEV_INTEGRATION_ENCRYPTION_KEY,
        pdf_export_timeout_seconds=pdf_export_timeout_seconds,
        pdf_circuit_failure_threshold=pdf_circuit_failure_threshold,
        pdf_circuit_cooldown_seconds=pdf_circuit_cooldown_seconds,
        najiz_timeout_seconds=parse_float_env("NAJIZ_TIMEOUT_SECONDS", 12.0),
        najiz_max_attempts=najiz_max_attempts,
        webhook_signing_secret=parse_str_env("WEBHOOK_SIGNING_SECRET"),
        webhook_tolerance_seconds=parse_int_env("WEBHOOK_TOLERANCE_SECONDS", 300),
        ops_bearer_token=parse_str_env("OPS_BEARER_TOKEN"),
        trial_days=parse_int_env("TRIAL_DAYS", 14),
        reminder_fallback_email=parse_str_env("REMINDER_FALLBACK_EMAIL", "team@sijil.local")
        or "team@sijil.local",
    )

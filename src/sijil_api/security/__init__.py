from sijil_api.security.passwords import PasswordHasher
from sijil_api.security.principal import (
    ALL_ROLES,
    ROLE_ACCOUNTANT,
    ROLE_ASSISTANT,
    ROLE_LAWYER,
    ROLE_PARTNER,
    CurrentUser,
)
from sijil_api.security.secret_box import SecretBox, SecretBoxError
from sijil_api.security.tokens import (
    AccessClaims,
    RefreshClaims,
    TokenIssuer,
    TokenPair,
    hash_token,
    parse_duration_seconds,
)
from sijil_api.security.webhook_signature import (
    WebhookSignatureError,
    sign_webhook_payload,
    verify_webhook_signature,
)

__all__ = [
    "ALL_ROLES",
    "ROLE_ACCOUNTANT",
    "ROLE_ASSISTANT",
    "ROLE_LAWYER",
    "ROLE_PARTNER",
    "AccessClaims",
    "CurrentUser",
    "PasswordHasher",
    "RefreshClaims",
    "SecretBox",
    "SecretBoxError",
    "TokenIssuer",
    "TokenPair",
    "WebhookSignatureError",
    "hash_token",
    "parse_duration_seconds",
    "sign_webhook_payload",
    "verify_webhook_signature",
]

from sijil_api.integrations.najiz_client import (
    NajizClient,
    OAuthTestResult,
    build_token_url,
    normalize_base_url,
)
from sijil_api.integrations.najiz_service import NajizIntegrationService

__all__ = [
    "NajizClient",
    "NajizIntegrationService",
    "OAuthTestResult",
    "build_token_url",
    "normalize_base_url",
]

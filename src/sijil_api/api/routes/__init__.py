from sijil_api.api.routes.audit import build_audit_router
from sijil_api.api.routes.auth import build_auth_router
from sijil_api.api.routes.billing import build_billing_router
from sijil_api.api.routes.clients import build_clients_router
from sijil_api.api.routes.dashboard import build_dashboard_router
from sijil_api.api.routes.documents import build_documents_router, build_public_documents_router
from sijil_api.api.routes.integrations import build_integrations_router
from sijil_api.api.routes.matters import build_matters_router
from sijil_api.api.routes.ops import build_ops_router
from sijil_api.api.routes.tasks import build_tasks_router
from sijil_api.api.routes.templates import build_templates_router
from sijil_api.api.routes.tenant import build_tenant_router
from sijil_api.api.routes.users import build_users_router
from sijil_api.api.routes.webhooks import build_webhooks_router

__all__ = [
    "build_audit_router",
    "build_auth_router",
    "build_billing_router",
    "build_clients_router",
    "build_dashboard_router",
    "build_documents_router",
    "build_integrations_router",
    "build_matters_router",
    "build_ops_router",
    "build_public_documents_router",
    "build_tasks_router",
    "build_templates_router",
    "build_tenant_router",
    "build_users_router",
    "build_webhooks_router",
]

from sijil_api.services.account_notifier import AccountNotifier, LoggingAccountNotifier
from sijil_api.services.audit_service import AuditService
from sijil_api.services.auth_service import AuthService
from sijil_api.services.billing_service import BillingService
from sijil_api.services.client_service import ClientService
from sijil_api.services.dashboard_service import DashboardService
from sijil_api.services.document_service import DocumentService
from sijil_api.services.matter_service import MatterService
from sijil_api.services.pdf_export import GuardedPdfExporter
from sijil_api.services.reminder_queue import (
    InMemoryReminderQueue,
    RedisReminderQueue,
    ReminderJob,
    ReminderQueue,
    build_reminder_queue,
)
from sijil_api.services.reminder_worker import LoggingReminderNotifier, ReminderWorker
from sijil_api.services.search_service import SearchService
from sijil_api.services.storage import ObjectStorage, build_s3_client
from sijil_api.services.subscription_service import SubscriptionWebhookService
from sijil_api.services.task_service import TaskService
from sijil_api.services.template_resolver import TemplateResolver
from sijil_api.services.template_service import TemplateService
from sijil_api.services.tenant_service import TenantService
from sijil_api.services.user_service import UserService

__all__ = [
    "AccountNotifier",
    "AuditService",
    "AuthService",
    "BillingService",
    "ClientService",
    "DashboardService",
    "DocumentService",
    "GuardedPdfExporter",
    "InMemoryReminderQueue",
    "LoggingAccountNotifier",
    "LoggingReminderNotifier",
    "MatterService",
    "RedisReminderQueue",
    "ReminderJob",
    "ReminderQueue",
    "ReminderWorker",
    "ObjectStorage",
    "SearchService",
    "SubscriptionWebhookService",
    "TaskService",
    "TemplateResolver",
    "TemplateService",
    "TenantService",
    "UserService",
    "build_reminder_queue",
    "build_s3_client",
]

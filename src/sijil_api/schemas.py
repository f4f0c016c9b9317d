from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator


T = TypeVar("T")

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

Role = Literal["PARTNER", "LAWYER", "ASSISTANT", "ACCOUNTANT"]
Language = Literal["AR", "EN"]
ClientType = Literal["PERSON", "COMPANY"]
MatterStatus = Literal["OPEN", "IN_PROGRESS", "ON_HOLD", "CLOSED"]
TaskStatus = Literal["TODO", "IN_PROGRESS", "DONE"]
QuoteStatus = Literal["DRAFT", "SENT", "ACCEPTED", "REJECTED"]
InvoiceStatus = Literal["UNPAID", "PAID", "VOID"]
PlanCode = Literal["TRIAL", "SOLO", "TEAM", "BUSINESS", "ENTERPRISE"]
VariableSource = Literal["client", "matter", "org", "user", "computed", "manual"]
IntegrationStatus = Literal["disconnected", "connected", "error"]


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PartialUpdate(BaseModel):
    """PATCH body: fields may be omitted, but required columns cannot be cleared."""

    non_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def reject_cleared_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            cleared = [name for name in cls.non_nullable if name in data and data[name] is None]
            if cleared:
                raise ValueError(f"{', '.join(cleared)} must not be null")
        return data


class Page(BaseModel, Generic[T]):
    data: list[T]
    total: int
    page: int
    page_size: int


class SuccessResponse(BaseModel):
    success: bool = True


class ErrorBody(BaseModel):
    code: Literal[
        "BAD_REQUEST",
        "VALIDATION_ERROR",
        "UNAUTHORIZED",
        "FORBIDDEN",
        "NOT_FOUND",
        "CONFLICT",
        "RATE_LIMITED",
        "PLAN_LIMIT_REACHED",
        "INTEGRATION_ERROR",
        "SERVICE_UNAVAILABLE",
        "INTERNAL_ERROR",
    ]
    message: str
    trace_id: str
    policy_reason: str | None = None


class ErrorEnvelope(BaseModel):
    error: ErrorBody


# Auth


class SignupRequest(BaseModel):
    firm_name: str = Field(min_length=2, max_length=200)
    name: str = Field(min_length=2, max_length=200)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    password: str = Field(min_length=8, max_length=128)
    language: Language = "AR"
    hijri_display: bool = False
    retention_days: int = Field(default=3650, ge=365, le=36500)


class LoginRequest(BaseModel):
    tenant_id: str = Field(min_length=1, max_length=64)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    password: str = Field(min_length=8, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=10)


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class PasswordResetRequest(BaseModel):
    tenant_id: str = Field(min_length=1, max_length=64)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)


class PasswordResetVerifyRequest(PasswordResetRequest):
    code: str = Field(min_length=16, max_length=128)


class PasswordResetUpdateRequest(PasswordResetVerifyRequest):
    password: str = Field(min_length=8, max_length=128)


class InvitationAcceptRequest(BaseModel):
    token: str = Field(min_length=16, max_length=128)
    name: str = Field(min_length=2, max_length=200)
    password: str = Field(min_length=8, max_length=128)


class AuthUser(BaseModel):
    id: str
    tenant_id: str
    email: str
    role: Role
    name: str


class AuthTokensResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: Literal["bearer"] = "bearer"
    user: AuthUser


# Users and tenant


class UserOut(OrmModel):
    id: str
    tenant_id: str
    name: str
    email: str
    role: Role
    is_active: bool
    created_at: datetime


class UserCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=200)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    password: str = Field(min_length=8, max_length=128)
    role: Role = "LAWYER"


class UserRoleUpdate(BaseModel):
    role: Role


class UserStatusUpdate(BaseModel):
    is_active: bool


class InvitationCreateRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    role: Role = "LAWYER"
    expires_in: Literal["24h", "7d"] = "7d"


class InvitationOut(OrmModel):
    id: str
    tenant_id: str
    email: str
    role: Role
    invited_by_id: str
    expires_at: datetime
    accepted_at: datetime | None
    revoked_at: datetime | None
    created_at: datetime


class TenantSettingsOut(OrmModel):
    id: str
    firm_name: str
    logo_url: str | None
    language: Language
    hijri_display: bool
    retention_days: int
    plan: PlanCode
    plan_status: str
    trial_ends_at: datetime | None


class TenantSettingsUpdate(PartialUpdate):
    non_nullable = ("firm_name", "language", "hijri_display", "retention_days")

    firm_name: str | None = Field(default=None, min_length=2, max_length=200)
    logo_url: str | None = Field(default=None, max_length=1024)
    language: Language | None = None
    hijri_display: bool | None = None
    retention_days: int | None = Field(default=None, ge=30, le=36500)


class LimitCheckOut(BaseModel):
    allowed: bool
    limit: int
    current: int
    reason: str | None = None


class TrialStatusOut(BaseModel):
    ends_at: datetime | None
    days_left: int
    is_expired: bool
    status: str


class SubscriptionStatusOut(BaseModel):
    plan: PlanCode
    plan_status: str
    trial: TrialStatusOut
    users: LimitCheckOut
    matters: LimitCheckOut
    features: dict[str, bool]


# Clients


class ClientCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    client_type: ClientType = "PERSON"
    identity_no: str | None = Field(default=None, max_length=64)
    commercial_no: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN, max_length=320)
    phone: str | None = Field(default=None, max_length=64)
    notes: str | None = Field(default=None, max_length=5000)


class ClientUpdate(PartialUpdate):
    non_nullable = ("name", "client_type")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    client_type: ClientType | None = None
    identity_no: str | None = Field(default=None, max_length=64)
    commercial_no: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN, max_length=320)
    phone: str | None = Field(default=None, max_length=64)
    notes: str | None = Field(default=None, max_length=5000)


class ClientOut(OrmModel):
    id: str
    name: str
    client_type: ClientType
    identity_no: str | None
    commercial_no: str | None
    email: str | None
    phone: str | None
    notes: str | None
    is_archived: bool
    created_at: datetime
    updated_at: datetime


# Matters


class MatterCreate(BaseModel):
    client_id: str
    title: str = Field(min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=10000)
    status: MatterStatus = "OPEN"
    assignee_id: str | None = None
    is_private: bool = False
    member_ids: list[str] = Field(default_factory=list)


class MatterUpdate(PartialUpdate):
    non_nullable = ("title", "status", "is_private")

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=10000)
    status: MatterStatus | None = None
    assignee_id: str | None = None
    is_private: bool | None = None
    member_ids: list[str] | None = None


class MatterMembersUpdate(BaseModel):
    member_ids: list[str]


class MatterOut(OrmModel):
    id: str
    client_id: str
    title: str
    description: str | None
    status: MatterStatus
    assignee_id: str | None
    is_private: bool
    created_at: datetime
    updated_at: datetime


class MatterClientSummary(OrmModel):
    id: str
    name: str


class TimelineEventOut(OrmModel):
    id: str
    event_type: str
    actor_id: str | None
    payload: dict[str, Any] | None
    created_at: datetime


class MatterDetailOut(MatterOut):
    client: MatterClientSummary
    member_ids: list[str]
    timeline: list[TimelineEventOut]


# Tasks


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=10000)
    status: TaskStatus = "TODO"
    due_date: datetime | None = None
    reminder_at: datetime | None = None
    assignee_id: str | None = None
    matter_id: str | None = None


class TaskUpdate(PartialUpdate):
    non_nullable = ("title", "status")

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=10000)
    status: TaskStatus | None = None
    due_date: datetime | None = None
    reminder_at: datetime | None = None
    assignee_id: str | None = None
    matter_id: str | None = None


class TaskOut(OrmModel):
    id: str
    title: str
    description: str | None
    status: TaskStatus
    due_date: datetime | None
    reminder_at: datetime | None
    assignee_id: str | None
    matter_id: str | None
    created_by_id: str
    created_at: datetime
    updated_at: datetime


# Documents


class FolderCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    parent_id: str | None = None


class FolderOut(OrmModel):
    id: str
    name: str
    parent_id: str | None
    created_at: datetime


class DocumentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    matter_id: str | None = None
    client_id: str | None = None
    folder_id: str | None = None
    file_name: str = Field(min_length=1, max_length=300)
    mime_type: str = Field(min_length=1, max_length=128)
    size: int = Field(ge=1)
    tags: list[str] = Field(default_factory=list)


class DocumentVersionCreate(BaseModel):
    file_name: str = Field(min_length=1, max_length=300)
    mime_type: str = Field(min_length=1, max_length=128)
    size: int = Field(ge=1)
    tags: list[str] = Field(default_factory=list)


class DocumentVersionOut(OrmModel):
    id: str
    version: int
    file_name: str
    mime_type: str
    size: int
    tags: list[str]
    storage_key: str
    uploaded_by_id: str
    created_at: datetime


class DocumentOut(OrmModel):
    id: str
    title: str
    matter_id: str | None
    client_id: str | None
    folder_id: str | None
    created_by_id: str
    created_at: datetime
    updated_at: datetime
    latest_version: DocumentVersionOut | None = None


class DocumentDetailOut(DocumentOut):
    versions: list[DocumentVersionOut]


class UploadTicket(BaseModel):
    document: DocumentOut
    version: DocumentVersionOut
    upload_url: str
    expires_in: int


class DownloadLink(BaseModel):
    url: str
    expires_in: int
    file_name: str
    version: int


class ShareCreate(BaseModel):
    expires_in_hours: int = Field(default=24, ge=1, le=168)


class ShareOut(BaseModel):
    id: str
    token: str
    public_url: str
    expires_at: datetime


# Billing


class QuoteCreate(BaseModel):
    client_id: str
    matter_id: str | None = None
    number: str | None = Field(default=None, min_length=1, max_length=32)
    subtotal: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)


class QuoteOut(OrmModel):
    id: str
    client_id: str
    matter_id: str | None
    number: str
    status: QuoteStatus
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    created_at: datetime


class ConvertQuoteRequest(BaseModel):
    due_at: datetime | None = None


class InvoiceOut(OrmModel):
    id: str
    client_id: str
    matter_id: str | None
    quote_id: str | None
    number: str
    status: InvoiceStatus
    issued_at: datetime
    due_at: datetime | None
    paid_at: datetime | None
    subtotal: Decimal
    tax: Decimal
    total: Decimal


class MarkPaidRequest(BaseModel):
    paid_at: datetime | None = None


# Audit, dashboard, search


class AuditLogOut(BaseModel):
    id: str
    user_id: str | None
    action: str
    entity: str
    entity_id: str | None
    ip: str | None
    user_agent: str | None
    metadata: dict[str, Any] | None
    created_at: datetime


class DashboardWidget(BaseModel, Generic[T]):
    count: int
    items: list[T]


class DashboardOut(BaseModel):
    overdue_tasks: DashboardWidget[TaskOut]
    upcoming_deadlines: DashboardWidget[TaskOut]
    stale_matters: DashboardWidget[MatterOut]
    unpaid_invoices: DashboardWidget[InvoiceOut]


class SearchHit(BaseModel):
    kind: Literal["client", "matter", "document", "invoice"]
    id: str
    title: str
    subtitle: str | None = None


class SearchResults(BaseModel):
    query: str
    clients: list[SearchHit]
    matters: list[SearchHit]
    documents: list[SearchHit]
    invoices: list[SearchHit]


# Templates


class TemplateVariable(BaseModel):
    key: str = Field(min_length=1, max_length=120)
    label: str | None = Field(default=None, max_length=200)
    source: VariableSource = "manual"
    path: str | None = Field(default=None, max_length=200)
    required: bool = False
    default_value: str | None = None
    format: Literal["date"] | None = None
    transform: Literal["upper", "lower"] | None = None


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    title: str = Field(min_length=1, max_length=300)
    body: str = Field(default="", max_length=100_000)
    variables: list[TemplateVariable] = Field(default_factory=list)


class TemplateOut(OrmModel):
    id: str
    name: str
    title: str
    body: str
    variables: list[TemplateVariable]
    created_at: datetime


class TemplateResolveRequest(BaseModel):
    client_id: str | None = None
    matter_id: str | None = None
    manual_values: dict[str, str] = Field(default_factory=dict)
    variables: list[TemplateVariable] | None = None


class ResolvedContextOut(BaseModel):
    values: dict[str, str]
    missing_required: list[str]
    used_sources: dict[str, bool]


class TemplateGenerateRequest(BaseModel):
    client_id: str | None = None
    matter_id: str | None = None
    manual_values: dict[str, str] = Field(default_factory=dict)


# Integrations


class NajizConnectRequest(BaseModel):
    environment: Literal["sandbox", "production"] = "sandbox"
    base_url: str = Field(pattern=r"^https?://", max_length=500)
    client_id: str = Field(min_length=1, max_length=300)
    client_secret: str = Field(min_length=1, max_length=500)
    scope: str | None = Field(default=None, max_length=500)


class IntegrationOut(BaseModel):
    provider: str
    status: IntegrationStatus
    environment: str | None = None
    base_url: str | None = None
    last_error: str | None = None
    last_tested_at: datetime | None = None
    has_secret: bool = False


class IntegrationTestResult(BaseModel):
    ok: bool
    message: str
    status: IntegrationStatus


# Ops


class ReminderRunResult(BaseModel):
    processed: int
    sent: int
    skipped: int

from __future__ import annotations

import re

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from sijil_api.db.models import Template, Tenant
from sijil_api.errors import NotFoundError, ValidationFailedError
from sijil_api.schemas import (
    ResolvedContextOut,
    TemplateCreate,
    TemplateGenerateRequest,
    TemplateOut,
    TemplateResolveRequest,
    TemplateVariable,
)
from sijil_api.security import CurrentUser
from sijil_api.services import plan_limits
from sijil_api.services.audit_service import AuditService
from sijil_api.services.doc_engine import DocField, DocParams, build_document_pdf
from sijil_api.services.pdf_export import DOCUMENT_PDF_CIRCUIT, GuardedPdfExporter
from sijil_api.services.template_resolver import TemplateResolver, render_template


_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class TemplateService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        audit: AuditService,
        resolver: TemplateResolver,
        pdf_exporter: GuardedPdfExporter,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit
        self.resolver = resolver
        self.pdf_exporter = pdf_exporter

    def create(self, actor: CurrentUser, payload: TemplateCreate) -> TemplateOut:
        keys = [variable.key.strip() for variable in payload.variables]
        duplicates = sorted({key for key in keys if keys.count(key) > 1})
        if duplicates:
            raise ValidationFailedError(f"Duplicate variable keys: {', '.join(duplicates)}")

        with self.session_factory.begin() as session:
            self._ensure_enabled(session, actor.tenant_id)
            template = Template(
                tenant_id=actor.tenant_id,
                name=payload.name.strip(),
                title=payload.title.strip(),
                body=payload.body,
                variables=[variable.model_dump() for variable in payload.variables],
                created_by_id=actor.user_id,
            )
            session.add(template)
            session.flush()
            self.audit.record_for(
                session, actor, action="TEMPLATE_CREATED", entity="Template", entity_id=template.id
            )
            return TemplateOut.model_validate(template)

    def list(self, actor: CurrentUser) -> list[TemplateOut]:
        with self.session_factory() as session:
            templates = session.scalars(
                select(Template)
                .where(Template.tenant_id == actor.tenant_id)
                .order_by(Template.created_at.desc())
            ).all()
            return [TemplateOut.model_validate(template) for template in templates]

    def get(self, actor: CurrentUser, template_id: str) -> TemplateOut:
        with self.session_factory() as session:
            return TemplateOut.model_validate(self._get_template(session, actor.tenant_id, template_id))

    def resolve(
        self,
        actor: CurrentUser,
        payload: TemplateResolveRequest,
        *,
        template_id: str | None = None,
    ) -> ResolvedContextOut:
        with self.session_factory() as session:
            variables = payload.variables
            if template_id is not None:
                template = self._get_template(session, actor.tenant_id, template_id)
                variables = [TemplateVariable.model_validate(item) for item in template.variables]
            context = self.resolver.resolve_in_session(
                session,
                actor,
                client_id=payload.client_id,
                matter_id=payload.matter_id,
                manual_values=payload.manual_values,
                variables=variables,
            )
        return ResolvedContextOut(
            values=context.values,
            missing_required=context.missing_required,
            used_sources=context.used_sources,
        )

    def prepare_document(
        self,
        actor: CurrentUser,
        template_id: str,
        payload: TemplateGenerateRequest,
    ) -> tuple[str, DocParams]:
        with self.session_factory() as session:
            self._ensure_enabled(session, actor.tenant_id)
            template = self._get_template(session, actor.tenant_id, template_id)
            variables = [TemplateVariable.model_validate(item) for item in template.variables]
            context = self.resolver.resolve_in_session(
                session,
                actor,
                client_id=payload.client_id,
                matter_id=payload.matter_id,
                manual_values=payload.manual_values,
                variables=variables,
            )
            if context.missing_required:
                raise ValidationFailedError(
                    f"Missing required values: {', '.join(context.missing_required)}"
                )

            fields = [
                DocField(label=variable.label or variable.key, value=context.values.get(variable.key, ""))
                for variable in variables
            ]
            if template.body.strip():
                rendered = render_template(template.body, context.values)
                fields.append(DocField(label="Content", value=rendered.text))
            params = DocParams(
                org_name=context.values.get("org.name", ""),
                title=template.title,
                subtitle=template.name,
                date=context.values.get("date.today", ""),
                fields=fields,
            )
            file_name = f"{_UNSAFE_FILENAME_CHARS.sub('_', template.name) or 'document'}.pdf"
        return file_name, params

    async def generate(
        self,
        actor: CurrentUser,
        template_id: str,
        payload: TemplateGenerateRequest,
    ) -> tuple[str, bytes]:
        file_name, params = await run_in_threadpool(
            self.prepare_document, actor, template_id, payload
        )
        pdf = await self.pdf_exporter.render(DOCUMENT_PDF_CIRCUIT, lambda: build_document_pdf(params))
        await run_in_threadpool(
            self.audit.log,
            tenant_id=actor.tenant_id,
            user_id=actor.user_id,
            action="TEMPLATE_GENERATED",
            entity="Template",
            entity_id=template_id,
            ip=actor.ip,
            user_agent=actor.user_agent,
            metadata={"client_id": payload.client_id, "matter_id": payload.matter_id},
        )
        return file_name, pdf

    @staticmethod
    def _ensure_enabled(session: Session, tenant_id: str) -> None:
        tenant = session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        plan_limits.enforce(
            plan_limits.check_feature(tenant, "templates_enabled"),
            "Templates are not available on the current plan",
        )

    @staticmethod
    def _get_template(session: Session, tenant_id: str, template_id: str) -> Template:
        template = session.scalars(
            select(Template).where(Template.id == template_id, Template.tenant_id == tenant_id)
        ).first()
        if template is None:
            raise NotFoundError("Template not found")
        return template

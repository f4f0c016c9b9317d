from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from sijil_api.api.dependencies import CurrentUserDependency
from sijil_api.schemas import (
    ResolvedContextOut,
    TemplateCreate,
    TemplateGenerateRequest,
    TemplateOut,
    TemplateResolveRequest,
)
from sijil_api.security import CurrentUser
from sijil_api.services.template_service import TemplateService


def build_templates_router(
    template_service: TemplateService,
    *,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/templates", tags=["templates"])

    @router.get("", response_model=list[TemplateOut])
    def list_templates(actor: CurrentUser = Depends(current_user)) -> list[TemplateOut]:
        return template_service.list(actor)

    @router.post("", response_model=TemplateOut, status_code=status.HTTP_201_CREATED)
    def create_template(
        payload: TemplateCreate, actor: CurrentUser = Depends(current_user)
    ) -> TemplateOut:
        return template_service.create(actor, payload)

    @router.post("/resolve", response_model=ResolvedContextOut)
    def resolve_context(
        payload: TemplateResolveRequest, actor: CurrentUser = Depends(current_user)
    ) -> ResolvedContextOut:
        return template_service.resolve(actor, payload)

    @router.get("/{template_id}", response_model=TemplateOut)
    def get_template(template_id: str, actor: CurrentUser = Depends(current_user)) -> TemplateOut:
        return template_service.get(actor, template_id)

    @router.post("/{template_id}/resolve", response_model=ResolvedContextOut)
    def resolve_template(
        template_id: str,
        payload: TemplateResolveRequest,
        actor: CurrentUser = Depends(current_user),
    ) -> ResolvedContextOut:
        return template_service.resolve(actor, payload, template_id=template_id)

    @router.post("/{template_id}/generate")
    async def generate(
        template_id: str,
        payload: TemplateGenerateRequest,
        actor: CurrentUser = Depends(current_user),
    ) -> Response:
        file_name, pdf = await template_service.generate(actor, template_id, payload)
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={
                "Content-Disposition": f'attachment; filename="{file_name}"',
                "Cache-Control": "no-store",
            },
        )

    return router

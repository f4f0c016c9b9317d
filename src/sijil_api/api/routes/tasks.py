from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from sijil_api.api.dependencies import CurrentUserDependency
from sijil_api.schemas import Page, SuccessResponse, TaskCreate, TaskOut, TaskStatus, TaskUpdate
from sijil_api.security import CurrentUser
from sijil_api.services.task_service import TaskService
from sijil_api.services.tenant_service import TenantService


def build_tasks_router(
    task_service: TaskService,
    *,
    tenant_service: TenantService,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/tasks", tags=["tasks"])

    @router.get("", response_model=Page[TaskOut])
    def list_tasks(
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
        status_filter: TaskStatus | None = Query(None, alias="status"),
        assignee_id: str | None = None,
        search: str | None = Query(None, max_length=200),
        actor: CurrentUser = Depends(current_user),
    ) -> Page[TaskOut]:
        return task_service.list(
            actor,
            page=page,
            page_size=page_size,
            status=status_filter,
            assignee_id=assignee_id,
            search=search,
        )

    @router.post("", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
    def create_task(payload: TaskCreate, actor: CurrentUser = Depends(current_user)) -> TaskOut:
        return task_service.create(actor, payload)

    @router.get("/calendar.ics")
    def calendar(actor: CurrentUser = Depends(current_user)) -> Response:
        firm_name = tenant_service.get(actor.tenant_id).firm_name
        return Response(
            content=task_service.calendar(actor, firm_name=firm_name),
            media_type="text/calendar; charset=utf-8",
            headers={
                "Content-Disposition": 'attachment; filename="tasks.ics"',
                "Cache-Control": "no-store",
            },
        )

    @router.get("/{task_id}", response_model=TaskOut)
    def get_task(task_id: str, actor: CurrentUser = Depends(current_user)) -> TaskOut:
        return task_service.get(actor, task_id)

    @router.patch("/{task_id}", response_model=TaskOut)
    def update_task(
        task_id: str, payload: TaskUpdate, actor: CurrentUser = Depends(current_user)
    ) -> TaskOut:
        return task_service.update(actor, task_id, payload)

    @router.delete("/{task_id}", response_model=SuccessResponse)
    def delete_task(task_id: str, actor: CurrentUser = Depends(current_user)) -> SuccessResponse:
        task_service.remove(actor, task_id)
        return SuccessResponse()

    return router

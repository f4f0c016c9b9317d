from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from sijil_api.api.dependencies import CurrentUserDependency
from sijil_api.schemas import ClientCreate, ClientOut, ClientUpdate, Page, SuccessResponse
from sijil_api.security import CurrentUser
from sijil_api.services.client_service import ClientService


def build_clients_router(
    client_service: ClientService,
    *,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/clients", tags=["clients"])

    @router.get("", response_model=Page[ClientOut])
    def list_clients(
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
        search: str | None = Query(None, max_length=200),
        archived: bool | None = None,
        actor: CurrentUser = Depends(current_user),
    ) -> Page[ClientOut]:
        return client_service.list(
            actor, page=page, page_size=page_size, search=search, archived=archived
        )

    @router.post("", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
    def create_client(payload: ClientCreate, actor: CurrentUser = Depends(current_user)) -> ClientOut:
        return client_service.create(actor, payload)

    @router.get("/{client_id}", response_model=ClientOut)
    def get_client(client_id: str, actor: CurrentUser = Depends(current_user)) -> ClientOut:
        return client_service.get(actor, client_id)

    @router.patch("/{client_id}", response_model=ClientOut)
    def update_client(
        client_id: str, payload: ClientUpdate, actor: CurrentUser = Depends(current_user)
    ) -> ClientOut:
        return client_service.update(actor, client_id, payload)

    @router.post("/{client_id}/archive", response_model=ClientOut)
    def archive_client(client_id: str, actor: CurrentUser = Depends(current_user)) -> ClientOut:
        return client_service.set_archived(actor, client_id, True)

    @router.post("/{client_id}/unarchive", response_model=ClientOut)
    def unarchive_client(client_id: str, actor: CurrentUser = Depends(current_user)) -> ClientOut:
        return client_service.set_archived(actor, client_id, False)

    @router.delete("/{client_id}", response_model=SuccessResponse)
    def delete_client(client_id: str, actor: CurrentUser = Depends(current_user)) -> SuccessResponse:
        client_service.remove(actor, client_id)
        return SuccessResponse()

    return router

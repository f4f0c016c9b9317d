from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, status

from sijil_api.api.dependencies import CurrentUserDependency, request_origin
from sijil_api.schemas import (
    DocumentCreate,
    DocumentDetailOut,
    DocumentOut,
    DocumentVersionCreate,
    DownloadLink,
    FolderCreate,
    FolderOut,
    Page,
    ShareCreate,
    ShareOut,
    SuccessResponse,
    UploadTicket,
)
from sijil_api.security import CurrentUser
from sijil_api.services.document_service import DocumentService


def build_documents_router(
    document_service: DocumentService,
    *,
    current_user: CurrentUserDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/documents", tags=["documents"])

    @router.get("/folders", response_model=list[FolderOut])
    def list_folders(actor: CurrentUser = Depends(current_user)) -> list[FolderOut]:
        return document_service.list_folders(actor)

    @router.post("/folders", response_model=FolderOut, status_code=status.HTTP_201_CREATED)
    def create_folder(payload: FolderCreate, actor: CurrentUser = Depends(current_user)) -> FolderOut:
        return document_service.create_folder(actor, payload)

    @router.get("", response_model=Page[DocumentOut])
    def list_documents(
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
        search: str | None = Query(None, max_length=200),
        matter_id: str | None = None,
        client_id: str | None = None,
        folder_id: str | None = None,
        actor: CurrentUser = Depends(current_user),
    ) -> Page[DocumentOut]:
        return document_service.list(
            actor,
            page=page,
            page_size=page_size,
            search=search,
            matter_id=matter_id,
            client_id=client_id,
            folder_id=folder_id,
        )

    @router.post("", response_model=UploadTicket, status_code=status.HTTP_201_CREATED)
    def create_document(
        payload: DocumentCreate, actor: CurrentUser = Depends(current_user)
    ) -> UploadTicket:
        return document_service.create_document(actor, payload)

    @router.get("/{document_id}", response_model=DocumentDetailOut)
    def get_document(
        document_id: str, actor: CurrentUser = Depends(current_user)
    ) -> DocumentDetailOut:
        return document_service.get(actor, document_id)

    @router.post(
        "/{document_id}/versions",
        response_model=UploadTicket,
        status_code=status.HTTP_201_CREATED,
    )
    def add_version(
        document_id: str,
        payload: DocumentVersionCreate,
        actor: CurrentUser = Depends(current_user),
    ) -> UploadTicket:
        return document_service.add_version(actor, document_id, payload)

    @router.get("/{document_id}/download", response_model=DownloadLink)
    def download(document_id: str, actor: CurrentUser = Depends(current_user)) -> DownloadLink:
        return document_service.get_download_url(actor, document_id)

    @router.post(
        "/{document_id}/shares", response_model=ShareOut, status_code=status.HTTP_201_CREATED
    )
    def share(
        document_id: str,
        payload: ShareCreate | None = None,
        actor: CurrentUser = Depends(current_user),
    ) -> ShareOut:
        return document_service.create_share_token(actor, document_id, payload or ShareCreate())

    @router.delete("/{document_id}/shares/{share_id}", response_model=SuccessResponse)
    def revoke_share(
        document_id: str, share_id: str, actor: CurrentUser = Depends(current_user)
    ) -> SuccessResponse:
        document_service.revoke_share(actor, document_id, share_id)
        return SuccessResponse()

    return router


def build_public_documents_router(document_service: DocumentService) -> APIRouter:
    router = APIRouter(prefix="/api/public/documents", tags=["documents"])

    @router.get("/share/{token}", response_model=DownloadLink)
    def shared_download(token: str, request: Request) -> DownloadLink:
        ip, user_agent = request_origin(request)
        return document_service.public_download(token, ip=ip, user_agent=user_agent)

    return router

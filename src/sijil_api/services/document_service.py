from __future__ import annotations

from datetime import datetime, timedelta
import secrets
from typing import Callable

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from sijil_api.db.models import (
    Document,
    DocumentFolder,
    DocumentShareToken,
    DocumentVersion,
    Matter,
    utcnow,
)
from sijil_api.db.session import with_tenant
from sijil_api.errors import AuthError, NotFoundError
from sijil_api.schemas import (
    DocumentCreate,
    DocumentDetailOut,
    DocumentOut,
    DocumentVersionCreate,
    DocumentVersionOut,
    DownloadLink,
    FolderCreate,
    FolderOut,
    Page,
    ShareCreate,
    ShareOut,
    UploadTicket,
)
from sijil_api.security import CurrentUser
from sijil_api.services.audit_service import AuditService
from sijil_api.services.client_service import get_client, like_pattern
from sijil_api.services.matter_service import get_matter, matter_visibility_clause
from sijil_api.services.storage import (
    DOWNLOAD_URL_TTL_SECONDS,
    UPLOAD_URL_TTL_SECONDS,
    ObjectStorage,
    build_storage_key,
)


def _document_out(document: Document) -> DocumentOut:
    latest = document.versions[0] if document.versions else None
    return DocumentOut.model_validate(document).model_copy(
        update={"latest_version": DocumentVersionOut.model_validate(latest) if latest else None}
    )


class DocumentService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        audit: AuditService,
        storage: ObjectStorage,
        app_base_url: str,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit
        self.storage = storage
        self.app_base_url = app_base_url.rstrip("/")
        self._now = now_fn or utcnow

    # Folders

    def list_folders(self, actor: CurrentUser) -> list[FolderOut]:
        with self.session_factory() as session:
            folders = session.scalars(
                with_tenant(select(DocumentFolder), DocumentFolder, actor.tenant_id).order_by(
                    DocumentFolder.name.asc()
                )
            ).all()
            return [FolderOut.model_validate(folder) for folder in folders]

    def create_folder(self, actor: CurrentUser, payload: FolderCreate) -> FolderOut:
        with self.session_factory.begin() as session:
            if payload.parent_id:
                self._get_folder(session, actor.tenant_id, payload.parent_id)
            folder = DocumentFolder(
                tenant_id=actor.tenant_id,
                name=payload.name.strip(),
                parent_id=payload.parent_id,
            )
            session.add(folder)
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="DOCUMENT_FOLDER_CREATED",
                entity="DocumentFolder",
                entity_id=folder.id,
            )
            return FolderOut.model_validate(folder)

    # Documents

    def list(
        self,
        actor: CurrentUser,
        *,
        page: int = 1,
        page_size: int = 20,
        search: str | None = None,
        matter_id: str | None = None,
        client_id: str | None = None,
        folder_id: str | None = None,
    ) -> Page[DocumentOut]:
        statement = with_tenant(select(Document), Document, actor.tenant_id)
        if search and search.strip():
            statement = statement.where(
                func.lower(Document.title).like(like_pattern(search), escape="\\")
            )
        if matter_id:
            statement = statement.where(Document.matter_id == matter_id)
        if client_id:
            statement = statement.where(Document.client_id == client_id)
        if folder_id:
            statement = statement.where(Document.folder_id == folder_id)
        visibility = matter_visibility_clause(actor)
        if visibility is not None:
            visible_matters = select(Matter.id).where(Matter.tenant_id == actor.tenant_id, visibility)
            statement = statement.where(
                or_(Document.matter_id.is_(None), Document.matter_id.in_(visible_matters))
            )

        with self.session_factory() as session:
            total = session.scalar(select(func.count()).select_from(statement.subquery()))
            documents = session.scalars(
                statement.options(selectinload(Document.versions))
                .order_by(Document.updated_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            data = [_document_out(document) for document in documents]
        return Page[DocumentOut](data=data, total=int(total or 0), page=page, page_size=page_size)

    def create_document(self, actor: CurrentUser, payload: DocumentCreate) -> UploadTicket:
        now = self._now()
        with self.session_factory.begin() as session:
            if payload.matter_id:
                get_matter(session, actor, payload.matter_id)
            if payload.client_id:
                get_client(session, actor.tenant_id, payload.client_id)
            if payload.folder_id:
                self._get_folder(session, actor.tenant_id, payload.folder_id)

            document = Document(
                tenant_id=actor.tenant_id,
                title=payload.title.strip(),
                matter_id=payload.matter_id,
                client_id=payload.client_id,
                folder_id=payload.folder_id,
                created_by_id=actor.user_id,
            )
            session.add(document)
            session.flush()
            version = self._new_version(
                session,
                actor,
                document,
                number=1,
                file_name=payload.file_name,
                mime_type=payload.mime_type,
                size=payload.size,
                tags=payload.tags,
                now=now,
            )
            self.audit.record_for(
                session,
                actor,
                action="DOCUMENT_CREATED",
                entity="Document",
                entity_id=document.id,
                metadata={"file_name": payload.file_name, "size": payload.size},
            )
            return self._ticket(document, version)

    def add_version(
        self,
        actor: CurrentUser,
        document_id: str,
        payload: DocumentVersionCreate,
    ) -> UploadTicket:
        now = self._now()
        with self.session_factory.begin() as session:
            document = self._get_document(session, actor, document_id)
            latest = session.scalar(
                select(func.max(DocumentVersion.version)).where(
                    DocumentVersion.document_id == document.id
                )
            )
            version = self._new_version(
                session,
                actor,
                document,
                number=int(latest or 0) + 1,
                file_name=payload.file_name,
                mime_type=payload.mime_type,
                size=payload.size,
                tags=payload.tags,
                now=now,
            )
            document.updated_at = now
            self.audit.record_for(
                session,
                actor,
                action="DOCUMENT_VERSION_CREATED",
                entity="Document",
                entity_id=document.id,
                metadata={"version": version.version},
            )
            session.flush()
            session.refresh(document)
            return self._ticket(document, version)

    def get(self, actor: CurrentUser, document_id: str) -> DocumentDetailOut:
        with self.session_factory.begin() as session:
            document = self._get_document(session, actor, document_id)
            self.audit.record_for(
                session, actor, action="DOCUMENT_VIEWED", entity="Document", entity_id=document.id
            )
            summary = _document_out(document)
            return DocumentDetailOut(
                **summary.model_dump(exclude={"latest_version"}),
                latest_version=summary.latest_version,
                versions=[DocumentVersionOut.model_validate(item) for item in document.versions],
            )

    def get_download_url(self, actor: CurrentUser, document_id: str) -> DownloadLink:
        with self.session_factory.begin() as session:
            document = self._get_document(session, actor, document_id)
            latest = self._latest_version(document)
            self.audit.record_for(
                session,
                actor,
                action="DOCUMENT_DOWNLOAD",
                entity="Document",
                entity_id=document.id,
                metadata={"version": latest.version},
            )
            return self._download_link(latest)

    # Sharing

    def create_share_token(
        self,
        actor: CurrentUser,
        document_id: str,
        payload: ShareCreate,
    ) -> ShareOut:
        expires_at = self._now() + timedelta(hours=payload.expires_in_hours)
        with self.session_factory.begin() as session:
            document = self._get_document(session, actor, document_id)
            share = DocumentShareToken(
                tenant_id=actor.tenant_id,
                document_id=document.id,
                token=secrets.token_hex(16),
                expires_at=expires_at,
                created_by_id=actor.user_id,
            )
            session.add(share)
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="DOCUMENT_SHARED",
                entity="Document",
                entity_id=document.id,
                metadata={"share_id": share.id, "expires_in_hours": payload.expires_in_hours},
            )
            return ShareOut(
                id=share.id,
                token=share.token,
                public_url=f"{self.app_base_url}/documents/share/{share.token}",
                expires_at=expires_at,
            )

    def public_download(
        self,
        token: str,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> DownloadLink:
        now = self._now()
        with self.session_factory.begin() as session:
            share = session.scalars(
                select(DocumentShareToken).where(DocumentShareToken.token == token)
            ).first()
            if share is None or share.revoked_at is not None or share.expires_at <= now:
                raise AuthError("Share token expired or invalid")
            latest = self._latest_version(share.document)
            self.audit.record(
                session,
                tenant_id=share.tenant_id,
                action="DOCUMENT_SHARE_DOWNLOAD",
                entity="Document",
                entity_id=share.document_id,
                ip=ip,
                user_agent=user_agent,
                metadata={"share_id": share.id, "version": latest.version},
            )
            return self._download_link(latest)

    def revoke_share(self, actor: CurrentUser, document_id: str, share_id: str) -> None:
        with self.session_factory.begin() as session:
            document = self._get_document(session, actor, document_id)
            share = session.scalars(
                select(DocumentShareToken).where(
                    DocumentShareToken.id == share_id,
                    DocumentShareToken.document_id == document.id,
                    DocumentShareToken.tenant_id == actor.tenant_id,
                )
            ).first()
            if share is None:
                raise NotFoundError("Share not found")
            if share.revoked_at is None:
                share.revoked_at = self._now()
            self.audit.record_for(
                session,
                actor,
                action="DOCUMENT_SHARE_REVOKED",
                entity="Document",
                entity_id=document.id,
                metadata={"share_id": share.id},
            )

    def _new_version(
        self,
        session: Session,
        actor: CurrentUser,
        document: Document,
        *,
        number: int,
        file_name: str,
        mime_type: str,
        size: int,
        tags: list[str],
        now: datetime,
    ) -> DocumentVersion:
        version = DocumentVersion(
            tenant_id=actor.tenant_id,
            document_id=document.id,
            version=number,
            storage_key=build_storage_key(
                tenant_id=actor.tenant_id,
                document_id=document.id,
                version=number,
                file_name=file_name,
                now=now,
            ),
            file_name=file_name,
            mime_type=mime_type,
            size=size,
            tags=list(tags),
            uploaded_by_id=actor.user_id,
        )
        session.add(version)
        session.flush()
        return version

    def _ticket(self, document: Document, version: DocumentVersion) -> UploadTicket:
        return UploadTicket(
            document=_document_out(document),
            version=DocumentVersionOut.model_validate(version),
            upload_url=self.storage.upload_url(
                version.storage_key, content_type=version.mime_type
            ),
            expires_in=UPLOAD_URL_TTL_SECONDS,
        )

    def _download_link(self, version: DocumentVersion) -> DownloadLink:
        return DownloadLink(
            url=self.storage.download_url(version.storage_key),
            expires_in=DOWNLOAD_URL_TTL_SECONDS,
            file_name=version.file_name,
            version=version.version,
        )

    @staticmethod
    def _latest_version(document: Document) -> DocumentVersion:
        if not document.versions:
            raise NotFoundError("Document has no versions")
        return document.versions[0]

    @staticmethod
    def _get_document(session: Session, actor: CurrentUser, document_id: str) -> Document:
        document = session.scalars(
            select(Document).where(
                Document.id == document_id, Document.tenant_id == actor.tenant_id
            )
        ).first()
        if document is None:
            raise NotFoundError("Document not found")
        if document.matter_id:
            get_matter(session, actor, document.matter_id)
        return document

    @staticmethod
    def _get_folder(session: Session, tenant_id: str, folder_id: str) -> DocumentFolder:
        folder = session.scalars(
            select(DocumentFolder).where(
                DocumentFolder.id == folder_id, DocumentFolder.tenant_id == tenant_id
            )
        ).first()
        if folder is None:
            raise NotFoundError("Folder not found")
        return folder

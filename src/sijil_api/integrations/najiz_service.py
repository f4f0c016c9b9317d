from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import OrgIntegration, as_utc, utcnow
from sijil_api.errors import ForbiddenError
from sijil_api.integrations.najiz_client import NajizClient, normalize_base_url
from sijil_api.schemas import IntegrationOut, IntegrationTestResult, NajizConnectRequest
from sijil_api.security import CurrentUser, SecretBox, SecretBoxError
from sijil_api.services.audit_service import AuditService


LOGGER = logging.getLogger(__name__)

PROVIDER = "najiz"


class NajizIntegrationService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        audit: AuditService,
        secret_box: SecretBox,
        client: NajizClient,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit
        self.secret_box = secret_box
        self.client = client
        self._now = now_fn or utcnow

    def get(self, actor: CurrentUser) -> IntegrationOut:
        self._require_partner(actor)
        with self.session_factory() as session:
            return self._to_out(self._find(session, actor.tenant_id))

    def connect(self, actor: CurrentUser, payload: NajizConnectRequest) -> IntegrationOut:
        self._require_partner(actor)
        config = {
            "environment": payload.environment,
            "base_url": normalize_base_url(payload.base_url),
        }
        secret_enc = self.secret_box.encrypt_json(
            {
                "client_id": payload.client_id,
                "client_secret": payload.client_secret,
                "scope": payload.scope,
            }
        )
        with self.session_factory.begin() as session:
            integration = self._find(session, actor.tenant_id)
            if integration is None:
                integration = OrgIntegration(
                    tenant_id=actor.tenant_id,
                    provider=PROVIDER,
                    created_by_id=actor.user_id,
                )
                session.add(integration)
            integration.status = "disconnected"
            integration.config = config
            integration.secret_enc = secret_enc
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="INTEGRATION_CONNECTED",
                entity="OrgIntegration",
                entity_id=integration.id,
                metadata={"provider": PROVIDER, "environment": payload.environment},
            )
            return self._to_out(integration)

    def test(self, actor: CurrentUser) -> IntegrationTestResult:
        self._require_partner(actor)
        with self.session_factory() as session:
            integration = self._find(session, actor.tenant_id)
            config = dict(integration.config or {}) if integration else {}
            secret_enc = integration.secret_enc if integration else None

        if not secret_enc:
            return IntegrationTestResult(
                ok=False, message="Integration is not configured", status="disconnected"
            )
        try:
            secrets = self.secret_box.decrypt_json(secret_enc)
        except SecretBoxError:
            LOGGER.warning("Unable to decrypt Najiz credentials", extra={"tenant_id": actor.tenant_id})
            secrets = {}
        if not config.get("base_url") or not secrets.get("client_id") or not secrets.get("client_secret"):
            result_ok, message = False, "Integration settings are incomplete"
        else:
            outcome = self.client.test_oauth(
                base_url=str(config["base_url"]),
                client_id=str(secrets["client_id"]),
                client_secret=str(secrets["client_secret"]),
                scope=str(secrets["scope"]) if secrets.get("scope") else None,
            )
            result_ok, message = outcome.ok, outcome.message

        status = "connected" if result_ok else "error"
        with self.session_factory.begin() as session:
            integration = self._find(session, actor.tenant_id)
            if integration is not None:
                updated = dict(integration.config or {})
                updated["last_error"] = None if result_ok else message
                updated["last_tested_at"] = self._now().isoformat()
                integration.config = updated
                integration.status = status
                self.audit.record_for(
                    session,
                    actor,
                    action="INTEGRATION_TESTED",
                    entity="OrgIntegration",
                    entity_id=integration.id,
                    metadata={"provider": PROVIDER, "ok": result_ok},
                )
        return IntegrationTestResult(ok=result_ok, message=message, status=status)

    def disconnect(self, actor: CurrentUser) -> IntegrationOut:
        self._require_partner(actor)
        with self.session_factory.begin() as session:
            integration = self._find(session, actor.tenant_id)
            if integration is None:
                return IntegrationOut(provider=PROVIDER, status="disconnected")
            integration.status = "disconnected"
            integration.config = {}
            integration.secret_enc = None
            self.audit.record_for(
                session,
                actor,
                action="INTEGRATION_DISCONNECTED",
                entity="OrgIntegration",
                entity_id=integration.id,
                metadata={"provider": PROVIDER},
            )
            return self._to_out(integration)

    @staticmethod
    def _require_partner(actor: CurrentUser) -> None:
        if not actor.is_partner:
            raise ForbiddenError("Only partners can manage integrations")

    @staticmethod
    def _find(session: Session, tenant_id: str) -> OrgIntegration | None:
        return session.scalars(
            select(OrgIntegration).where(
                OrgIntegration.tenant_id == tenant_id, OrgIntegration.provider == PROVIDER
            )
        ).first()

    @staticmethod
    def _to_out(integration: OrgIntegration | None) -> IntegrationOut:
        if integration is None:
            return IntegrationOut(provider=PROVIDER, status="disconnected")
        config: dict[str, Any] = dict(integration.config or {})
        last_tested_at = None
        if config.get("last_tested_at"):
            try:
                last_tested_at = as_utc(datetime.fromisoformat(str(config["last_tested_at"])))
            except ValueError:
                last_tested_at = None
        return IntegrationOut(
            provider=PROVIDER,
            status=integration.status,
            environment=config.get("environment"),
            base_url=config.get("base_url"),
            last_error=config.get("last_error"),
            last_tested_at=last_tested_at,
            has_secret=bool(integration.secret_enc),
        )

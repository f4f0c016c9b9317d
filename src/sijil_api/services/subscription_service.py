from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import Tenant, WebhookEvent
from sijil_api.errors import BadRequestError
from sijil_api.security import WebhookSignatureError, verify_webhook_signature
from sijil_api.services.audit_service import AuditService
from sijil_api.services.plan_limits import PLAN_LIMITS


LOGGER = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


def _event_metadata(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    metadata = obj.get("metadata") if isinstance(obj, dict) else None
    return metadata if isinstance(metadata, dict) else {}


class SubscriptionWebhookService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        audit: AuditService,
        signing_secret: str | None,
        tolerance_seconds: int = 300,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit
        self.signing_secret = signing_secret or ""
        self.tolerance_seconds = tolerance_seconds
        self._time = time_fn or time.time

    def handle(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        try:
            verify_webhook_signature(
                payload,
                signature_header,
                self.signing_secret,
                tolerance_seconds=self.tolerance_seconds,
                now=self._time(),
            )
        except WebhookSignatureError as exc:
            LOGGER.warning("Rejected subscription webhook: %s", exc)
            raise BadRequestError("Invalid webhook signature") from exc

        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise BadRequestError("Webhook payload is not valid JSON") from exc
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise BadRequestError("Webhook payload is missing id or type")

        event_id = str(event["id"])
        event_type = str(event["type"])
        metadata = _event_metadata(event)
        tenant_id = str(metadata.get("tenant_id") or "") or None

        try:
            with self.session_factory.begin() as session:
                if session.scalar(select(WebhookEvent.id).where(WebhookEvent.event_id == event_id)):
                    return {"received": True, "duplicate": True}
                tenant = session.get(Tenant, tenant_id) if tenant_id else None
                session.add(
                    WebhookEvent(
                        event_id=event_id,
                        event_type=event_type,
                        tenant_id=tenant.id if tenant else None,
                    )
                )
                session.flush()
                if tenant is not None:
                    self._apply(session, tenant, event_id, event_type, metadata)
        except IntegrityError:
            LOGGER.info("Webhook event already recorded", extra={"event_id": event_id})
            return {"received": True, "duplicate": True}
        return {"received": True, "duplicate": False}

    def _apply(
        self,
        session: Session,
        tenant: Tenant,
        event_id: str,
        event_type: str,
        metadata: dict[str, Any],
    ) -> None:
        changes: dict[str, str] = {}
        plan_code = str(metadata.get("plan_code") or "").upper()
        if event_type == CHECKOUT_COMPLETED and plan_code in PLAN_LIMITS:
            tenant.plan = plan_code
            tenant.plan_status = "active"
            changes = {"plan": plan_code, "plan_status": "active"}
        self.audit.record(
            session,
            tenant_id=tenant.id,
            action="SUBSCRIPTION_WEBHOOK_RECEIVED",
            entity="Tenant",
            entity_id=tenant.id,
            metadata={"event_id": event_id, "event_type": event_type, **changes},
        )

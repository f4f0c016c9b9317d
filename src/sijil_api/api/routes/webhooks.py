from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from sijil_api.services.subscription_service import SubscriptionWebhookService


SIGNATURE_HEADER = "x-sijil-signature"


def build_webhooks_router(subscription_service: SubscriptionWebhookService) -> APIRouter:
    router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

    @router.post("/subscription")
    async def subscription_webhook(request: Request) -> dict[str, Any]:
        payload = await request.body()
        return await run_in_threadpool(
            subscription_service.handle, payload, request.headers.get(SIGNATURE_HEADER)
        )

    return router

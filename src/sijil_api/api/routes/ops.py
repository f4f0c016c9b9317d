from __future__ import annotations

from fastapi import APIRouter

from sijil_api.schemas import ReminderRunResult
from sijil_api.services.reminder_worker import ReminderWorker


def build_ops_router(reminder_worker: ReminderWorker) -> APIRouter:
    router = APIRouter(prefix="/ops", tags=["ops"])

    @router.post("/reminders/run", response_model=ReminderRunResult)
    def run_reminders() -> ReminderRunResult:
        return reminder_worker.run_due()

    return router

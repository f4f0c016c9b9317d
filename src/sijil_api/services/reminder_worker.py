from __future__ import annotations

from datetime import datetime
import logging
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import Task, User, utcnow
from sijil_api.schemas import ReminderRunResult
from sijil_api.services.audit_service import AuditService
from sijil_api.services.reminder_queue import ReminderJob, ReminderQueue
from sijil_api.telemetry import EventMetrics


LOGGER = logging.getLogger(__name__)


class ReminderNotifier(Protocol):
    def send(self, *, recipient: str, job: ReminderJob) -> None: ...


class LoggingReminderNotifier:
    def send(self, *, recipient: str, job: ReminderJob) -> None:
        LOGGER.info(
            "Task reminder",
            extra={
                "recipient": recipient,
                "task_id": job.task_id,
                "tenant_id": job.tenant_id,
                "title": job.title,
                "due_date": job.due_date,
            },
        )


class ReminderWorker:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        queue: ReminderQueue,
        audit: AuditService,
        fallback_email: str = "team@sijil.local",
        notifier: ReminderNotifier | None = None,
        telemetry: EventMetrics | None = None,
        max_attempts: int = 3,
        backoff_seconds: float = 30.0,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.audit = audit
        self.fallback_email = fallback_email
        self.notifier = notifier or LoggingReminderNotifier()
        self.telemetry = telemetry or EventMetrics()
        self.max_attempts = max(max_attempts, 1)
        self.backoff_seconds = backoff_seconds
        self._now = now_fn or utcnow

    def run_due(self, *, limit: int = 100) -> ReminderRunResult:
        now = self._now()
        jobs = self.queue.pop_due(now=now.timestamp(), limit=limit)
        sent = 0
        skipped = 0
        for job in jobs:
            try:
                delivered = self._deliver(job)
            except Exception:
                self._retry_or_drop(job, now=now.timestamp())
                continue
            if delivered:
                sent += 1
            else:
                skipped += 1
        return ReminderRunResult(processed=len(jobs), sent=sent, skipped=skipped)

    def _deliver(self, job: ReminderJob) -> bool:
        with self.session_factory.begin() as session:
            task = session.scalars(
                select(Task).where(Task.id == job.task_id, Task.tenant_id == job.tenant_id)
            ).first()
            if task is None or task.status == "DONE":
                self.telemetry.increment(subject="task_reminder", event="skipped")
                return False

            recipient = self.fallback_email
            if task.assignee_id:
                assignee = session.scalars(
                    select(User).where(
                        User.id == task.assignee_id,
                        User.tenant_id == job.tenant_id,
                        User.is_active.is_(True),
                    )
                ).first()
                if assignee is not None:
                    recipient = assignee.email

            self.notifier.send(recipient=recipient, job=job)
            self.audit.record(
                session,
                tenant_id=job.tenant_id,
                action="TASK_REMINDER_SENT",
                entity="Task",
                entity_id=task.id,
                metadata={"recipient": recipient, "job_id": job.job_id},
            )
        self.telemetry.increment(subject="task_reminder", event="sent")
        return True

    def _retry_or_drop(self, job: ReminderJob, *, now: float) -> None:
        attempt = job.attempts + 1
        if attempt >= self.max_attempts:
            LOGGER.error(
                "Task reminder failed permanently",
                exc_info=True,
                extra={"job_id": job.job_id, "attempts": attempt},
            )
            self.telemetry.increment(subject="task_reminder", event="dropped")
            return
        delay = self.backoff_seconds * (2 ** job.attempts)
        LOGGER.warning(
            "Task reminder failed; retrying",
            exc_info=True,
            extra={"job_id": job.job_id, "attempts": attempt, "delay_seconds": delay},
        )
        self.telemetry.increment(subject="task_reminder", event="retried")
        self.queue.requeue(job.retried(run_at=now + delay))

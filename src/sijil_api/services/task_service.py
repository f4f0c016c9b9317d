from __future__ import annotations

from datetime import datetime
import logging
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import Task, User, as_utc, utcnow
from sijil_api.db.session import with_tenant
from sijil_api.errors import NotFoundError
from sijil_api.schemas import Page, TaskCreate, TaskOut, TaskUpdate
from sijil_api.security import CurrentUser
from sijil_api.services.audit_service import AuditService
from sijil_api.services.calendar_export import build_task_calendar
from sijil_api.services.client_service import like_pattern
from sijil_api.services.matter_service import get_matter
from sijil_api.services.reminder_queue import ReminderJob, ReminderQueue, reminder_job_id


LOGGER = logging.getLogger(__name__)


class TaskService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        audit: AuditService,
        reminder_queue: ReminderQueue,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit
        self.reminder_queue = reminder_queue
        self._now = now_fn or utcnow

    def list(
        self,
        actor: CurrentUser,
        *,
        page: int = 1,
        page_size: int = 20,
        status: str | None = None,
        assignee_id: str | None = None,
        search: str | None = None,
    ) -> Page[TaskOut]:
        statement = with_tenant(select(Task), Task, actor.tenant_id)
        if status:
            statement = statement.where(Task.status == status)
        if assignee_id:
            statement = statement.where(Task.assignee_id == assignee_id)
        if search and search.strip():
            statement = statement.where(
                func.lower(Task.title).like(like_pattern(search), escape="\\")
            )

        with self.session_factory() as session:
            total = session.scalar(select(func.count()).select_from(statement.subquery()))
            tasks = session.scalars(
                statement.order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            data = [TaskOut.model_validate(task) for task in tasks]
        return Page[TaskOut](data=data, total=int(total or 0), page=page, page_size=page_size)

    def create(self, actor: CurrentUser, payload: TaskCreate) -> TaskOut:
        with self.session_factory.begin() as session:
            self._ensure_links(session, actor, payload.assignee_id, payload.matter_id)
            task = Task(
                tenant_id=actor.tenant_id,
                title=payload.title.strip(),
                description=payload.description,
                status=payload.status,
                due_date=as_utc(payload.due_date),
                reminder_at=as_utc(payload.reminder_at),
                assignee_id=payload.assignee_id,
                matter_id=payload.matter_id,
                created_by_id=actor.user_id,
            )
            session.add(task)
            session.flush()
            self.audit.record_for(
                session, actor, action="TASK_CREATED", entity="Task", entity_id=task.id
            )
            result = TaskOut.model_validate(task)
        self._schedule_reminder(actor.tenant_id, result)
        return result

    def get(self, actor: CurrentUser, task_id: str) -> TaskOut:
        with self.session_factory() as session:
            return TaskOut.model_validate(self._get_task(session, actor.tenant_id, task_id))

    def update(self, actor: CurrentUser, task_id: str, payload: TaskUpdate) -> TaskOut:
        changes = payload.model_dump(exclude_unset=True)
        for field_name in ("due_date", "reminder_at"):
            if field_name in changes:
                changes[field_name] = as_utc(changes[field_name])
        with self.session_factory.begin() as session:
            task = self._get_task(session, actor.tenant_id, task_id)
            self._ensure_links(
                session,
                actor,
                changes.get("assignee_id"),
                changes.get("matter_id"),
            )
            previous_reminder = task.reminder_at
            for field_name, value in changes.items():
                setattr(task, field_name, value)
            session.flush()
            self.audit.record_for(
                session,
                actor,
                action="TASK_UPDATED",
                entity="Task",
                entity_id=task.id,
                metadata={"fields": sorted(changes)},
            )
            result = TaskOut.model_validate(task)
        if "reminder_at" in changes and result.reminder_at != previous_reminder:
            self._schedule_reminder(actor.tenant_id, result)
        return result

    def remove(self, actor: CurrentUser, task_id: str) -> None:
        with self.session_factory.begin() as session:
            task = self._get_task(session, actor.tenant_id, task_id)
            session.delete(task)
            self.audit.record_for(
                session, actor, action="TASK_DELETED", entity="Task", entity_id=task_id
            )

    def calendar(self, actor: CurrentUser, *, firm_name: str = "Sijil") -> str:
        with self.session_factory() as session:
            tasks = session.scalars(
                with_tenant(select(Task), Task, actor.tenant_id)
                .where(Task.due_date.is_not(None))
                .order_by(Task.due_date.asc())
            ).all()
            return build_task_calendar(tasks, calendar_name=firm_name, generated_at=self._now())

    def _schedule_reminder(self, tenant_id: str, task: TaskOut) -> None:
        if task.reminder_at is None:
            return
        job = ReminderJob(
            job_id=reminder_job_id(task.id, task.reminder_at),
            task_id=task.id,
            tenant_id=tenant_id,
            assignee_id=task.assignee_id,
            title=task.title,
            due_date=task.due_date.isoformat() if task.due_date else None,
            run_at=task.reminder_at.timestamp(),
        )
        if not self.reminder_queue.enqueue(job):
            LOGGER.info("Reminder already scheduled", extra={"job_id": job.job_id})

    @staticmethod
    def _ensure_links(
        session: Session,
        actor: CurrentUser,
        assignee_id: str | None,
        matter_id: str | None,
    ) -> None:
        if assignee_id:
            assignee = session.scalars(
                select(User.id).where(
                    User.id == assignee_id,
                    User.tenant_id == actor.tenant_id,
                    User.is_active.is_(True),
                )
            ).first()
            if assignee is None:
                raise NotFoundError("Assignee not found")
        if matter_id:
            get_matter(session, actor, matter_id)

    @staticmethod
    def _get_task(session: Session, tenant_id: str, task_id: str) -> Task:
        task = session.scalars(
            select(Task).where(Task.id == task_id, Task.tenant_id == tenant_id)
        ).first()
        if task is None:
            raise NotFoundError("Task not found")
        return task

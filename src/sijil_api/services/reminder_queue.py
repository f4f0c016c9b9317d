from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import datetime
import json
import logging
from threading import Lock
from typing import Protocol


LOGGER = logging.getLogger(__name__)


def reminder_job_id(task_id: str, run_at: datetime) -> str:
    return f"task-reminder:{task_id}:{int(run_at.timestamp() * 1000)}"


@dataclass(frozen=True)
class ReminderJob:
    job_id: str
    task_id: str
    tenant_id: str
    assignee_id: str | None
    title: str
    due_date: str | None
    run_at: float
    attempts: int = 0

    def retried(self, *, run_at: float) -> ReminderJob:
        return replace(self, run_at=run_at, attempts=self.attempts + 1)


class ReminderQueue(Protocol):
    def enqueue(self, job: ReminderJob) -> bool: ...

    def requeue(self, job: ReminderJob) -> None: ...

    def pop_due(self, *, now: float, limit: int = 100) -> list[ReminderJob]: ...

    def size(self) -> int: ...


class InMemoryReminderQueue:
    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: dict[str, ReminderJob] = {}

    def enqueue(self, job: ReminderJob) -> bool:
        with self._lock:
            if job.job_id in self._jobs:
                return False
            self._jobs[job.job_id] = job
            return True

    def requeue(self, job: ReminderJob) -> None:
        with self._lock:
            self._jobs[job.job_id] = job

    def pop_due(self, *, now: float, limit: int = 100) -> list[ReminderJob]:
        with self._lock:
            due = sorted(
                (job for job in self._jobs.values() if job.run_at <= now),
                key=lambda job: job.run_at,
            )[:limit]
            for job in due:
                del self._jobs[job.job_id]
        return due

    def size(self) -> int:
        with self._lock:
            return len(self._jobs)


class RedisReminderQueue:
    """Sorted set of job ids scored by run time, plus a hash of job payloads."""

    def __init__(self, redis_client, *, prefix: str = "sijil:reminders") -> None:
        self.redis_client = redis_client
        self.schedule_key = f"{prefix}:schedule"
        self.jobs_key = f"{prefix}:jobs"

    def enqueue(self, job: ReminderJob) -> bool:
        created = self.redis_client.hsetnx(self.jobs_key, job.job_id, json.dumps(asdict(job)))
        if not created:
            return False
        self.redis_client.zadd(self.schedule_key, {job.job_id: job.run_at})
        return True

    def requeue(self, job: ReminderJob) -> None:
        self.redis_client.hset(self.jobs_key, job.job_id, json.dumps(asdict(job)))
        self.redis_client.zadd(self.schedule_key, {job.job_id: job.run_at})

    def pop_due(self, *, now: float, limit: int = 100) -> list[ReminderJob]:
        job_ids = self.redis_client.zrangebyscore(
            self.schedule_key, "-inf", now, start=0, num=limit
        )
        jobs: list[ReminderJob] = []
        for raw_job_id in job_ids:
            job_id = raw_job_id.decode("utf-8") if isinstance(raw_job_id, bytes) else str(raw_job_id)
            # Another worker already claimed it.
            if not self.redis_client.zrem(self.schedule_key, job_id):
                continue
            payload = self.redis_client.hget(self.jobs_key, job_id)
            self.redis_client.hdel(self.jobs_key, job_id)
            if not payload:
                continue
            try:
                if isinstance(payload, bytes):
                    payload = payload.decode("utf-8")
                jobs.append(ReminderJob(**json.loads(payload)))
            except (TypeError, ValueError):
                LOGGER.warning(
                    "Unable to decode reminder job", exc_info=True, extra={"job_id": job_id}
                )
        return jobs

    def size(self) -> int:
        return int(self.redis_client.zcard(self.schedule_key))


def build_reminder_queue(*, redis_url: str | None) -> ReminderQueue:
    if not redis_url:
        LOGGER.info("Using in-memory reminder queue (redis_url not configured)")
        return InMemoryReminderQueue()

    try:
        import redis

        redis_client = redis.Redis.from_url(
            redis_url,
            socket_timeout=0.5,
            socket_connect_timeout=0.5,
        )
        redis_client.ping()
        LOGGER.info("Using Redis-backed reminder queue")
        return RedisReminderQueue(redis_client)
    except Exception:
        LOGGER.warning(
            "Redis reminder queue unavailable; falling back to in-memory queue",
            exc_info=True,
        )
        return InMemoryReminderQueue()

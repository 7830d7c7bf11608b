"""Durable scheduler interface used by the sync and follow-up workflows.

Workflow code only talks to ``Scheduler``. ``JobQueueScheduler`` implements
it on top of the ``jobs`` table: a trigger is a pending job, a sleep is a
continuation job with a future ``run_at``, and failure hooks run when the
worker gives up on a job.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Protocol

from sqlalchemy.orm import Session

from ro_sync.db.enums import JobType
from ro_sync.db.models import Job
from ro_sync.services import job_service

logger = logging.getLogger(__name__)

FailureHook = Callable[[Session, Job, Exception | None], None]

_FAILURE_HOOKS: dict[str, list[FailureHook]] = {}


def on_failure(job_type: JobType, hook: FailureHook) -> None:
    """Register a hook that runs once a job of this type fails for good."""
    hooks = _FAILURE_HOOKS.setdefault(job_type.value, [])
    if hook not in hooks:
        hooks.append(hook)


def run_failure_hooks(db: Session, job: Job, exception: Exception | None) -> None:
    for hook in _FAILURE_HOOKS.get(job.job_type, []):
        try:
            hook(db, job, exception)
        except Exception as e:
            db.rollback()
            logger.error(
                "Failure hook %s raised for job %s: %s",
                getattr(hook, "__name__", hook),
                job.id,
                type(e).__name__,
            )


class Scheduler(Protocol):
    def trigger(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> Any: ...

    async def trigger_and_wait(self, job_type: JobType, payload: dict[str, Any]) -> dict[str, Any]: ...

    def sleep(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        *,
        duration: timedelta,
        idempotency_key: str,
    ) -> Any: ...

    def on_failure(self, job_type: JobType, hook: FailureHook) -> None: ...


class JobQueueScheduler:
    """Scheduler backed by the jobs table and the polling worker."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def trigger(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> Job:
        job = job_service.schedule_job(
            self.db, job_type, payload, idempotency_key=idempotency_key
        )
        logger.info("Triggered %s job %s", job_type.value, job.id)
        return job

    async def trigger_and_wait(self, job_type: JobType, payload: dict[str, Any]) -> dict[str, Any]:
        """Run the handler inline in this process and return its result."""
        from ro_sync.jobs.registry import resolve_job_handler

        job = job_service.schedule_job(self.db, job_type, payload)
        job_service.mark_job_running(self.db, job)
        try:
            await resolve_job_handler(job.job_type)(self.db, job)
        except Exception as e:
            job_service.mark_job_failed(self.db, job, str(e), retryable=False)
            raise
        job_service.mark_job_completed(self.db, job)
        return (job.payload or {}).get("result") or {}

    def sleep(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        *,
        duration: timedelta,
        idempotency_key: str,
    ) -> Job:
        """Schedule the continuation; the current job returns immediately."""
        run_at = datetime.now(timezone.utc) + duration
        job = job_service.schedule_job(
            self.db, job_type, payload, run_at=run_at, idempotency_key=idempotency_key
        )
        logger.info("Scheduled %s continuation %s at %s", job_type.value, job.id, run_at.isoformat())
        return job

    def on_failure(self, job_type: JobType, hook: FailureHook) -> None:
        on_failure(job_type, hook)

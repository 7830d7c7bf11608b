"""Job service - business logic for background job scheduling and processing."""

from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ro_sync.core.config import settings
from ro_sync.db.enums import JobStatus, JobType
from ro_sync.db.models import Job


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_job_by_idempotency_key(db: Session, idempotency_key: str) -> Job | None:
    return db.query(Job).filter(Job.idempotency_key == idempotency_key).first()


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
    max_attempts: int | None = None,
) -> Job:
    """
    Schedule a new background job.

    If run_at is None, the job runs immediately.
    If idempotency_key is provided and a job with that key already exists,
    the existing job is returned and nothing new is scheduled.
    """
    if idempotency_key:
        existing = get_job_by_idempotency_key(db, idempotency_key)
        if existing:
            return existing

    job = Job(
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or _now_utc(),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
        max_attempts=max_attempts or settings.JOB_MAX_ATTEMPTS,
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent insert of the same key.
        db.rollback()
        existing = get_job_by_idempotency_key(db, idempotency_key) if idempotency_key else None
        if existing is None:
            raise
        return existing
    db.refresh(job)
    return job


def get_pending_jobs(db: Session, limit: int = 10) -> list[Job]:
    """
    Get pending jobs that are due to run.

    Returns jobs where status='pending' and run_at <= now, ordered by run_at.
    """
    now = _now_utc()
    return (
        db.query(Job)
        .filter(
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
        .all()
    )


def mark_job_running(db: Session, job: Job) -> Job:
    """Mark a job as running (increment attempts)."""
    job.status = JobStatus.RUNNING.value
    job.attempts += 1
    db.commit()
    db.refresh(job)
    return job


def mark_job_completed(db: Session, job: Job) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = _now_utc()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def retry_delay(attempts: int) -> timedelta:
    """Exponential backoff: base, 2x base, 4x base, ..."""
    base = settings.JOB_RETRY_BACKOFF_SECONDS
    return timedelta(seconds=base * (2 ** max(attempts - 1, 0)))


def mark_job_failed(db: Session, job: Job, error: str, *, retryable: bool = True) -> Job:
    """
    Mark a job as failed.

    If the error is retryable and attempts < max_attempts, reset to pending
    with a backoff delay. Otherwise the job is failed for good.
    """
    job.last_error = error
    if retryable and job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = _now_utc() + retry_delay(job.attempts)
    else:
        job.status = JobStatus.FAILED.value
        job.completed_at = _now_utc()
    db.commit()
    db.refresh(job)
    return job


def is_exhausted(job: Job) -> bool:
    return job.status == JobStatus.FAILED.value

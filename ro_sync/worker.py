"""
Background worker for processing scheduled jobs.

Usage:
    ro-sync-worker
    python -m ro_sync.worker

The worker polls the jobs table for due work and runs each job's handler.
Run it as a separate long-lived process next to the database.
"""

import asyncio
import logging

from ro_sync.core.config import settings
from ro_sync.core.errors import TerminalJobError
from ro_sync.core.structured_logging import build_log_context
from ro_sync.db.session import SessionLocal
from ro_sync.jobs.handlers.notifications import schedule_overdue_sweep
from ro_sync.jobs.registry import resolve_job_handler
from ro_sync.services import job_service
from ro_sync.services.scheduler import run_failure_hooks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def process_job(db, job) -> None:
    """Process a single job based on its type."""
    logger.info(
        "Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts
    )
    handler = resolve_job_handler(job.job_type)
    await handler(db, job)


async def run_job(db, job) -> None:
    """Run one job and record the outcome. Never raises."""
    try:
        job_service.mark_job_running(db, job)
        await process_job(db, job)
        job_service.mark_job_completed(db, job)
        logger.info("Job %s completed successfully", job.id)
    except Exception as e:
        db.rollback()
        retryable = not isinstance(e, (TerminalJobError, ValueError))
        job_service.mark_job_failed(db, job, str(e) or type(e).__name__, retryable=retryable)
        logger.error(
            "Job %s failed: %s",
            job.id,
            type(e).__name__,
            extra=build_log_context(job_id=str(job.id), job_type=job.job_type),
        )
        if job_service.is_exhausted(job):
            run_failure_hooks(db, job, e)


async def worker_loop() -> None:
    """Main worker loop - polls for and processes pending jobs."""
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)",
        settings.WORKER_POLL_INTERVAL,
        settings.WORKER_BATCH_SIZE,
    )

    if settings.OVERDUE_SWEEP_USER_ID:
        with SessionLocal() as db:
            schedule_overdue_sweep(db, settings.OVERDUE_SWEEP_USER_ID)
    else:
        logger.warning("OVERDUE_SWEEP_USER_ID not set - daily overdue sweep disabled")

    while True:
        with SessionLocal() as db:
            try:
                jobs = job_service.get_pending_jobs(db, limit=settings.WORKER_BATCH_SIZE)

                if jobs:
                    logger.info("Found %s pending jobs", len(jobs))

                for job in jobs:
                    await run_job(db, job)

            except Exception as e:
                logger.error("Error in worker loop: %s", type(e).__name__)

        await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")


if __name__ == "__main__":
    main()

"""
Lead reminder worker - executes due scheduled jobs.

Claims due jobs from scheduled_jobs and runs them with bounded concurrency,
one DB session per job. Delivery is at-least-once: handlers are idempotent via
persisted facts (reminder timestamps, terminal state), not via in-process state.

Can be run as a long-lived process or once from cron:
    python -m leadcapture.jobs.lead_reminder_worker --once
"""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import timedelta

from pydantic import ValidationError
from sqlalchemy.orm import Session

from leadcapture.constants.event_types import EVENT_JOB_FAILED, EVENT_JOB_UNKNOWN_KIND
from leadcapture.constants.jobs import JOB_FAILED, JOB_MARK_UNRESPONSIVE, JOB_SEND_REMINDER
from leadcapture.core.config import settings
from leadcapture.db import session as db_session
from leadcapture.db.models import ScheduledJob
from leadcapture.middleware.correlation_id import set_correlation_id
from leadcapture.schemas.jobs import ReminderJobPayload
from leadcapture.services.jobs.scheduler import (
    claim_due_jobs,
    mark_job_completed,
    mark_job_failed,
    release_stale_jobs,
)
from leadcapture.services.reminders import process_mark_unresponsive, process_send_reminder
from leadcapture.services.system_event_service import error

logger = logging.getLogger(__name__)

JobHandler = Callable[[Session, ReminderJobPayload], Awaitable[dict]]

JOB_HANDLERS: dict[str, JobHandler] = {
    JOB_SEND_REMINDER: process_send_reminder,
    JOB_MARK_UNRESPONSIVE: process_mark_unresponsive,
}

# Outcomes reported per job
OUTCOME_COMPLETED = "completed"
OUTCOME_RETRY = "retry"
OUTCOME_FAILED = "failed"


def _fail_permanently(db: Session, job: ScheduledJob, event_type: str, reason: str) -> str:
    job.status = JOB_FAILED
    job.locked_at = None
    job.last_error = reason[:500]
    db.commit()
    error(
        db=db,
        event_type=event_type,
        lead_id=(job.payload or {}).get("lead_id"),
        payload={"job_id": job.id, "kind": job.kind, "reason": reason[:200]},
    )
    return OUTCOME_FAILED


async def _run_claimed_job(db: Session, job_id: int) -> str:
    job = db.get(ScheduledJob, job_id)
    if job is None:
        logger.warning(f"Claimed job {job_id} disappeared")
        return OUTCOME_FAILED

    handler = JOB_HANDLERS.get(job.kind)
    if handler is None:
        logger.error(f"No handler for job kind {job.kind} (job {job.id})")
        return _fail_permanently(db, job, EVENT_JOB_UNKNOWN_KIND, f"unknown job kind: {job.kind}")

    try:
        payload = ReminderJobPayload.model_validate(job.payload)
    except ValidationError as e:
        logger.error(f"Invalid payload for job {job.id}: {e}")
        return _fail_permanently(db, job, EVENT_JOB_FAILED, f"invalid payload: {e}")

    try:
        result = await handler(db, payload)
    except Exception as e:
        # Retry boundary: handler failures go back to the job row with backoff
        db.rollback()
        logger.error(f"Job {job.id} ({job.kind}, key={job.job_key}) failed: {e}", exc_info=True)
        will_retry = mark_job_failed(db, job, e)
        if will_retry:
            logger.info(f"Job {job.id} will retry at {job.run_at.isoformat()} (attempt {job.attempts})")
            return OUTCOME_RETRY
        error(
            db=db,
            event_type=EVENT_JOB_FAILED,
            lead_id=payload.lead_id,
            payload={"job_id": job.id, "kind": job.kind, "attempts": job.attempts},
            exc=e,
        )
        return OUTCOME_FAILED

    mark_job_completed(db, job)
    logger.info(f"Job {job.id} ({job.kind}, key={job.job_key}) completed: {result.get('status')}")
    return OUTCOME_COMPLETED


async def execute_job(job_id: int) -> str:
    """
    Run one claimed job in its own session and record the outcome on the row.

    If recording the outcome itself fails, the row stays RUNNING and is handed back
    by release_stale_jobs; the handlers are idempotent, so the redelivery is safe.

    Returns:
        "completed", "retry" or "failed"
    """
    # Tags system events recorded while this job runs
    set_correlation_id(f"job-{job_id}")
    db = db_session.SessionLocal()
    try:
        return await _run_claimed_job(db, job_id)
    except Exception as e:
        db.rollback()
        logger.error(f"Job {job_id} bookkeeping failed, leaving it for stale release: {e}", exc_info=True)
        return OUTCOME_RETRY
    finally:
        db.close()


async def run_due_jobs(limit: int | None = None, concurrency: int | None = None) -> dict:
    """
    Claim and execute one batch of due jobs.

    Args:
        limit: Maximum jobs to claim (default: settings.job_worker_batch_size)
        concurrency: Maximum jobs in flight (default: settings.job_worker_concurrency)

    Returns:
        Summary dict with counts
    """
    limit = limit or settings.job_worker_batch_size
    concurrency = concurrency or settings.job_worker_concurrency

    db = db_session.SessionLocal()
    try:
        released = release_stale_jobs(db, timedelta(minutes=settings.job_stale_after_minutes))
        job_ids = [job.id for job in claim_due_jobs(db, limit=limit)]
    finally:
        db.close()

    results = {"released": released, "claimed": len(job_ids), "completed": 0, "retry": 0, "failed": 0}
    if not job_ids:
        return results

    sem = asyncio.Semaphore(concurrency)

    async def run_one(job_id: int) -> str:
        async with sem:
            return await execute_job(job_id)

    outcomes = await asyncio.gather(*(run_one(job_id) for job_id in job_ids))
    for outcome in outcomes:
        results[outcome] += 1

    logger.info(
        f"Job batch done: claimed={results['claimed']}, completed={results['completed']}, "
        f"retry={results['retry']}, failed={results['failed']}"
    )
    return results


async def run_worker(poll_seconds: float, limit: int | None = None, concurrency: int | None = None) -> None:
    """Poll for due jobs until cancelled."""
    logger.info(f"Lead reminder worker started (poll={poll_seconds}s)")
    while True:
        results = await run_due_jobs(limit=limit, concurrency=concurrency)
        if not results["claimed"]:
            await asyncio.sleep(poll_seconds)


def main() -> None:
    """CLI entrypoint for the worker."""
    import argparse

    parser = argparse.ArgumentParser(description="Run due lead reminder jobs")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single batch and exit",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.job_worker_concurrency,
        help=f"Maximum jobs in flight (default: {settings.job_worker_concurrency})",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.job_worker_batch_size,
        help=f"Maximum jobs claimed per batch (default: {settings.job_worker_batch_size})",
    )
    parser.add_argument(
        "--poll-seconds",
        type=float,
        default=settings.job_worker_poll_seconds,
        help=f"Sleep between empty polls (default: {settings.job_worker_poll_seconds})",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(f"Starting lead reminder worker (limit={args.limit}, concurrency={args.concurrency})")

    try:
        if args.once:
            results = asyncio.run(run_due_jobs(limit=args.limit, concurrency=args.concurrency))
            if results["failed"] > 0:
                sys.exit(1)
        else:
            asyncio.run(run_worker(args.poll_seconds, limit=args.limit, concurrency=args.concurrency))
    except KeyboardInterrupt:
        logger.info("Worker stopped")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""
Durable delayed-job scheduler backed by the scheduled_jobs table.

- schedule_job: insert with optional dedupe key (duplicate keys are rejected,
  the existing job is returned)
- claim_due_jobs: conditional UPDATE PENDING -> RUNNING so a delivery is
  executed by one worker at a time
- mark_job_failed: exponential backoff until max_attempts, then FAILED
- release_stale_jobs: RUNNING rows abandoned by a dead worker go back to
  PENDING (at-least-once redelivery)
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import cast

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadcapture.constants.jobs import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_RUNNING,
)
from leadcapture.core.config import settings
from leadcapture.db.helpers import commit_and_refresh
from leadcapture.db.models import ScheduledJob

logger = logging.getLogger(__name__)


def _exponential_backoff_minutes(attempts: int) -> int:
    """Minutes until next retry: 5, 15, 45, ..."""
    return cast(int, min(5 * (3 ** max(attempts - 1, 0)), 1440))  # Cap at 24h


def get_job_by_key(db: Session, job_key: str) -> ScheduledJob | None:
    return db.execute(select(ScheduledJob).where(ScheduledJob.job_key == job_key)).scalar_one_or_none()


def schedule_job(
    db: Session,
    kind: str,
    payload: dict,
    delay: timedelta,
    job_key: str | None = None,
    max_attempts: int | None = None,
) -> tuple[ScheduledJob, bool]:
    """
    Schedule a job to run after `delay`.

    Commits the session: callers should have committed their own changes first,
    since a duplicate key rolls the session back.

    Args:
        db: Database session
        kind: Job kind (see constants.jobs)
        payload: JSON-serializable payload
        delay: How long from now until the job is due
        job_key: Optional dedupe key - at most one job per key ever exists
        max_attempts: Override for settings.job_max_attempts

    Returns:
        (job, created). created is False when a job with job_key already existed.
    """
    if job_key:
        existing = get_job_by_key(db, job_key)
        if existing:
            logger.info(f"Job {job_key} already scheduled (status {existing.status}), not duplicating")
            return existing, False

    job = ScheduledJob(
        job_key=job_key,
        kind=kind,
        payload=payload,
        status=JOB_PENDING,
        run_at=datetime.now(UTC) + delay,
        attempts=0,
        max_attempts=max_attempts or settings.job_max_attempts,
    )
    db.add(job)
    try:
        commit_and_refresh(db, job)
    except IntegrityError:
        # Concurrent schedule with the same key won the insert
        db.rollback()
        existing = get_job_by_key(db, job_key) if job_key else None
        if existing is None:
            logger.error(f"IntegrityError scheduling job {job_key}, but no existing job found")
            raise
        logger.info(f"Job {job_key} scheduled by concurrent caller")
        return existing, False

    logger.info(f"Scheduled {kind} job {job.id} (key={job_key}) for {job.run_at.isoformat()}")
    return job, True


def cancel_job(db: Session, job_key: str) -> bool:
    """
    Cancel a still-pending job by key.

    Returns:
        True if a pending job was cancelled. Already running/finished jobs are untouched.
    """
    stmt = (
        update(ScheduledJob)
        .where(ScheduledJob.job_key == job_key)
        .where(ScheduledJob.status == JOB_PENDING)
        .values(status=JOB_CANCELLED)
    )
    result = db.execute(stmt)
    db.commit()
    cancelled = getattr(result, "rowcount", 0) == 1
    if cancelled:
        logger.info(f"Cancelled pending job {job_key}")
    return cancelled


def claim_due_jobs(db: Session, limit: int = 50) -> list[ScheduledJob]:
    """
    Claim up to `limit` due jobs for execution.

    Each job is claimed with UPDATE ... WHERE status = 'PENDING'; rowcount 0 means
    another worker claimed it first. Claiming counts as an attempt.
    """
    now = datetime.now(UTC)
    candidate_ids = (
        db.execute(
            select(ScheduledJob.id)
            .where(ScheduledJob.status == JOB_PENDING)
            .where(ScheduledJob.run_at <= now)
            .order_by(ScheduledJob.run_at, ScheduledJob.id)
            .limit(limit)
        )
        .scalars()
        .all()
    )

    claimed_ids: list[int] = []
    for job_id in candidate_ids:
        result = db.execute(
            update(ScheduledJob)
            .where(ScheduledJob.id == job_id)
            .where(ScheduledJob.status == JOB_PENDING)
            .values(status=JOB_RUNNING, locked_at=now, attempts=ScheduledJob.attempts + 1)
        )
        if getattr(result, "rowcount", 0) == 1:
            claimed_ids.append(job_id)
    db.commit()

    if not claimed_ids:
        return []

    return list(
        db.execute(
            select(ScheduledJob)
            .where(ScheduledJob.id.in_(claimed_ids))
            .order_by(ScheduledJob.run_at, ScheduledJob.id)
        )
        .scalars()
        .all()
    )


def mark_job_completed(db: Session, job: ScheduledJob) -> None:
    job.status = JOB_COMPLETED
    job.locked_at = None
    job.last_error = None
    db.commit()


def mark_job_failed(db: Session, job: ScheduledJob, exc: BaseException) -> bool:
    """
    Record a failed execution and schedule the retry.

    Returns:
        True if the job will be retried, False if attempts are exhausted (FAILED).
    """
    job.last_error = f"{type(exc).__name__}: {exc}"[:500]
    job.locked_at = None
    if job.attempts >= job.max_attempts:
        job.status = JOB_FAILED
        db.commit()
        return False

    job.status = JOB_PENDING
    job.run_at = datetime.now(UTC) + timedelta(minutes=_exponential_backoff_minutes(job.attempts))
    db.commit()
    return True


def release_stale_jobs(db: Session, older_than: timedelta) -> int:
    """
    Return RUNNING jobs locked before now - older_than to PENDING.

    Returns:
        Number of jobs released for redelivery
    """
    cutoff = datetime.now(UTC) - older_than
    result = db.execute(
        update(ScheduledJob)
        .where(ScheduledJob.status == JOB_RUNNING)
        .where(ScheduledJob.locked_at < cutoff)
        .values(status=JOB_PENDING, locked_at=None)
    )
    db.commit()
    released = getattr(result, "rowcount", 0)
    if released:
        logger.warning(f"Released {released} stale RUNNING jobs for redelivery")
    return released

"""Durable job scheduling. Re-exports for stable public API."""

from leadcapture.services.jobs.scheduler import (
    cancel_job,
    claim_due_jobs,
    get_job_by_key,
    mark_job_completed,
    mark_job_failed,
    release_stale_jobs,
    schedule_job,
)

__all__ = [
    "cancel_job",
    "claim_due_jobs",
    "get_job_by_key",
    "mark_job_completed",
    "mark_job_failed",
    "release_stale_jobs",
    "schedule_job",
]

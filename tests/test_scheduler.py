"""
Tests for the durable job scheduler: dedupe keys, claiming, backoff and redelivery.
"""

from datetime import timedelta

from freezegun import freeze_time
from sqlalchemy import select

from leadcapture.constants.jobs import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_RUNNING,
    JOB_SEND_REMINDER,
)
from leadcapture.db.models import ScheduledJob
from leadcapture.services.jobs.scheduler import (
    _exponential_backoff_minutes,
    cancel_job,
    claim_due_jobs,
    get_job_by_key,
    mark_job_completed,
    mark_job_failed,
    release_stale_jobs,
    schedule_job,
)
from leadcapture.utils.datetime_utils import as_utc

PAYLOAD = {"lead_id": 1, "lead_conversation_id": 1, "reminder_number": 1}


def test_schedule_job_sets_run_at(db):
    with freeze_time("2026-03-01 10:00:00"):
        job, created = schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(hours=2), job_key="k-1")

    assert created is True
    assert job.status == JOB_PENDING
    assert job.attempts == 0
    assert as_utc(job.run_at).isoformat() == "2026-03-01T12:00:00+00:00"


def test_schedule_job_with_same_key_is_rejected(db):
    first, created_first = schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(hours=2), job_key="k-1")
    second, created_second = schedule_job(
        db, JOB_SEND_REMINDER, {**PAYLOAD, "reminder_number": 2}, timedelta(hours=24), job_key="k-1"
    )

    assert created_first is True
    assert created_second is False
    assert second.id == first.id
    assert second.payload["reminder_number"] == 1
    assert len(db.execute(select(ScheduledJob)).scalars().all()) == 1


def test_key_stays_taken_after_completion(db):
    """Reject-duplicate: a finished job still blocks a new job with its key."""
    job, _ = schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0), job_key="k-1")
    mark_job_completed(db, job)

    again, created = schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0), job_key="k-1")

    assert created is False
    assert again.status == JOB_COMPLETED


def test_jobs_without_key_are_not_deduplicated(db):
    schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0))
    schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0))
    assert len(db.execute(select(ScheduledJob)).scalars().all()) == 2


def test_claim_only_due_jobs_in_run_at_order(db):
    with freeze_time("2026-03-01 10:00:00") as frozen:
        later, _ = schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(hours=2), job_key="later")
        sooner, _ = schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(hours=1), job_key="sooner")
        not_due, _ = schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(hours=5), job_key="not-due")

        frozen.move_to("2026-03-01 12:30:00")
        claimed = claim_due_jobs(db, limit=10)

    assert [job.job_key for job in claimed] == ["sooner", "later"]
    assert all(job.status == JOB_RUNNING and job.attempts == 1 for job in claimed)
    db.refresh(not_due)
    assert not_due.status == JOB_PENDING


def test_claimed_job_is_not_claimed_twice(db):
    schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0), job_key="k-1")

    assert len(claim_due_jobs(db)) == 1
    assert claim_due_jobs(db) == []


def test_claim_respects_limit(db):
    for i in range(3):
        schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0), job_key=f"k-{i}")
    assert len(claim_due_jobs(db, limit=2)) == 2
    assert len(claim_due_jobs(db, limit=2)) == 1


def test_cancel_pending_job(db):
    schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(hours=1), job_key="k-1")

    assert cancel_job(db, "k-1") is True
    assert get_job_by_key(db, "k-1").status == JOB_CANCELLED
    assert cancel_job(db, "k-1") is False
    assert cancel_job(db, "never-scheduled") is False


def test_cancel_does_not_touch_running_job(db):
    schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0), job_key="k-1")
    claim_due_jobs(db)

    assert cancel_job(db, "k-1") is False
    assert get_job_by_key(db, "k-1").status == JOB_RUNNING


def test_backoff_schedule():
    assert _exponential_backoff_minutes(1) == 5
    assert _exponential_backoff_minutes(2) == 15
    assert _exponential_backoff_minutes(3) == 45
    assert _exponential_backoff_minutes(20) == 1440


def test_mark_job_failed_retries_with_backoff(db):
    with freeze_time("2026-03-01 10:00:00"):
        schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0), job_key="k-1")
        (job,) = claim_due_jobs(db)
        will_retry = mark_job_failed(db, job, RuntimeError("provider down"))

    assert will_retry is True
    assert job.status == JOB_PENDING
    assert job.locked_at is None
    assert job.last_error == "RuntimeError: provider down"
    assert as_utc(job.run_at).isoformat() == "2026-03-01T10:05:00+00:00"


def test_mark_job_failed_gives_up_after_max_attempts(db):
    schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0), job_key="k-1", max_attempts=1)
    (job,) = claim_due_jobs(db)

    assert mark_job_failed(db, job, RuntimeError("boom")) is False
    assert job.status == JOB_FAILED
    assert claim_due_jobs(db) == []


def test_release_stale_jobs_redelivers(db):
    with freeze_time("2026-03-01 10:00:00") as frozen:
        schedule_job(db, JOB_SEND_REMINDER, PAYLOAD, timedelta(0), job_key="k-1")
        claim_due_jobs(db)

        frozen.move_to("2026-03-01 10:05:00")
        assert release_stale_jobs(db, timedelta(minutes=15)) == 0

        frozen.move_to("2026-03-01 10:20:00")
        assert release_stale_jobs(db, timedelta(minutes=15)) == 1
        (job,) = claim_due_jobs(db)

    assert job.attempts == 2

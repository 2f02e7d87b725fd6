"""
Job kinds, statuses and dedupe-key builders for the scheduled_jobs table.
"""

# Job kinds (scheduled_jobs.kind)
JOB_SEND_REMINDER = "send-reminder"
JOB_MARK_UNRESPONSIVE = "mark-unresponsive"

# Job statuses
JOB_PENDING = "PENDING"
JOB_RUNNING = "RUNNING"
JOB_COMPLETED = "COMPLETED"
JOB_FAILED = "FAILED"
JOB_CANCELLED = "CANCELLED"


def reminder_job_key(lead_id: int, reminder_number: int) -> str:
    """e.g. lead-reminder-1-42"""
    return f"lead-reminder-{reminder_number}-{lead_id}"


def timeout_job_key(lead_id: int) -> str:
    """e.g. lead-timeout-42 (one final-timeout slot per lead)"""
    return f"lead-timeout-{lead_id}"

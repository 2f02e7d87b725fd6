"""
Lead reminder jobs with idempotency guarded by persisted facts.

Timeline after the first outbound message:
- send-reminder #1 at +2h, send-reminder #2 at +24h (both from first contact)
- reminder #2 schedules mark-unresponsive +24h later (one per lead, deduped by key)

Every handler re-reads the conversation and checks preconditions before acting.
A reply that lands between the terminal-state check and the send can still
receive a reminder; this is accepted. The unresponsive transition is a
conditional write on the state it read, so it never overrides a reply that got there first.

Known risk window: if a send succeeds but persisting reminderN_sent_at fails, the
job is retried and the reminder is sent again. Duplicate reminder only - the
unresponsive transition still requires both timestamps to be persisted.
"""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from leadcapture.constants.conversation import ConversationEvent
from leadcapture.constants.event_types import (
    ACTIVITY_LEAD_UNRESPONSIVE,
    EVENT_WHATSAPP_NO_CLIENT,
    reminder_event_type,
)
from leadcapture.constants.jobs import (
    JOB_MARK_UNRESPONSIVE,
    JOB_SEND_REMINDER,
    reminder_job_key,
    timeout_job_key,
)
from leadcapture.constants.statuses import DIRECTION_OUTBOUND, STATUS_UNRESPONSIVE
from leadcapture.core.config import settings
from leadcapture.db.helpers import commit_and_refresh, set_conversation_state_if_at
from leadcapture.db.models import ConversationMessage, Lead, LeadConversation, Tenant
from leadcapture.schemas.jobs import ReminderJobPayload
from leadcapture.services import activity
from leadcapture.services.conversation.state_machine import is_terminal_state, transition
from leadcapture.services.jobs.scheduler import cancel_job, schedule_job
from leadcapture.services.messaging.message_composer import get_reminder_message, render_message
from leadcapture.services.messaging.whatsapp import create_whatsapp_client, send_text_message
from leadcapture.services.system_event_service import warn
from leadcapture.utils.datetime_utils import iso_or_none

logger = logging.getLogger(__name__)

REMINDER_EVENTS = {
    1: ConversationEvent.REMINDER_1_SENT,
    2: ConversationEvent.REMINDER_2_SENT,
}


def business_display_name(tenant: Tenant) -> str:
    return tenant.business_name or tenant.owner_name or settings.default_business_name


def _schedule_unresponsive_timeout(db: Session, payload: ReminderJobPayload) -> int:
    """Schedule mark-unresponsive for the lead; returns the existing job if one was already scheduled."""
    timeout_job, created = schedule_job(
        db,
        kind=JOB_MARK_UNRESPONSIVE,
        payload=payload.model_dump(),
        delay=timedelta(hours=settings.unresponsive_timeout_hours),
        job_key=timeout_job_key(payload.lead_id),
    )
    if created:
        logger.info(f"Scheduled unresponsive timeout for lead {payload.lead_id}")
    return timeout_job.id


def schedule_initial_reminders(db: Session, lead_id: int, lead_conversation_id: int) -> list[int]:
    """
    Schedule reminder #1 and #2 relative to now (first contact).

    Both delays are measured from first contact, so reminder #2 does not move if
    reminder #1 fires late. Keys make rescheduling a no-op.

    Returns:
        IDs of the scheduled (or already existing) jobs
    """
    delays = {
        1: timedelta(hours=settings.reminder_1_delay_hours),
        2: timedelta(hours=settings.reminder_2_delay_hours),
    }
    job_ids = []
    for reminder_number, delay in delays.items():
        payload = ReminderJobPayload(
            lead_id=lead_id,
            lead_conversation_id=lead_conversation_id,
            reminder_number=reminder_number,
        )
        job, _ = schedule_job(
            db,
            kind=JOB_SEND_REMINDER,
            payload=payload.model_dump(),
            delay=delay,
            job_key=reminder_job_key(lead_id, reminder_number),
        )
        job_ids.append(job.id)
    logger.info(f"Scheduled reminders for lead {lead_id}")
    return job_ids


def cancel_pending_reminders(db: Session, lead_id: int) -> int:
    """
    Cancel reminder and timeout jobs that have not started yet.

    Optimization only: a job that escapes cancellation no-ops on its own
    precondition checks.
    """
    keys = [reminder_job_key(lead_id, 1), reminder_job_key(lead_id, 2), timeout_job_key(lead_id)]
    cancelled = sum(1 for key in keys if cancel_job(db, key))
    if cancelled:
        logger.info(f"Cancelled {cancelled} pending reminder jobs for lead {lead_id}")
    return cancelled


async def process_send_reminder(db: Session, payload: ReminderJobPayload) -> dict:
    """
    send-reminder job: send reminder N unless the conversation resolved or N was already sent.

    Args:
        db: Database session
        payload: Job payload (reminder_number 1 or 2)

    Returns:
        dict with status ("sent", "skipped", "already_sent", "not_found") and details

    Raises:
        Exception: Send and persistence failures propagate so the job is retried
    """
    reminder_number = payload.reminder_number
    lead_id = payload.lead_id
    logger.info(f"Processing reminder {reminder_number} for lead {lead_id}")

    if not settings.feature_reminders_enabled:
        logger.debug(f"Reminders feature disabled - skipping reminder {reminder_number} for lead {lead_id}")
        return {"status": "skipped", "reason": "reminders_disabled"}

    convo = db.get(LeadConversation, payload.lead_conversation_id)
    if not convo:
        logger.info(f"Lead conversation {payload.lead_conversation_id} not found, skipping")
        return {"status": "not_found", "reason": "conversation"}

    if is_terminal_state(convo.state):
        logger.info(f"Lead {lead_id} is in terminal state {convo.state}, skipping reminder")
        return {"status": "skipped", "reason": "terminal_state", "state": convo.state.value}

    already_sent_at = convo.reminder1_sent_at if reminder_number == 1 else convo.reminder2_sent_at
    if already_sent_at:
        logger.info(f"Reminder {reminder_number} already sent for lead {lead_id}, skipping")
        result = {"status": "already_sent", "sent_at": iso_or_none(already_sent_at)}
        if reminder_number == 2:
            # A retry after reminder 2 was recorded but the timeout was not scheduled; the key dedupes
            result["timeout_job_id"] = _schedule_unresponsive_timeout(db, payload)
        return result

    lead = db.get(Lead, lead_id)
    if not lead:
        logger.info(f"Lead {lead_id} not found, skipping")
        return {"status": "not_found", "reason": "lead"}

    tenant = db.get(Tenant, lead.tenant_id)
    if not tenant:
        logger.info(f"Tenant {lead.tenant_id} not found, skipping")
        return {"status": "not_found", "reason": "tenant"}

    client = create_whatsapp_client(db, lead.tenant_id)
    if not client:
        logger.error(f"No WhatsApp client for tenant {lead.tenant_id}")
        warn(
            db=db,
            event_type=EVENT_WHATSAPP_NO_CLIENT,
            lead_id=lead.id,
            payload={"tenant_id": lead.tenant_id, "reminder_number": reminder_number},
        )
        return {"status": "skipped", "reason": "no_whatsapp_client"}

    message = get_reminder_message(reminder_number, business_display_name(tenant), lead_id=lead.id)

    try:
        result = await send_text_message(client, lead.customer_phone, message)
    except Exception as e:
        logger.error(f"Failed to send reminder {reminder_number} for lead {lead_id}: {e}")
        raise

    logger.info(f"Sent reminder {reminder_number} to {lead.customer_phone}")

    now = datetime.now(UTC)
    if reminder_number == 1:
        convo.reminder1_sent_at = now
    else:
        convo.reminder2_sent_at = now
    convo.state = transition(convo.state, REMINDER_EVENTS[reminder_number])
    convo.updated_at = now
    db.add(ConversationMessage(lead_conversation_id=convo.id, direction=DIRECTION_OUTBOUND, body=message))
    commit_and_refresh(db, convo)

    logger.info(f"Updated lead conversation {convo.id}, state: {convo.state.value}")

    timeout_job_id = None
    if reminder_number == 2:
        timeout_job_id = _schedule_unresponsive_timeout(db, payload)

    return {
        "status": "sent",
        "event_type": reminder_event_type(reminder_number),
        "reminder_number": reminder_number,
        "result": result,
        "sent_at": now.isoformat(),
        "timeout_job_id": timeout_job_id,
    }


async def process_mark_unresponsive(db: Session, payload: ReminderJobPayload) -> dict:
    """
    mark-unresponsive job: end the conversation after both reminders went unanswered.

    Requires both reminder timestamps, independent of which job scheduled this one.
    The only reminder job that writes the Lead itself.
    """
    lead_id = payload.lead_id
    logger.info(f"Checking if lead {lead_id} should be marked unresponsive")

    convo = db.get(LeadConversation, payload.lead_conversation_id)
    if not convo:
        logger.info(f"Lead conversation {payload.lead_conversation_id} not found")
        return {"status": "not_found", "reason": "conversation"}

    if is_terminal_state(convo.state):
        logger.info(f"Lead {lead_id} already in terminal state {convo.state}")
        return {"status": "skipped", "reason": "terminal_state", "state": convo.state.value}

    if not convo.reminder1_sent_at or not convo.reminder2_sent_at:
        logger.info(f"Not all reminders sent for lead {lead_id}, skipping unresponsive mark")
        return {"status": "skipped", "reason": "reminders_incomplete"}

    lead = db.get(Lead, lead_id)
    if not lead:
        logger.info(f"Lead {lead_id} not found")
        return {"status": "not_found", "reason": "lead"}

    now = datetime.now(UTC)
    applied = set_conversation_state_if_at(
        db,
        convo.id,
        convo.state,
        transition(convo.state, ConversationEvent.TIMEOUT),
        lead_id=lead_id,
        updated_at=now,
    )
    if not applied:
        logger.info(f"Lead {lead_id} conversation changed before the timeout was applied, skipping")
        return {"status": "skipped", "reason": "state_changed"}
    lead.status = STATUS_UNRESPONSIVE
    lead.updated_at = now
    commit_and_refresh(db, convo, lead)

    logger.info(f"Marked lead {lead_id} as unresponsive")

    activity.publish(
        db,
        tenant_id=lead.tenant_id,
        event_type=ACTIVITY_LEAD_UNRESPONSIVE,
        title=render_message("activity_unresponsive_title"),
        description=render_message("activity_unresponsive_description", phone=lead.customer_phone),
        source="lead-reminder-worker",
        source_id=lead.id,
    )

    return {"status": "unresponsive", "lead_id": lead_id, "marked_at": now.isoformat()}

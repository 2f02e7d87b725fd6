"""
Tests for lead reminder jobs: idempotency via persisted timestamps and terminal state.
"""

from datetime import timedelta

import pytest
from freezegun import freeze_time
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from leadcapture.constants.conversation import ConversationState
from leadcapture.constants.event_types import ACTIVITY_LEAD_UNRESPONSIVE, EVENT_WHATSAPP_NO_CLIENT
from leadcapture.constants.jobs import (
    JOB_CANCELLED,
    JOB_MARK_UNRESPONSIVE,
    JOB_PENDING,
    JOB_SEND_REMINDER,
    reminder_job_key,
    timeout_job_key,
)
from leadcapture.constants.statuses import (
    DIRECTION_OUTBOUND,
    STATUS_QUALIFIED,
    STATUS_QUALIFYING,
    STATUS_UNRESPONSIVE,
)
from leadcapture.core.config import settings
from leadcapture.db.models import ActivityEvent, ConversationMessage, ScheduledJob, SystemEvent
from leadcapture.schemas.jobs import ReminderJobPayload
from leadcapture.services import reminders
from leadcapture.services.jobs.scheduler import get_job_by_key
from leadcapture.services.messaging.whatsapp import WhatsAppSendError
from leadcapture.services.reminders import (
    cancel_pending_reminders,
    process_mark_unresponsive,
    process_send_reminder,
    schedule_initial_reminders,
)
from leadcapture.utils.datetime_utils import as_utc
from tests.helpers.lead_flow import CUSTOMER_PHONE, sent_bodies


def _payload(lead, convo, n: int = 1) -> ReminderJobPayload:
    return ReminderJobPayload(lead_id=lead.id, lead_conversation_id=convo.id, reminder_number=n)


def _activity_events(db, event_type: str) -> list[ActivityEvent]:
    return list(db.execute(select(ActivityEvent).where(ActivityEvent.event_type == event_type)).scalars())


@pytest.mark.asyncio
async def test_send_reminder_1(db, lead, conversation, mock_send):
    result = await process_send_reminder(db, _payload(lead, conversation, 1))

    assert result["status"] == "sent"
    assert result["event_type"] == "reminder.lead.1"
    assert result["timeout_job_id"] is None
    db.refresh(conversation)
    assert conversation.reminder1_sent_at is not None
    assert conversation.reminder2_sent_at is None
    assert conversation.state == ConversationState.AWAITING_RESPONSE

    bodies = sent_bodies(mock_send, CUSTOMER_PHONE)
    assert len(bodies) == 1
    assert "Dani Plumbing" in bodies[0]

    outbound = db.execute(
        select(ConversationMessage).where(ConversationMessage.direction == DIRECTION_OUTBOUND)
    ).scalar_one()
    assert outbound.body == bodies[0]


@pytest.mark.asyncio
async def test_duplicate_reminder_delivery_sends_once(db, lead, conversation, mock_send):
    """At-least-once delivery: the second execution is a no-op."""
    first = await process_send_reminder(db, _payload(lead, conversation, 1))
    db.refresh(conversation)
    sent_at = conversation.reminder1_sent_at

    second = await process_send_reminder(db, _payload(lead, conversation, 1))

    assert first["status"] == "sent"
    assert second["status"] == "already_sent"
    assert mock_send.await_count == 1
    db.refresh(conversation)
    assert conversation.reminder1_sent_at == sent_at


@pytest.mark.asyncio
@pytest.mark.parametrize("state", [ConversationState.COMPLETED, ConversationState.UNRESPONSIVE])
async def test_reminder_skipped_in_terminal_state(db, lead, conversation, mock_send, state):
    conversation.state = state
    db.commit()

    result = await process_send_reminder(db, _payload(lead, conversation, 1))

    assert result["status"] == "skipped"
    assert result["reason"] == "terminal_state"
    mock_send.assert_not_awaited()
    db.refresh(conversation)
    assert conversation.reminder1_sent_at is None


@pytest.mark.asyncio
async def test_reminder_for_missing_conversation(db, lead, mock_send):
    payload = ReminderJobPayload(lead_id=lead.id, lead_conversation_id=999, reminder_number=1)
    result = await process_send_reminder(db, payload)
    assert result == {"status": "not_found", "reason": "conversation"}
    mock_send.assert_not_awaited()


@pytest.mark.asyncio
async def test_reminder_send_failure_propagates_and_is_not_recorded(db, lead, conversation, mock_send):
    """A failed send must leave reminder1_sent_at unset so the retry sends again."""
    mock_send.side_effect = WhatsAppSendError("502 Bad Gateway")

    with pytest.raises(WhatsAppSendError):
        await process_send_reminder(db, _payload(lead, conversation, 1))

    db.rollback()
    db.refresh(conversation)
    assert conversation.reminder1_sent_at is None

    mock_send.side_effect = None
    result = await process_send_reminder(db, _payload(lead, conversation, 1))
    assert result["status"] == "sent"


@pytest.mark.asyncio
async def test_reminder_without_whatsapp_client_is_skipped(db, tenant, lead, conversation, mock_send):
    tenant.whatsapp_status = "inactive"
    db.commit()

    result = await process_send_reminder(db, _payload(lead, conversation, 1))

    assert result == {"status": "skipped", "reason": "no_whatsapp_client"}
    mock_send.assert_not_awaited()
    event = db.execute(select(SystemEvent).where(SystemEvent.event_type == EVENT_WHATSAPP_NO_CLIENT)).scalar_one()
    assert event.level == "WARN"
    assert event.lead_id == lead.id


@pytest.mark.asyncio
async def test_reminders_feature_flag(db, lead, conversation, mock_send, monkeypatch):
    monkeypatch.setattr(settings, "feature_reminders_enabled", False)
    result = await process_send_reminder(db, _payload(lead, conversation, 1))
    assert result == {"status": "skipped", "reason": "reminders_disabled"}
    mock_send.assert_not_awaited()


@pytest.mark.asyncio
async def test_business_name_falls_back_to_owner_name(db, tenant, lead, conversation, mock_send):
    tenant.business_name = None
    db.commit()

    await process_send_reminder(db, _payload(lead, conversation, 1))

    assert "Dani" in sent_bodies(mock_send, CUSTOMER_PHONE)[0]


@pytest.mark.asyncio
async def test_reminder_2_schedules_single_timeout(db, lead, conversation, mock_send):
    with freeze_time("2026-03-02 10:00:00"):
        result = await process_send_reminder(db, _payload(lead, conversation, 2))

    assert result["status"] == "sent"
    timeout = get_job_by_key(db, timeout_job_key(lead.id))
    assert timeout is not None
    assert timeout.id == result["timeout_job_id"]
    assert timeout.kind == JOB_MARK_UNRESPONSIVE
    assert timeout.status == JOB_PENDING
    assert timeout.payload == {
        "lead_id": lead.id,
        "lead_conversation_id": conversation.id,
        "reminder_number": 2,
    }
    assert as_utc(timeout.run_at).isoformat() == "2026-03-03T10:00:00+00:00"

    # Redelivery of reminder 2 neither resends nor schedules a second timeout
    again = await process_send_reminder(db, _payload(lead, conversation, 2))
    assert again["status"] == "already_sent"
    assert mock_send.await_count == 1
    timeouts = db.execute(select(ScheduledJob).where(ScheduledJob.kind == JOB_MARK_UNRESPONSIVE)).scalars().all()
    assert len(timeouts) == 1


@pytest.mark.asyncio
async def test_reminder_2_retry_schedules_timeout_lost_to_db_error(db, lead, conversation, mock_send, monkeypatch):
    """Reminder 2 was recorded but scheduling the timeout failed; the retry must still schedule it."""
    real_schedule_job = reminders.schedule_job
    calls = []

    def flaky_schedule_job(*args, **kwargs):
        calls.append(kwargs.get("job_key"))
        if len(calls) == 1:
            raise OperationalError("INSERT INTO scheduled_jobs", {}, Exception("database is locked"))
        return real_schedule_job(*args, **kwargs)

    monkeypatch.setattr(reminders, "schedule_job", flaky_schedule_job)

    with pytest.raises(OperationalError):
        await process_send_reminder(db, _payload(lead, conversation, 2))
    db.rollback()
    db.refresh(conversation)
    assert conversation.reminder2_sent_at is not None
    assert get_job_by_key(db, timeout_job_key(lead.id)) is None

    retry = await process_send_reminder(db, _payload(lead, conversation, 2))

    assert retry["status"] == "already_sent"
    timeout = get_job_by_key(db, timeout_job_key(lead.id))
    assert timeout is not None
    assert timeout.id == retry["timeout_job_id"]
    assert timeout.kind == JOB_MARK_UNRESPONSIVE
    assert calls == [timeout_job_key(lead.id), timeout_job_key(lead.id)]
    assert mock_send.await_count == 1


@pytest.mark.asyncio
async def test_mark_unresponsive_requires_both_reminders(db, lead, conversation, mock_send):
    await process_send_reminder(db, _payload(lead, conversation, 1))

    result = await process_mark_unresponsive(db, _payload(lead, conversation, 2))

    assert result == {"status": "skipped", "reason": "reminders_incomplete"}
    db.refresh(conversation)
    db.refresh(lead)
    assert conversation.state == ConversationState.AWAITING_RESPONSE
    assert lead.status == STATUS_QUALIFYING


@pytest.mark.asyncio
async def test_mark_unresponsive_after_both_reminders(db, lead, conversation, mock_send):
    await process_send_reminder(db, _payload(lead, conversation, 1))
    await process_send_reminder(db, _payload(lead, conversation, 2))

    result = await process_mark_unresponsive(db, _payload(lead, conversation, 2))

    assert result["status"] == "unresponsive"
    db.refresh(conversation)
    db.refresh(lead)
    assert conversation.state == ConversationState.UNRESPONSIVE
    assert lead.status == STATUS_UNRESPONSIVE

    (event,) = _activity_events(db, ACTIVITY_LEAD_UNRESPONSIVE)
    assert event.tenant_id == lead.tenant_id
    assert event.source == "lead-reminder-worker"
    assert event.source_id == str(lead.id)
    assert CUSTOMER_PHONE in event.description

    # Duplicate delivery publishes nothing new
    again = await process_mark_unresponsive(db, _payload(lead, conversation, 2))
    assert again["status"] == "skipped"
    assert len(_activity_events(db, ACTIVITY_LEAD_UNRESPONSIVE)) == 1


@pytest.mark.asyncio
async def test_mark_unresponsive_loses_race_with_completion(db, lead, conversation, mock_send):
    """Customer completed qualification before the timeout fired."""
    await process_send_reminder(db, _payload(lead, conversation, 1))
    await process_send_reminder(db, _payload(lead, conversation, 2))
    conversation.state = ConversationState.COMPLETED
    lead.status = STATUS_QUALIFIED
    db.commit()

    result = await process_mark_unresponsive(db, _payload(lead, conversation, 2))

    assert result["status"] == "skipped"
    db.refresh(lead)
    assert lead.status == STATUS_QUALIFIED
    assert _activity_events(db, ACTIVITY_LEAD_UNRESPONSIVE) == []


@pytest.mark.asyncio
async def test_mark_unresponsive_missing_conversation(db, lead):
    payload = ReminderJobPayload(lead_id=lead.id, lead_conversation_id=999, reminder_number=2)
    assert (await process_mark_unresponsive(db, payload))["status"] == "not_found"


def test_schedule_initial_reminders(db, lead, conversation):
    with freeze_time("2026-03-01 10:00:00"):
        job_ids = schedule_initial_reminders(db, lead.id, conversation.id)
        again = schedule_initial_reminders(db, lead.id, conversation.id)

    assert job_ids == again
    first = get_job_by_key(db, reminder_job_key(lead.id, 1))
    second = get_job_by_key(db, reminder_job_key(lead.id, 2))
    assert first.kind == second.kind == JOB_SEND_REMINDER
    assert first.payload["reminder_number"] == 1
    assert second.payload["reminder_number"] == 2
    # Both delays are measured from first contact
    assert as_utc(first.run_at) - as_utc(second.run_at) == timedelta(hours=-22)
    assert as_utc(first.run_at).isoformat() == "2026-03-01T12:00:00+00:00"


def test_cancel_pending_reminders(db, lead, conversation):
    schedule_initial_reminders(db, lead.id, conversation.id)

    assert cancel_pending_reminders(db, lead.id) == 2
    assert get_job_by_key(db, reminder_job_key(lead.id, 1)).status == JOB_CANCELLED
    assert get_job_by_key(db, reminder_job_key(lead.id, 2)).status == JOB_CANCELLED
    assert cancel_pending_reminders(db, lead.id) == 0

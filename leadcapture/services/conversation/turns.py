"""
Turn processing - one inbound customer message through the qualification flow.

Extract -> merge -> next state -> persist -> reply. Slots accumulate on the Lead;
the conversation row only carries the state and reminder timestamps.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadcapture.constants.conversation import ConversationState
from leadcapture.constants.event_types import ACTIVITY_LEAD_QUALIFIED, EVENT_WHATSAPP_SEND_FAILURE
from leadcapture.constants.statuses import DIRECTION_INBOUND, DIRECTION_OUTBOUND, STATUS_QUALIFIED
from leadcapture.core.config import settings
from leadcapture.db.helpers import commit_and_refresh, set_conversation_state_if_at
from leadcapture.db.models import ConversationMessage, Lead, LeadConversation, Tenant
from leadcapture.services import activity
from leadcapture.services.ai.lead_extractor import LeadInfoExtractor, get_lead_extractor
from leadcapture.services.conversation.slot_merge import LeadInfo, merge_lead_info
from leadcapture.services.conversation.state_machine import (
    get_next_state,
    is_terminal_state,
    should_send_response,
)
from leadcapture.services.messaging.message_composer import get_chatbot_response, render_message
from leadcapture.services.messaging.notifications import notify_owner_of_lead
from leadcapture.services.messaging.whatsapp import create_whatsapp_client, send_text_message
from leadcapture.services.reminders import business_display_name, cancel_pending_reminders
from leadcapture.services.system_event_service import warn

logger = logging.getLogger(__name__)


def _prior_messages(db: Session, convo: LeadConversation) -> list[str]:
    stmt = (
        select(ConversationMessage.body)
        .where(ConversationMessage.lead_conversation_id == convo.id)
        .order_by(ConversationMessage.id)
    )
    return list(db.execute(stmt).scalars().all())


def _apply_new_slots(lead: Lead, merged: LeadInfo) -> bool:
    """Fill empty lead slots from the merge. Returns True if anything was filled."""
    updated = False
    if merged.name and not lead.customer_name:
        lead.customer_name = merged.name
        updated = True
    if merged.need and not lead.need:
        lead.need = merged.need
        updated = True
    if merged.contact_preference and not lead.contact_preference:
        lead.contact_preference = merged.contact_preference
        updated = True
    return updated


async def _send_reply(
    db: Session,
    lead: Lead,
    convo: LeadConversation,
    tenant: Tenant | None,
    next_state: ConversationState,
    customer_name: str | None,
) -> bool:
    business_name = business_display_name(tenant) if tenant else settings.default_business_name
    reply = get_chatbot_response(next_state, business_name, customer_name=customer_name, lead_id=lead.id)
    if not reply:
        return False

    client = create_whatsapp_client(db, lead.tenant_id)
    if not client:
        logger.warning(f"No WhatsApp client for tenant {lead.tenant_id}, reply to lead {lead.id} not sent")
        return False

    try:
        await send_text_message(client, lead.customer_phone, reply)
    except Exception as e:
        # The state transition stands; the next inbound message gets a fresh reply
        logger.error(f"Failed to send chatbot response to lead {lead.id}: {e}")
        warn(
            db=db,
            event_type=EVENT_WHATSAPP_SEND_FAILURE,
            lead_id=lead.id,
            payload={"state": next_state.value, "lead_conversation_id": convo.id},
            exc=e,
        )
        return False

    db.add(ConversationMessage(lead_conversation_id=convo.id, direction=DIRECTION_OUTBOUND, body=reply))
    db.commit()
    logger.info(f"Sent chatbot response for state {next_state.value} to lead {lead.id}")
    return True


async def handle_lead_message(
    db: Session,
    conversation: LeadConversation,
    text: str,
    *,
    extractor: LeadInfoExtractor | None = None,
) -> dict:
    """
    Process one inbound message for a lead conversation.

    Args:
        db: Database session
        conversation: The lead's conversation
        text: Message text (may be empty)
        extractor: Lead-info extractor; the configured one by default

    Returns:
        dict with status ("processed", "skipped") and the resulting state
    """
    if is_terminal_state(conversation.state):
        logger.info(f"Lead conversation {conversation.id} is in terminal state {conversation.state.value}")
        return {"status": "skipped", "reason": "terminal_state", "state": conversation.state.value}

    lead = db.get(Lead, conversation.lead_id)
    if not lead:
        logger.error(f"Lead {conversation.lead_id} not found for conversation {conversation.id}")
        return {"status": "skipped", "reason": "lead_not_found"}

    current_state = ConversationState(conversation.state)
    prior = _prior_messages(db, conversation)
    db.add(ConversationMessage(lead_conversation_id=conversation.id, direction=DIRECTION_INBOUND, body=text))

    extractor = extractor or get_lead_extractor()
    extracted = await extractor.extract(text, prior, current_state)
    logger.info(
        f"Extracted for lead {lead.id}: name={extracted.name!r} need={extracted.need!r} "
        f"preference={extracted.contact_preference!r} confidence={extracted.confidence.value}"
    )

    existing = LeadInfo(
        name=lead.customer_name,
        need=lead.need,
        contact_preference=lead.contact_preference,
    )
    merged = merge_lead_info(existing, extracted)
    has_new_info = _apply_new_slots(lead, merged)

    next_state = get_next_state(current_state, merged)
    now = datetime.now(UTC)
    # Conditional on the state read before extraction; the timeout job may have ended the conversation since
    applied = set_conversation_state_if_at(
        db,
        conversation.id,
        current_state,
        next_state,
        lead_id=lead.id,
        last_extraction_confidence=merged.confidence.value,
        updated_at=now,
    )
    if not applied:
        db.refresh(conversation)
        logger.info(
            f"Lead conversation {conversation.id} moved to {conversation.state.value} during the turn, "
            f"dropping the turn for lead {lead.id}"
        )
        return {"status": "skipped", "reason": "state_changed", "state": conversation.state.value}
    if next_state != current_state:
        logger.info(f"Lead conversation {conversation.id} transitioned {current_state.value} -> {next_state.value}")

    completed = next_state == ConversationState.COMPLETED
    if completed:
        lead.status = STATUS_QUALIFIED
        lead.qualified_at = now
    lead.updated_at = now
    commit_and_refresh(db, conversation, lead)

    if settings.feature_cancel_reminders_on_reply:
        cancel_pending_reminders(db, lead.id)

    tenant = db.get(Tenant, lead.tenant_id)
    replied = False
    if should_send_response(next_state) or completed:
        replied = await _send_reply(db, lead, conversation, tenant, next_state, merged.name)

    if completed:
        activity.publish(
            db,
            tenant_id=lead.tenant_id,
            event_type=ACTIVITY_LEAD_QUALIFIED,
            title=render_message("activity_qualified_title"),
            description=render_message(
                "activity_qualified_description",
                name=lead.customer_name or render_message("activity_unknown_customer"),
                need=lead.need or render_message("activity_not_specified"),
            ),
            source="lead-conversation",
            source_id=lead.id,
        )

    if has_new_info or completed:
        await notify_owner_of_lead(db, lead)

    return {
        "status": "processed",
        "state": next_state.value,
        "previous_state": current_state.value,
        "has_new_info": has_new_info,
        "replied": replied,
    }

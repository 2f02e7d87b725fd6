"""
Lead outreach start - first message to a missed-call lead.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadcapture.constants.conversation import ConversationState
from leadcapture.constants.statuses import DIRECTION_OUTBOUND, STATUS_QUALIFYING
from leadcapture.core.config import settings
from leadcapture.db.helpers import commit_and_refresh
from leadcapture.db.models import ConversationMessage, Lead, LeadConversation, Tenant
from leadcapture.services.messaging.message_composer import format_initial_message
from leadcapture.services.messaging.whatsapp import (
    WhatsAppClient,
    create_whatsapp_client,
    send_text_message,
)
from leadcapture.services.reminders import business_display_name, schedule_initial_reminders

logger = logging.getLogger(__name__)


async def start_lead_conversation(
    db: Session,
    lead: Lead,
    *,
    client: WhatsAppClient | None = None,
) -> dict:
    """
    Send the initial message and open the qualification conversation.

    Args:
        db: Database session
        lead: Captured lead (status new)
        client: Optional pre-built send client; resolved from the tenant otherwise

    Returns:
        dict with status ("started", "skipped", "not_found") and the conversation id

    Raises:
        WhatsAppSendError: Initial send failed; nothing has been written
    """
    tenant = db.get(Tenant, lead.tenant_id)
    if not tenant:
        logger.error(f"Tenant {lead.tenant_id} not found for lead {lead.id}")
        return {"status": "not_found", "reason": "tenant"}

    client = client or create_whatsapp_client(db, lead.tenant_id)
    if not client:
        logger.warning(f"No WhatsApp client for tenant {lead.tenant_id}, not contacting lead {lead.id}")
        return {"status": "skipped", "reason": "no_whatsapp_client"}

    message = format_initial_message(business_display_name(tenant), lead_id=lead.id)
    await send_text_message(client, lead.customer_phone, message)
    logger.info(f"Initial message sent to lead {lead.id} ({lead.customer_phone})")

    convo = db.execute(
        select(LeadConversation).where(LeadConversation.lead_id == lead.id)
    ).scalar_one_or_none()
    if convo is None:
        convo = LeadConversation(lead_id=lead.id, state=ConversationState.AWAITING_RESPONSE)
        db.add(convo)
        db.flush()

    lead.status = STATUS_QUALIFYING
    lead.updated_at = datetime.now(UTC)
    db.add(ConversationMessage(lead_conversation_id=convo.id, direction=DIRECTION_OUTBOUND, body=message))
    commit_and_refresh(db, lead, convo)

    job_ids: list[int] = []
    if settings.feature_reminders_enabled:
        job_ids = schedule_initial_reminders(db, lead.id, convo.id)

    return {
        "status": "started",
        "lead_conversation_id": convo.id,
        "reminder_job_ids": job_ids,
    }

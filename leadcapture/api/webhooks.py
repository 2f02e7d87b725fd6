import logging

from fastapi import APIRouter, Depends
from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadcapture.constants.event_types import EVENT_LEAD_MESSAGE, EVENT_LEAD_MESSAGE_FAILURE
from leadcapture.constants.providers import PROVIDER_WHATSAPP
from leadcapture.db.deps import get_db
from leadcapture.db.models import Lead, LeadConversation, ProcessedMessage
from leadcapture.schemas.api import InboundLeadMessage
from leadcapture.services.conversation.turns import handle_lead_message
from leadcapture.services.system_event_service import error
from leadcapture.utils.datetime_utils import iso_or_none

logger = logging.getLogger(__name__)

router = APIRouter()


def _is_processed_message_unique_violation(exc: IntegrityError) -> bool:
    """
    True only for a unique violation on ProcessedMessage(provider, message_id).
    Anything else is re-raised by the caller so real DB bugs are not hidden.
    """
    orig = exc.orig
    if orig is None:
        return False
    # Postgres: SQLSTATE 23505 = unique_violation (the only unique constraint on this table)
    if getattr(orig, "pgcode", None) == "23505":
        return True
    return "unique constraint" in str(orig).lower()


def _find_lead_conversation(db: Session, tenant_id: int, from_phone: str) -> LeadConversation | None:
    """Most recent lead conversation for this sender at this tenant."""
    stmt = (
        select(LeadConversation)
        .join(Lead, Lead.id == LeadConversation.lead_id)
        .where(Lead.tenant_id == tenant_id, Lead.customer_phone == from_phone)
        .order_by(desc(Lead.created_at), desc(Lead.id))
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


@router.post("/lead-messages")
async def lead_message_inbound(
    message: InboundLeadMessage,
    db: Session = Depends(get_db),
):
    # Idempotency: insert ProcessedMessage FIRST (before any processing)
    processed_msg = ProcessedMessage(
        provider=PROVIDER_WHATSAPP,
        message_id=message.message_id,
        event_type=EVENT_LEAD_MESSAGE,
        lead_id=None,  # Set once the lead is known
    )
    try:
        db.add(processed_msg)
        db.flush()
    except IntegrityError as e:
        if not _is_processed_message_unique_violation(e):
            raise
        db.rollback()
        existing = db.execute(
            select(ProcessedMessage).where(
                ProcessedMessage.provider == PROVIDER_WHATSAPP,
                ProcessedMessage.message_id == message.message_id,
            )
        ).scalar_one_or_none()
        logger.info(f"Duplicate lead message {message.message_id}, ignoring")
        return {
            "received": True,
            "type": "duplicate",
            "message_id": message.message_id,
            "processed_at": iso_or_none(existing.processed_at) if existing else None,
        }

    convo = _find_lead_conversation(db, message.tenant_id, message.from_phone)
    if convo is None:
        db.commit()
        logger.info(f"No lead conversation for {message.from_phone} at tenant {message.tenant_id}")
        return {"received": True, "handled": False}

    processed_msg.lead_id = convo.lead_id
    db.commit()

    try:
        result = await handle_lead_message(db, convo, message.text)
    except Exception as e:
        # Acknowledge anyway so the channel does not redeliver; the failure is recorded
        db.rollback()
        logger.error(
            f"Lead message handling failed - lead_id={convo.lead_id}, "
            f"message_id={message.message_id}, error_type={type(e).__name__}: {e}",
            exc_info=True,
        )
        error(
            db=db,
            event_type=EVENT_LEAD_MESSAGE_FAILURE,
            lead_id=convo.lead_id,
            payload={"message_id": message.message_id},
            exc=e,
        )
        return {
            "received": True,
            "handled": False,
            "lead_id": convo.lead_id,
            "error": "Conversation handling failed",
        }

    return {
        "received": True,
        "handled": True,
        "lead_id": convo.lead_id,
        "conversation": result,
    }

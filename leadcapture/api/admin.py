import logging

from fastapi import APIRouter, Depends, HTTPException, Security
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadcapture.api.auth import get_admin_auth
from leadcapture.api.dependencies import get_lead_or_404
from leadcapture.db.deps import get_db
from leadcapture.db.models import Lead, LeadConversation, ScheduledJob
from leadcapture.jobs.lead_reminder_worker import run_due_jobs
from leadcapture.schemas.api import ActivityEventResponse, ConversationResponse, ScheduledJobResponse
from leadcapture.services import activity
from leadcapture.services.conversation.outreach import start_lead_conversation
from leadcapture.services.conversation.state_machine import get_state_semantics
from leadcapture.services.messaging.whatsapp import WhatsAppSendError

logger = logging.getLogger(__name__)

router = APIRouter()


def _clamp_limit(limit: int) -> int:
    return max(0, min(limit, 100))


@router.get("/jobs", response_model=list[ScheduledJobResponse])
def list_jobs(
    status: str | None = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """
    List scheduled jobs, soonest first.
    Query params: status (PENDING, RUNNING, COMPLETED, FAILED, CANCELLED), limit (default 50).
    """
    stmt = select(ScheduledJob).order_by(ScheduledJob.run_at, ScheduledJob.id)
    if status:
        stmt = stmt.where(ScheduledJob.status == status.upper())
    stmt = stmt.limit(_clamp_limit(limit))
    return db.execute(stmt).scalars().all()


@router.post("/jobs/run")
async def run_jobs(
    limit: int = 50,
    _auth: bool = Security(get_admin_auth),
):
    """Run one batch of due jobs now (same path as the worker)."""
    results = await run_due_jobs(limit=_clamp_limit(limit) or None)
    logger.info(f"Admin job run: {results}")
    return results


@router.get("/leads/{lead_id}/conversation", response_model=ConversationResponse)
def get_lead_conversation(
    lead: Lead = Depends(get_lead_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Conversation state, reminder timestamps and accumulated slots for a lead."""
    convo = db.execute(
        select(LeadConversation).where(LeadConversation.lead_id == lead.id)
    ).scalar_one_or_none()
    if not convo:
        raise HTTPException(status_code=404, detail="Lead has no conversation")

    return ConversationResponse(
        lead_id=lead.id,
        lead_conversation_id=convo.id,
        lead_status=lead.status,
        state=convo.state.value,
        state_semantics=get_state_semantics(convo.state),
        reminder1_sent_at=convo.reminder1_sent_at,
        reminder2_sent_at=convo.reminder2_sent_at,
        customer_name=lead.customer_name,
        need=lead.need,
        contact_preference=lead.contact_preference,
        last_extraction_confidence=convo.last_extraction_confidence,
    )


@router.post("/leads/{lead_id}/start-conversation")
async def start_conversation(
    lead: Lead = Depends(get_lead_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Send the initial message to a captured lead and schedule its reminders."""
    existing = db.execute(
        select(LeadConversation).where(LeadConversation.lead_id == lead.id)
    ).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=409, detail="Lead conversation already started")

    try:
        result = await start_lead_conversation(db, lead)
    except WhatsAppSendError as e:
        logger.error(f"Initial message to lead {lead.id} failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to send initial message")
    if result["status"] != "started":
        raise HTTPException(status_code=400, detail=f"Cannot contact lead: {result['reason']}")
    return result


@router.get("/activity", response_model=list[ActivityEventResponse])
def list_activity(
    tenant_id: int,
    event_type: str | None = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Activity feed for a tenant, newest first."""
    return activity.get_feed(db, tenant_id, limit=_clamp_limit(limit), event_type=event_type)

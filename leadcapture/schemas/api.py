"""
API request/response schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InboundLeadMessage(BaseModel):
    """Inbound customer message, already parsed from the channel's webhook."""

    message_id: str = Field(min_length=1, max_length=255)
    tenant_id: int
    from_phone: str = Field(min_length=3, max_length=20)
    text: str = ""


class ScheduledJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_key: str | None = None
    kind: str
    payload: dict[str, Any]
    status: str
    run_at: datetime
    attempts: int
    max_attempts: int
    last_error: str | None = None


class ConversationResponse(BaseModel):
    lead_id: int
    lead_conversation_id: int
    lead_status: str
    state: str
    state_semantics: str | None = None
    reminder1_sent_at: datetime | None = None
    reminder2_sent_at: datetime | None = None
    customer_name: str | None = None
    need: str | None = None
    contact_preference: str | None = None
    last_extraction_confidence: str | None = None


class ActivityEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    event_type: str
    title: str
    description: str | None = None
    source: str
    source_id: str | None = None
    occurred_at: datetime

"""
Pydantic schemas for API request/response validation and job payloads.
"""

from leadcapture.schemas.api import (
    ActivityEventResponse,
    ConversationResponse,
    InboundLeadMessage,
    ScheduledJobResponse,
)
from leadcapture.schemas.jobs import ReminderJobPayload

__all__ = [
    "ActivityEventResponse",
    "ConversationResponse",
    "InboundLeadMessage",
    "ReminderJobPayload",
    "ScheduledJobResponse",
]

"""
Job payload schemas (scheduled_jobs.payload).
"""

from typing import Literal

from pydantic import BaseModel


class ReminderJobPayload(BaseModel):
    """Payload shared by send-reminder and mark-unresponsive jobs."""

    lead_id: int
    lead_conversation_id: int
    reminder_number: Literal[1, 2]

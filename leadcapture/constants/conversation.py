"""
Conversation state and event enums - centralized to avoid circular imports
between the ORM models and the state machine.
"""

from enum import StrEnum


class ConversationState(StrEnum):
    """Chatbot qualification state of a LeadConversation."""

    AWAITING_RESPONSE = "awaiting_response"  # Initial message sent, waiting for any reply
    AWAITING_NAME = "awaiting_name"  # Asked for name
    AWAITING_NEED = "awaiting_need"  # Asked about their need
    AWAITING_PREFERENCE = "awaiting_preference"  # Asked for contact preference
    COMPLETED = "completed"  # All info collected
    UNRESPONSIVE = "unresponsive"  # No response after reminders


class ConversationEvent(StrEnum):
    """Non-extraction events applied through transition()."""

    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    REMINDER_1_SENT = "REMINDER_1_SENT"
    REMINDER_2_SENT = "REMINDER_2_SENT"
    TIMEOUT = "TIMEOUT"


class Confidence(StrEnum):
    """Quality of the most recent lead-info extraction."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

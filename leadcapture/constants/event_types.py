"""
Event type constants for SystemEvent and ActivityEvent.

Use these instead of string literals to ensure consistency.
Dynamic event types use prefixes; use the helpers or format strings.
"""

# ---- WhatsApp ----
EVENT_WHATSAPP_SEND_FAILURE = "whatsapp.send_failure"
EVENT_WHATSAPP_NO_CLIENT = "whatsapp.no_client"

# ---- Inbound lead messages ----
EVENT_LEAD_MESSAGE = "lead_message.inbound"
EVENT_LEAD_MESSAGE_FAILURE = "lead_message.failure"

# ---- Lead conversations ----
EVENT_CONVERSATION_STATE_CONFLICT = "conversation.state_conflict"

# ---- Jobs ----
EVENT_JOB_FAILED = "job.failed"
EVENT_JOB_UNKNOWN_KIND = "job.unknown_kind"

# ---- Reminders (prefix for dynamic types) ----
EVENT_REMINDER_PREFIX = "reminder.lead"

# ---- Owner notifications ----
EVENT_OWNER_NOTIFICATION_FAILURE = "owner_notification.failure"

# ---- Activity feed (tenant-facing) ----
ACTIVITY_LEAD_QUALIFIED = "lead.qualified"
ACTIVITY_LEAD_UNRESPONSIVE = "lead.unresponsive"


def reminder_event_type(reminder_number: int) -> str:
    """e.g. reminder.lead.1, reminder.lead.2"""
    return f"{EVENT_REMINDER_PREFIX}.{reminder_number}"

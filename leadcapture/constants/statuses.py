"""
Lead status constants - centralized to avoid circular imports.
"""

# Capture and qualification
STATUS_NEW = "new"  # Just captured, awaiting first contact
STATUS_QUALIFYING = "qualifying"  # Chatbot collecting info
STATUS_QUALIFIED = "qualified"  # All info collected

# Terminal outcome of the reminder flow
STATUS_UNRESPONSIVE = "unresponsive"  # Customer didn't respond after reminders

# Lead sources
SOURCE_MISSED_CALL = "missed_call"

# Message directions (conversation_messages.direction)
DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"

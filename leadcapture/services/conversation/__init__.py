"""Conversation state machine and slot merge. Re-exports for stable public API."""

from leadcapture.services.conversation.slot_merge import LeadInfo, merge_lead_info
from leadcapture.services.conversation.state_machine import (
    TERMINAL_STATES,
    get_next_state,
    get_state_semantics,
    is_terminal_state,
    should_send_response,
    transition,
)

__all__ = [
    "LeadInfo",
    "TERMINAL_STATES",
    "get_next_state",
    "get_state_semantics",
    "is_terminal_state",
    "merge_lead_info",
    "should_send_response",
    "transition",
]

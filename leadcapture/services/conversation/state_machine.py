"""
Conversation state machine for lead qualification.

Flow: awaiting_response -> awaiting_name -> awaiting_need -> awaiting_preference -> completed
States can be skipped when one message yields several slots. Reminders exhausted with
no reply ends in unresponsive.

Pure functions only: callers own persistence of the returned state.
"""

from leadcapture.constants.conversation import ConversationEvent, ConversationState
from leadcapture.services.conversation.slot_merge import LeadInfo

TERMINAL_STATES = frozenset({ConversationState.COMPLETED, ConversationState.UNRESPONSIVE})

# States in which the bot does not solicit anything
SILENT_STATES = frozenset(
    {
        ConversationState.AWAITING_RESPONSE,
        ConversationState.COMPLETED,
        ConversationState.UNRESPONSIVE,
    }
)

# State semantics (for documentation / admin display)
STATE_SEMANTICS = {
    ConversationState.AWAITING_RESPONSE: "Initial message sent, no reply yet",
    ConversationState.AWAITING_NAME: "Asked for the customer's name",
    ConversationState.AWAITING_NEED: "Asked what the customer needs",
    ConversationState.AWAITING_PREFERENCE: "Asked when/how to call back",
    ConversationState.COMPLETED: "All qualification slots filled - terminal",
    ConversationState.UNRESPONSIVE: "No reply after both reminders - terminal",
}


def get_next_state(current_state: ConversationState, slots: LeadInfo) -> ConversationState:
    """
    Determine the next state from what is still missing in the accumulated slots.

    Args:
        current_state: Persisted conversation state
        slots: Accumulated (already merged) lead info

    Returns:
        The state to persist after this inbound message

    Name is only solicited once the conversation has left awaiting_response: a first
    reply without a name goes straight to need/preference. If that first reply carries
    need and preference but no name, the conversation completes without a name.
    """
    current_state = ConversationState(current_state)

    if current_state in TERMINAL_STATES:
        return current_state

    if slots.name and slots.need and slots.contact_preference:
        return ConversationState.COMPLETED

    if not slots.name and current_state != ConversationState.AWAITING_RESPONSE:
        return ConversationState.AWAITING_NAME

    if not slots.need:
        return ConversationState.AWAITING_NEED

    if not slots.contact_preference:
        return ConversationState.AWAITING_PREFERENCE

    # Only reachable from awaiting_response with need + preference and no name
    return ConversationState.COMPLETED


def transition(current_state: ConversationState, event: ConversationEvent) -> ConversationState:
    """
    Apply a non-extraction event.

    TIMEOUT always yields unresponsive and does not guard terminal states; callers
    check is_terminal_state() first. Reminder events never change the state.
    MESSAGE_RECEIVED is a placeholder - inbound messages go through get_next_state().
    """
    current_state = ConversationState(current_state)
    event = ConversationEvent(event)

    if event == ConversationEvent.TIMEOUT:
        return ConversationState.UNRESPONSIVE

    # REMINDER_1_SENT, REMINDER_2_SENT, MESSAGE_RECEIVED
    return current_state


def is_terminal_state(state: ConversationState) -> bool:
    """True for completed and unresponsive."""
    return ConversationState(state) in TERMINAL_STATES


def should_send_response(state: ConversationState) -> bool:
    """
    Whether the bot should actively solicit a missing slot in this state.

    Never before the first reply (awaiting_response) and never once resolved.
    """
    return ConversationState(state) not in SILENT_STATES


def get_state_semantics(state: ConversationState) -> str | None:
    """Get the semantic meaning of a state (for documentation/debugging)."""
    return STATE_SEMANTICS.get(ConversationState(state))

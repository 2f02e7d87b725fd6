"""Database session helpers."""

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from leadcapture.constants.conversation import ConversationState
from leadcapture.constants.event_types import EVENT_CONVERSATION_STATE_CONFLICT
from leadcapture.db.models import LeadConversation
from leadcapture.services.system_event_service import warn

logger = logging.getLogger(__name__)


def commit_and_refresh(db: Session, *instances) -> None:
    """
    Commit the transaction and refresh each given instance.
    Use where the code would otherwise do db.commit() followed by db.refresh(instance).
    """
    db.commit()
    for obj in instances:
        if obj is not None:
            db.refresh(obj)


def set_conversation_state_if_at(
    db: Session,
    conversation_id: int,
    expected_state: ConversationState,
    new_state: ConversationState,
    lead_id: int | None = None,
    **values,
) -> bool:
    """
    Set a lead conversation's state only if it is still expected_state.

    Uses conditional UPDATE (portable: SQLite + Postgres):
      UPDATE lead_conversations SET state = :new_state, ...
      WHERE id = :id AND state = :expected_state
    For writers that read the state, do other work, then write it: a concurrent writer
    that moved the state first wins.

    Args:
        db: Database session
        conversation_id: LeadConversation ID
        expected_state: State read before deciding on new_state
        new_state: State to write
        lead_id: Lead ID, for the conflict event
        **values: Other LeadConversation columns to write with the state

    Returns:
        True if applied (not committed yet). False on conflict: the session is rolled
        back, discarding the caller's pending changes, and a WARN event is recorded.
    """
    result = db.execute(
        update(LeadConversation)
        .where(LeadConversation.id == conversation_id)
        .where(LeadConversation.state == expected_state)
        .values(state=new_state, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return True

    db.rollback()
    convo = db.get(LeadConversation, conversation_id)
    actual = convo.state.value if convo else None
    logger.info(
        f"Lead conversation {conversation_id} state conflict: expected {expected_state.value}, "
        f"found {actual}, wanted {new_state.value}"
    )
    warn(
        db=db,
        event_type=EVENT_CONVERSATION_STATE_CONFLICT,
        lead_id=lead_id,
        payload={
            "lead_conversation_id": conversation_id,
            "expected_state": expected_state.value,
            "actual_state": actual,
            "new_state": new_state.value,
        },
    )
    return False

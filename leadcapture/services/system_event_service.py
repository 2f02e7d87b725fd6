"""
System event logging service.

Structured logging of key system events and failures to the database.
All SystemEvent creation should go through log_event (or info/warn/error) to keep
the payload shape consistent.
"""

import logging

from sqlalchemy.orm import Session

from leadcapture.db.models import SystemEvent
from leadcapture.middleware.correlation_id import get_correlation_id

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    level: str,
    event_type: str,
    lead_id: int | None = None,
    payload: dict | None = None,
    exc: BaseException | None = None,
) -> SystemEvent:
    """
    Log a system event to the database.

    Args:
        db: Database session
        level: Event level (INFO, WARN, ERROR)
        event_type: Type of event (e.g., "whatsapp.send_failure", "job.failed")
        lead_id: Optional lead ID associated with the event
        payload: Optional additional event data. Copied, not mutated.
        exc: Optional exception; its type and message are added to the payload.

    Returns:
        Created SystemEvent object
    """
    normalized: dict = dict(payload) if payload else {}
    if exc is not None:
        normalized["error"] = {
            "type": type(exc).__name__,
            "message": str(exc)[:500],
        }
    correlation_id = get_correlation_id(None)
    if correlation_id is not None:
        normalized["correlation_id"] = correlation_id

    event = SystemEvent(
        level=level.upper(),
        event_type=event_type,
        lead_id=lead_id,
        payload=normalized or None,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def info(db: Session, event_type: str, lead_id: int | None = None, payload: dict | None = None) -> SystemEvent:
    return log_event(db, level="INFO", event_type=event_type, lead_id=lead_id, payload=payload)


def warn(
    db: Session,
    event_type: str,
    lead_id: int | None = None,
    payload: dict | None = None,
    exc: BaseException | None = None,
) -> SystemEvent:
    return log_event(db, level="WARN", event_type=event_type, lead_id=lead_id, payload=payload, exc=exc)


def error(
    db: Session,
    event_type: str,
    lead_id: int | None = None,
    payload: dict | None = None,
    exc: BaseException | None = None,
) -> SystemEvent:
    return log_event(db, level="ERROR", event_type=event_type, lead_id=lead_id, payload=payload, exc=exc)

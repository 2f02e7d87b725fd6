"""
Activity feed for tenants.

publish() is fire-and-forget from the caller's point of view: a failure to
record the event is logged here and never propagated.
"""

import logging

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadcapture.db.models import ActivityEvent

logger = logging.getLogger(__name__)


def publish(
    db: Session,
    tenant_id: int,
    event_type: str,
    title: str,
    description: str | None = None,
    source: str = "leadcapture",
    source_id: str | int | None = None,
    metadata: dict | None = None,
) -> ActivityEvent | None:
    """
    Record an activity event for a tenant's feed.

    Returns:
        Created ActivityEvent, or None if it could not be recorded
    """
    try:
        event = ActivityEvent(
            tenant_id=tenant_id,
            event_type=event_type,
            title=title,
            description=description,
            source=source,
            source_id=str(source_id) if source_id is not None else None,
            event_metadata=metadata,
        )
        db.add(event)
        db.commit()
        db.refresh(event)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to publish activity {event_type} for tenant {tenant_id}: {e}")
        return None

    logger.info(f"Activity {event_type} published for tenant {tenant_id} (source_id={source_id})")
    return event


def get_feed(
    db: Session,
    tenant_id: int,
    limit: int = 50,
    event_type: str | None = None,
) -> list[ActivityEvent]:
    """Activity feed for a tenant, newest first."""
    stmt = select(ActivityEvent).where(ActivityEvent.tenant_id == tenant_id)
    if event_type:
        stmt = stmt.where(ActivityEvent.event_type == event_type)
    stmt = stmt.order_by(desc(ActivityEvent.occurred_at), desc(ActivityEvent.id)).limit(limit)
    return list(db.execute(stmt).scalars().all())

"""
Owner notifications - lead summary sent to the business owner's WhatsApp.
"""

import logging

from sqlalchemy.orm import Session

from leadcapture.constants.event_types import EVENT_OWNER_NOTIFICATION_FAILURE
from leadcapture.core.config import settings
from leadcapture.db.models import Lead, Tenant
from leadcapture.services.messaging.message_composer import render_message
from leadcapture.services.messaging.whatsapp import create_whatsapp_client, send_text_message
from leadcapture.services.system_event_service import warn

logger = logging.getLogger(__name__)


def format_lead_summary(lead: Lead) -> str:
    """
    Structured summary of the accumulated slots.

    Header marks partial leads (any slot still missing); missing slots are left out.
    """
    complete = bool(lead.customer_name and lead.need and lead.contact_preference)
    header_key = "owner_summary_header_complete" if complete else "owner_summary_header_partial"
    lines = [render_message(header_key)]
    if lead.customer_name:
        lines.append(render_message("owner_summary_name", value=lead.customer_name))
    if lead.need:
        lines.append(render_message("owner_summary_need", value=lead.need))
    if lead.contact_preference:
        lines.append(render_message("owner_summary_preference", value=lead.contact_preference))
    lines.append(render_message("owner_summary_phone", value=lead.customer_phone))
    return "\n".join(lines)


async def notify_owner_of_lead(db: Session, lead: Lead) -> bool:
    """
    Send the lead summary to the tenant owner.

    Returns:
        True if sent. Failures are logged and recorded, never raised.
    """
    if not settings.feature_notifications_enabled:
        logger.debug(f"Notifications disabled - not notifying owner of lead {lead.id}")
        return False

    tenant = db.get(Tenant, lead.tenant_id)
    if not tenant or not tenant.owner_phone:
        logger.info(f"No owner phone for tenant {lead.tenant_id}, skipping owner notification")
        return False

    client = create_whatsapp_client(db, lead.tenant_id)
    if not client:
        return False

    try:
        await send_text_message(client, tenant.owner_phone, format_lead_summary(lead))
    except Exception as e:
        logger.error(f"Failed to notify owner of lead {lead.id}: {e}")
        warn(
            db=db,
            event_type=EVENT_OWNER_NOTIFICATION_FAILURE,
            lead_id=lead.id,
            payload={"tenant_id": lead.tenant_id},
            exc=e,
        )
        return False

    logger.info(f"Owner of tenant {lead.tenant_id} notified of lead {lead.id}")
    return True

"""
WhatsApp messaging: per-tenant client factory and text sender (dry-run aware).
"""

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import Session

from leadcapture.core.config import settings
from leadcapture.db.models import Tenant
from leadcapture.services.messaging.http_client import create_httpx_client

logger = logging.getLogger(__name__)

WHATSAPP_STATUS_ACTIVE = "active"


class WhatsAppSendError(Exception):
    """Provider rejected or failed a send. Retryable from the job system's view."""


@dataclass
class WhatsAppClient:
    """Channel-send capability for one tenant."""

    tenant_id: int
    phone_number_id: str
    access_token: str
    dry_run: bool = True


def create_whatsapp_client(db: Session, tenant_id: int) -> WhatsAppClient | None:
    """
    Build a send client for a tenant.

    Returns None ("no client") when the tenant is missing or has no active,
    fully-configured WhatsApp connection. Callers treat None as a skip, not an error.
    """
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        logger.warning(f"Tenant {tenant_id} not found - no WhatsApp client")
        return None

    if tenant.whatsapp_status != WHATSAPP_STATUS_ACTIVE:
        logger.warning(f"Tenant {tenant_id} WhatsApp connection is {tenant.whatsapp_status}")
        return None

    if not tenant.whatsapp_phone_number_id or not tenant.whatsapp_access_token:
        logger.error(f"Tenant {tenant_id} WhatsApp credentials missing")
        return None

    return WhatsAppClient(
        tenant_id=tenant.id,
        phone_number_id=tenant.whatsapp_phone_number_id,
        access_token=tenant.whatsapp_access_token,
        dry_run=settings.whatsapp_dry_run,
    )


async def send_text_message(client: WhatsAppClient, to: str, body: str) -> dict:
    """
    Send a WhatsApp text message.

    Args:
        client: Tenant send client
        to: Destination phone number (with country code, no +)
        body: Message text

    Returns:
        dict with status and message_id (None in dry-run)

    Raises:
        WhatsAppSendError: If the provider call fails
    """
    if client.dry_run:
        logger.info(f"[DRY-RUN] Would send WhatsApp message to {to}: {body}")
        return {"status": "dry_run", "message_id": None, "to": to}

    url = f"{settings.whatsapp_api_base_url}/{client.phone_number_id}/messages"
    headers = {
        "Authorization": f"Bearer {client.access_token}",
        "Content-Type": "application/json",
    }
    payload = {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "text",
        "text": {"body": body},
    }

    try:
        async with create_httpx_client() as http:
            response = await http.post(url, headers=headers, json=payload)
            response.raise_for_status()
            result = response.json()
    except httpx.HTTPError as e:
        logger.error(f"Failed to send WhatsApp message to {to}: {e}")
        raise WhatsAppSendError(str(e)) from e

    return {
        "status": "sent",
        "message_id": result.get("messages", [{}])[0].get("id"),
        "to": to,
    }

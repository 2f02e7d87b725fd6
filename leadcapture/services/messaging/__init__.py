"""Outbound messaging: WhatsApp sends, message copy, owner notifications."""

from leadcapture.services.messaging.message_composer import (
    format_initial_message,
    get_chatbot_response,
    get_reminder_message,
    render_message,
)
from leadcapture.services.messaging.whatsapp import (
    WhatsAppClient,
    WhatsAppSendError,
    create_whatsapp_client,
    send_text_message,
)

__all__ = [
    "WhatsAppClient",
    "WhatsAppSendError",
    "create_whatsapp_client",
    "format_initial_message",
    "get_chatbot_response",
    "get_reminder_message",
    "render_message",
    "send_text_message",
]

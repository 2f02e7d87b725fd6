"""
Message composer - loads conversation copy from YAML and selects variants deterministically.

Uses lead_id to deterministically select a variant (same lead always gets same variant).
"""

import hashlib
import logging
from pathlib import Path
from typing import Any, cast

import yaml

from leadcapture.constants.conversation import ConversationState
from leadcapture.core.config import settings

logger = logging.getLogger(__name__)

# Path to copy files
COPY_DIR = Path(__file__).resolve().parent.parent.parent / "copy"
DEFAULT_LOCALE = "en_GB"

# Conversation state -> YAML key of the bot's reply in that state
STATE_TO_KEY = {
    ConversationState.AWAITING_NAME: "ask_name",
    ConversationState.AWAITING_NEED: "ask_need",
    ConversationState.AWAITING_PREFERENCE: "ask_preference",
    ConversationState.COMPLETED: "complete",
}


class MessageComposer:
    """Composes messages from YAML copy files with deterministic variant selection."""

    def __init__(self, locale: str = DEFAULT_LOCALE):
        self.locale = locale
        self.copy_file = COPY_DIR / f"{locale}.yml"
        self._copy_data: dict[str, Any] = {}
        self._load_copy()

    def _load_copy(self) -> None:
        if not self.copy_file.exists():
            logger.warning(f"Copy file not found: {self.copy_file}, using empty copy")
            self._copy_data = {}
            return

        try:
            with open(self.copy_file, encoding="utf-8") as f:
                self._copy_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded copy from {self.copy_file}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load copy from {self.copy_file}: {e}")
            self._copy_data = {}

    def has_key(self, key: str) -> bool:
        return key in self._copy_data

    def _select_variant(self, key: str, lead_id: int | None = None) -> str:
        if key not in self._copy_data:
            logger.warning(f"Message key not found: {key}")
            return f"[MISSING: {key}]"

        variants = self._copy_data[key]
        if not isinstance(variants, list):
            return str(variants)

        if not variants:
            logger.warning(f"No variants found for key: {key}")
            return ""

        if lead_id is not None:
            hash_value = int(hashlib.md5(f"{key}:{lead_id}".encode()).hexdigest(), 16)
            variant_index = hash_value % len(variants)
        else:
            variant_index = 0

        return cast(str, variants[variant_index])

    def render(self, key: str, lead_id: int | None = None, **kwargs: Any) -> str:
        """
        Render a message from copy.

        Example:
            composer.render("reminder_1", lead_id=123, business_name="Dani Plumbing")
        """
        template = self._select_variant(key, lead_id)
        try:
            return template.format(**kwargs)
        except KeyError as e:
            logger.warning(f"Missing template variable {e} for key {key}")
            return template


# Global instance (reset in tests so a temp COPY_DIR doesn't leak)
_composer: MessageComposer | None = None


def reset_cache() -> None:
    """Clear the global composer cache."""
    global _composer
    _composer = None


def get_composer(locale: str | None = None) -> MessageComposer:
    global _composer
    locale = locale or settings.copy_locale
    if _composer is None or _composer.locale != locale:
        _composer = MessageComposer(locale=locale)
    return _composer


def render_message(key: str, lead_id: int | None = None, locale: str | None = None, **kwargs: Any) -> str:
    """Convenience function to render a message with the global composer."""
    return get_composer(locale).render(key, lead_id=lead_id, **kwargs)


def format_initial_message(business_name: str, lead_id: int | None = None) -> str:
    """First outbound message to a missed-call caller."""
    return render_message("initial", lead_id=lead_id, business_name=business_name)


def get_chatbot_response(
    state: ConversationState,
    business_name: str,
    customer_name: str | None = None,
    lead_id: int | None = None,
) -> str | None:
    """
    Reply for the given state, or None when the bot stays silent
    (awaiting_response, unresponsive).
    """
    key = STATE_TO_KEY.get(ConversationState(state))
    if key is None:
        return None
    if key == "ask_need" and customer_name:
        key = "ask_need_named"
    return render_message(key, lead_id=lead_id, business_name=business_name, name=customer_name or "")


def get_reminder_message(reminder_number: int, business_name: str, lead_id: int | None = None) -> str:
    key = "reminder_1" if reminder_number == 1 else "reminder_2"
    return render_message(key, lead_id=lead_id, business_name=business_name)

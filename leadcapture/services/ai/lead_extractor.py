"""
Lead-info extraction from customer messages.

The extractor is a black box with a fixed contract: given the current message,
prior messages and the conversation state, return a LeadInfo. It never raises:
provider errors and malformed output degrade to LeadInfo.empty() so a failed
extraction does not block the conversation (the next turn tries again).
"""

import json
import logging
import re
from functools import lru_cache
from typing import Any, Protocol

from openai import AsyncOpenAI

from leadcapture.constants.conversation import Confidence, ConversationState
from leadcapture.core.config import settings
from leadcapture.services.conversation.slot_merge import LeadInfo

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")

SYSTEM_PROMPT = """You are extracting lead information from WhatsApp messages.
The conversation is with a potential customer who called a business and didn't get through.

Current conversation state: {state}
Previous messages in conversation:
{history}

Extract the following from the customer's CURRENT message:
- name: Their name if they mentioned it
- need: What they need/want (their reason for calling)
- contactPreference: When/how they want to be called back (morning, evening, ASAP, specific time, etc.)

Guidelines:
- Be generous in extraction - "it's Dani here" means the name is "Dani"
- If they describe a problem or ask a question, that's their need
- If they mention timing like "tomorrow", "afternoon", "evening", that's a contact preference
- Return null for fields that cannot be determined from THIS message
- Even partial info is useful - extract what you can

Return a JSON object with exactly these fields:
{{"name": string | null, "need": string | null, "contactPreference": string | null, "confidence": "high" | "medium" | "low"}}

Set confidence to "high" if fields are clearly stated, "medium" if inference was needed,
"low" if very uncertain."""


class LeadInfoExtractor(Protocol):
    """Classifier contract consumed by the turn-processing path."""

    async def extract(
        self,
        message: str,
        prior_messages: list[str],
        current_state: ConversationState,
    ) -> LeadInfo: ...


def _clean_slot(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def parse_extraction_response(text: str | None) -> LeadInfo:
    """
    Parse the classifier's JSON reply (optionally wrapped in a markdown code block).

    Returns LeadInfo.empty() for anything that isn't a JSON object. Missing or
    non-string slots become None; a missing/unknown confidence becomes medium.
    """
    if not text:
        return LeadInfo.empty()

    fenced = _CODE_FENCE_RE.search(text)
    json_str = fenced.group(1) if fenced else text

    try:
        data = json.loads(json_str.strip())
    except (json.JSONDecodeError, ValueError):
        logger.warning(f"Extractor returned non-JSON output: {text[:200]!r}")
        return LeadInfo.empty()

    if not isinstance(data, dict):
        logger.warning(f"Extractor returned JSON that is not an object: {type(data).__name__}")
        return LeadInfo.empty()

    try:
        confidence = Confidence(str(data.get("confidence") or Confidence.MEDIUM).lower())
    except ValueError:
        confidence = Confidence.MEDIUM

    return LeadInfo(
        name=_clean_slot(data.get("name")),
        need=_clean_slot(data.get("need")),
        contact_preference=_clean_slot(
            data.get("contactPreference", data.get("contact_preference"))
        ),
        confidence=confidence,
    )


class OpenAILeadExtractor:
    """Extractor backed by an OpenAI chat model with JSON output."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model
        self.timeout = timeout or settings.openai_timeout_seconds
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def is_available(self) -> bool:
        return bool(self.api_key)

    def build_system_prompt(self, prior_messages: list[str], current_state: ConversationState) -> str:
        history = "\n".join(f"{i}. {m}" for i, m in enumerate(prior_messages, start=1))
        return SYSTEM_PROMPT.format(
            state=ConversationState(current_state).value,
            history=history or "(no previous messages)",
        )

    async def extract(
        self,
        message: str,
        prior_messages: list[str],
        current_state: ConversationState,
    ) -> LeadInfo:
        if not self.is_available():
            logger.warning("Lead extraction skipped - OPENAI_API_KEY not configured")
            return LeadInfo.empty()

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.build_system_prompt(prior_messages, current_state)},
                    {
                        "role": "user",
                        "content": f'Customer message to analyze:\n"{message}"\n\nExtract lead info as JSON.',
                    },
                ],
                temperature=0,
                max_tokens=256,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content
        except Exception as e:
            logger.error(f"Failed to extract lead info: {e}")
            return LeadInfo.empty()

        return parse_extraction_response(content)


@lru_cache(maxsize=1)
def get_lead_extractor() -> LeadInfoExtractor:
    """Reusable extractor for the configured AI provider."""
    if settings.ai_provider != "openai":
        raise RuntimeError(f"Unsupported AI provider: {settings.ai_provider}")
    return OpenAILeadExtractor()

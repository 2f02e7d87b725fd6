"""
Slot merge policy for AI-extracted lead info.

First non-null wins: once a slot is filled it is never overwritten by a later
extraction, including a contradicting one. Confidence always reflects the latest
extraction.
"""

from dataclasses import dataclass, replace

from leadcapture.constants.conversation import Confidence


@dataclass(frozen=True)
class LeadInfo:
    """Qualification slots plus the confidence of the extraction that produced them."""

    name: str | None = None
    need: str | None = None
    contact_preference: str | None = None
    confidence: Confidence = Confidence.LOW

    @classmethod
    def empty(cls) -> "LeadInfo":
        """All-null, low-confidence value (used when extraction fails)."""
        return cls()

    def is_complete(self) -> bool:
        return bool(self.name and self.need and self.contact_preference)

    def with_confidence(self, confidence: Confidence) -> "LeadInfo":
        return replace(self, confidence=Confidence(confidence))


def merge_lead_info(existing: LeadInfo, extracted: LeadInfo) -> LeadInfo:
    """
    Merge a fresh extraction into the accumulated slots.

    Args:
        existing: Accumulated slots from previous turns
        extracted: This turn's extraction

    Returns:
        Merged LeadInfo; each slot is existing if set, else extracted.
    """
    return LeadInfo(
        name=existing.name or extracted.name,
        need=existing.need or extracted.need,
        contact_preference=existing.contact_preference or extracted.contact_preference,
        confidence=extracted.confidence,  # latest extraction quality, not accumulated
    )

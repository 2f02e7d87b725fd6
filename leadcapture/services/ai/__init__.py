"""Lead-info extraction. Re-exports for stable public API."""

from leadcapture.services.ai.lead_extractor import (
    LeadInfoExtractor,
    OpenAILeadExtractor,
    get_lead_extractor,
    parse_extraction_response,
)

__all__ = [
    "LeadInfoExtractor",
    "OpenAILeadExtractor",
    "get_lead_extractor",
    "parse_extraction_response",
]

"""
Tests for slot merge policy (first non-null wins, latest confidence).
"""

from leadcapture.constants.conversation import Confidence
from leadcapture.services.conversation.slot_merge import LeadInfo, merge_lead_info


def test_merge_fills_missing_slots():
    existing = LeadInfo(name="Dani")
    extracted = LeadInfo(need="leaking tap", contact_preference="after 5pm", confidence=Confidence.HIGH)

    merged = merge_lead_info(existing, extracted)

    assert merged.name == "Dani"
    assert merged.need == "leaking tap"
    assert merged.contact_preference == "after 5pm"


def test_existing_slot_is_never_overwritten():
    """A later contradicting extraction does not replace a filled slot."""
    existing = LeadInfo(name="Dani", need="boiler")
    extracted = LeadInfo(name="Daniel", need="radiator", confidence=Confidence.HIGH)

    merged = merge_lead_info(existing, extracted)

    assert merged.name == "Dani"
    assert merged.need == "boiler"


def test_confidence_comes_from_latest_extraction():
    existing = LeadInfo(name="Dani", confidence=Confidence.HIGH)
    merged = merge_lead_info(existing, LeadInfo(confidence=Confidence.LOW))
    assert merged.confidence == Confidence.LOW
    assert merged.name == "Dani"


def test_empty_string_in_existing_is_treated_as_missing():
    merged = merge_lead_info(LeadInfo(name=""), LeadInfo(name="Dani"))
    assert merged.name == "Dani"


def test_merge_is_idempotent():
    existing = LeadInfo(name="Dani")
    extracted = LeadInfo(need="boiler", confidence=Confidence.MEDIUM)

    once = merge_lead_info(existing, extracted)
    twice = merge_lead_info(once, extracted)

    assert once == twice


def test_merge_with_empty_extraction_keeps_slots():
    existing = LeadInfo(name="Dani", need="boiler", contact_preference="morning")
    merged = merge_lead_info(existing, LeadInfo.empty())
    assert merged.is_complete()
    assert merged.confidence == Confidence.LOW


def test_lead_info_helpers():
    assert LeadInfo.empty() == LeadInfo()
    assert LeadInfo.empty().confidence == Confidence.LOW
    assert not LeadInfo(name="Dani", need="boiler").is_complete()
    assert LeadInfo(name="a").with_confidence("high").confidence == Confidence.HIGH

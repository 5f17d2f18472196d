"""Tests for context summary merging."""

import pytest

from app.core.context_merge import is_placeholder, merge_context_summary
from app.core.schemas_discovery import PLACEHOLDER, ContextSummary


def test_all_missing_gives_placeholders():
    merged = merge_context_summary(None)
    assert set(merged.to_wire().values()) == {PLACEHOLDER}


def test_llm_value_wins():
    merged = merge_context_summary(
        ContextSummary(business_type="Bakery"),
        prior={"businessType": "Cafe"},
        website={"productsServices": "Coffee and pastries"},
    )
    assert merged.business_type == "Bakery"


def test_prior_fills_llm_placeholder():
    merged = merge_context_summary(
        ContextSummary(),
        prior={"businessType": "Cafe", "goals": "Double catering revenue"},
        website={"productsServices": "Coffee and pastries"},
    )
    assert merged.business_type == "Cafe"
    assert merged.goals == "Double catering revenue"


def test_website_then_financial():
    merged = merge_context_summary(
        None,
        website={
            "productsServices": "Unable to determine from website content",
            "techStack": "Shopify, Mailchimp",
        },
        financial={"businessType": "Retail bakery", "revenueTrend": "Up 12% year over year"},
    )
    assert merged.business_type == "Retail bakery"
    assert merged.prior_tech_use == "Shopify, Mailchimp"
    assert merged.data_available == "Up 12% year over year"


def test_goals_never_come_from_analyses():
    merged = merge_context_summary(None, website={"goals": "Sell more"}, financial={"goals": "x"})
    assert merged.goals == PLACEHOLDER


def test_snake_case_prior_accepted():
    merged = merge_context_summary(None, prior={"pain_points": "Manual invoicing"})
    assert merged.pain_points == "Manual invoicing"


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, True),
        ("", True),
        ("Not yet specified", True),
        ("unknown.", True),
        ("N/A", True),
        ("Unable to determine from provided data", True),
        ("Website analysis unavailable", True),
        ("Bakery", False),
        (42, False),
    ],
)
def test_is_placeholder(value, expected):
    assert is_placeholder(value) is expected

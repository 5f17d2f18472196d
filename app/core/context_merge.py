"""Merge the LLM context summary with prior and analysis-derived values.

Per field, the first non-placeholder value wins, in this order:

    LLM extraction > prior summary (initialContext) > website analysis
    > financial analysis > "Not yet specified"

Which analysis keys feed which summary field is configuration, kept in
``FIELD_SOURCES``.
"""

from typing import Any

from pydantic.alias_generators import to_camel

from app.core.schemas_discovery import CONTEXT_FIELDS, PLACEHOLDER, ContextSummary

# summary field -> ordered (analysis, key) sources
FIELD_SOURCES: dict[str, tuple[tuple[str, str], ...]] = {
    "business_type": (("website", "products_services"), ("financial", "business_type")),
    "pain_points": (("website", "marketing_weaknesses"), ("financial", "cash_flow_risks")),
    "goals": (),
    "data_available": (("financial", "revenue_trend"),),
    "prior_tech_use": (("website", "tech_stack"),),
    "growth_intent": (),
}

_PLACEHOLDER_VALUES = {
    "",
    "not yet specified",
    "not specified",
    "unknown",
    "n/a",
    "none",
    "null",
}


def is_placeholder(value: Any) -> bool:
    """True for empty values and the sentinel strings models and analyses emit."""
    if value is None:
        return True
    if not isinstance(value, str):
        return False
    lowered = value.strip().lower().rstrip(".")
    if lowered in _PLACEHOLDER_VALUES:
        return True
    return lowered.startswith("unable to determine") or lowered.endswith("unavailable")


def _lookup(data: dict[str, Any] | ContextSummary | None, field: str) -> Any:
    if data is None:
        return None
    if isinstance(data, ContextSummary):
        return getattr(data, field)
    if field in data:
        return data[field]
    return data.get(to_camel(field))


def merge_context_summary(
    llm_summary: ContextSummary | None,
    prior: ContextSummary | dict[str, Any] | None = None,
    website: dict[str, Any] | None = None,
    financial: dict[str, Any] | None = None,
) -> ContextSummary:
    """Build the final six-field summary for the response."""
    analyses = {"website": website, "financial": financial}
    merged: dict[str, str] = {}

    for field in CONTEXT_FIELDS:
        candidates = [_lookup(llm_summary, field), _lookup(prior, field)]
        for analysis, key in FIELD_SOURCES[field]:
            candidates.append(_lookup(analyses[analysis], key))

        value = next((c for c in candidates if not is_placeholder(c)), None)
        merged[field] = str(value).strip() if value is not None else PLACEHOLDER

    return ContextSummary(**merged)

"""Lead-signal extraction chain."""

import json
import logging
from typing import Any

from pydantic import ValidationError

from app.core.exceptions import LLMGatewayError
from app.core.llm import parse_llm_json
from app.core.nim_client import chat_completion
from app.core.prompts import LEAD_SIGNALS_SYSTEM, format_conversation, lead_signals_prompt
from app.core.schemas_discovery import ChatTurn, ContextSummary
from app.core.schemas_lead import LEAD_SIGNALS_JSON_SCHEMA, LeadSignals, compute_lead_score

logger = logging.getLogger(__name__)


def _dump(value: dict[str, Any] | None) -> str | None:
    return json.dumps(value, ensure_ascii=False) if value else None


async def extract_lead_signals(
    turns: list[ChatTurn],
    context_summary: ContextSummary | None = None,
    website_analysis: dict[str, Any] | None = None,
    financial_analysis: dict[str, Any] | None = None,
    research_brief: str | None = None,
    docs_count: int = 0,
    research_coverage: float = 0.0,
) -> LeadSignals | None:
    """
    Infer lead-qualification signals and score them.

    Tries once at temperature 0.1 and once more at 0.0 if the output does
    not validate. The model's own score is replaced by compute_lead_score.

    Returns:
        LeadSignals, or None if both attempts failed
    """
    prompt = lead_signals_prompt(
        format_conversation(turns),
        json.dumps(context_summary.to_wire(), ensure_ascii=False) if context_summary else None,
        _dump(website_analysis),
        _dump(financial_analysis),
        research_brief,
        website_found=bool(website_analysis),
        docs_count=docs_count,
        research_coverage=research_coverage,
    )
    messages = [
        {"role": "system", "content": LEAD_SIGNALS_SYSTEM},
        {"role": "user", "content": prompt},
    ]

    for temperature in (0.1, 0.0):
        try:
            result = await chat_completion(
                messages,
                temperature=temperature,
                top_p=0.9,
                max_tokens=400,
                guided_json=LEAD_SIGNALS_JSON_SCHEMA,
                phase="lead_signals",
            )
        except LLMGatewayError as e:
            logger.warning(f"Lead signal extraction failed: {e.message}")
            return None

        try:
            signals = parse_llm_json(result.content, LeadSignals)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Lead signals invalid at temperature {temperature}: {e}")
            continue

        signals.website_found = bool(website_analysis)
        signals.docs_count = docs_count
        signals.research_coverage = research_coverage
        signals.score = compute_lead_score(signals)
        return signals

    return None

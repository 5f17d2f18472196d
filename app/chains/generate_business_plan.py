"""Business plan generation chain.

Single long-form call through the multi-provider wrapper. Callers decide
what to do on failure; this module raises.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from app.core.config import get_settings
from app.core.exceptions import DiscoveryError
from app.core.logging import get_logger
from app.core.model_router import choose_model
from app.core.prompts import PLAN_SYSTEM_PROMPT, build_plan_user_prompt, format_conversation
from app.core.providers import (
    CompletionRequest,
    ProviderCall,
    ProviderHealthRegistry,
    reliable_chat_completion,
)
from app.core.schemas_discovery import ChatTurn, ContextSummary

logger = get_logger(__name__)

PLAN_MAX_TOKENS = 4096
MAX_HIGHLIGHTS = 5

_SECTION_RE = re.compile(r"^#{2,3}\s+(.+?)\s*$", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*(?:[-*]|\d+\.)\s+(.+?)\s*$", re.MULTILINE)
_MD_EMPHASIS_RE = re.compile(r"\*\*|__|`")


@dataclass
class BusinessPlanResult:
    markdown: str
    model: str
    provider: str
    latency_ms: int = 0
    highlights: list[str] = field(default_factory=list)


def _plain(text: str) -> str:
    return _MD_EMPHASIS_RE.sub("", text).strip()


def extract_plan_highlights(markdown: str, limit: int = MAX_HIGHLIGHTS) -> list[str]:
    """First bullet under each `##` section, falling back to the section titles."""
    highlights: list[str] = []
    sections = list(_SECTION_RE.finditer(markdown))
    for index, section in enumerate(sections):
        end = sections[index + 1].start() if index + 1 < len(sections) else len(markdown)
        bullet = _BULLET_RE.search(markdown, section.end(), end)
        if bullet:
            highlights.append(_plain(bullet.group(1)))
        if len(highlights) >= limit:
            return highlights

    if not highlights:
        highlights = [_plain(section.group(1)) for section in sections[:limit]]
    return highlights


async def generate_business_plan(
    context_summary: ContextSummary,
    turns: list[ChatTurn],
    registry: ProviderHealthRegistry,
    website_analysis: dict[str, Any] | None = None,
    financial_analysis: dict[str, Any] | None = None,
    research_brief: str | None = None,
    calls: dict[str, ProviderCall] | None = None,
) -> BusinessPlanResult:
    """
    Generate the AI implementation plan in markdown.

    Args:
        context_summary: Merged six-field summary
        turns: Full conversation
        registry: Provider health registry for failover
        website_analysis: Optional website analysis dict
        financial_analysis: Optional financial analysis dict
        research_brief: Optional brief from the research agent
        calls: Optional provider call overrides

    Returns:
        BusinessPlanResult with markdown and highlights

    Raises:
        AllProvidersFailedError: Every provider failed
        DiscoveryError: Provider answered with an empty plan
    """
    settings = get_settings()
    request = CompletionRequest(
        messages=[
            {"role": "system", "content": PLAN_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_plan_user_prompt(
                    context_summary,
                    format_conversation(turns),
                    website_analysis=website_analysis,
                    financial_analysis=financial_analysis,
                    research_brief=research_brief,
                ),
            },
        ],
        model=choose_model("plan"),
        temperature=0.3,
        top_p=0.9,
        max_tokens=PLAN_MAX_TOKENS,
        timeout=settings.PLAN_TIMEOUT_SECONDS,
        phase="plan",
    )

    result = await reliable_chat_completion(request, registry, calls=calls)
    markdown = result.content.strip()
    if not markdown:
        raise DiscoveryError("Plan generation returned empty content", {"provider": result.provider})

    logger.info(
        f"Generated business plan ({len(markdown)} chars) via {result.provider}",
        extra={"provider": result.provider},
    )
    return BusinessPlanResult(
        markdown=markdown,
        model=result.model,
        provider=result.provider,
        latency_ms=result.latency_ms,
        highlights=extract_plan_highlights(markdown),
    )

"""Model selection per phase of the discovery flow."""

import re
from dataclasses import dataclass
from typing import Literal

from app.core.config import get_settings

Phase = Literal["intake", "plan", "research"]

_RESEARCH_KEYWORDS = re.compile(r"competitor|market review|benchmark|compare|research", re.IGNORECASE)


@dataclass(frozen=True)
class DocStats:
    """Size of the document set behind a conversation."""

    pages: int = 0
    sources: int = 0
    conflicts: bool = False


def choose_model(phase: Phase, doc_stats: DocStats | None = None, cost_mode: bool = False) -> str:
    """
    Pick the NIM model for a phase.

    Intake uses the default model (the cheap model in cost mode), plan
    generation uses the plan model, and research escalates to the plan model
    for conflicting or large document sets.
    """
    settings = get_settings()
    doc_stats = doc_stats or DocStats()

    if phase == "intake":
        if cost_mode:
            return settings.LLM_COST_MODE_MODEL
        return settings.LLM_DEFAULT_MODEL

    if phase == "plan":
        return settings.LLM_PLAN_MODEL or settings.LLM_DEFAULT_MODEL

    needs_escalation = doc_stats.conflicts or doc_stats.pages > 40 or doc_stats.sources > 6
    if needs_escalation:
        return settings.LLM_PLAN_MODEL or settings.LLM_DEFAULT_MODEL
    return settings.LLM_DEFAULT_MODEL


def should_trigger_research(doc_stats: DocStats, user_query: str | None = None) -> bool:
    if _RESEARCH_KEYWORDS.search(user_query or ""):
        return True
    if doc_stats.pages > 20:
        return True
    if doc_stats.sources > 3:
        return True
    return doc_stats.conflicts

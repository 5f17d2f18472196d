"""Per-request coordinator for the discovery chat.

Derives the step from the turn history, then either asks the next question
(bounded guard loop with a templated fallback) or generates the plan. Every
outcome is a DiscoveryTurnResult; nothing here raises to the route.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

from app.chains.extract_lead_signals import extract_lead_signals
from app.chains.generate_business_plan import generate_business_plan
from app.chains.generate_context_summary import generate_context_summary
from app.chains.research_agent import run_research
from app.core.config import get_settings
from app.core.context_merge import merge_context_summary
from app.core.discovery_steps import StepState, derive_step
from app.core.exceptions import DiscoveryError, LLMGatewayError
from app.core.logging import get_logger, log_with_context
from app.core.model_router import DocStats, choose_model, should_trigger_research
from app.core.nim_client import chat_completion
from app.core.prompts import (
    FALLBACK_PLAN_MARKDOWN,
    FALLBACK_PLAN_MESSAGE,
    PLAN_READY_MESSAGE,
    build_turn_system_prompt,
    format_context_block,
)
from app.core.providers import ProviderCall, ProviderHealthRegistry
from app.core.rag import RagStore, index_text
from app.core.response_sanitizer import is_acceptable, sanitize_response
from app.core.safety import filter_output
from app.core.schemas_discovery import (
    ChatRequest,
    ChatResponse,
    ChatTurn,
    Citation,
    ContextSummary,
    PlanResponse,
)
from app.core.step_guard import (
    GuardrailAttempt,
    build_corrective_note,
    build_fallback_message,
    build_rejection_note,
    detect_violation,
)
from app.core.website_fetch import domain_of

logger = get_logger(__name__)

QUESTION_TEMPERATURE = 0.6
QUESTION_MAX_TOKENS = 2048

# Rough page size used to size attached text for research routing
CHARS_PER_PAGE = 3000


@dataclass
class DiscoveryTurnResult:
    """Outcome of one chat request, before it is shaped for the wire."""

    message: str
    context_summary: ContextSummary
    step_state: StepState
    fallback: bool = False
    attempts: int = 0
    model: str | None = None
    provider: str | None = None
    is_business_plan: bool = False
    business_plan_markdown: str | None = None
    research_brief: str | None = None
    citations: list[Citation] | None = None
    lead_signals: dict[str, Any] | None = None
    plan_highlights: list[str] | None = None
    plan_latency_ms: int = 0
    redactions: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> ChatResponse:
        summary = self.context_summary.to_wire()
        if self.is_business_plan:
            return PlanResponse(
                message=self.message,
                context_summary=summary,
                fallback=True if self.fallback else None,
                business_plan_markdown=self.business_plan_markdown or "",
                research_brief=self.research_brief,
                citations=self.citations,
                lead_signals=self.lead_signals,
                plan_highlights=self.plan_highlights,
            )
        return ChatResponse(
            message=self.message,
            context_summary=summary,
            fallback=True if self.fallback else None,
        )


@dataclass
class _QuestionOutcome:
    text: str
    fallback: bool
    attempts: int
    model: str | None = None


def _conversation_messages(turns: list[ChatTurn]) -> list[dict[str, str]]:
    return [{"role": t.role, "content": t.content} for t in turns if t.role in ("user", "assistant")]


def _prior_summary(request: ChatRequest) -> ContextSummary | dict[str, Any] | None:
    return request.initial_context or None


async def _ask_question(
    request: ChatRequest,
    step: int,
    prior: ContextSummary,
) -> _QuestionOutcome:
    """Bounded guard loop: initial call plus at most MAX_CORRECTIVE_RETRIES retries."""
    context_block = format_context_block(
        website_analysis=request.website_analysis,
        financial_analysis=request.financial_analysis,
        prior_summary=request.initial_context,
        attached_files=request.attached_files,
    )
    conversation = _conversation_messages(request.messages)
    model = choose_model("intake", cost_mode=request.cost_mode)

    attempt = GuardrailAttempt.first()
    while True:
        system_prompt = build_turn_system_prompt(step, context_block, attempt.corrective_note)
        try:
            result = await chat_completion(
                [{"role": "system", "content": system_prompt}, *conversation],
                model=model,
                temperature=QUESTION_TEMPERATURE,
                top_p=0.95,
                max_tokens=QUESTION_MAX_TOKENS,
                phase=f"step_{step}",
            )
        except LLMGatewayError as e:
            logger.warning(
                f"Gateway error on step {step}, using templated fallback: {e.message}",
                extra={"step": step},
            )
            return _QuestionOutcome(
                build_fallback_message(step, prior), True, attempt.attempt_number + 1, model
            )

        text = sanitize_response(result.content, step)
        if not is_acceptable(text):
            violation = None
            note = build_rejection_note(step)
        else:
            violation = detect_violation(text, step)
            if violation is None:
                return _QuestionOutcome(text, False, attempt.attempt_number + 1, result.model)
            note = build_corrective_note(violation, step)

        log_with_context(
            logger,
            logging.INFO,
            "Turn rejected by guard",
            step=step,
            attempt=attempt.attempt_number,
            violation=violation.value if violation else "unusable_output",
        )
        if not attempt.can_retry:
            return _QuestionOutcome(
                build_fallback_message(step, prior), True, attempt.attempt_number + 1, model
            )
        attempt = attempt.next(violation, note)


def _doc_stats(request: ChatRequest) -> DocStats:
    files = request.attached_files or []
    chars = sum(len(f.content) for f in files)
    sources = len(files) + int(bool(request.website_analysis)) + int(bool(request.financial_analysis))
    return DocStats(pages=chars // CHARS_PER_PAGE, sources=sources)


def attachment_source_id(name: str, content: str) -> str:
    """Source id for an attached file; the content digest keeps equal names from colliding."""
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:12]
    return f"file:{digest}:{name}"


async def _index_request_sources(request: ChatRequest, store: RagStore) -> list[str]:
    """Index this request's attachments; returns the chunk ids research may read."""
    doc_ids: list[str] = []
    for attached in request.attached_files or []:
        if not attached.content.strip():
            continue
        source_id = attachment_source_id(attached.name, attached.content)
        try:
            doc_ids += await index_text(store, source_id, attached.content, {"filename": attached.name})
        except LLMGatewayError as e:
            logger.warning(f"Could not index {attached.name}: {e.message}")

    website_url = (request.website_analysis or {}).get("url")
    if isinstance(website_url, str) and website_url:
        doc_ids += store.get_cached_domain(domain_of(website_url)) or []
    return doc_ids


async def _plan_turn(
    request: ChatRequest,
    state: StepState,
    registry: ProviderHealthRegistry,
    rag_store: RagStore | None,
    calls: dict[str, ProviderCall] | None,
) -> DiscoveryTurnResult:
    settings = get_settings()
    turns = request.messages

    llm_summary = await generate_context_summary(turns)
    summary = merge_context_summary(
        llm_summary, _prior_summary(request), request.website_analysis, request.financial_analysis
    )

    research = None
    if settings.DEEP_RESEARCH_ENABLED and rag_store is not None and rag_store.enabled:
        doc_ids = await _index_request_sources(request, rag_store)
        doc_stats = _doc_stats(request)
        user_text = " ".join(t.content for t in turns if t.role == "user")
        if doc_ids and should_trigger_research(doc_stats, user_text):
            goal = f"Business: {summary.business_type}. Pain points: {summary.pain_points}. Goals: {summary.goals}."
            try:
                research = await run_research(goal, rag_store, doc_stats, doc_ids=doc_ids)
            except LLMGatewayError as e:
                logger.warning(f"Research agent failed, planning without a brief: {e.message}")

    try:
        plan = await generate_business_plan(
            summary,
            turns,
            registry,
            website_analysis=request.website_analysis,
            financial_analysis=request.financial_analysis,
            research_brief=research.research_brief if research else None,
            calls=calls,
        )
    except DiscoveryError as e:
        logger.error(f"Plan generation failed, returning fallback plan: {e.message}")
        return DiscoveryTurnResult(
            message=FALLBACK_PLAN_MESSAGE,
            context_summary=summary,
            step_state=state,
            fallback=True,
            is_business_plan=True,
            business_plan_markdown=FALLBACK_PLAN_MARKDOWN,
        )

    lead_signals = None
    if settings.LEAD_SIGNALS_ENABLED:
        signals = await extract_lead_signals(
            turns,
            summary,
            request.website_analysis,
            request.financial_analysis,
            research.research_brief if research else None,
            docs_count=len(request.attached_files or []),
            research_coverage=research.coverage if research else 0.0,
        )
        if signals is not None:
            lead_signals = signals.model_dump(by_alias=True, exclude_none=True)

    filtered = filter_output(plan.markdown)
    return DiscoveryTurnResult(
        message=PLAN_READY_MESSAGE,
        context_summary=summary,
        step_state=state,
        model=plan.model,
        provider=plan.provider,
        is_business_plan=True,
        business_plan_markdown=filtered.text,
        research_brief=research.research_brief if research else None,
        citations=research.citations if research and research.citations else None,
        lead_signals=lead_signals,
        plan_highlights=plan.highlights or None,
        plan_latency_ms=plan.latency_ms,
        redactions=filtered.redactions,
        metadata={"conflicts": research.conflicts} if research and research.conflicts else {},
    )


async def run_discovery_turn(
    request: ChatRequest,
    registry: ProviderHealthRegistry,
    rag_store: RagStore | None = None,
    calls: dict[str, ProviderCall] | None = None,
) -> DiscoveryTurnResult:
    """
    Produce the next assistant turn, or the plan once the summary is confirmed.

    Args:
        request: Parsed chat request
        registry: Provider health registry (plan generation failover)
        rag_store: Optional in-memory store for the research agent
        calls: Optional provider call overrides for plan generation

    Returns:
        DiscoveryTurnResult; degraded outcomes carry fallback=True
    """
    state = derive_step(request.messages, request.current_step)
    log_with_context(
        logger,
        logging.INFO,
        "Processing discovery turn",
        conversation_id=request.conversation_id,
        step=int(state.step),
        user_turns=state.user_turns,
        assistant_turns=state.assistant_turns,
        plan_requested=state.plan_requested,
    )

    if state.plan_requested:
        return await _plan_turn(request, state, registry, rag_store, calls)

    step = int(state.step)
    prior = merge_context_summary(
        None, _prior_summary(request), request.website_analysis, request.financial_analysis
    )
    outcome = await _ask_question(request, step, prior)

    updated_turns = [*request.messages, ChatTurn(role="assistant", content=outcome.text)]
    llm_summary = await generate_context_summary(updated_turns)
    summary = merge_context_summary(
        llm_summary, _prior_summary(request), request.website_analysis, request.financial_analysis
    )

    filtered = filter_output(outcome.text)
    return DiscoveryTurnResult(
        message=filtered.text,
        context_summary=summary,
        step_state=state,
        fallback=outcome.fallback,
        attempts=outcome.attempts,
        model=outcome.model,
        redactions=filtered.redactions,
    )

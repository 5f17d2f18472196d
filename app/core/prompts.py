"""Prompt templates for the discovery chat, context summary, plan, and research."""

import json
import re
from typing import Any

from app.core.discovery_steps import STEP_TOPIC_DETAILS, STEP_TOPICS
from app.core.schemas_discovery import AttachedFile, ChatTurn, ContextSummary

MAX_FILE_EXCERPT_CHARS = 1500


def format_conversation(turns: list[ChatTurn]) -> str:
    """Render user/assistant turns as `User: ...` / `Assistant: ...` lines."""
    lines = []
    for turn in turns:
        if turn.role == "system":
            continue
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.content}")
    return "\n\n".join(lines)


# =============================================================================
# Discovery turn
# =============================================================================


def _step_lines(step: int) -> str:
    if step >= 6:
        return (
            "Current step: Summary (after completing 5/5 questions).\n"
            "You have already asked all 5 questions. Do not ask a new question. Provide a "
            "concise summary of what you've learned and tell the user you'll prepare their "
            "AI action plan once they confirm."
        )
    final_rule = (
        'This is the ONLY step where you may call it the "final question".'
        if step == 5
        else 'DO NOT call this the "final question" or "last question". DO NOT summarize.'
    )
    return (
        f"Current step: {step}/5.\n"
        f"You are asking QUESTION {step} of 5: {STEP_TOPICS[step]} ({STEP_TOPIC_DETAILS[step]}).\n"
        f"Begin your reply with the header **Question {step}: {STEP_TOPICS[step]}** "
        f"followed by the question on the next line.\n"
        f"{final_rule}"
    )


def build_turn_system_prompt(
    step: int,
    context_block: str | None = None,
    corrective_note: str | None = None,
) -> str:
    """System prompt for one discovery turn."""
    topics = "\n".join(
        f"Step {n}: {STEP_TOPICS[n]} ({STEP_TOPIC_DETAILS[n]})" for n in range(1, 6)
    )
    prompt = f"""You are an AI assistant guiding a small/medium business owner through a 5-question discovery about their business. Goal: understand their context so we can create a practical AI action plan.

{_step_lines(step)}

Question topics by step:
{topics}

Approach:
- Ask one open-ended, insightful question at a time.
- Personalize using details they've shared; acknowledge their last answer in one short clause.
- Keep the tone friendly, encouraging, and non-technical. Avoid AI jargon.
- Do not propose solutions or name tools yet. 2-3 sentences max.

IMPORTANT: Only provide the final response to the user. Do not include internal reasoning, planning, notes, or <think> tags.

Markdown: use **bold** for the header and * for bullet points."""

    if context_block:
        prompt += f"\n\nWhat we already know about this business:\n{context_block}"
    if corrective_note:
        prompt += f"\n\n{corrective_note}"
    return prompt


def _humanize(key: str) -> str:
    words = re.sub(r"(?<!^)(?=[A-Z])", " ", key).replace("_", " ").strip()
    return words[:1].upper() + words[1:].lower()


def _bullets(data: dict[str, Any] | None) -> list[str]:
    lines = []
    for key, value in (data or {}).items():
        if value in (None, "", [], {}):
            continue
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False)
        lines.append(f"- {_humanize(key)}: {value}")
    return lines


def format_context_block(
    website_analysis: dict[str, Any] | None = None,
    financial_analysis: dict[str, Any] | None = None,
    prior_summary: ContextSummary | dict[str, Any] | None = None,
    attached_files: list[AttachedFile] | None = None,
) -> str:
    """Render known context as plain-text key/value bullets (empty string if none)."""
    sections = []

    if isinstance(prior_summary, ContextSummary):
        prior_summary = prior_summary.to_wire()
    summary_lines = [
        line for line in _bullets(prior_summary) if not line.endswith("Not yet specified")
    ]
    if summary_lines:
        sections.append("Conversation so far:\n" + "\n".join(summary_lines))

    website_lines = _bullets(website_analysis)
    if website_lines:
        sections.append("Website analysis:\n" + "\n".join(website_lines))

    financial_lines = _bullets(financial_analysis)
    if financial_lines:
        sections.append("Financial analysis:\n" + "\n".join(financial_lines))

    for attached in attached_files or []:
        excerpt = attached.content.strip()[:MAX_FILE_EXCERPT_CHARS]
        if excerpt:
            sections.append(f"Attached file {attached.name}:\n{excerpt}")

    return "\n\n".join(sections)


# =============================================================================
# Context summary
# =============================================================================

CONTEXT_SUMMARY_SYSTEM = (
    "You are a business analyst that extracts structured information from conversations. "
    "Return only valid JSON."
)


def context_summary_prompt(conversation_text: str) -> str:
    return f"""Analyze the conversation and produce a single JSON object matching the provided schema exactly. Use "Not yet specified" for any missing field. Do not add extra keys or text.

Pay special attention to extracting:
- businessType: What type of business they operate (e.g., "Retail coffee shop", "E-commerce platform")
- painPoints: Current challenges or problems they face
- goals: What they want to achieve or improve
- dataAvailable: What data sources or analytics they have access to
- priorTechUse: What software, tools, or systems they currently use
- growthIntent: Their plans for expansion or growth

Conversation:
{conversation_text}"""


# =============================================================================
# Plan
# =============================================================================

PLAN_SYSTEM_PROMPT = """Act as an expert AI strategy consultant for small businesses. Using the context summary, any uploaded documents, and retrieved website content, write a customized AI Implementation Plan for a non-technical SMB owner.

Sections:
1. Opportunity Summary
   - Reflect the business's situation, industry specifics, and key opportunities.
   - Tie directly to stated pain points and goals.

2. AI Roadmap (phased)
   - Immediate wins (0-30 days), Mid-term (31-90 days), Longer-term (90+).
   - For each item include: what it is (plain English), why it helps, needs (data, access, tools), owner effort (S/M/L), cost band (<$1k, $1k-$5k, $5k-$20k, >$20k), and one Do / Don't.

3. Estimated ROI & Costs
   - Ranges for software, setup, and services.
   - Quantify potential returns: hours saved/month, error reduction, revenue lift.
   - Expected time-to-ROI with a one-sentence rationale.

4. Next 90-Day Action Items
   - A prioritized checklist the owner can start now.

Style:
- Markdown with clear ## headings, bullets, short paragraphs.
- Tailor to the user's industry and facts. If data/tools are "Not yet specified," include minimal viable setup first.
- Avoid jargon and vendor lock-in. Keep it practical and budget-aware."""


def build_plan_user_prompt(
    context_summary: ContextSummary,
    conversation_text: str,
    website_analysis: dict[str, Any] | None = None,
    financial_analysis: dict[str, Any] | None = None,
    research_brief: str | None = None,
) -> str:
    parts = [
        "Context Summary:",
        json.dumps(context_summary.to_wire(), indent=2, ensure_ascii=False),
    ]
    if website_analysis:
        parts += ["", "Website Analysis:", json.dumps(website_analysis, indent=2, ensure_ascii=False)]
    if financial_analysis:
        parts += ["", "Financial Analysis:", json.dumps(financial_analysis, indent=2, ensure_ascii=False)]
    if research_brief:
        parts += ["", "Research Brief:", research_brief]
    parts += [
        "",
        "Conversation History:",
        conversation_text,
        "",
        "Write the plan now in markdown.",
    ]
    return "\n".join(parts)


PLAN_READY_MESSAGE = (
    "Thank you for sharing all that information! I've prepared a customized AI action plan "
    "based on our conversation. You can review it below, copy it, or download it for your records."
)

FALLBACK_PLAN_MESSAGE = (
    "I've prepared a business plan template for you. For a fully customized plan, please "
    "restart the conversation with more specific details about your business."
)

FALLBACK_PLAN_MARKDOWN = """# Your AI Business Plan

*Note: We encountered a technical issue generating your custom plan. Please try restarting the conversation for a fully personalized plan.*

## 1. Opportunity Summary
Based on our conversation, your business has significant opportunities for growth through strategic AI implementation.

## 2. AI Roadmap
- **Phase 1**: Start with basic automation and data collection
- **Phase 2**: Implement customer-facing AI solutions
- **Phase 3**: Advanced analytics and custom AI tools

## 3. Estimated ROI & Cost
- **Initial Investment**: $5,000 - $15,000
- **Expected ROI**: 15-25% efficiency improvement within 12 months
- **Break-even**: 6-9 months

## 4. Next 90-Day Action Items
1. Audit current processes for automation opportunities
2. Research industry-specific AI tools
3. Implement a basic chatbot or automation
4. Set up analytics and measurement systems

---

## Get Your Custom Plan
**Restart the conversation** to generate a fully personalized business plan, or contact our team for a detailed consultation."""


# =============================================================================
# Research
# =============================================================================

RESEARCH_PLANNER_PROMPT = """You are a concise research planner. Goal: validate and enrich the AI plan with facts from the user's docs and website.

Draft a short plan-of-attack: which questions must be answered to improve the plan (3-5 bullets).

For each question, request retrieval in plain language on its own line ("retrieve: ...").

Keep it terse and business-focused."""

RESEARCH_BRIEF_SYSTEM = "You write concise research briefs for business planning."


def research_brief_prompt(notes: list[str]) -> str:
    findings = "\n\n".join(notes) if notes else "No findings were retrieved."
    return (
        "Summarize succinct research findings to inform an SMB AI plan. Keep it 120-200 words, "
        "cite evidence via [docId] tokens when used.\n"
        'Also list any conflicts you see as short bullets prefixed with "conflict:".\n\n'
        f"Questions & findings:\n{findings}"
    )


# =============================================================================
# Lead signals
# =============================================================================

LEAD_SIGNALS_SYSTEM = "You extract lead-qualification signals for SMB AI projects. Output JSON only."


def lead_signals_prompt(
    conversation_text: str,
    context_summary_json: str | None,
    website_analysis: str | None,
    financial_analysis: str | None,
    research_brief: str | None,
    website_found: bool,
    docs_count: int,
    research_coverage: float,
) -> str:
    return f"""Use all provided materials to infer lead-qualification signals for an SMB considering AI implementation.

Rules:
- If info is missing, choose "Unknown" or "Not specified" as appropriate.
- Return ONLY the JSON object matching the schema. No extra keys or commentary.

Materials:
- Conversation: {conversation_text}
- ContextSummary: {context_summary_json or "null"}
- WebsiteAnalysis: {website_analysis or "null"}
- FinancialsAnalysis: {financial_analysis or "null"}
- ResearchBrief: {research_brief or "null"}
- Hints: websiteFound={str(website_found).lower()}, docsCount={docs_count}, researchCoverage={research_coverage}"""


# =============================================================================
# Analyses
# =============================================================================

WEBSITE_ANALYSIS_SYSTEM = "You analyze small-business websites. Return only valid JSON."


def website_analysis_prompt(url: str, content: str) -> str:
    return f"""Analyze this business website and extract key information. Return a JSON object with these exact keys:
- productsServices: What products or services does this business offer?
- customerSegment: Who are their target customers?
- techStack: What technology, platforms, or tools can be identified?
- marketingStrengths: What are they doing well in their marketing?
- marketingWeaknesses: What could be improved in their marketing?

If something cannot be determined, use "Unable to determine from website content".

Website URL: {url}
Website content:
{content}"""


FINANCIAL_ANALYSIS_SYSTEM = "You analyze small-business financial statements. Return only valid JSON."


def financial_analysis_prompt(filename: str, content: str) -> str:
    return f"""Analyze this financial document and extract key business insights. Return a JSON object with these exact keys:
- businessType: What type of business this appears to be
- revenueTrend: Revenue patterns and trends
- largestCostCenters: The largest expense categories
- profitMargins: Profitability and margin observations
- seasonality: Seasonal patterns, if any
- cashFlowRisks: Cash flow risks or concerns

If something cannot be determined, use "Unable to determine from provided data".

File: {filename}
Document content:
{content}"""

"""Research agent: grounds the plan in the user's own documents and website.

Plans up to three retrievals, runs them against the in-memory RAG store,
and writes a short brief with [docId] citations.
"""

import re
from dataclasses import dataclass, field

from app.core.exceptions import LLMGatewayError
from app.core.logging import get_logger
from app.core.model_router import DocStats, choose_model
from app.core.nim_client import chat_completion
from app.core.prompts import RESEARCH_BRIEF_SYSTEM, RESEARCH_PLANNER_PROMPT, research_brief_prompt
from app.core.rag import RagStore
from app.core.schemas_discovery import Citation

logger = get_logger(__name__)

MAX_RETRIEVALS = 3
NOTES_PER_RETRIEVAL = 3
NOTE_SNIPPET_CHARS = 180
MAX_CONFLICTS = 5
FALLBACK_BRIEF_CHARS = 800

_RETRIEVE_RE = re.compile(r"retrieve:\s*(.+)", re.IGNORECASE)
_CONFLICT_RE = re.compile(r"conflict\s*:\s*.*", re.IGNORECASE)


@dataclass
class ResearchResult:
    research_brief: str
    citations: list[Citation] = field(default_factory=list)
    coverage: float = 0.0
    conflicts: list[str] = field(default_factory=list)


def parse_retrieval_lines(plan: str, limit: int = MAX_RETRIEVALS) -> list[str]:
    queries = [match.group(1).strip() for match in _RETRIEVE_RE.finditer(plan)]
    return [query for query in queries if query][:limit]


def parse_conflicts(brief: str, limit: int = MAX_CONFLICTS) -> list[str]:
    return [match.group(0).strip() for match in _CONFLICT_RE.finditer(brief)][:limit]


async def run_research(
    user_goal: str,
    store: RagStore,
    doc_stats: DocStats | None = None,
    doc_ids: list[str] | None = None,
) -> ResearchResult:
    """
    Run planner, retrieval and brief writing.

    Args:
        user_goal: Short statement of what the plan must address
        store: RAG store holding the user's chunks
        doc_stats: Size of the document set (drives model escalation)
        doc_ids: Chunk ids this request may read (all stored chunks when None)

    Returns:
        ResearchResult; coverage is the share of planned retrievals that
        returned at least one note

    Raises:
        LLMGatewayError: The planner call failed
    """
    model = choose_model("research", doc_stats)

    plan = await chat_completion(
        [
            {"role": "system", "content": RESEARCH_PLANNER_PROMPT},
            {"role": "user", "content": user_goal},
        ],
        model=model,
        temperature=0.3,
        top_p=0.9,
        max_tokens=600,
        phase="research_plan",
    )
    queries = parse_retrieval_lines(plan.content)

    notes: list[str] = []
    cited: dict[str, Citation] = {}
    answered = 0
    for query in queries:
        hits = store.rerank(query, await store.query(query, k=12, doc_ids=doc_ids), k=6)
        top = hits[:NOTES_PER_RETRIEVAL]
        if top:
            answered += 1
        for hit in top:
            notes.append(f"{hit.text[:NOTE_SNIPPET_CHARS]} [{hit.id}]")
            cited.setdefault(hit.id, Citation(source_id=hit.id, url=hit.meta.get("url")))

    coverage = round(answered / len(queries) * 100, 1) if queries else 0.0

    try:
        brief_result = await chat_completion(
            [
                {"role": "system", "content": RESEARCH_BRIEF_SYSTEM},
                {"role": "user", "content": research_brief_prompt(notes)},
            ],
            model=model,
            temperature=0.3,
            top_p=0.9,
            max_tokens=300,
            phase="research_brief",
        )
        brief = brief_result.content.strip()
    except LLMGatewayError as e:
        logger.warning(f"Research brief call failed, using raw notes: {e.message}")
        brief = ""

    if not brief:
        brief = "\n".join(notes)[:FALLBACK_BRIEF_CHARS]

    logger.info(
        f"Research brief ready: {len(queries)} retrievals, {len(notes)} notes, coverage {coverage}%"
    )
    return ResearchResult(
        research_brief=brief,
        citations=list(cited.values()),
        coverage=coverage,
        conflicts=parse_conflicts(brief),
    )

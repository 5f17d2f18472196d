"""Context summary chain.

Extracts the six ContextSummary fields from the conversation with a
guided-JSON call. Failures never propagate: the caller carries the previous
summary forward.
"""

import json
import logging

import httpx
from pydantic import ValidationError

from app.core.exceptions import LLMGatewayError
from app.core.llm import parse_llm_json
from app.core.nim_client import chat_completion
from app.core.prompts import CONTEXT_SUMMARY_SYSTEM, context_summary_prompt, format_conversation
from app.core.schemas_discovery import CONTEXT_SUMMARY_JSON_SCHEMA, ChatTurn, ContextSummary

logger = logging.getLogger(__name__)


async def generate_context_summary(
    turns: list[ChatTurn],
    model: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> ContextSummary | None:
    """
    Regenerate the structured context summary from the full turn history.

    Args:
        turns: Conversation turns, including the assistant turn just produced
        model: Optional model override
        client: Optional shared httpx client

    Returns:
        ContextSummary, or None if the call or validation failed
    """
    if not any(turn.role == "user" for turn in turns):
        return ContextSummary()

    messages = [
        {"role": "system", "content": CONTEXT_SUMMARY_SYSTEM},
        {"role": "user", "content": context_summary_prompt(format_conversation(turns))},
    ]

    try:
        result = await chat_completion(
            messages,
            model=model,
            temperature=0.1,
            top_p=0.9,
            max_tokens=600,
            guided_json=CONTEXT_SUMMARY_JSON_SCHEMA,
            phase="context_summary",
            client=client,
        )
    except LLMGatewayError as e:
        logger.warning(f"Context summary call failed: {e.message}")
        return None

    try:
        return parse_llm_json(result.content, ContextSummary)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Context summary did not validate: {e}; raw={result.content[:200]}")
        return None

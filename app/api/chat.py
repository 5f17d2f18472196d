"""Discovery chat endpoint."""

import json
import time

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import ValidationError

from app.api.dependencies import get_provider_registry, get_store, resolve_session_id
from app.chains.discovery_turn import DiscoveryTurnResult, run_discovery_turn
from app.core.logging import get_logger
from app.core.providers import ProviderHealthRegistry
from app.core.rag import RagStore
from app.core.schemas_discovery import ChatRequest
from app.db.discovery import ConversationRecorder

logger = get_logger(__name__)

router = APIRouter()


def _record_turn(
    recorder: ConversationRecorder,
    chat_request: ChatRequest,
    result: DiscoveryTurnResult,
    elapsed_ms: int,
) -> None:
    """Persist the latest user turn, the reply and any plan. Best-effort."""
    last_user = next((t for t in reversed(chat_request.messages) if t.role == "user"), None)
    if last_user is not None:
        recorder.save_message("user", last_user.content, {"step": int(result.step_state.step)})

    recorder.save_message(
        "assistant",
        result.business_plan_markdown if result.is_business_plan else result.message,
        {
            "step": int(result.step_state.step),
            "fallback": result.fallback,
            "attempts": result.attempts,
            "model": result.model,
            "isBusinessPlan": result.is_business_plan,
        },
    )

    context = {
        "context_summary": result.context_summary.to_wire(),
        "current_step": int(result.step_state.phase),
    }
    if chat_request.website_analysis:
        context["website_analysis"] = chat_request.website_analysis
    if chat_request.financial_analysis:
        context["financial_analysis"] = chat_request.financial_analysis
    if result.lead_signals:
        context["lead_signals"] = result.lead_signals
    if result.research_brief:
        context["research_brief"] = result.research_brief
        context["citations"] = [c.model_dump(by_alias=True) for c in result.citations or []]
    recorder.update_context(context)

    if result.is_business_plan and not result.fallback:
        recorder.save_business_plan(
            {
                "content": result.business_plan_markdown,
                "plan_length": len(result.business_plan_markdown or ""),
                "generation_time": result.plan_latency_ms // 1000,
                "model_used": result.model,
                "plan_highlights": result.plan_highlights or [],
            }
        )
        recorder.track_event("conversion", "plan_generated", {"provider": result.provider})

    recorder.log_system_health(
        "discovery_chat",
        not result.fallback,
        endpoint="/api/chat",
        status_code=200,
        response_time=elapsed_ms,
        model_used=result.model,
        error_type="fallback" if result.fallback else None,
    )


@router.post("/chat")
async def chat(
    request: Request,
    response: Response,
    registry: ProviderHealthRegistry = Depends(get_provider_registry),  # noqa: B008
    store: RagStore = Depends(get_store),  # noqa: B008
) -> dict:
    """
    Produce the next discovery turn, or the business plan once confirmed.

    Degraded outcomes (gateway failures, guard exhaustion, plan failure)
    still return 200 with `fallback: true`.

    Raises:
        HTTPException 400: Body is not JSON or not a chat request
    """
    started = time.monotonic()
    try:
        body = await request.json()
        chat_request = ChatRequest.model_validate(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON") from e
    except ValidationError as e:
        raise HTTPException(status_code=400, detail="Invalid chat request") from e

    session_id = resolve_session_id(request, response, chat_request.session_id)
    recorder = ConversationRecorder(
        session_id,
        conversation_id=chat_request.conversation_id,
        app_variant=request.query_params.get("v"),
    )

    result = await run_discovery_turn(chat_request, registry, rag_store=store)

    elapsed_ms = int((time.monotonic() - started) * 1000)
    _record_turn(recorder, chat_request, result, elapsed_ms)

    logger.info(
        f"Chat turn done: step={int(result.step_state.step)} plan={result.is_business_plan} "
        f"fallback={result.fallback} in {elapsed_ms}ms",
        extra={"session_id": session_id, "step": int(result.step_state.step)},
    )
    return result.to_response().model_dump(by_alias=True, exclude_none=True)

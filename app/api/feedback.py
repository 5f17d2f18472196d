"""User feedback endpoints."""

import json
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from app.api.dependencies import resolve_session_id
from app.core.logging import get_logger
from app.db.discovery import list_feedback, save_feedback
from app.db.supabase_client import persistence_enabled

logger = get_logger(__name__)

router = APIRouter()


class FeedbackRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    feedback_type: Literal["thumbs_up", "thumbs_down"]
    step_number: int | None = Field(default=None, ge=1, le=6)
    rating: int | None = Field(default=None, ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)
    message_content: str | None = None
    conversation_id: str | None = None
    session_id: str | None = None
    metadata: dict[str, Any] | None = None


def _feedback_row(body: FeedbackRequest, session_id: str) -> dict[str, Any]:
    return {
        "feedback_type": body.feedback_type,
        "step_number": body.step_number,
        "rating": body.rating,
        "comment": body.comment,
        "message_content": body.message_content,
        "conversation_id": body.conversation_id,
        "session_id": session_id,
        "metadata": body.metadata or {},
    }


@router.post("/feedback")
async def submit_feedback(request: Request, response: Response) -> dict:
    """
    Record thumbs up/down feedback on a discovery turn or plan.

    Raises:
        HTTPException 400: Invalid feedback payload
        HTTPException 503: Persistence is disabled
        HTTPException 500: Database write failed
    """
    try:
        body = FeedbackRequest.model_validate(await request.json())
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON") from e
    except ValidationError as e:
        raise HTTPException(status_code=400, detail="Invalid feedback data") from e

    if not persistence_enabled():
        raise HTTPException(status_code=503, detail="Feedback storage is not configured")

    session_id = resolve_session_id(request, response, body.session_id)
    try:
        feedback_id = save_feedback(_feedback_row(body, session_id))
    except Exception as e:
        logger.exception("Failed to save feedback", extra={"session_id": session_id})
        raise HTTPException(status_code=500, detail="Failed to save feedback") from e

    logger.info(
        f"Feedback {feedback_id} recorded ({body.feedback_type})",
        extra={"session_id": session_id, "conversation_id": body.conversation_id},
    )
    return {
        "success": True,
        "feedbackId": feedback_id,
        "message": "Thank you for your feedback!",
    }


@router.get("/feedback")
async def get_feedback(conversation_id: str | None = None, step_number: int | None = None) -> dict:
    """List feedback, newest first, optionally filtered by conversation or step."""
    if not persistence_enabled():
        raise HTTPException(status_code=503, detail="Feedback storage is not configured")

    try:
        rows = list_feedback(conversation_id=conversation_id, step_number=step_number)
    except Exception as e:
        logger.exception("Failed to list feedback")
        raise HTTPException(status_code=500, detail="Failed to fetch feedback") from e

    return {"feedback": rows, "count": len(rows)}

"""Plan delivery endpoints: email and PDF download."""

import re
from typing import Any

import httpx
from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.api.dependencies import resolve_session_id
from app.core.email_service import send_plan_emails
from app.core.logging import get_logger
from app.core.plan_pdf import plan_pdf_filename, render_plan_pdf
from app.db.discovery import ConversationRecorder, save_lead

logger = get_logger(__name__)

router = APIRouter()

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class SendPlanRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str | None = None
    business_plan: str | None = None
    context_summary: dict[str, Any] | None = None
    user_info: dict[str, Any] | None = None
    lead_signals: dict[str, Any] | None = None


class GeneratePdfRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    business_plan: str | None = None
    email: str | None = None


def _lead_row(body: SendPlanRequest) -> dict[str, Any]:
    summary = body.context_summary or {}
    info = body.user_info or {}
    signals = body.lead_signals or {}
    return {
        "email": body.email,
        "business_type": summary.get("businessType") or info.get("businessType"),
        "pain_points": summary.get("painPoints") or info.get("painPoints"),
        "goals": summary.get("goals") or info.get("goals"),
        "industry": signals.get("industry"),
        "geography": signals.get("geography"),
        "score": signals.get("score"),
        "lead_signals": signals or None,
    }


@router.post("/send-plan")
async def send_plan(body: SendPlanRequest, request: Request, response: Response) -> dict:
    """
    Email the plan to the owner and notify the sales inbox.

    Returns:
        Dict with success flag and Resend message id

    Raises:
        HTTPException 400: Missing or invalid email, or no plan
        HTTPException 502: Resend rejected the email
        HTTPException 503: Email is not configured
    """
    if not body.email or not body.business_plan:
        raise HTTPException(status_code=400, detail="Email and business plan are required")
    if not EMAIL_RE.match(body.email):
        raise HTTPException(status_code=400, detail="Invalid email address")

    try:
        result = await send_plan_emails(
            body.email,
            body.business_plan,
            context_summary=body.context_summary,
            user_info=body.user_info,
            lead_signals=body.lead_signals,
        )
    except ValueError as e:
        logger.error(f"Plan email not sent: {e}")
        raise HTTPException(status_code=503, detail="Email service is not configured") from e
    except httpx.HTTPError as e:
        logger.exception(f"Failed to send plan email to {body.email}")
        raise HTTPException(status_code=502, detail="Failed to send email") from e

    recorder = ConversationRecorder(resolve_session_id(request, response))
    if recorder.enabled:
        try:
            save_lead(_lead_row(body))
        except Exception as e:
            logger.warning(f"Failed to save lead {body.email}: {e}")
    recorder.track_event("conversion", "plan_emailed", {"leadNotified": result["lead_notified"]})

    return {
        "success": True,
        "message": "Business plan sent successfully!",
        "messageId": result["message_id"],
    }


@router.post("/generate-pdf")
async def generate_pdf(body: GeneratePdfRequest) -> Response:
    """
    Render the plan as a branded PDF download.

    Raises:
        HTTPException 400: No plan content
        HTTPException 500: Rendering failed
    """
    if not body.business_plan or not body.business_plan.strip():
        raise HTTPException(status_code=400, detail="Business plan content is required")

    try:
        pdf_bytes = render_plan_pdf(body.business_plan, email=body.email)
    except (RuntimeError, ValueError) as e:
        logger.exception("PDF rendering failed")
        raise HTTPException(status_code=500, detail="Failed to generate PDF") from e

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{plan_pdf_filename()}"'},
    )

"""Outbound email for finished plans.

Sends the plan to the business owner and a lead notification to the sales
inbox through the Resend API.
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

PLAN_EMAIL_SUBJECT = "Your AI Business Plan is Ready!"

NOT_SPECIFIED = "Not specified"


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


def _profile_value(
    key: str, context_summary: dict[str, Any] | None, user_info: dict[str, Any] | None
) -> str:
    for source in (context_summary or {}, user_info or {}):
        value = source.get(key)
        if value and str(value).strip():
            return str(value).strip()
    return NOT_SPECIFIED


def render_plan_email(
    business_plan: str,
    context_summary: dict[str, Any] | None = None,
    user_info: dict[str, Any] | None = None,
) -> RenderedEmail:
    business_type = _profile_value("businessType", context_summary, user_info)
    pain_points = _profile_value("painPoints", context_summary, user_info)
    goals = _profile_value("goals", context_summary, user_info)

    html_body = f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Your AI Business Plan</title>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 800px; margin: 0 auto; padding: 20px; }}
    .header {{ background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; border-radius: 10px; margin-bottom: 30px; text-align: center; }}
    .content {{ background: #f9f9f9; padding: 30px; border-radius: 10px; margin-bottom: 20px; }}
    .plan-content {{ white-space: pre-wrap; }}
    .highlight {{ background: #fef3c7; padding: 15px; border-left: 4px solid #f59e0b; margin: 20px 0; }}
    .footer {{ text-align: center; color: #666; font-size: 14px; margin-top: 30px; }}
  </style>
</head>
<body>
  <div class="header">
    <h1>Your AI Business Plan is Ready!</h1>
    <p>Customized AI implementation roadmap for your business</p>
  </div>
  <div class="content">
    <div class="highlight">
      <h3>Your Business Profile</h3>
      <p><strong>Business Type:</strong> {html.escape(business_type)}</p>
      <p><strong>Key Challenges:</strong> {html.escape(pain_points)}</p>
      <p><strong>Goals:</strong> {html.escape(goals)}</p>
    </div>
    <h2>Your Complete AI Business Plan</h2>
    <div class="plan-content">{html.escape(business_plan)}</div>
  </div>
  <div class="footer">
    <p>This plan was generated based on your specific business needs and goals.</p>
    <p>Our AI implementation partners will contact you within 24 hours to discuss next steps.</p>
  </div>
</body>
</html>"""

    text_body = f"""Your AI Business Plan is Ready!

Business Profile:
- Business Type: {business_type}
- Key Challenges: {pain_points}
- Goals: {goals}

Your Complete AI Business Plan:
{business_plan}

This plan was generated based on your specific business needs and goals.
Our AI implementation partners will contact you within 24 hours to discuss next steps."""

    return RenderedEmail(subject=PLAN_EMAIL_SUBJECT, html=html_body, text=text_body)


def render_lead_notification(
    email: str,
    context_summary: dict[str, Any] | None = None,
    user_info: dict[str, Any] | None = None,
    lead_signals: dict[str, Any] | None = None,
) -> RenderedEmail:
    rows = [
        ("Email", email),
        ("Business Type", _profile_value("businessType", context_summary, user_info)),
        ("Pain Points", _profile_value("painPoints", context_summary, user_info)),
        ("Goals", _profile_value("goals", context_summary, user_info)),
        ("Data Available", _profile_value("dataAvailable", context_summary, None)),
        ("Prior Tech Use", _profile_value("priorTechUse", context_summary, None)),
        ("Growth Intent", _profile_value("growthIntent", context_summary, None)),
    ]
    if lead_signals and lead_signals.get("score") is not None:
        rows.append(("Lead Score", str(lead_signals["score"])))
    rows.append(("Timestamp", datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")))

    html_rows = "\n".join(
        f"    <p><strong>{label}:</strong> {html.escape(value)}</p>" for label, value in rows
    )
    html_body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>New Lead - AI Business Plan</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="background: #dc2626; color: white; padding: 20px; border-radius: 10px; text-align: center;">
    <h1>New Lead Captured!</h1>
  </div>
  <div style="background: #f3f4f6; padding: 20px; border-radius: 10px;">
    <h2>Lead Information</h2>
{html_rows}
  </div>
  <p style="text-align: center;"><a href="mailto:{html.escape(email)}">Contact Lead</a></p>
</body>
</html>"""

    text_rows = "\n".join(f"- {label}: {value}" for label, value in rows)
    text_body = f"New Lead Captured - AI Business Plan Generator\n\nLead Information:\n{text_rows}\n"

    return RenderedEmail(
        subject=f"New Lead: {email} - AI Business Plan", html=html_body, text=text_body
    )


async def send_via_resend(
    to_emails: list[str],
    subject: str,
    html_body: str,
    text_body: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """
    Send one email through Resend.

    Returns:
        Dict with message_id and status

    Raises:
        ValueError: If RESEND_API_KEY is not configured
        httpx.HTTPStatusError: If Resend rejects the request
    """
    settings = get_settings()

    if not settings.RESEND_API_KEY:
        raise ValueError("RESEND_API_KEY not configured")

    payload: dict[str, Any] = {
        "from": f"{settings.RESEND_FROM_NAME} <{settings.RESEND_FROM_EMAIL}>",
        "to": to_emails,
        "subject": subject,
        "html": html_body,
    }
    if text_body:
        payload["text"] = text_body

    async def _post(http: httpx.AsyncClient) -> httpx.Response:
        return await http.post(
            RESEND_API_URL,
            headers={
                "Authorization": f"Bearer {settings.RESEND_API_KEY}",
                "Content-Type": "application/json",
            },
            json=payload,
        )

    if client is not None:
        response = await _post(client)
    else:
        async with httpx.AsyncClient(timeout=15) as http:
            response = await _post(http)
    response.raise_for_status()

    message_id = response.json().get("id", "")
    logger.info(
        f"Resend email sent to {len(to_emails)} recipients, "
        f"subject='{subject}', message_id={message_id}"
    )
    return {"message_id": message_id, "status": "sent"}


async def send_plan_emails(
    email: str,
    business_plan: str,
    context_summary: dict[str, Any] | None = None,
    user_info: dict[str, Any] | None = None,
    lead_signals: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Send the plan to the owner, then the lead notification.

    The owner email must succeed; the notification is best-effort.

    Returns:
        Dict with the owner message id and whether the notification was sent
    """
    settings = get_settings()

    plan_email = render_plan_email(business_plan, context_summary, user_info)
    result = await send_via_resend([email], plan_email.subject, plan_email.html, plan_email.text)

    notified = False
    if settings.LEAD_NOTIFICATION_EMAIL:
        lead_email = render_lead_notification(email, context_summary, user_info, lead_signals)
        try:
            await send_via_resend(
                [settings.LEAD_NOTIFICATION_EMAIL], lead_email.subject, lead_email.html, lead_email.text
            )
            notified = True
        except (ValueError, httpx.HTTPError) as e:
            logger.warning(f"Lead notification failed for {email}: {e}")

    return {"message_id": result["message_id"], "lead_notified": notified}

"""Tests for plan and lead-notification emails."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.core.email_service import (
    NOT_SPECIFIED,
    render_lead_notification,
    render_plan_email,
    send_plan_emails,
    send_via_resend,
)


def test_render_plan_email_escapes_html():
    email = render_plan_email(
        "## Plan\n<script>alert(1)</script>",
        context_summary={"businessType": "Bakery & Cafe", "painPoints": ""},
        user_info={"painPoints": "Manual invoicing"},
    )

    assert email.subject == "Your AI Business Plan is Ready!"
    assert "Bakery &amp; Cafe" in email.html
    assert "&lt;script&gt;" in email.html
    assert "<script>" not in email.html
    # Blank summary values fall through to user info
    assert "Manual invoicing" in email.text
    assert f"Goals: {NOT_SPECIFIED}" in email.text


def test_render_lead_notification_includes_score():
    email = render_lead_notification(
        "owner@bakery.com",
        context_summary={"businessType": "Bakery", "growthIntent": "Second location"},
        lead_signals={"score": 72},
    )

    assert email.subject == "New Lead: owner@bakery.com - AI Business Plan"
    assert "- Lead Score: 72" in email.text
    assert "- Growth Intent: Second location" in email.text
    assert f"- Data Available: {NOT_SPECIFIED}" in email.text
    assert 'href="mailto:owner@bakery.com"' in email.html


@pytest.mark.asyncio
async def test_send_via_resend_posts_payload(set_env):
    set_env(RESEND_API_KEY="re_test", RESEND_FROM_EMAIL="plans@5qstrategy.com")
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["Authorization"]
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "msg_123"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await send_via_resend(
            ["owner@bakery.com"], "Subject", "<p>Hi</p>", "Hi", client=client
        )

    assert result == {"message_id": "msg_123", "status": "sent"}
    assert captured["auth"] == "Bearer re_test"
    assert captured["url"] == "https://api.resend.com/emails"
    assert captured["body"]["to"] == ["owner@bakery.com"]
    assert captured["body"]["from"] == "AI Business Plan <plans@5qstrategy.com>"
    assert captured["body"]["text"] == "Hi"


@pytest.mark.asyncio
async def test_send_via_resend_requires_key():
    with pytest.raises(ValueError, match="RESEND_API_KEY"):
        await send_via_resend(["owner@bakery.com"], "Subject", "<p>Hi</p>")


@pytest.mark.asyncio
async def test_send_via_resend_raises_on_rejection(set_env):
    set_env(RESEND_API_KEY="re_test")
    transport = httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad"}))

    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await send_via_resend(["owner@bakery.com"], "Subject", "<p>Hi</p>", client=client)


@pytest.mark.asyncio
async def test_send_plan_emails_without_notification_inbox():
    send = AsyncMock(return_value={"message_id": "msg_1", "status": "sent"})
    with patch("app.core.email_service.send_via_resend", send):
        result = await send_plan_emails("owner@bakery.com", "## Plan")

    assert result == {"message_id": "msg_1", "lead_notified": False}
    assert send.await_count == 1


@pytest.mark.asyncio
async def test_send_plan_emails_lead_notification_is_best_effort(set_env):
    set_env(LEAD_NOTIFICATION_EMAIL="sales@5qstrategy.com")
    request = httpx.Request("POST", "https://api.resend.com/emails")
    send = AsyncMock(
        side_effect=[
            {"message_id": "msg_1", "status": "sent"},
            httpx.ConnectError("connection refused", request=request),
        ]
    )

    with patch("app.core.email_service.send_via_resend", send):
        result = await send_plan_emails(
            "owner@bakery.com", "## Plan", context_summary={"businessType": "Bakery"}
        )

    assert result == {"message_id": "msg_1", "lead_notified": False}
    assert send.await_args_list[1].args[0] == ["sales@5qstrategy.com"]


@pytest.mark.asyncio
async def test_send_plan_emails_owner_failure_propagates():
    send = AsyncMock(side_effect=ValueError("RESEND_API_KEY not configured"))
    with patch("app.core.email_service.send_via_resend", send):
        with pytest.raises(ValueError):
            await send_plan_emails("owner@bakery.com", "## Plan")

"""Tests for website and financial analysis chains."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from app.chains.analyze_sources import (
    analyze_financial_text,
    analyze_website_content,
    financial_failure_analysis,
    heuristic_financial_analysis,
)
from app.core.exceptions import LLMGatewayError
from app.core.nim_client import ChatCompletionResult
from app.core.schemas_analysis import FINANCIAL_UNKNOWN, WEBSITE_UNKNOWN

SITE_TEXT = "Family bakery offering custom cakes. Order online through our platform. Contact our team."


def _result(content: str) -> ChatCompletionResult:
    return ChatCompletionResult(content=content, model="test-model")


@pytest.mark.asyncio
async def test_website_analysis_fills_missing_keys():
    payload = {"productsServices": "Custom cakes", "customerSegment": "Local families", "techStack": ""}
    mock_call = AsyncMock(return_value=_result(json.dumps(payload)))
    with patch("app.chains.analyze_sources.chat_completion", new=mock_call):
        analysis = await analyze_website_content("https://bakery.com", SITE_TEXT)

    body = analysis.model_dump(by_alias=True)
    assert body["productsServices"] == "Custom cakes"
    assert body["techStack"] == WEBSITE_UNKNOWN
    assert body["marketingWeaknesses"] == WEBSITE_UNKNOWN
    assert mock_call.call_args.kwargs["guided_json"]["required"][0] == "productsServices"


@pytest.mark.asyncio
async def test_website_analysis_unparseable_uses_heuristic():
    with patch(
        "app.chains.analyze_sources.chat_completion",
        new=AsyncMock(return_value=_result("The site sells cakes.")),
    ):
        analysis = await analyze_website_content("https://bakery.com", SITE_TEXT)

    body = analysis.model_dump(by_alias=True)
    assert body["productsServices"] == "Products/services mentioned on website"
    assert body["techStack"] == "Technology-focused business"
    assert body["contentSample"].startswith("Family bakery")


@pytest.mark.asyncio
async def test_website_gateway_error_propagates():
    with patch(
        "app.chains.analyze_sources.chat_completion",
        new=AsyncMock(side_effect=LLMGatewayError("down", status=500)),
    ):
        with pytest.raises(LLMGatewayError):
            await analyze_website_content("https://bakery.com", SITE_TEXT)


@pytest.mark.asyncio
async def test_financial_analysis_parses_json():
    payload = {
        "businessType": "Retail bakery",
        "revenueTrend": "Up 12%",
        "largestCostCenters": "Flour, labor",
        "profitMargins": "8%",
        "seasonality": "Peaks in December",
        "cashFlowRisks": "",
    }
    with patch(
        "app.chains.analyze_sources.chat_completion",
        new=AsyncMock(return_value=_result(json.dumps(payload))),
    ):
        analysis = await analyze_financial_text("pl.csv", "Revenue,100\nCost,80")

    assert analysis.revenue_trend == "Up 12%"
    assert analysis.cash_flow_risks == FINANCIAL_UNKNOWN


def test_heuristic_financial_analysis():
    analysis = heuristic_financial_analysis("Revenue grew to $120,000 while expenses held flat.")
    body = analysis.model_dump(by_alias=True)
    assert body["businessType"] == "Small to Medium Business"
    assert body["revenueTrend"] == "Revenue data present in document"
    assert body["largestCostCenters"] == "Cost information found in document"
    assert "extractedTextSample" in body


def test_financial_failure_analysis_carries_reason():
    assert "bad PDF" in financial_failure_analysis("bad PDF").revenue_trend

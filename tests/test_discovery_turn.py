"""Tests for the discovery turn coordinator (model calls mocked)."""

from unittest.mock import AsyncMock, patch

import pytest

from app.chains.discovery_turn import run_discovery_turn
from app.chains.generate_business_plan import BusinessPlanResult
from app.chains.research_agent import ResearchResult
from app.core.exceptions import AllProvidersFailedError, LLMRetryableError
from app.core.nim_client import ChatCompletionResult
from app.core.prompts import FALLBACK_PLAN_MARKDOWN, FALLBACK_PLAN_MESSAGE
from app.core.providers import ProviderHealthRegistry, ProviderState
from app.core.rag import RagStore
from app.core.schemas_discovery import AttachedFile, ChatRequest, ChatTurn, ContextSummary
from app.core.step_guard import build_fallback_message

GOOD_Q2 = (
    "**Question 2: Pain points**\n"
    "Thanks for sharing! What is the biggest obstacle costing your team time or money right now?"
)
FINAL_Q2 = (
    "**Question 2: Pain points**\n"
    "This is my final question: what is the biggest obstacle costing your team time right now?"
)


def _result(content: str) -> ChatCompletionResult:
    return ChatCompletionResult(content=content, model="test-model")


def _registry() -> ProviderHealthRegistry:
    return ProviderHealthRegistry([ProviderState("nvidia_primary", "NVIDIA NIM Primary", 1)])


def _request(pairs: int, confirm: bool = False, **kwargs) -> ChatRequest:
    messages = []
    for index in range(pairs):
        messages.append(ChatTurn(role="assistant", content=f"**Question {index + 1}:** ..."))
        messages.append(ChatTurn(role="user", content=f"Answer {index + 1}"))
    if confirm:
        messages.append(ChatTurn(role="assistant", content="Here's a summary ..."))
        messages.append(ChatTurn(role="user", content="Yes, that's right. Please compare competitors too."))
    return ChatRequest(messages=messages, current_step=kwargs.pop("current_step", 1), **kwargs)


@pytest.fixture
def summary_mock():
    mock_summary = AsyncMock(return_value=ContextSummary(business_type="Bakery"))
    with patch("app.chains.discovery_turn.generate_context_summary", new=mock_summary):
        yield mock_summary


class TestQuestionTurn:
    @pytest.mark.asyncio
    async def test_clean_answer_first_try(self, summary_mock):
        mock_call = AsyncMock(return_value=_result(GOOD_Q2))
        with patch("app.chains.discovery_turn.chat_completion", new=mock_call):
            result = await run_discovery_turn(_request(1), _registry())

        assert result.message == GOOD_Q2
        assert not result.fallback
        assert result.attempts == 1
        assert result.context_summary.business_type == "Bakery"
        kwargs = mock_call.call_args.kwargs
        assert (kwargs["temperature"], kwargs["top_p"], kwargs["max_tokens"]) == (0.6, 0.95, 2048)
        assert kwargs["phase"] == "step_2"

        # summary is regenerated over the history plus the new assistant turn
        turns = summary_mock.call_args.args[0]
        assert turns[-1].role == "assistant"
        assert turns[-1].content == GOOD_Q2

    @pytest.mark.asyncio
    async def test_violation_then_corrected(self, summary_mock):
        mock_call = AsyncMock(side_effect=[_result(FINAL_Q2), _result(GOOD_Q2)])
        with patch("app.chains.discovery_turn.chat_completion", new=mock_call):
            result = await run_discovery_turn(_request(1), _registry())

        assert result.message == GOOD_Q2
        assert result.attempts == 2
        retry_system_prompt = mock_call.call_args_list[1].args[0][0]["content"]
        assert "CORRECTION REQUIRED (final_question_early)" in retry_system_prompt

    @pytest.mark.asyncio
    async def test_persistent_violation_bounded_then_fallback(self, summary_mock):
        mock_call = AsyncMock(return_value=_result(FINAL_Q2))
        with patch("app.chains.discovery_turn.chat_completion", new=mock_call):
            result = await run_discovery_turn(_request(1), _registry())

        assert mock_call.await_count == 3
        assert result.fallback
        assert result.message == build_fallback_message(2)
        assert result.to_response().model_dump(by_alias=True, exclude_none=True)["fallback"] is True

    @pytest.mark.asyncio
    async def test_reasoning_only_output_falls_back(self, summary_mock):
        mock_call = AsyncMock(return_value=_result("<think>what should I ask? maybe pains"))
        with patch("app.chains.discovery_turn.chat_completion", new=mock_call):
            result = await run_discovery_turn(_request(1), _registry())

        assert mock_call.await_count == 3
        assert result.fallback
        assert result.message.startswith("**Question 2:")
        retry_prompt = mock_call.call_args_list[1].args[0][0]["content"]
        assert "only internal reasoning" in retry_prompt

    @pytest.mark.asyncio
    async def test_gateway_error_goes_straight_to_fallback(self, summary_mock):
        mock_call = AsyncMock(side_effect=LLMRetryableError("timeout"))
        with patch("app.chains.discovery_turn.chat_completion", new=mock_call):
            result = await run_discovery_turn(
                _request(0, initial_context={"businessType": "Bakery"}), _registry()
            )

        assert mock_call.await_count == 1
        assert result.fallback
        assert result.message.startswith("**Question 1:")

    @pytest.mark.asyncio
    async def test_secrets_masked_in_message(self, summary_mock):
        leaky = GOOD_Q2 + " Our key is sk-abcdefghijklmnopqrstuvwxyz123456."
        with patch("app.chains.discovery_turn.chat_completion", new=AsyncMock(return_value=_result(leaky))):
            result = await run_discovery_turn(_request(1), _registry())

        assert "sk-abcdefghijklmnop" not in result.message
        assert result.redactions >= 1

    @pytest.mark.asyncio
    async def test_context_summary_failure_keeps_prior(self):
        with (
            patch("app.chains.discovery_turn.generate_context_summary", new=AsyncMock(return_value=None)),
            patch("app.chains.discovery_turn.chat_completion", new=AsyncMock(return_value=_result(GOOD_Q2))),
        ):
            result = await run_discovery_turn(
                _request(1, initial_context={"businessType": "Cafe"}), _registry()
            )

        assert result.context_summary.business_type == "Cafe"


class TestPlanTurn:
    @pytest.mark.asyncio
    async def test_summary_only_does_not_plan(self, summary_mock):
        request = _request(5, current_step=6)
        summary_text = (
            "Thank you for walking me through your business. Here's a summary of what I've learned "
            "about your bakery and its goals."
        )
        with patch("app.chains.discovery_turn.chat_completion", new=AsyncMock(return_value=_result(summary_text))):
            result = await run_discovery_turn(request, _registry())

        assert not result.is_business_plan
        assert result.message.startswith("Thank you")
        assert "isBusinessPlan" not in result.to_response().model_dump(by_alias=True, exclude_none=True)

    @pytest.mark.asyncio
    async def test_plan_generated_after_confirmation(self, summary_mock, set_env):
        set_env(DEEP_RESEARCH_ENABLED="false")
        plan = BusinessPlanResult(
            markdown="# Plan\n## Quick Wins\n- Automate invoicing",
            model="ultra",
            provider="nvidia_primary",
            latency_ms=2500,
            highlights=["Automate invoicing"],
        )
        with (
            patch("app.chains.discovery_turn.generate_business_plan", new=AsyncMock(return_value=plan)),
            patch(
                "app.chains.discovery_turn.extract_lead_signals", new=AsyncMock(return_value=None)
            ) as mock_leads,
            patch("app.chains.discovery_turn.chat_completion", new=AsyncMock()) as mock_question,
        ):
            result = await run_discovery_turn(_request(5, confirm=True, current_step=7), _registry())

        mock_question.assert_not_awaited()
        mock_leads.assert_awaited_once()
        assert result.is_business_plan
        assert not result.fallback
        assert result.business_plan_markdown.startswith("# Plan")
        body = result.to_response().model_dump(by_alias=True, exclude_none=True)
        assert body["isBusinessPlan"] is True
        assert body["planHighlights"] == ["Automate invoicing"]
        assert body["contextSummary"]["businessType"] == "Bakery"

    @pytest.mark.asyncio
    async def test_plan_failure_returns_fallback_plan(self, summary_mock):
        with patch(
            "app.chains.discovery_turn.generate_business_plan",
            new=AsyncMock(side_effect=AllProvidersFailedError([("NVIDIA NIM Primary", "down")])),
        ):
            result = await run_discovery_turn(_request(5, confirm=True), _registry())

        assert result.is_business_plan
        assert result.fallback
        assert result.message == FALLBACK_PLAN_MESSAGE
        assert result.business_plan_markdown == FALLBACK_PLAN_MARKDOWN

    @pytest.mark.asyncio
    async def test_research_brief_passed_to_plan(self, summary_mock):
        async def fake_embed(texts, input_type="passage"):
            return [[1.0, float(len(text) % 7)] for text in texts]

        store = RagStore(embed=fake_embed, enabled=True)
        research = ResearchResult(research_brief="Competitors charge more [file:menu.txt#0]", coverage=100.0)
        plan = BusinessPlanResult(markdown="# Plan\n## Next\n- Go", model="ultra", provider="nvidia_primary")
        request = _request(
            5,
            confirm=True,
            attached_files=[AttachedFile(name="menu.txt", content="Croissant $4. Sourdough $9. " * 20)],
        )

        with (
            patch("app.chains.discovery_turn.run_research", new=AsyncMock(return_value=research)) as mock_research,
            patch("app.chains.discovery_turn.generate_business_plan", new=AsyncMock(return_value=plan)) as mock_plan,
            patch("app.chains.discovery_turn.extract_lead_signals", new=AsyncMock(return_value=None)),
        ):
            result = await run_discovery_turn(request, _registry(), rag_store=store)

        mock_research.assert_awaited_once()
        assert len(store) > 0
        doc_ids = mock_research.call_args.kwargs["doc_ids"]
        assert doc_ids and all(doc_id in store for doc_id in doc_ids)
        assert mock_plan.call_args.kwargs["research_brief"] == research.research_brief
        assert result.research_brief == research.research_brief

    @pytest.mark.asyncio
    async def test_research_reads_only_this_requests_attachments(self, summary_mock):
        embedded = []

        async def fake_embed(texts, input_type="passage"):
            if input_type == "passage":
                embedded.extend(texts)
            return [[1.0, float(len(text) % 7)] for text in texts]

        store = RagStore(embed=fake_embed, enabled=True)
        plan = BusinessPlanResult(markdown="# Plan\n## Next\n- Go", model="ultra", provider="nvidia_primary")
        bakery = _request(5, confirm=True, attached_files=[AttachedFile(name="notes.txt", content="Bakery revenue is falling.")])
        plumber = _request(5, confirm=True, attached_files=[AttachedFile(name="notes.txt", content="Plumbing jobs backlog.")])

        with (
            patch(
                "app.chains.discovery_turn.run_research",
                new=AsyncMock(return_value=ResearchResult(research_brief="brief")),
            ) as mock_research,
            patch("app.chains.discovery_turn.generate_business_plan", new=AsyncMock(return_value=plan)),
            patch("app.chains.discovery_turn.extract_lead_signals", new=AsyncMock(return_value=None)),
        ):
            await run_discovery_turn(bakery, _registry(), rag_store=store)
            await run_discovery_turn(plumber, _registry(), rag_store=store)
            await run_discovery_turn(plumber, _registry(), rag_store=store)

        assert len(store) == 2
        assert embedded == ["Bakery revenue is falling.", "Plumbing jobs backlog."]

        bakery_ids, plumber_ids, retry_ids = (c.kwargs["doc_ids"] for c in mock_research.call_args_list)
        assert bakery_ids != plumber_ids
        assert plumber_ids == retry_ids
        assert [doc.text for doc in store.get_docs_by_ids(bakery_ids)] == ["Bakery revenue is falling."]

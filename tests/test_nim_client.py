"""Tests for the NIM chat-completion client (HTTP mocked with httpx.MockTransport)."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.core.exceptions import LLMGatewayError, LLMResponseParseError, LLMRetryableError
from app.core.nim_client import chat_completion, embeddings, extract_message_text, select_content


def _completion(content=None, reasoning=None, usage=None):
    message = {}
    if content is not None:
        message["content"] = content
    if reasoning is not None:
        message["reasoning_content"] = reasoning
    return {
        "choices": [{"message": message}],
        "usage": usage or {"prompt_tokens": 12, "completion_tokens": 34},
    }


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def no_sleep():
    with patch("app.core.nim_client._sleep", new=AsyncMock()) as mock_sleep:
        yield mock_sleep


class TestChatCompletion:
    @pytest.mark.asyncio
    async def test_success_sends_expected_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json=_completion("Hello there"), headers={"x-request-id": "req-1"})

        async with _client(handler) as client:
            result = await chat_completion(
                [{"role": "user", "content": "Hi"}],
                model="test-model",
                temperature=0.6,
                max_tokens=2048,
                guided_json={"type": "object"},
                client=client,
            )

        assert result.content == "Hello there"
        assert result.request_id == "req-1"
        assert (result.tokens_in, result.tokens_out) == (12, 34)
        assert seen["auth"] == "Bearer test-nvidia-key"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["stream"] is False
        assert seen["body"]["max_tokens"] == 2048
        assert seen["body"]["nvext"] == {"guided_json": {"type": "object"}}

    @pytest.mark.asyncio
    async def test_reasoning_content_used_when_content_empty(self):
        def handler(request):
            return httpx.Response(200, json=_completion("", reasoning="The real answer"))

        async with _client(handler) as client:
            result = await chat_completion([{"role": "user", "content": "Hi"}], client=client)

        assert result.content == "The real answer"

    @pytest.mark.asyncio
    async def test_retries_transient_status(self, no_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json=_completion("Recovered answer"))

        async with _client(handler) as client:
            result = await chat_completion([{"role": "user", "content": "Hi"}], client=client)

        assert result.content == "Recovered answer"
        assert len(calls) == 2
        no_sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_retryable(self, no_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, text="slow down")

        async with _client(handler) as client:
            with pytest.raises(LLMRetryableError) as exc_info:
                await chat_completion([{"role": "user", "content": "Hi"}], client=client)

        assert exc_info.value.status == 429
        assert exc_info.value.retryable
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self, no_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="bad key")

        async with _client(handler) as client:
            with pytest.raises(LLMGatewayError) as exc_info:
                await chat_completion([{"role": "user", "content": "Hi"}], client=client)

        assert exc_info.value.is_auth_error
        assert not exc_info.value.retryable
        assert len(calls) == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(LLMRetryableError):
                await chat_completion([{"role": "user", "content": "Hi"}], timeout=1, client=client)

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        async with _client(handler) as client:
            with pytest.raises(LLMResponseParseError):
                await chat_completion([{"role": "user", "content": "Hi"}], client=client)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [None, [], {"choices": ["oops"]}, {"choices": [{"message": "text"}]}, {"choices": [], "usage": 7}],
    )
    async def test_wrongly_shaped_body_is_parse_error(self, body):
        def handler(request):
            return httpx.Response(200, content=json.dumps(body))

        async with _client(handler) as client:
            with pytest.raises(LLMResponseParseError, match="malformed"):
                await chat_completion([{"role": "user", "content": "Hi"}], client=client)


class TestSelectContent:
    def test_short_content_falls_back_to_reasoning(self):
        data = _completion("ok", reasoning="A much longer reasoning answer")
        assert select_content(data, guided_json=False) == "A much longer reasoning answer"

    def test_guided_json_keeps_short_content(self):
        data = _completion('{"a": 1}', reasoning="thinking about json")
        assert select_content(data, guided_json=True) == '{"a": 1}'

    def test_choice_text_shape(self):
        assert select_content({"choices": [{"text": "legacy"}]}, guided_json=False) == "legacy"

    def test_extract_message_text_parts(self):
        parts = [{"type": "text", "text": "Hello"}, {"type": "text", "text": "world"}]
        assert extract_message_text(parts) == "Hello world"
        assert extract_message_text(None) == ""


@pytest.mark.asyncio
async def test_embeddings_returns_vectors():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2]}, {"embedding": [0.3, 0.4]}]})

    async with _client(handler) as client:
        vectors = await embeddings(["a", "b"], input_type="query", client=client)

    assert vectors == [[0.1, 0.2], [0.3, 0.4]]
    assert seen["body"]["input_type"] == "query"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [None, {"data": [{"vector": [0.1]}]}, {"object": "list"}])
async def test_embeddings_wrongly_shaped_body_is_parse_error(body):
    def handler(request):
        return httpx.Response(200, content=json.dumps(body))

    async with _client(handler) as client:
        with pytest.raises(LLMResponseParseError):
            await embeddings(["a"], client=client)

"""NVIDIA NIM chat-completion client.

One request in, one extracted text answer out. Handles transient-status
retries with jittered exponential backoff, client-side timeouts, guided JSON
mode, and the several response shapes NIM models produce (string content,
arrays of parts, and a reasoning_content side channel).
"""

import asyncio
import json
import random
import time
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.config import get_settings
from app.core.exceptions import LLMGatewayError, LLMResponseParseError, LLMRetryableError
from app.core.logging import get_logger, log_llm_metrics

logger = get_logger(__name__)

TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})

# content shorter than this is considered implausible when reasoning_content exists
MIN_CONTENT_CHARS = 50


@dataclass
class ChatCompletionResult:
    """Extracted answer plus token/latency metadata."""

    content: str
    model: str
    request_id: str | None = None
    status: int | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    latency_ms: int = 0


def _backoff_seconds(attempt: int, base_ms: int) -> float:
    return (base_ms * (2**attempt) + random.randint(0, 100)) / 1000


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _headers(api_key: str | None) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key or ''}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


async def _post_with_retries(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
    max_retries: int,
    backoff_base_ms: int,
) -> httpx.Response:
    """POST with retries on 429/502/503/504 and network errors.

    A timeout is not retried here: it surfaces immediately as retryable so a
    multi-provider caller can move to a different backend.
    """
    for attempt in range(max_retries + 1):
        try:
            response = await client.post(url, json=payload, headers=headers, timeout=timeout)
        except httpx.TimeoutException as e:
            logger.error(f"NIM request timeout after {timeout}s (attempt {attempt + 1})")
            raise LLMRetryableError(f"Request timeout after {timeout}s") from e
        except httpx.TransportError as e:
            if attempt < max_retries:
                delay = _backoff_seconds(attempt, backoff_base_ms)
                logger.warning(
                    f"NIM transport error ({type(e).__name__}), retrying in {delay:.2f}s"
                )
                await _sleep(delay)
                continue
            raise LLMRetryableError(f"NIM request failed: {e}") from e

        if response.status_code in TRANSIENT_STATUSES:
            request_id = response.headers.get("x-request-id")
            if attempt < max_retries:
                delay = _backoff_seconds(attempt, backoff_base_ms)
                logger.warning(
                    f"NIM returned {response.status_code} "
                    f"(attempt {attempt + 1}/{max_retries + 1}), retrying in {delay:.2f}s"
                )
                await _sleep(delay)
                continue
            raise LLMRetryableError(
                f"NIM service temporarily unavailable ({response.status_code})",
                status=response.status_code,
                request_id=request_id,
            )

        return response

    # unreachable
    raise LLMRetryableError("NIM request failed")


def extract_message_text(value: Any) -> str:
    """Flatten the many content shapes NIM returns into plain text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = [extract_message_text(item) for item in value]
        return " ".join(part for part in parts if part)
    if isinstance(value, dict):
        for key in ("text", "content", "output_text"):
            inner = value.get(key)
            if isinstance(inner, str):
                return inner
            if isinstance(inner, list):
                return extract_message_text(inner)
        if isinstance(value.get("value"), str):
            return value["value"]
    return ""


def select_content(data: dict[str, Any], guided_json: bool) -> str:
    """Pick the answer text out of a chat-completion body.

    `reasoning_content` is used when `content` is empty or implausibly short
    (in guided JSON mode NIM may put the whole answer there).
    """
    choices = data.get("choices") or []
    choice = choices[0] if choices else {}
    message = choice.get("message") or {}

    content = extract_message_text(message.get("content")).strip()
    if not content:
        content = extract_message_text(choice.get("text")).strip()

    reasoning = extract_message_text(
        message.get("reasoning_content") or choice.get("reasoning_content")
    ).strip()

    if reasoning and (not content or (not guided_json and len(content) < MIN_CONTENT_CHARS)):
        if content:
            logger.debug(
                f"Content is only {len(content)} chars, falling back to reasoning_content"
            )
        return reasoning

    if content:
        return content

    for call in message.get("tool_calls") or []:
        candidate = extract_message_text(call.get("output") or call.get("text")).strip()
        if candidate:
            return candidate

    return extract_message_text(data.get("content") or data.get("output_text")).strip()


def _check_chat_body(data: Any) -> str | None:
    """Return a description of the first malformed part of a chat body, or None."""
    if not isinstance(data, dict):
        return f"body is {type(data).__name__}, expected object"
    choices = data.get("choices")
    if choices is not None and not isinstance(choices, list):
        return "choices is not a list"
    if choices:
        choice = choices[0]
        if not isinstance(choice, dict):
            return "choices[0] is not an object"
        message = choice.get("message")
        if message is not None and not isinstance(message, dict):
            return "choices[0].message is not an object"
        if isinstance(message, dict):
            tool_calls = message.get("tool_calls") or []
            if not isinstance(tool_calls, list) or not all(isinstance(c, dict) for c in tool_calls):
                return "choices[0].message.tool_calls is not a list of objects"
    usage = data.get("usage")
    if usage is not None and not isinstance(usage, dict):
        return "usage is not an object"
    return None


async def chat_completion(
    messages: list[dict[str, str]],
    model: str | None = None,
    temperature: float = 0.4,
    top_p: float = 0.95,
    max_tokens: int = 4096,
    guided_json: dict[str, Any] | None = None,
    timeout: float | None = None,
    phase: str = "chat",
    client: httpx.AsyncClient | None = None,
) -> ChatCompletionResult:
    """
    Issue one chat-completion request to NIM.

    Args:
        messages: Ordered system + conversation messages
        model: Model identifier (defaults to LLM_DEFAULT_MODEL)
        temperature: Sampling temperature
        top_p: Nucleus sampling parameter
        max_tokens: Completion token budget
        guided_json: Optional JSON schema constraint (nvext.guided_json)
        timeout: Client-side timeout in seconds (defaults to LLM_TIMEOUT_SECONDS)
        phase: Label used in the metrics log line
        client: Optional shared httpx client

    Returns:
        ChatCompletionResult with extracted text

    Raises:
        LLMRetryableError: Timeout or exhausted transient retries
        LLMGatewayError: Non-retryable API error (auth, 4xx, 500)
        LLMResponseParseError: Body was not valid JSON or not a chat-completion object
    """
    settings = get_settings()
    model = model or settings.LLM_DEFAULT_MODEL
    timeout = timeout or settings.LLM_TIMEOUT_SECONDS

    payload: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "top_p": top_p,
        "max_tokens": max_tokens,
        "stream": False,
    }
    if guided_json:
        payload["nvext"] = {"guided_json": guided_json}

    started = time.monotonic()

    async def _send(http: httpx.AsyncClient) -> httpx.Response:
        return await _post_with_retries(
            http,
            settings.NVIDIA_API_URL,
            payload,
            _headers(settings.NVIDIA_API_KEY),
            timeout,
            settings.LLM_MAX_RETRIES,
            settings.LLM_BACKOFF_BASE_MS,
        )

    try:
        if client is not None:
            response = await _send(client)
        else:
            async with httpx.AsyncClient() as http:
                response = await _send(http)
    except LLMGatewayError:
        log_llm_metrics(logger, phase, model, int((time.monotonic() - started) * 1000), success=False)
        raise

    latency_ms = int((time.monotonic() - started) * 1000)
    request_id = response.headers.get("x-request-id")
    raw_body = response.text

    if response.status_code >= 400:
        log_llm_metrics(logger, phase, model, latency_ms, success=False)
        raise LLMGatewayError(
            f"NIM chat error {response.status_code}",
            status=response.status_code,
            body=raw_body,
            request_id=request_id,
        )

    try:
        data = json.loads(raw_body) if raw_body else {}
    except json.JSONDecodeError as e:
        logger.error(f"NIM returned non-JSON body: {raw_body[:500]}")
        log_llm_metrics(logger, phase, model, latency_ms, success=False)
        raise LLMResponseParseError(
            f"NIM chat JSON parse error: {e}",
            status=response.status_code,
            body=raw_body,
            request_id=request_id,
        ) from e

    problem = _check_chat_body(data)
    if problem:
        logger.error(f"NIM returned malformed chat body: {problem}")
        log_llm_metrics(logger, phase, model, latency_ms, success=False)
        raise LLMResponseParseError(
            f"NIM chat response malformed: {problem}",
            status=response.status_code,
            body=raw_body,
            request_id=request_id,
        )

    content = select_content(data, guided_json=bool(guided_json))
    usage = data.get("usage") or {}
    tokens_in = usage.get("prompt_tokens")
    tokens_out = usage.get("completion_tokens")

    log_llm_metrics(logger, phase, model, latency_ms, tokens_in, tokens_out, success=True)

    return ChatCompletionResult(
        content=content,
        model=model,
        request_id=request_id,
        status=response.status_code,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        latency_ms=latency_ms,
    )


async def embeddings(
    texts: list[str],
    model: str | None = None,
    input_type: str = "passage",
    client: httpx.AsyncClient | None = None,
) -> list[list[float]]:
    """
    Embed texts with the NIM embeddings endpoint.

    Args:
        texts: Texts to embed
        model: Embedding model (defaults to EMBEDDINGS_MODEL)
        input_type: "passage" for indexing, "query" for searching
        client: Optional shared httpx client

    Returns:
        One vector per input text, in order
    """
    settings = get_settings()
    model = model or settings.EMBEDDINGS_MODEL
    payload = {"model": model, "input": texts, "input_type": input_type}
    started = time.monotonic()

    async def _send(http: httpx.AsyncClient) -> httpx.Response:
        return await _post_with_retries(
            http,
            settings.NVIDIA_EMBEDDINGS_URL,
            payload,
            _headers(settings.NVIDIA_API_KEY),
            settings.LLM_TIMEOUT_SECONDS,
            settings.LLM_MAX_RETRIES,
            settings.LLM_BACKOFF_BASE_MS,
        )

    if client is not None:
        response = await _send(client)
    else:
        async with httpx.AsyncClient() as http:
            response = await _send(http)

    latency_ms = int((time.monotonic() - started) * 1000)
    if response.status_code >= 400:
        log_llm_metrics(logger, "embeddings", model, latency_ms, success=False)
        raise LLMGatewayError(
            f"NIM embeddings error {response.status_code}",
            status=response.status_code,
            body=response.text,
        )

    try:
        data = response.json()
    except json.JSONDecodeError as e:
        raise LLMResponseParseError(
            f"NIM embeddings JSON parse error: {e}", status=response.status_code, body=response.text
        ) from e

    items = data.get("data") if isinstance(data, dict) else None
    if not isinstance(items, list) or not all(
        isinstance(item, dict) and isinstance(item.get("embedding"), list) for item in items
    ):
        log_llm_metrics(logger, "embeddings", model, latency_ms, success=False)
        raise LLMResponseParseError(
            "NIM embeddings response malformed: expected data[].embedding lists",
            status=response.status_code,
            body=response.text,
        )

    log_llm_metrics(logger, "embeddings", model, latency_ms, success=True)
    return [item["embedding"] for item in items]

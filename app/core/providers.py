"""Multi-provider reliability wrapper.

Tries NIM (primary model, then a smaller same-vendor model), then OpenAI,
then Anthropic, skipping providers the health registry has marked down.
The registry is an explicitly owned object: the app creates one at startup
and passes it to whoever needs it.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

from app.core.config import Settings, get_settings
from app.core.exceptions import AllProvidersFailedError, LLMGatewayError, LLMRetryableError
from app.core.logging import get_logger, log_llm_metrics
from app.core.nim_client import chat_completion

logger = get_logger(__name__)

ULTRA_MODEL = "nvidia/llama-3.1-nemotron-ultra-253b-v1"
INSTRUCT_MODEL = "nvidia/llama-3.1-nemotron-70b-instruct"

# Logical (NIM) model -> concrete model per provider
MODEL_MAPPINGS: dict[str, dict[str, str]] = {
    "nvidia_primary": {
        INSTRUCT_MODEL: INSTRUCT_MODEL,
        ULTRA_MODEL: ULTRA_MODEL,
        "default": INSTRUCT_MODEL,
    },
    "nvidia_fallback": {
        INSTRUCT_MODEL: INSTRUCT_MODEL,
        ULTRA_MODEL: INSTRUCT_MODEL,
        "default": INSTRUCT_MODEL,
    },
    "openai": {
        INSTRUCT_MODEL: "gpt-4o-mini",
        ULTRA_MODEL: "gpt-4o",
        "default": "gpt-4o-mini",
    },
    "anthropic": {
        INSTRUCT_MODEL: "claude-3-haiku-20240307",
        ULTRA_MODEL: "claude-3-5-sonnet-20241022",
        "default": "claude-3-haiku-20240307",
    },
}


def resolve_model(provider_id: str, logical_model: str | None) -> str:
    mapping = MODEL_MAPPINGS[provider_id]
    if logical_model in mapping:
        return mapping[logical_model]
    # Unmapped NIM models pass straight through on the primary provider
    if provider_id == "nvidia_primary" and logical_model:
        return logical_model
    return mapping["default"]


# =============================================================================
# Health registry
# =============================================================================


@dataclass
class ProviderState:
    """Availability record for one backend."""

    id: str
    name: str
    priority: int
    is_available: bool = True
    last_error: str | None = None
    last_health_check: float | None = None
    unavailable_since: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "priority": self.priority,
            "isAvailable": self.is_available,
            "lastError": self.last_error,
            "lastHealthCheck": self.last_health_check,
        }


class ProviderHealthRegistry:
    """Availability flags for every configured provider.

    Reads go through `snapshot()`, which hands out copies. Writes are simple
    per-provider flag updates, made by the hot path when a provider fails
    hard and by the health monitor on its timer.

    A provider marked down is offered again after `retry_after` seconds even
    if no health check has run, so a process without the monitor does not
    lose a backend permanently to one bad response.
    """

    def __init__(self, states: list[ProviderState], retry_after: float | None = None):
        self._states = {state.id: state for state in states}
        self.retry_after = retry_after

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ProviderHealthRegistry":
        settings = settings or get_settings()
        return cls(
            [
                ProviderState("nvidia_primary", "NVIDIA NIM Primary", 1),
                ProviderState("nvidia_fallback", "NVIDIA NIM Fallback", 2),
                ProviderState(
                    "openai", "OpenAI", 3, is_available=bool(settings.OPENAI_API_KEY)
                ),
                ProviderState(
                    "anthropic", "Anthropic Claude", 4, is_available=bool(settings.ANTHROPIC_API_KEY)
                ),
            ],
            retry_after=settings.PROVIDER_HEALTH_INTERVAL_SECONDS,
        )

    def snapshot(self) -> list[ProviderState]:
        """Copies of every provider state, in priority order."""
        return [replace(state) for state in sorted(self._states.values(), key=lambda s: s.priority)]

    def available(self, now: float | None = None) -> list[ProviderState]:
        now = time.time() if now is None else now
        result = []
        for state in self.snapshot():
            if state.is_available:
                result.append(state)
            elif (
                self.retry_after is not None
                and state.unavailable_since is not None
                and now - state.unavailable_since >= self.retry_after
            ):
                result.append(state)
        return result

    def mark_unavailable(self, provider_id: str, reason: str) -> None:
        state = self._states[provider_id]
        state.is_available = False
        state.last_error = reason
        state.unavailable_since = time.time()

    def mark_available(self, provider_id: str) -> None:
        state = self._states[provider_id]
        state.is_available = True
        state.unavailable_since = None

    def record_health_check(self, provider_id: str, healthy: bool, error: str | None = None) -> None:
        state = self._states[provider_id]
        state.last_health_check = time.time()
        if healthy:
            self.mark_available(provider_id)
        else:
            self.mark_unavailable(provider_id, error or "Health check failed")

    def provider_ids(self) -> list[str]:
        return [state.id for state in self.snapshot()]


# =============================================================================
# Provider calls
# =============================================================================


@dataclass
class CompletionRequest:
    """Provider-neutral chat-completion request."""

    messages: list[dict[str, str]]
    model: str | None = None
    temperature: float = 0.3
    top_p: float = 0.9
    max_tokens: int = 1024
    guided_json: dict[str, Any] | None = None
    timeout: float | None = None
    phase: str = "chat"


@dataclass
class ProviderResult:
    content: str
    model: str
    provider: str
    request_id: str | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    latency_ms: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


ProviderCall = Callable[[CompletionRequest], Awaitable[ProviderResult]]


async def _call_nvidia(request: CompletionRequest, fallback: bool = False) -> ProviderResult:
    provider_id = "nvidia_fallback" if fallback else "nvidia_primary"
    result = await chat_completion(
        request.messages,
        model=resolve_model(provider_id, request.model),
        temperature=request.temperature,
        top_p=request.top_p,
        max_tokens=request.max_tokens,
        guided_json=request.guided_json,
        timeout=request.timeout,
        phase=request.phase,
    )
    return ProviderResult(
        content=result.content,
        model=result.model,
        provider=provider_id,
        request_id=result.request_id,
        tokens_in=result.tokens_in,
        tokens_out=result.tokens_out,
        latency_ms=result.latency_ms,
    )


async def _call_nvidia_fallback(request: CompletionRequest) -> ProviderResult:
    return await _call_nvidia(request, fallback=True)


async def _call_openai(request: CompletionRequest) -> ProviderResult:
    from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, AsyncOpenAI

    settings = get_settings()
    if not settings.OPENAI_API_KEY:
        raise LLMGatewayError("OpenAI API key not configured")

    model = resolve_model("openai", request.model)
    timeout = request.timeout or settings.LLM_TIMEOUT_SECONDS
    client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=timeout, max_retries=0)

    kwargs: dict[str, Any] = {}
    if request.guided_json:
        kwargs["response_format"] = {"type": "json_object"}

    started = time.monotonic()
    try:
        response = await client.chat.completions.create(
            model=model,
            messages=request.messages,
            temperature=request.temperature,
            top_p=request.top_p,
            max_tokens=request.max_tokens,
            **kwargs,
        )
    except APITimeoutError as e:
        raise LLMRetryableError(f"OpenAI request timeout after {timeout}s") from e
    except APIConnectionError as e:
        raise LLMRetryableError(f"OpenAI connection error: {e}") from e
    except APIStatusError as e:
        raise LLMGatewayError(
            f"OpenAI API error {e.status_code}: {e.message}", status=e.status_code
        ) from e
    except APIError as e:
        raise LLMGatewayError(f"OpenAI API error: {e.message}") from e

    latency_ms = int((time.monotonic() - started) * 1000)
    usage = response.usage
    content = (response.choices[0].message.content or "") if response.choices else ""
    log_llm_metrics(
        logger,
        request.phase,
        response.model,
        latency_ms,
        usage.prompt_tokens if usage else None,
        usage.completion_tokens if usage else None,
    )
    return ProviderResult(
        content=content,
        model=response.model,
        provider="openai",
        request_id=response.id,
        tokens_in=usage.prompt_tokens if usage else None,
        tokens_out=usage.completion_tokens if usage else None,
        latency_ms=latency_ms,
    )


def _anthropic_messages(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
    """Split out the system prompt and make the turns start with a user message."""
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    turns: list[dict[str, str]] = []
    for message in messages:
        if message["role"] == "system":
            continue
        if turns and turns[-1]["role"] == message["role"]:
            turns[-1] = {"role": message["role"], "content": f"{turns[-1]['content']}\n\n{message['content']}"}
        else:
            turns.append({"role": message["role"], "content": message["content"]})
    if not turns or turns[0]["role"] != "user":
        turns.insert(0, {"role": "user", "content": "Let's begin."})
    return system, turns


async def _call_anthropic(request: CompletionRequest) -> ProviderResult:
    from anthropic import APIConnectionError, APIError, APIStatusError, APITimeoutError, AsyncAnthropic

    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        raise LLMGatewayError("Anthropic API key not configured")

    model = resolve_model("anthropic", request.model)
    timeout = request.timeout or settings.LLM_TIMEOUT_SECONDS
    client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY, timeout=timeout, max_retries=0)
    system, turns = _anthropic_messages(request.messages)

    started = time.monotonic()
    try:
        response = await client.messages.create(
            model=model,
            system=system,
            messages=turns,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
        )
    except APITimeoutError as e:
        raise LLMRetryableError(f"Anthropic request timeout after {timeout}s") from e
    except APIConnectionError as e:
        raise LLMRetryableError(f"Anthropic connection error: {e}") from e
    except APIStatusError as e:
        raise LLMGatewayError(
            f"Anthropic API error {e.status_code}: {e.message}", status=e.status_code
        ) from e
    except APIError as e:
        raise LLMGatewayError(f"Anthropic API error: {e.message}") from e

    latency_ms = int((time.monotonic() - started) * 1000)
    content = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
    log_llm_metrics(
        logger,
        request.phase,
        response.model,
        latency_ms,
        response.usage.input_tokens,
        response.usage.output_tokens,
    )
    return ProviderResult(
        content=content,
        model=response.model,
        provider="anthropic",
        request_id=response.id,
        tokens_in=response.usage.input_tokens,
        tokens_out=response.usage.output_tokens,
        latency_ms=latency_ms,
    )


PROVIDER_CALLS: dict[str, ProviderCall] = {
    "nvidia_primary": _call_nvidia,
    "nvidia_fallback": _call_nvidia_fallback,
    "openai": _call_openai,
    "anthropic": _call_anthropic,
}


async def reliable_chat_completion(
    request: CompletionRequest,
    registry: ProviderHealthRegistry,
    calls: dict[str, ProviderCall] | None = None,
) -> ProviderResult:
    """
    Run one completion against the first provider that succeeds.

    Args:
        request: Provider-neutral request
        registry: Health registry deciding which providers are tried
        calls: Optional provider-id -> call override (tests)

    Returns:
        ProviderResult naming the provider that answered

    Raises:
        AllProvidersFailedError: No provider available, or every one failed
    """
    calls = calls or PROVIDER_CALLS
    candidates = registry.available()
    if not candidates:
        logger.error("No AI providers available")
        raise AllProvidersFailedError([])

    errors: list[tuple[str, str]] = []
    for provider in candidates:
        call = calls.get(provider.id)
        if call is None:
            errors.append((provider.name, f"Unknown provider: {provider.id}"))
            continue

        logger.info(f"Attempting {provider.name}", extra={"provider": provider.id})
        try:
            result = await call(request)
        except LLMGatewayError as e:
            errors.append((provider.name, e.message))
            logger.warning(f"{provider.name} failed: {e.message}", extra={"provider": provider.id})
            if e.is_auth_error:
                registry.mark_unavailable(provider.id, f"Authentication error: {e.message}")
            elif e.is_server_error:
                registry.mark_unavailable(provider.id, f"Server error: {e.message}")
            continue

        if not provider.is_available:
            # A provider that was offered again after its cool-down just recovered
            registry.mark_available(provider.id)

        logger.info(
            f"{provider.name} succeeded",
            extra={
                "provider": provider.id,
                "extra_data": {
                    "model": result.model,
                    "latency_ms": result.latency_ms,
                    "tokens": f"{result.tokens_in}->{result.tokens_out}",
                },
            },
        )
        return result

    logger.error("All AI providers failed")
    raise AllProvidersFailedError(errors)


def get_provider_status(registry: ProviderHealthRegistry) -> list[dict[str, Any]]:
    return [state.to_dict() for state in registry.snapshot()]


# =============================================================================
# Health monitor
# =============================================================================

HealthCheck = Callable[[], Awaitable[bool]]

_PING = [{"role": "user", "content": "Hi"}]


def _nvidia_check(provider_id: str, settings: Settings) -> HealthCheck:
    """Ping the model this NIM provider serves for plan requests."""
    model = resolve_model(provider_id, settings.LLM_PLAN_MODEL or settings.LLM_DEFAULT_MODEL)

    async def _check() -> bool:
        result = await chat_completion(
            _PING, model=model, max_tokens=10, temperature=0.1, phase="health"
        )
        return bool(result.content)

    return _check


async def _check_openai() -> bool:
    result = await _call_openai(CompletionRequest(messages=_PING, max_tokens=10, phase="health"))
    return bool(result.content)


async def _check_anthropic() -> bool:
    result = await _call_anthropic(CompletionRequest(messages=_PING, max_tokens=10, phase="health"))
    return bool(result.content)


def default_health_checks(settings: Settings | None = None) -> dict[str, HealthCheck]:
    settings = settings or get_settings()
    checks: dict[str, HealthCheck] = {
        "nvidia_primary": _nvidia_check("nvidia_primary", settings),
        "nvidia_fallback": _nvidia_check("nvidia_fallback", settings),
    }
    if settings.OPENAI_API_KEY:
        checks["openai"] = _check_openai
    if settings.ANTHROPIC_API_KEY:
        checks["anthropic"] = _check_anthropic
    return checks


class ProviderHealthMonitor:
    """Background task that pings every provider on an interval.

    It is the only periodic writer of the registry.
    """

    def __init__(
        self,
        registry: ProviderHealthRegistry,
        checks: dict[str, HealthCheck],
        interval: float,
    ):
        self.registry = registry
        self.checks = checks
        self.interval = interval
        self._task: asyncio.Task | None = None

    async def check_once(self) -> None:
        for provider_id, check in self.checks.items():
            try:
                healthy = await check()
                error = None if healthy else "Health check failed"
            except Exception as e:
                healthy = False
                error = f"Health check failed: {e}"
            self.registry.record_health_check(provider_id, healthy, error)
            if not healthy:
                logger.warning(f"Provider {provider_id} unhealthy", extra={"provider": provider_id})

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.check_once()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info("AI provider health monitoring started")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

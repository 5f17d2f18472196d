"""Exception types for the discovery engine."""

from typing import Any


class DiscoveryError(Exception):
    """Base exception for the discovery engine."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class LLMGatewayError(DiscoveryError):
    """Hard error returned by a chat-completion provider."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: str | None = None,
        request_id: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message, {"status": status, "request_id": request_id})
        self.status = status
        self.body = body
        self.request_id = request_id
        self.retryable = retryable

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)

    @property
    def is_server_error(self) -> bool:
        return self.status is not None and self.status >= 500


class LLMRetryableError(LLMGatewayError):
    """Timeout or exhausted transient retries; another backend may succeed."""

    def __init__(self, message: str, status: int | None = None, request_id: str | None = None):
        super().__init__(message, status=status, request_id=request_id, retryable=True)


class LLMResponseParseError(LLMGatewayError):
    """Provider returned a body that is not valid JSON."""


class AllProvidersFailedError(DiscoveryError):
    """Every configured provider failed for a single request."""

    def __init__(self, errors: list[tuple[str, str]]):
        summary = "; ".join(f"{provider}: {error}" for provider, error in errors)
        super().__init__(f"All AI providers failed. Errors: {summary or 'none available'}")
        self.errors = errors


class ExtractionError(DiscoveryError):
    """Raised when text cannot be extracted from an uploaded file."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable

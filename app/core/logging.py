"""Structured logging configuration for the AI discovery engine."""

import logging
import re
import sys
from typing import Any

# Bearer tokens and vendor keys that must never reach log sinks
_SECRET_RE = re.compile(r"(sk-[a-zA-Z0-9_\-]+|nvapi-[a-zA-Z0-9_\-]+|sk-ant-[a-zA-Z0-9_\-]+)")

# Correlation fields promoted to top-level keys when passed via log_with_context
_CORRELATION_FIELDS = ("conversation_id", "session_id", "provider", "step")


def redact_secrets(value: Any) -> Any:
    """Mask API keys inside strings; other values pass through unchanged."""
    if isinstance(value, str):
        return _SECRET_RE.sub("[redacted]", value)
    return value


class StructuredFormatter(logging.Formatter):
    """key=value structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured output."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        for field in _CORRELATION_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        parts = [f"{k}={redact_secrets(v)}" for k, v in log_data.items()]
        return " ".join(parts)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

        try:
            from app.core.config import get_settings

            settings = get_settings()
            if settings.DISCOVERY_ENV == "dev":
                logger.setLevel(logging.DEBUG)
            else:
                logger.setLevel(logging.INFO)
        except Exception:
            logger.setLevel(logging.INFO)

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with additional context fields.

    Correlation fields (conversation_id, session_id, provider, step) become
    top-level keys; everything else lands in extra_data.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields
    """
    extra: dict[str, Any] = {}
    for field in _CORRELATION_FIELDS:
        if field in kwargs:
            extra[field] = kwargs.pop(field)
    extra["extra_data"] = kwargs

    logger.log(level, msg, extra=extra)


def log_llm_metrics(
    logger: logging.Logger,
    phase: str,
    model: str,
    latency_ms: int,
    tokens_in: int | None = None,
    tokens_out: int | None = None,
    success: bool = True,
) -> None:
    """Emit the per-call metrics line for an outbound LLM request."""
    log_with_context(
        logger,
        logging.INFO if success else logging.WARNING,
        f"[METRICS] {phase}",
        model=model,
        latency_ms=latency_ms,
        tokens_in=tokens_in or 0,
        tokens_out=tokens_out or 0,
        success=success,
    )

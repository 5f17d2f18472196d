"""Output filter applied to every message and plan sent to the browser."""

import re
from dataclasses import dataclass

_SECRET_TOKEN = re.compile(r"sk-[a-zA-Z0-9_\-]{16,}")
_LOCALHOST = re.compile(r"(https?://)?(localhost|127\.0\.0\.1|0\.0\.0\.0)(:\d+)?", re.IGNORECASE)
_KEY_PAIR = re.compile(r"\b(api[_-]?key|key)\s*[:=]\s*\S+", re.IGNORECASE)


@dataclass
class FilterResult:
    text: str
    redactions: int


def filter_output(text: str) -> FilterResult:
    """Mask secret tokens, localhost URLs, and `key=value` pairs."""
    redactions = 0

    def _count(replacement: str):
        def _sub(_match: re.Match) -> str:
            nonlocal redactions
            redactions += 1
            return replacement

        return _sub

    out = _SECRET_TOKEN.sub(_count("[secret]"), text or "")
    out = _LOCALHOST.sub(_count("[redacted]"), out)
    out = _KEY_PAIR.sub(_count("[redacted]: [secret]"), out)
    return FilterResult(text=out, redactions=redactions)

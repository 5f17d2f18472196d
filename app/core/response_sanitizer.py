"""Response sanitization for discovery turns.

Turns raw model text into exactly one well-formed ``Question N:`` block (or a
clean summary at step 6). Each stage is a pure function; ``sanitize_response``
composes them in a fixed order:

1. Reject reasoning-only replies (chain-of-thought with no question header)
2. Strip chain-of-thought blocks
3. Strip internal notes and leakage lines
4. Extract the first question block
5. Normalize the header number to the current step
6. Drop duplicate headers
7. Tidy whitespace and stray markdown
"""

import re

MIN_RESPONSE_CHARS = 50

_COT_MARKERS = ("<think>", "</think>")

# "Question 3:", "Question 3 (Customers):", "Question 3**:"
_HEADER_CORE = r"Question\s+(\d+)\s*(?:\([^)\n]*\))?\s*(?:\*\*)?\s*:"
_HEADER_RE = re.compile(_HEADER_CORE, re.IGNORECASE)
_HEADER_NUMBER_RE = re.compile(r"(Question\s+)\d+", re.IGNORECASE)

_BOLD_HEADER_RE = re.compile(r"\*\*\s*" + _HEADER_CORE, re.IGNORECASE)
_PLAIN_HEADER_RE = re.compile(r"^[ \t>#]*" + _HEADER_CORE, re.IGNORECASE | re.MULTILINE)
# A header opens a line or is bold; "see Question 1: ..." in prose is not one
_STANDALONE_HEADER_RE = re.compile(
    r"^[ \t>#]*(?:\*\*)?[ \t]*" + _HEADER_CORE + r"|\*\*\s*" + _HEADER_CORE,
    re.IGNORECASE | re.MULTILINE,
)

# Where a question block ends: reasoning continuations, a second header, a rule
_STOP_RE = re.compile(
    r"^[ \t]*(?:"
    r"However,|Wait,|Okay,|Let me check|Revised Question"
    r"|(?:\*\*)?\s*" + _HEADER_CORE + r"|-{3,}[ \t]*$|\*{3,}[ \t]*$|_{3,}[ \t]*$"
    r")",
    re.IGNORECASE | re.MULTILINE,
)
_STOP_STRINGS = ("\nHowever,", "\nWait,", "\nOkay,", "\nLet me check", "\nRevised Question", "\n---")

_THINK_BLOCK_RE = re.compile(r"<think>.*?</think>\s*", re.IGNORECASE | re.DOTALL)
_THINK_ORPHAN_PREFIX_RE = re.compile(r"\A.*?</think>\s*", re.IGNORECASE | re.DOTALL)
_THINK_UNCLOSED_RE = re.compile(r"<think>.*\Z", re.IGNORECASE | re.DOTALL)

# Lines that are model-internal asides rather than user-facing text
_LEAKAGE_PHRASES = (
    "note for assistant",
    "note to self",
    "end of response",
    "internal planning",
    "the user will not see this",
    "awaiting your response",
    "awaiting your detailed response",
    "once you provide your final answer",
    "adjusted q",
    "revised question",
    "updated question",
    "modified question",
    "reformatted question",
    "for plain text",
    "plain text version",
    "bold highlight:",
    "follow-up (optional for clarity)",
    "end of question",
    "**next:**",
)
_BRACKET_MARKER_RE = re.compile(
    r"^\s*\[(?:[^\]]*\b(?:system|internal|assistant|instruction|end)\b[^\]]*)\]\s*$",
    re.IGNORECASE,
)
_PAREN_ASIDE_RE = re.compile(r"^\s*\*{0,2}\(.*\)\*{0,2}\s*$")
_INLINE_NOTE_RE = re.compile(r"\((?:Note|Internal note)\s*:[^)]*\)", re.IGNORECASE)


def has_question_header(text: str) -> bool:
    return bool(_HEADER_RE.search(text or ""))


def is_reasoning_only(text: str) -> bool:
    """True when the reply carries a chain-of-thought marker but no question header."""
    if not text:
        return False
    lowered = text.lower()
    has_marker = any(marker in lowered for marker in _COT_MARKERS)
    return has_marker and not has_question_header(text)


def strip_reasoning(text: str) -> str:
    """Remove closed, unclosed, and orphaned chain-of-thought blocks."""
    text = _THINK_BLOCK_RE.sub("", text)
    text = _THINK_ORPHAN_PREFIX_RE.sub("", text)
    text = _THINK_UNCLOSED_RE.sub("", text)
    return text.replace("</think>", "").replace("<think>", "")


def _is_leakage_line(line: str) -> bool:
    lowered = line.lower()
    if any(phrase in lowered for phrase in _LEAKAGE_PHRASES):
        return True
    if _BRACKET_MARKER_RE.match(line):
        return True
    return bool(_PAREN_ASIDE_RE.match(line))


def strip_notes(text: str) -> str:
    """Drop parenthetical asides, internal notes, and known leakage lines."""
    kept = []
    for line in text.split("\n"):
        line = _INLINE_NOTE_RE.sub("", line)
        if line.strip() and _is_leakage_line(line):
            continue
        kept.append(line.rstrip())
    return "\n".join(kept)


def _bounded_block(text: str, header_start: int, header_end: int) -> str:
    block = text[header_start:]
    stop = _STOP_RE.search(block, header_end - header_start)
    if stop:
        block = block[: stop.start()]
    return block.strip()


def _manual_scan(text: str) -> str | None:
    lowered = text.lower()
    index = lowered.find("question ")
    while index != -1:
        rest = lowered[index + len("question ") :].lstrip()
        if rest[:1].isdigit():
            break
        index = lowered.find("question ", index + 1)
    if index == -1:
        return None

    # Keep a bold opener that sits right before the header
    if text[max(0, index - 2) : index] == "**":
        index -= 2

    block = text[index:]
    cut = len(block)
    for marker in _STOP_STRINGS:
        position = block.find(marker)
        if position != -1:
            cut = min(cut, position)
    return block[:cut].strip() or None


def extract_question_block(text: str) -> str | None:
    """
    Return the first question block, or None when no header exists.

    Tries the bold-header pattern, then a plain line-anchored header, then a
    manual substring scan. Each stops at the first stop marker.
    """
    match = _BOLD_HEADER_RE.search(text)
    if match:
        return _bounded_block(text, match.start(), match.end())

    match = _PLAIN_HEADER_RE.search(text)
    if match:
        start = match.start() + (len(match.group(0)) - len(match.group(0).lstrip(" \t>#")))
        return _bounded_block(text, start, match.end())

    return _manual_scan(text)


def normalize_header(text: str, step: int) -> str:
    """Rewrite the first header to the current step, or add one when missing."""
    if not text.strip():
        return text
    if has_question_header(text):
        return _HEADER_NUMBER_RE.sub(rf"\g<1>{step}", text, count=1)
    return f"**Question {step}:**\n{text.lstrip()}"


def dedupe_headers(text: str) -> str:
    """Keep the first header and its content; cut at the line of any later header."""
    matches = list(_STANDALONE_HEADER_RE.finditer(text))
    if len(matches) < 2:
        return text
    second = matches[1].start()
    line_start = text.rfind("\n", 0, second) + 1
    if line_start <= matches[0].start():
        # both headers share a line
        return text[:second].rstrip(" *")
    return text[:line_start]


def _fix_orphan_bold(line: str) -> str:
    if line.count("**") % 2 == 1:
        if line.rstrip().endswith("**"):
            return line.rstrip()[:-2].rstrip()
        if line.lstrip().startswith("**"):
            return line.lstrip()[2:]
    return line


def tidy(text: str) -> str:
    lines = []
    for line in text.split("\n"):
        if re.fullmatch(r"\s*(?:-{3,}|\*{3,}|_{3,})\s*", line):
            continue
        lines.append(_fix_orphan_bold(line))
    text = "\n".join(lines)
    text = re.sub(r"\n\s*\n(\s*\n)+", "\n\n", text)
    return text.strip()


def sanitize_response(raw: str | None, step: int) -> str:
    """
    Clean one model reply for the given step.

    Steps 1-5 are reduced to a single question block with a header numbered
    for the step. Step 6 (summary) is only stripped of reasoning and notes.
    Returns "" for reasoning-only replies; length is checked separately by
    ``is_acceptable``.
    """
    if not raw:
        return ""

    is_question_step = step <= 5
    if is_question_step and is_reasoning_only(raw):
        return ""

    text = strip_reasoning(raw)
    text = strip_notes(text)

    if is_question_step:
        block = extract_question_block(text)
        if block is not None:
            text = block
        text = normalize_header(text, step)
        text = dedupe_headers(text)

    return tidy(text)


def is_acceptable(text: str) -> bool:
    return len((text or "").strip()) >= MIN_RESPONSE_CHARS

"""Tests for discovery response sanitization."""

import re

import pytest

from app.core.response_sanitizer import (
    dedupe_headers,
    extract_question_block,
    is_acceptable,
    is_reasoning_only,
    normalize_header,
    sanitize_response,
    strip_notes,
    strip_reasoning,
)

HEADER_RE = re.compile(r"Question\s+(\d+)\s*:", re.IGNORECASE)


class TestSanitizeResponse:
    def test_rewrites_wrong_header_number(self):
        result = sanitize_response("**Question 5: Topic**\nSome text", 2)
        assert result.startswith("**Question 2:")
        assert "Question 5" not in result

    @pytest.mark.parametrize("step", [1, 2, 3, 4, 5])
    def test_reasoning_block_removed_and_single_header(self, step):
        raw = (
            "<think>The user runs a bakery. Question 3 should cover customers, "
            "but maybe I should ask about costs first.</think>\n"
            "**Question 3: Customers & reach**\n"
            "Who are your main customers, and how do you reach them today?"
        )
        result = sanitize_response(raw, step)

        assert "<think>" not in result
        assert "</think>" not in result
        headers = HEADER_RE.findall(result)
        assert headers == [str(step)]

    @pytest.mark.parametrize("step", [1, 2, 3, 4, 5])
    def test_reasoning_only_output_is_empty(self, step):
        raw = "<think>I need to figure out what to ask next. Maybe something about their goals."
        assert sanitize_response(raw, step) == ""

    def test_orphan_closing_tag_drops_prefix(self):
        raw = (
            "Okay, planning the next question about pains.</think>\n"
            "**Question 2: Pain points**\nWhat is the biggest thing slowing your team down?"
        )
        result = sanitize_response(raw, 2)
        assert result.startswith("**Question 2: Pain points**")
        assert "planning" not in result

    def test_cuts_second_question(self):
        raw = (
            "**Question 2: Pain points**\nWhat slows you down the most?\n\n"
            "**Question 3: Customers**\nWho are your customers?"
        )
        result = sanitize_response(raw, 2)
        assert "What slows you down the most?" in result
        assert "Question 3" not in result
        assert "Who are your customers?" not in result

    def test_cuts_reasoning_continuation(self):
        raw = (
            "**Question 1: Business overview**\nWhat does your business do, and who runs it?\n"
            "However, I should also consider asking about their revenue."
        )
        result = sanitize_response(raw, 1)
        assert "However" not in result
        assert result.endswith("who runs it?")

    def test_drops_leakage_lines(self):
        raw = (
            "**Question 4: Operations & data**\n"
            "Which tasks take up most of your week?\n"
            "Note to self: ask about budget after this.\n"
            "[internal planning]\n"
            "(This keeps the user focused on operations.)"
        )
        result = sanitize_response(raw, 4)
        assert "Note to self" not in result
        assert "internal planning" not in result
        assert "keeps the user focused" not in result
        assert "Which tasks take up most of your week?" in result

    def test_adds_header_when_missing(self):
        result = sanitize_response("Tell me what your business does and who your customers are.", 1)
        assert result.startswith("**Question 1:**")

    def test_summary_step_keeps_text_without_header(self):
        raw = "<think>summarize</think>Here's a summary of what I've learned:\n* **Business:** Bakery"
        result = sanitize_response(raw, 6)
        assert result.startswith("Here's a summary")
        assert "Question" not in result

    def test_drops_horizontal_rules(self):
        raw = "**Question 2: Pain points**\nWhat costs you the most time each week?\n---\nExtra"
        result = sanitize_response(raw, 2)
        assert "---" not in result
        assert "Extra" not in result

    def test_empty_input(self):
        assert sanitize_response(None, 1) == ""
        assert sanitize_response("", 3) == ""


class TestStages:
    def test_is_reasoning_only(self):
        assert is_reasoning_only("<think>just thinking")
        assert not is_reasoning_only("<think>x</think>**Question 1:** hi")
        assert not is_reasoning_only("plain text")

    def test_strip_reasoning_unclosed_block(self):
        assert strip_reasoning("Answer first <think>and then rambling").strip() == "Answer first"

    def test_strip_notes_inline(self):
        assert strip_notes("Great question (Note: keep it short) here") == "Great question  here"

    def test_extract_returns_none_without_header(self):
        assert extract_question_block("No header here at all") is None

    def test_extract_plain_header(self):
        text = "Intro line\nQuestion 2: What slows you down?\nWait, maybe rephrase."
        assert extract_question_block(text) == "Question 2: What slows you down?"

    def test_normalize_header_with_topic_in_parens(self):
        assert normalize_header("Question 4 (Operations): What tools?", 3) == (
            "Question 3 (Operations): What tools?"
        )

    def test_dedupe_same_line(self):
        text = "**Question 2:** What? **Question 2:** What?"
        assert dedupe_headers(text) == "**Question 2:** What?"

    def test_is_acceptable(self):
        assert not is_acceptable("too short")
        assert is_acceptable("x" * 50)

    def test_dedupe_ignores_question_mentioned_in_prose(self):
        text = (
            "**Question 3: Customers & reach**\n"
            "Building on your answer to Question 1: who are your ideal customers?"
        )
        assert dedupe_headers(text) == text

    def test_dedupe_cuts_at_second_line_header(self):
        text = "Question 2: What slows you down?\nQuestion 3: Who buys from you?"
        assert dedupe_headers(text) == "Question 2: What slows you down?\n"


def test_body_referring_to_earlier_question_is_kept():
    raw = (
        "<think>hmm</think>\n**Question 3: Customers & reach**\n"
        "Who are your ideal customers, and how do they find you today? "
        "Building on Question 1: you run a bakery."
    )
    result = sanitize_response(raw, 3)
    assert result.startswith("**Question 3: Customers & reach**\nWho are your ideal customers")
    assert result.endswith("you run a bakery.")
    assert is_acceptable(result)

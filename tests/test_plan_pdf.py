"""Tests for plan markdown parsing and PDF rendering."""

from datetime import date

import fitz

from app.core.plan_pdf import parse_markdown_blocks, plan_pdf_filename, render_plan_pdf, strip_inline

PLAN = """# AI Implementation Plan

## Opportunity Summary
Your bakery can save **10 hours a week** with *simple* automation.

## Quick Wins
- Automate invoice reminders
- Add an FAQ chatbot
1. Review [pricing](https://example.com/pricing)

| Initiative | Cost | ROI |
|---|:---:|---|
| Chatbot | $500 | High |
| Forecasting | $2,000 | Medium |

---

[Book a strategy call](https://5qstrategy.com/book)
"""


def test_parse_markdown_blocks():
    blocks = parse_markdown_blocks(PLAN)
    assert [b.type for b in blocks] == [
        "header",
        "header",
        "paragraph",
        "header",
        "list",
        "table",
        "cta",
    ]

    assert (blocks[0].level, blocks[0].content) == (1, "AI Implementation Plan")
    assert blocks[2].content == "Your bakery can save 10 hours a week with simple automation."
    assert blocks[4].items == ["Automate invoice reminders", "Add an FAQ chatbot", "Review pricing"]
    assert blocks[5].headers == ["Initiative", "Cost", "ROI"]
    assert blocks[5].rows == [["Chatbot", "$500", "High"], ["Forecasting", "$2,000", "Medium"]]
    assert (blocks[6].content, blocks[6].url) == ("Book a strategy call", "https://5qstrategy.com/book")


def test_strip_inline():
    assert strip_inline("**Bold** and *italic* and [link](https://x.y)") == "Bold and italic and link"


def test_plan_pdf_filename():
    assert plan_pdf_filename(date(2025, 3, 7)) == "business-plan-2025-03-07.pdf"


def test_render_plan_pdf():
    data = render_plan_pdf(PLAN, email="owner@bakery.com", generated_on=date(2025, 3, 7))
    assert data.startswith(b"%PDF")

    doc = fitz.open(stream=data, filetype="pdf")
    try:
        text = doc[0].get_text()
    finally:
        doc.close()
    assert "AI Business Implementation Plan" in text
    assert "Prepared for: owner@bakery.com" in text
    assert "March 07, 2025" in text
    assert "Page 1 of 1" in text
    assert "Quick Wins" in text


def test_long_plan_spans_pages():
    long_plan = "## Roadmap\n" + "\n".join(f"- Step {n}: automate one more workflow" for n in range(120))
    doc = fitz.open(stream=render_plan_pdf(long_plan), filetype="pdf")
    try:
        assert doc.page_count > 1
        assert f"Page {doc.page_count} of {doc.page_count}" in doc[-1].get_text()
    finally:
        doc.close()

"""Business plan PDF rendering with PyMuPDF.

Markdown is first reduced to a flat list of blocks (headers, paragraphs,
lists, tables, call-to-action links), then laid out on A4 pages with a
branded header, footer and page numbers.
"""

import re
from dataclasses import dataclass, field
from datetime import date

from app.core.logging import get_logger

logger = get_logger(__name__)

# A4 in points
PAGE_WIDTH = 595
PAGE_HEIGHT = 842
LEFT_MARGIN = 57
CONTENT_WIDTH = 482
CONTENT_TOP = 170
CONTINUATION_TOP = 85
CONTENT_BOTTOM = 790
BLOCK_SPACING = 14

BRAND_NAME = "5Q Strategy"
BRAND_TITLE = "AI Business Implementation Plan"
FOOTER_TEXT = "5Q Strategy - AI Implementation Specialists"
FOOTER_CONTACT = "support@5qstrategy.com | 5qstrategy.com"

BRAND_GREEN = (118 / 255, 185 / 255, 0)
LIGHT_GREEN = (240 / 255, 249 / 255, 230 / 255)
SEPARATOR = (200 / 255, 220 / 255, 180 / 255)
ROW_SHADE = (245 / 255, 245 / 255, 245 / 255)
WHITE = (1, 1, 1)
BLACK = (0, 0, 0)

_LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_HEADER_RE = re.compile(r"^(#{1,6})\s*")
_CTA_RE = re.compile(r"^\s*\[([^\]]+)\]\((https?://[^)\s]+)\)\s*$")
_BOLD_RE = re.compile(r"\*\*(.*?)\*\*")
_ITALIC_RE = re.compile(r"(?<!\*)\*(?!\s)(.*?)\*")
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_SEPARATOR_CELL_RE = re.compile(r"^:?-+:?$")

_PUNCTUATION = str.maketrans(
    {"–": "-", "—": "-", "‘": "'", "’": "'", "“": '"', "”": '"', "…": "...", "•": "-"}
)


@dataclass
class ContentBlock:
    type: str  # header | paragraph | list | table | cta
    content: str = ""
    level: int = 1
    items: list[str] = field(default_factory=list)
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    url: str | None = None


def strip_inline(text: str) -> str:
    """Drop bold/italic markers and turn links into their label."""
    text = _BOLD_RE.sub(r"\1", text)
    text = _ITALIC_RE.sub(r"\1", text)
    return _LINK_RE.sub(r"\1", text).strip()


def _pdf_safe(text: str) -> str:
    # Base-14 fonts cover Latin-1 only
    text = text.translate(_PUNCTUATION)
    return text.encode("latin-1", errors="ignore").decode("latin-1").strip()


def _table_cells(line: str) -> list[str] | None:
    if "|" not in line or len(line.split("|")) <= 2:
        return None
    return [strip_inline(cell) for cell in line.strip().strip("|").split("|")]


def parse_markdown_blocks(markdown: str) -> list[ContentBlock]:
    """Flatten plan markdown into renderable blocks, in document order."""
    blocks: list[ContentBlock] = []
    table: ContentBlock | None = None
    items: list[str] = []

    def flush_list() -> None:
        if items:
            blocks.append(ContentBlock(type="list", items=list(items)))
            items.clear()

    for raw_line in markdown.splitlines():
        line = raw_line.strip()

        cells = _table_cells(line)
        if cells is not None:
            flush_list()
            if all(_SEPARATOR_CELL_RE.match(cell) for cell in cells if cell):
                continue
            if table is None:
                table = ContentBlock(type="table", headers=cells)
            else:
                table.rows.append(cells)
            continue

        if table is not None:
            blocks.append(table)
            table = None

        if _LIST_ITEM_RE.match(line):
            items.append(strip_inline(_LIST_ITEM_RE.sub("", line)))
            continue
        flush_list()

        if not line or re.fullmatch(r"[-*_]{3,}", line):
            continue

        header = _HEADER_RE.match(line)
        if header:
            blocks.append(
                ContentBlock(type="header", content=strip_inline(line[header.end():]), level=len(header.group(1)))
            )
            continue

        cta = _CTA_RE.match(line)
        if cta:
            blocks.append(ContentBlock(type="cta", content=cta.group(1).strip(), url=cta.group(2)))
            continue

        blocks.append(ContentBlock(type="paragraph", content=strip_inline(line)))

    if table is not None:
        blocks.append(table)
    flush_list()
    return blocks


class _PlanRenderer:
    def __init__(self, fitz_module):
        self.fitz = fitz_module
        self.doc = fitz_module.open()
        self.page = self._new_page()
        self.y = CONTENT_TOP

    def _new_page(self):
        return self.doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)

    def ensure_space(self, height: float) -> None:
        if self.y + height > CONTENT_BOTTOM:
            self.page = self._new_page()
            self.y = CONTINUATION_TOP

    def text(self, x: float, y: float, text: str, size: float, bold: bool = False, color=BLACK) -> None:
        self.page.insert_text(
            (x, y), _pdf_safe(text), fontsize=size, fontname="hebo" if bold else "helv", color=color
        )

    def wrap(self, text: str, size: float, width: float, bold: bool = False) -> list[str]:
        fontname = "hebo" if bold else "helv"
        lines: list[str] = []
        current = ""
        for word in _pdf_safe(text).split():
            candidate = f"{current} {word}".strip()
            if not current or self.fitz.get_text_length(candidate, fontname=fontname, fontsize=size) <= width:
                current = candidate
            else:
                lines.append(current)
                current = word
        if current:
            lines.append(current)
        return lines

    def rect(self, x0: float, y0: float, x1: float, y1: float, fill=None, color=None, width: float = 1) -> None:
        self.page.draw_rect(self.fitz.Rect(x0, y0, x1, y1), color=color, fill=fill, width=width)

    # -- chrome ---------------------------------------------------------------

    def branded_header(self, email: str | None, generated_on: date) -> None:
        self.text(LEFT_MARGIN, 51, BRAND_NAME, 24, bold=True, color=BRAND_GREEN)
        self.page.draw_line((LEFT_MARGIN, 54), (227, 54), color=BRAND_GREEN, width=1)
        self.rect(0, 71, PAGE_WIDTH, 99, fill=BRAND_GREEN)
        self.text(LEFT_MARGIN, 91, BRAND_TITLE, 18, bold=True, color=WHITE)
        details = f"Date: {generated_on.strftime('%B %d, %Y')}"
        if email:
            details += f"    Prepared for: {email}"
        self.text(LEFT_MARGIN, 139, details, 10)
        self.page.draw_line((LEFT_MARGIN, 147), (LEFT_MARGIN + CONTENT_WIDTH, 147), color=SEPARATOR, width=1)

    def branded_footers(self) -> None:
        total = self.doc.page_count
        for number, page in enumerate(self.doc, start=1):
            self.page = page
            self.rect(0, 808, PAGE_WIDTH, PAGE_HEIGHT, fill=BRAND_GREEN)
            self.text(LEFT_MARGIN, 828, FOOTER_TEXT, 9, bold=True, color=WHITE)
            self.text(LEFT_MARGIN, 839, FOOTER_CONTACT, 7, color=WHITE)
            self.text(482, 828, f"Page {number} of {total}", 8, bold=True, color=WHITE)

    # -- blocks ---------------------------------------------------------------

    def header(self, block: ContentBlock) -> None:
        size = {1: 16, 2: 14}.get(block.level, 12)
        lines = self.wrap(block.content, size, CONTENT_WIDTH, bold=True)
        line_height = size + 4
        self.ensure_space(line_height * len(lines) + 8)
        color = BRAND_GREEN if block.level <= 2 else BLACK
        for line in lines:
            self.y += line_height
            self.text(LEFT_MARGIN, self.y, line, size, bold=True, color=color)
        if block.level <= 2:
            self.y += 5
            self.page.draw_line(
                (LEFT_MARGIN, self.y), (LEFT_MARGIN + CONTENT_WIDTH, self.y), color=SEPARATOR, width=0.5
            )

    def paragraph(self, block: ContentBlock) -> None:
        for line in self.wrap(block.content, 10, CONTENT_WIDTH):
            self.ensure_space(14)
            self.y += 14
            self.text(LEFT_MARGIN, self.y, line, 10)

    def bullet_list(self, block: ContentBlock) -> None:
        for item in block.items:
            lines = self.wrap(item, 10, CONTENT_WIDTH - 14)
            for index, line in enumerate(lines):
                self.ensure_space(14)
                self.y += 14
                if index == 0:
                    self.text(LEFT_MARGIN + 2, self.y, "-", 10, bold=True, color=BRAND_GREEN)
                self.text(LEFT_MARGIN + 14, self.y, line, 10)
            self.y += 2

    def table(self, block: ContentBlock) -> None:
        columns = max([len(block.headers)] + [len(row) for row in block.rows])
        col_width = CONTENT_WIDTH / max(columns, 1)

        def draw_row(cells: list[str], header: bool, shaded: bool) -> None:
            cells = cells + [""] * (columns - len(cells))
            wrapped = [self.wrap(cell, 9, col_width - 8, bold=header) or [""] for cell in cells]
            height = max(len(lines) for lines in wrapped) * 12 + 8
            self.ensure_space(height)
            if header:
                self.rect(LEFT_MARGIN, self.y, LEFT_MARGIN + CONTENT_WIDTH, self.y + height, fill=BRAND_GREEN)
            elif shaded:
                self.rect(LEFT_MARGIN, self.y, LEFT_MARGIN + CONTENT_WIDTH, self.y + height, fill=ROW_SHADE)
            for column, lines in enumerate(wrapped):
                x = LEFT_MARGIN + column * col_width + 4
                for index, line in enumerate(lines):
                    self.text(x, self.y + 14 + index * 12, line, 9, bold=header, color=WHITE if header else BLACK)
            self.y += height

        self.y += 4
        draw_row(block.headers, header=True, shaded=False)
        for index, row in enumerate(block.rows):
            draw_row(row, header=False, shaded=index % 2 == 1)

    def cta(self, block: ContentBlock) -> None:
        height = 60
        self.ensure_space(height + 8)
        top = self.y + 6
        self.rect(LEFT_MARGIN, top, LEFT_MARGIN + CONTENT_WIDTH, top + height, fill=LIGHT_GREEN, color=BRAND_GREEN, width=2)
        self.text(LEFT_MARGIN + 14, top + 22, block.content, 12, bold=True, color=BRAND_GREEN)
        if block.url:
            self.text(LEFT_MARGIN + 14, top + 42, block.url, 9)
            self.page.insert_link(
                {
                    "kind": self.fitz.LINK_URI,
                    "from": self.fitz.Rect(LEFT_MARGIN, top, LEFT_MARGIN + CONTENT_WIDTH, top + height),
                    "uri": block.url,
                }
            )
        self.y = top + height

    def render(self, blocks: list[ContentBlock]) -> None:
        handlers = {
            "header": self.header,
            "paragraph": self.paragraph,
            "list": self.bullet_list,
            "table": self.table,
            "cta": self.cta,
        }
        for index, block in enumerate(blocks):
            if index:
                self.y += BLOCK_SPACING
            handlers[block.type](block)

    def to_bytes(self) -> bytes:
        try:
            return self.doc.tobytes(garbage=3, deflate=True)
        finally:
            self.doc.close()


def plan_pdf_filename(generated_on: date | None = None) -> str:
    return f"business-plan-{(generated_on or date.today()).isoformat()}.pdf"


def render_plan_pdf(markdown: str, email: str | None = None, generated_on: date | None = None) -> bytes:
    """
    Render plan markdown to a branded PDF.

    Args:
        markdown: Business plan markdown
        email: Optional recipient shown in the header
        generated_on: Date printed in the header (defaults to today)

    Returns:
        PDF bytes
    """
    import fitz  # PyMuPDF

    blocks = parse_markdown_blocks(markdown)
    renderer = _PlanRenderer(fitz)
    renderer.branded_header(email, generated_on or date.today())
    renderer.render(blocks)
    renderer.branded_footers()
    data = renderer.to_bytes()
    logger.info(f"Rendered plan PDF: {len(blocks)} blocks, {len(data)} bytes")
    return data

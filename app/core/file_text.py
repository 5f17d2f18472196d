"""Text extraction from uploaded financial documents (PDF, CSV, TXT)."""

from dataclasses import dataclass

from app.core.exceptions import ExtractionError
from app.core.logging import get_logger

logger = get_logger(__name__)

MIN_PDF_TEXT_CHARS = 50

# Lazy import to avoid loading PyMuPDF at module load
fitz = None


def _get_fitz():
    """Lazy load PyMuPDF."""
    global fitz
    if fitz is None:
        try:
            import fitz as _fitz

            fitz = _fitz
        except ImportError:
            raise ImportError(
                "PyMuPDF (fitz) is required for PDF extraction. Install with: pip install pymupdf"
            )
    return fitz


@dataclass
class FileTextResult:
    """Result of text extraction from a file."""

    text: str
    detected_encoding: str
    kind: str
    pages: int = 1


def _get_extension(filename: str) -> str:
    """Extract lowercase file extension from filename."""
    if "." in filename:
        return "." + filename.rsplit(".", 1)[-1].lower()
    return ""


def _kind(filename: str, content_type: str | None) -> str | None:
    extension = _get_extension(filename)
    content_type = (content_type or "").split(";")[0].strip().lower()
    if extension == ".pdf" or content_type == "application/pdf":
        return "pdf"
    if extension == ".csv" or content_type == "text/csv":
        return "csv"
    if extension == ".txt" or content_type == "text/plain":
        return "txt"
    return None


def is_supported_upload(filename: str, content_type: str | None) -> bool:
    return _kind(filename, content_type) is not None


def _decode_bytes(raw_bytes: bytes) -> tuple[str, str]:
    """
    Attempt to decode bytes using fallback chain.

    Returns:
        Tuple of (decoded_text, encoding_name)

    Raises:
        ExtractionError: If no encoding works
    """
    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        try:
            return raw_bytes.decode("utf-8-sig"), "utf-8-sig"
        except UnicodeDecodeError:
            pass

    for encoding in ("utf-8", "latin-1"):
        try:
            return raw_bytes.decode(encoding), encoding
        except UnicodeDecodeError:
            continue

    raise ExtractionError(
        "Unable to decode file content. Supported encodings: UTF-8, UTF-8-BOM, Latin-1."
    )


def _extract_pdf(raw_bytes: bytes) -> tuple[str, int]:
    fitz_lib = _get_fitz()
    try:
        doc = fitz_lib.open(stream=raw_bytes, filetype="pdf")
    except Exception as e:
        raise ExtractionError(
            "Unable to extract text from PDF. Please try converting to TXT or CSV format."
        ) from e

    try:
        pages = [page.get_text("text") for page in doc]
        page_count = doc.page_count
    finally:
        doc.close()

    text = "\n\n".join(page.strip() for page in pages if page.strip())
    if len(text) < MIN_PDF_TEXT_CHARS:
        raise ExtractionError(
            "Insufficient text content extracted from PDF. It may be a scanned document; "
            "please try converting to TXT or CSV format.",
            recoverable=True,
        )
    return text, page_count


def extract_text_from_upload(
    filename: str,
    content_type: str | None,
    raw_bytes: bytes,
) -> FileTextResult:
    """
    Extract text content from an uploaded file.

    Args:
        filename: Original filename
        content_type: MIME content type (may be None)
        raw_bytes: Raw file bytes

    Returns:
        FileTextResult with extracted text

    Raises:
        ExtractionError: Unsupported type, empty file, or unreadable content
    """
    kind = _kind(filename, content_type)
    if kind is None:
        raise ExtractionError("Invalid file type. Please upload a PDF, CSV, or TXT file.")

    if kind == "pdf":
        text, pages = _extract_pdf(raw_bytes)
        logger.info(f"Extracted {len(text)} chars from {pages}-page PDF {filename}")
        return FileTextResult(text=text, detected_encoding="pdf", kind=kind, pages=pages)

    text, encoding = _decode_bytes(raw_bytes)
    if not text.strip():
        raise ExtractionError(f"{kind.upper()} file appears to be empty")
    return FileTextResult(text=text, detected_encoding=encoding, kind=kind)

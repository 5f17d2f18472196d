"""Website and financial-document analysis endpoints."""

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from app.api.dependencies import get_store
from app.chains.analyze_sources import (
    WEBSITE_FAILURE_ANALYSIS,
    analyze_financial_text,
    analyze_website_content,
    financial_failure_analysis,
)
from app.core.config import get_settings
from app.core.exceptions import ExtractionError, LLMGatewayError
from app.core.file_text import extract_text_from_upload, is_supported_upload
from app.core.logging import get_logger
from app.core.rag import RagStore, index_text
from app.core.schemas_analysis import WebsiteAnalysisRequest
from app.core.website_fetch import WebsiteFetchError, domain_of, fetch_website_text, validate_url

logger = get_logger(__name__)

router = APIRouter()


async def _index_best_effort(store: RagStore, source_id: str, text: str, meta: dict) -> list[str]:
    try:
        return await index_text(store, source_id, text, meta)
    except LLMGatewayError as e:
        logger.warning(f"RAG indexing skipped for {source_id}: {e.message}")
        return []


@router.post("/analyze/website")
async def analyze_website(
    body: WebsiteAnalysisRequest,
    store: RagStore = Depends(get_store),  # noqa: B008
):
    """
    Fetch a business website and extract products, customers and marketing notes.

    Returns:
        Website analysis (camelCase keys). On fetch or model failure, a
        placeholder analysis with `error` and `details` and status 502.

    Raises:
        HTTPException 400: Missing or invalid URL
    """
    try:
        url = validate_url(body.url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    try:
        content = await fetch_website_text(url)
        analysis = await analyze_website_content(url, content)
    except (WebsiteFetchError, LLMGatewayError) as e:
        logger.warning(f"Website analysis failed for {url}: {e}")
        return JSONResponse(
            status_code=502,
            content={
                "error": "Failed to analyze website",
                "details": str(e),
                **WEBSITE_FAILURE_ANALYSIS.model_dump(by_alias=True),
            },
        )

    domain = domain_of(url)
    if store.get_cached_domain(domain) is None:
        doc_ids = await _index_best_effort(store, f"web:{domain}", content, {"url": url})
        if doc_ids:
            store.cache_domain(domain, doc_ids)

    logger.info(f"Website analysis complete for {domain}")
    return analysis.model_dump(by_alias=True)


@router.post("/analyze/financials")
async def analyze_financials(
    file: UploadFile = File(...),  # noqa: B008
    store: RagStore = Depends(get_store),  # noqa: B008
):
    """
    Extract revenue, cost and cash-flow insights from an uploaded statement.

    Args:
        file: PDF, CSV or TXT upload (form field `file`, at most 10 MB)

    Returns:
        Financial analysis (camelCase keys). On extraction or model failure,
        a placeholder analysis with `error` and `details` and status 502.

    Raises:
        HTTPException 400: Missing file, wrong type, or too large
    """
    settings = get_settings()
    filename = file.filename or "upload"

    if not is_supported_upload(filename, file.content_type):
        raise HTTPException(
            status_code=400, detail="Invalid file type. Please upload a PDF, CSV, or TXT file."
        )

    raw_bytes = await file.read()
    if len(raw_bytes) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB.")
    if not raw_bytes:
        raise HTTPException(status_code=400, detail="No file provided")

    logger.info(f"Processing financial upload {filename} ({len(raw_bytes)} bytes)")

    try:
        extracted = extract_text_from_upload(filename, file.content_type, raw_bytes)
        limited = extracted.text[: settings.MAX_FINANCIAL_CHARS]
        analysis = await analyze_financial_text(filename, limited)
    except (ExtractionError, LLMGatewayError) as e:
        logger.warning(f"Financial analysis failed for {filename}: {e.message}")
        return JSONResponse(
            status_code=502,
            content={
                "error": "Failed to process financial data",
                "details": e.message,
                **financial_failure_analysis(e.message).model_dump(by_alias=True),
            },
        )

    await _index_best_effort(
        store,
        f"file:{filename}",
        extracted.text,
        {"filename": filename, "kind": extracted.kind, "pages": extracted.pages},
    )
    return analysis.model_dump(by_alias=True)

"""Website content fetching for the website analysis route.

Primary: Microlink API. Fallback: a direct GET with HTML stripped to text.
"""

import logging
import re
from urllib.parse import urlparse

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)

MIN_MICROLINK_CHARS = 20
MIN_DIRECT_CHARS = 50

_MICROLINK_PARAMS = {
    "meta": "false",
    "audio": "false",
    "video": "false",
    "iframe": "false",
    "screenshot": "false",
    "pdf": "false",
}

_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

_DROP_BLOCKS_RE = re.compile(
    r"<(script|style|nav|header|footer)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL
)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


class WebsiteFetchError(Exception):
    """Raised when neither Microlink nor a direct fetch yields usable text."""


def validate_url(url: str | None) -> str:
    """
    Return a normalized http(s) URL.

    Raises:
        ValueError: Missing URL, unsupported scheme, or no host
    """
    if not url or not url.strip():
        raise ValueError("URL is required")
    url = url.strip()
    if "://" not in url:
        url = f"https://{url}"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError("Only HTTP and HTTPS URLs are supported")
    if not parsed.netloc or "." not in parsed.netloc:
        raise ValueError("Invalid URL format")
    return url


def domain_of(url: str) -> str:
    return urlparse(url).netloc.lower().removeprefix("www.")


def html_to_text(html: str) -> str:
    text = _DROP_BLOCKS_RE.sub(" ", html)
    text = _TAG_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def _text_from_microlink(data: dict) -> str:
    payload = data.get("data") or {}
    content = payload.get("content")
    if isinstance(content, dict) and content.get("text"):
        return content["text"]
    if payload.get("description"):
        return payload["description"]
    if payload.get("title"):
        return payload["title"]
    if payload.get("html"):
        return html_to_text(payload["html"])

    fields = [
        f"{label}: {payload[key]}"
        for key, label in (("author", "Author"), ("publisher", "Publisher"))
        if payload.get(key)
    ]
    return ". ".join(fields)


async def _fetch_via_microlink(client: httpx.AsyncClient, url: str) -> str:
    settings = get_settings()
    response = await client.get(
        settings.MICROLINK_API_URL,
        params={"url": url, **_MICROLINK_PARAMS},
        headers={"Accept": "application/json", "User-Agent": "AI-Discovery-Engine/1.0"},
    )
    response.raise_for_status()
    data = response.json()
    if data.get("status") != "success":
        raise WebsiteFetchError(
            f"Microlink failed to fetch content: {data.get('message') or data.get('error') or 'Unknown error'}"
        )
    return _text_from_microlink(data)


async def _fetch_directly(client: httpx.AsyncClient, url: str) -> str:
    response = await client.get(url, headers=_BROWSER_HEADERS, follow_redirects=True)
    response.raise_for_status()
    return html_to_text(response.text)


async def fetch_website_text(url: str, client: httpx.AsyncClient | None = None) -> str:
    """
    Fetch readable text for a website, truncated to WEBSITE_MAX_CHARS.

    Raises:
        WebsiteFetchError: If both Microlink and the direct fetch fail
    """
    settings = get_settings()

    async def _run(http: httpx.AsyncClient) -> str:
        try:
            text = await _fetch_via_microlink(http, url)
            if len(text.strip()) >= MIN_MICROLINK_CHARS:
                return text.strip()
            logger.info(f"Microlink returned too little text for {url}, trying direct fetch")
        except (httpx.HTTPError, WebsiteFetchError, ValueError) as e:
            logger.warning(f"Microlink error for {url}: {e}")

        try:
            text = await _fetch_directly(http, url)
        except httpx.HTTPError as e:
            raise WebsiteFetchError(
                "Unable to extract content from website. The site may be protected or inaccessible."
            ) from e
        if len(text) < MIN_DIRECT_CHARS:
            raise WebsiteFetchError("Insufficient content extracted from website")
        return text

    if client is not None:
        text = await _run(client)
    else:
        async with httpx.AsyncClient(timeout=settings.WEBSITE_FETCH_TIMEOUT) as http:
            text = await _run(http)

    logger.info(f"Fetched {len(text)} chars from {url}")
    return text[: settings.WEBSITE_MAX_CHARS]

"""Tests for website text fetching."""

import httpx
import pytest

from app.core.website_fetch import (
    WebsiteFetchError,
    domain_of,
    fetch_website_text,
    html_to_text,
    validate_url,
)

PAGE_HTML = """
<html>
<head><style>body { color: red; }</style><script>var x = 1;</script></head>
<body>
<nav>Home | About</nav>
<h1>Sunrise Bakery</h1>
<p>Fresh sourdough, pastries and custom cakes baked daily in Portland.</p>
<footer>Copyright 2025</footer>
</body>
</html>
"""


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://bakery.com", "https://bakery.com"),
        ("  bakery.com/menu ", "https://bakery.com/menu"),
        ("http://www.bakery.com", "http://www.bakery.com"),
    ],
)
def test_validate_url(url, expected):
    assert validate_url(url) == expected


@pytest.mark.parametrize("url", [None, "", "ftp://bakery.com", "https://localhost", "not a url"])
def test_validate_url_rejects(url):
    with pytest.raises(ValueError):
        validate_url(url)


def test_domain_of():
    assert domain_of("https://WWW.Bakery.com/menu") == "bakery.com"


def test_html_to_text_drops_chrome():
    text = html_to_text(PAGE_HTML)
    assert text == (
        "Sunrise Bakery Fresh sourdough, pastries and custom cakes baked daily in Portland."
    )


@pytest.mark.asyncio
async def test_fetch_prefers_microlink():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "api.microlink.io"
        assert request.url.params["url"] == "https://bakery.com"
        return httpx.Response(
            200,
            json={
                "status": "success",
                "data": {"description": "Artisan bakery serving Portland since 2010."},
            },
        )

    async with _client(handler) as client:
        text = await fetch_website_text("https://bakery.com", client=client)

    assert text == "Artisan bakery serving Portland since 2010."


@pytest.mark.asyncio
async def test_fetch_falls_back_to_direct_on_microlink_failure():
    hosts = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        if request.url.host == "api.microlink.io":
            return httpx.Response(200, json={"status": "fail", "message": "blocked"})
        return httpx.Response(200, text=PAGE_HTML)

    async with _client(handler) as client:
        text = await fetch_website_text("https://bakery.com", client=client)

    assert hosts == ["api.microlink.io", "bakery.com"]
    assert text.startswith("Sunrise Bakery Fresh sourdough")


@pytest.mark.asyncio
async def test_fetch_falls_back_when_microlink_text_too_short():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.microlink.io":
            return httpx.Response(200, json={"status": "success", "data": {"title": "Bakery"}})
        return httpx.Response(200, text=PAGE_HTML)

    async with _client(handler) as client:
        text = await fetch_website_text("https://bakery.com", client=client)

    assert "custom cakes" in text


@pytest.mark.asyncio
async def test_fetch_fails_when_direct_content_too_short():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.microlink.io":
            return httpx.Response(500)
        return httpx.Response(200, text="<html><body>Hi</body></html>")

    async with _client(handler) as client:
        with pytest.raises(WebsiteFetchError, match="Insufficient"):
            await fetch_website_text("https://bakery.com", client=client)


@pytest.mark.asyncio
async def test_fetch_fails_when_site_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.microlink.io":
            return httpx.Response(503)
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(WebsiteFetchError, match="inaccessible"):
            await fetch_website_text("https://bakery.com", client=client)


@pytest.mark.asyncio
async def test_fetch_truncates_to_max_chars(set_env):
    set_env(WEBSITE_MAX_CHARS="40")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"status": "success", "data": {"description": "x" * 500}}
        )

    async with _client(handler) as client:
        text = await fetch_website_text("https://bakery.com", client=client)

    assert text == "x" * 40

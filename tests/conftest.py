"""Shared fixtures and fake fetch tiers for the extraction pipeline tests."""

from typing import Dict, List, Optional, Union

import pytest

from scraper_config import ScraperConfig
from scraper_errors import ConfigurationError, FetchError
from fetchers import Fetchers, RenderedPage


class FakeHttp:
    """Serves canned bodies by exact URL; anything else is a 404"""

    def __init__(self, pages: Optional[Dict[str, Union[str, Exception]]] = None,
                 unreachable: bool = False):
        self.pages = pages or {}
        self.unreachable = unreachable
        self.calls: List[str] = []

    async def fetch(self, url: str, timeout: Optional[float] = None) -> str:
        self.calls.append(url)
        if self.unreachable:
            raise FetchError(url, "Connection error: name resolution failed", retryable=True)
        body = self.pages.get(url)
        if body is None:
            raise FetchError(url, "HTTP 404", status_code=404)
        if isinstance(body, Exception):
            raise body
        return body


class FakeRenderer:
    """Rendering service stand-in; without pages it behaves as unconfigured"""

    def __init__(self, pages: Optional[Dict[str, Union[str, RenderedPage]]] = None):
        self.pages = pages
        self.calls: List[str] = []

    async def render(self, url: str, output_format: str = "html", with_links: bool = True) -> RenderedPage:
        self.calls.append(url)
        if self.pages is None:
            raise ConfigurationError("RENDER_API_KEY is not set; the rendering service is unavailable")
        page = self.pages.get(url)
        if page is None:
            raise FetchError(url, "Rendering service returned HTTP 404", status_code=404)
        if isinstance(page, RenderedPage):
            return page
        return RenderedPage(url=url, content=page)


class FakeBrowser:
    def __init__(self, html: Optional[str] = None):
        self.html = html
        self.calls: List[str] = []

    async def scroll_and_collect(self, url: str) -> str:
        self.calls.append(url)
        if self.html is None:
            raise ConfigurationError("playwright is not installed")
        return self.html


def make_fetchers(http=None, renderer=None, browser=None) -> Fetchers:
    return Fetchers(http=http or FakeHttp(), renderer=renderer or FakeRenderer(),
                    browser=browser or FakeBrowser())


def sitemap_xml(entries) -> str:
    """<urlset> body from URLs or (url, lastmod) pairs"""
    rows = []
    for entry in entries:
        url, lastmod = entry if isinstance(entry, tuple) else (entry, None)
        lastmod_tag = f"<lastmod>{lastmod}</lastmod>" if lastmod else ""
        rows.append(f"  <url><loc>{url}</loc>{lastmod_tag}</url>")
    return ('<?xml version="1.0" encoding="UTF-8"?>\n'
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
            + "\n".join(rows) + "\n</urlset>")


def article_html(title: str = "A Long Read About Things", json_ld: Optional[str] = None,
                 words: int = 400, extra_head: str = "", body_prefix: str = "") -> str:
    """A plausible article page"""
    ld = f'<script type="application/ld+json">{json_ld}</script>' if json_ld else ""
    paragraph = " ".join(["word"] * words)
    return (f"<html><head><title>{title} | Example</title>{ld}{extra_head}</head>"
            f"<body><nav><a href='/'>Home</a></nav><article>{body_prefix}<h1>{title}</h1>"
            f"<p>{paragraph}</p></article></body></html>")


@pytest.fixture
def config():
    """Default thresholds with zero retry delays"""
    return ScraperConfig(retry_base_delay=0.0, retry_max_delay=0.0)

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import requests
from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from config.settings import get_settings
from core.scrapers.base import BaseRenderer, RenderedPage
from core.scrapers.errors import RenderError, SelectorNotFoundError

# Elements whose text never shows up in the rendered page
INVISIBLE_TAGS = {"script", "style", "noscript", "template", "head", "title"}


def visible_text(element) -> str:
    """Approximate innerText: all descendant strings outside invisible tags."""
    parts = []
    for string in element.find_all(string=True):
        if any(parent.name in INVISIBLE_TAGS for parent in string.parents):
            continue
        stripped = string.strip()
        if stripped:
            parts.append(stripped)
    return " ".join(parts)


class SoupPage(RenderedPage):
    """A RenderedPage over static HTML, parsed with BeautifulSoup.

    There is nothing to wait for in a static document, so timeouts are
    accepted for interface compatibility and a missing match fails at once.
    A selector soupsieve cannot parse matches nothing.
    """

    def __init__(self, html: str, url: str = "about:blank", status_code: Optional[int] = 200):
        super().__init__(url, status_code)
        self.html = html or ""
        self.soup = BeautifulSoup(self.html, "lxml")

    def _select(self, selector: str, index: int = 0):
        try:
            return self.soup.select(selector)
        except SelectorSyntaxError as e:
            raise SelectorNotFoundError(selector, index) from e

    async def content(self) -> str:
        return self.html

    async def body_text(self) -> str:
        return visible_text(self.soup.body or self.soup)

    async def count(self, selector: str) -> int:
        try:
            return len(self._select(selector))
        except SelectorNotFoundError:
            return 0

    async def inner_text(self, selector: str, index: int = 0, timeout: Optional[float] = None) -> str:
        matches = self._select(selector, index)
        if len(matches) <= index:
            raise SelectorNotFoundError(selector, index)
        return visible_text(matches[index])

    async def get_attribute(self, selector: str, name: str, timeout: Optional[float] = None) -> Optional[str]:
        matches = self._select(selector)
        if not matches:
            raise SelectorNotFoundError(selector)
        value = matches[0].get(name)
        if isinstance(value, list):
            # Multi-valued attributes such as class come back as lists
            value = " ".join(value)
        return value


class HttpRenderer(BaseRenderer):
    """Renderer that fetches pages over plain HTTP without running scripts.

    Much cheaper than a browser and good enough for server-rendered stores.
    Pages that build their price client-side need the Playwright renderer.
    """

    name = "http"

    def __init__(self, user_agent: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.user_agent = user_agent or settings.USER_AGENT
        self.timeout = timeout if timeout is not None else settings.PAGE_LOAD_TIMEOUT_MS / 1000
        self.session = requests.Session()
        self.session.headers.update({
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml",
            "Accept-Language": "es-CL,es;q=0.9,en-US;q=0.8,en;q=0.7",
        })
        self.logger = logging.getLogger("scraper.http")

    @asynccontextmanager
    async def render(self, url: str) -> AsyncIterator[RenderedPage]:
        self.logger.info("Fetching %s", url)
        try:
            # requests is blocking; keep the event loop free while it runs
            response = await asyncio.to_thread(self.session.get, url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            self.logger.error("Error fetching %s: %s", url, str(e))
            raise RenderError(str(e), url=url) from e

        # No raise_for_status: 403/503 are meaningful to the block detection
        yield SoupPage(response.text, url=response.url, status_code=response.status_code)

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from config.settings import get_settings
from core.scrapers.base import BaseRenderer, RenderedPage
from core.scrapers.errors import RenderError, SelectorNotFoundError

logger = logging.getLogger("scraper.playwright")

BROWSER_ARGS = ["--no-sandbox", "--disable-dev-shm-usage"]


def _ms(seconds: Optional[float], default_ms: int) -> float:
    return default_ms if seconds is None else seconds * 1000


class PlaywrightPage(RenderedPage):
    """RenderedPage backed by a live Playwright page."""

    def __init__(self, page, status_code: Optional[int], selector_timeout_ms: int, network_idle_timeout_ms: int):
        super().__init__(page.url, status_code)
        self._page = page
        self._selector_timeout_ms = selector_timeout_ms
        self._network_idle_timeout_ms = network_idle_timeout_ms

    async def settle(self) -> None:
        try:
            await self._page.wait_for_load_state("networkidle", timeout=self._network_idle_timeout_ms)
        except PlaywrightTimeoutError:
            # Pages with long-polling or analytics beacons never go idle
            logger.debug("Network never went idle for %s", self.url)

    async def content(self) -> str:
        return await self._page.content()

    async def body_text(self) -> str:
        return await self._page.locator("body").inner_text()

    async def count(self, selector: str) -> int:
        try:
            return await self._page.locator(selector).count()
        except PlaywrightError:
            return 0

    async def inner_text(self, selector: str, index: int = 0, timeout: Optional[float] = None) -> str:
        locator = self._page.locator(selector).nth(index)
        wait_ms = _ms(timeout, self._selector_timeout_ms)
        try:
            await locator.wait_for(state="attached", timeout=wait_ms)
            return await locator.inner_text(timeout=wait_ms)
        except PlaywrightError as e:
            # Timeouts and selectors the engine rejects both mean "no usable match"
            raise SelectorNotFoundError(selector, index) from e

    async def get_attribute(self, selector: str, name: str, timeout: Optional[float] = None) -> Optional[str]:
        try:
            return await self._page.get_attribute(selector, name, timeout=_ms(timeout, self._selector_timeout_ms))
        except PlaywrightError as e:
            raise SelectorNotFoundError(selector) from e


class PlaywrightRenderer(BaseRenderer):
    """Renders pages in headless Chromium.

    Each render gets its own browser so a crashed or hung page can never
    leak into the next check.
    """

    name = "playwright"

    def __init__(self, user_agent: Optional[str] = None, page_load_timeout_ms: Optional[int] = None,
                 network_idle_timeout_ms: Optional[int] = None, selector_timeout_ms: Optional[int] = None):
        settings = get_settings()
        self.user_agent = user_agent or settings.USER_AGENT
        self.page_load_timeout_ms = page_load_timeout_ms or settings.PAGE_LOAD_TIMEOUT_MS
        self.network_idle_timeout_ms = network_idle_timeout_ms or settings.NETWORK_IDLE_TIMEOUT_MS
        self.selector_timeout_ms = selector_timeout_ms or settings.SELECTOR_TIMEOUT_MS

    @asynccontextmanager
    async def render(self, url: str) -> AsyncIterator[RenderedPage]:
        logger.info("Rendering %s", url)
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True, args=BROWSER_ARGS)
            try:
                context = await browser.new_context(user_agent=self.user_agent)
                page = await context.new_page()
                try:
                    response = await page.goto(url, wait_until="domcontentloaded", timeout=self.page_load_timeout_ms)
                except PlaywrightError as e:
                    raise RenderError(str(e), url=url) from e

                yield PlaywrightPage(
                    page,
                    response.status if response is not None else None,
                    selector_timeout_ms=self.selector_timeout_ms,
                    network_idle_timeout_ms=self.network_idle_timeout_ms,
                )
            finally:
                await browser.close()

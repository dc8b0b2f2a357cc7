# This file defines how a check decides whether a product is in stock
# Each AvailabilityStrategy value maps to exactly one AvailabilityCheck implementation

import abc
import json
import logging
from typing import Dict, List, Optional, Sequence, Union

from core.database.models import AvailabilityStrategy
from core.scrapers.base import RenderedPage
from core.scrapers.errors import SelectorNotFoundError

logger = logging.getLogger("scraper.availability")

DEFAULT_OUT_OF_STOCK_KEYWORDS = ["agotado", "sin stock", "out of stock", "unavailable"]


def resolve_keywords(raw: Union[None, str, Sequence[str]]) -> List[str]:
    """Turn a task's stored keyword setting into a keyword list.

    Accepts a list, a JSON-serialized list or a single bare keyword. A value
    that looks serialized but does not parse is used as one keyword instead
    of failing the check. Nothing configured means the default keywords.
    """
    if raw is None:
        return list(DEFAULT_OUT_OF_STOCK_KEYWORDS)

    if isinstance(raw, str):
        if not raw.strip():
            return list(DEFAULT_OUT_OF_STOCK_KEYWORDS)
        try:
            parsed = json.loads(raw)
        except ValueError:
            return [raw]
        if isinstance(parsed, str):
            keywords = [parsed]
        elif isinstance(parsed, list):
            keywords = [str(keyword) for keyword in parsed if keyword is not None]
        else:
            # Valid JSON but not a keyword shape, e.g. a bare number
            keywords = [raw]
    else:
        keywords = [str(keyword) for keyword in raw if keyword is not None]

    keywords = [keyword for keyword in keywords if keyword.strip()]
    return keywords or list(DEFAULT_OUT_OF_STOCK_KEYWORDS)


def first_keyword_match(text: str, keywords: Sequence[str]) -> Optional[str]:
    """Return the first keyword contained in text, case-insensitively."""
    haystack = text.lower()
    for keyword in keywords:
        if keyword.lower() in haystack:
            return keyword
    return None


class AvailabilityCheck(abc.ABC):
    """Decides in-stock for a page whose price was already extracted."""

    @abc.abstractmethod
    async def in_stock(self, page: RenderedPage, stock_selector: Optional[str], keywords: Sequence[str]) -> bool:
        raise NotImplementedError


class PriceSelectorOnly(AvailabilityCheck):
    """A visible price is taken as proof of availability."""

    async def in_stock(self, page, stock_selector, keywords) -> bool:
        return True


class OutOfStockTextPresent(AvailabilityCheck):
    """Out of stock iff any keyword appears anywhere in the page body."""

    async def in_stock(self, page, stock_selector, keywords) -> bool:
        body = await page.body_text()
        match = first_keyword_match(body, keywords)
        if match:
            logger.debug("Out-of-stock keyword %r found in page body of %s", match, page.url)
        return match is None


class StockTextSelector(AvailabilityCheck):
    """Out of stock iff any keyword appears in the stock element's text.

    A stock element that cannot be found proves nothing, so the product
    counts as in stock.
    """

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout

    async def in_stock(self, page, stock_selector, keywords) -> bool:
        if not stock_selector:
            return True
        try:
            text = await page.inner_text(stock_selector, timeout=self.timeout)
        except SelectorNotFoundError:
            logger.debug("Stock selector %s not found on %s, assuming in stock", stock_selector, page.url)
            return True
        return first_keyword_match(text, keywords) is None


def build_availability_checks(stock_timeout: float = 2.0) -> Dict[AvailabilityStrategy, AvailabilityCheck]:
    """Strategy table, one entry per AvailabilityStrategy member."""
    checks = {
        AvailabilityStrategy.PRICE_SELECTOR_ONLY: PriceSelectorOnly(),
        AvailabilityStrategy.OUT_OF_STOCK_TEXT_PRESENT: OutOfStockTextPresent(),
        AvailabilityStrategy.STOCK_TEXT_SELECTOR: StockTextSelector(timeout=stock_timeout),
    }
    missing = set(AvailabilityStrategy) - set(checks)
    if missing:
        raise RuntimeError(f"No availability check for {sorted(s.value for s in missing)}")
    return checks


# Built once at import so a strategy without an implementation fails loudly at startup
AVAILABILITY_CHECKS = build_availability_checks()

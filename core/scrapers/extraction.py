"""Extraction engine: turns a rendered product page into a check outcome.

Order of evaluation for one page:

1. a 403/503 response is BLOCKED before anything is read;
2. the page content is scanned for blocking indicators (toggleable);
3. the price is read from the task's selector, digits only;
4. if the selector is missing or yields no usable number, JSON-LD and framework
   state blobs are searched before the check is declared FAILED;
5. availability is inferred with the task's strategy, only after a selector
   price was found. A structured-data price leaves availability unknown.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from config.settings import get_settings
from core.database.models import MAX_PRICE_VALUE, PRICE_TEXT_LENGTH, AvailabilityStrategy, CheckStatus
from core.scrapers.availability import build_availability_checks, resolve_keywords
from core.scrapers.base import RenderedPage
from core.scrapers.errors import SelectorNotFoundError
from core.scrapers.structured_data import find_structured_price

logger = logging.getLogger("scraper.extraction")

BLOCKING_STATUS_CODES = (403, 503)
BLOCKING_INDICATORS = ("access denied", "security check", "cloudflare", "robot check", "captcha")
EXCERPT_LENGTH = 100

_NON_DIGITS = re.compile(r"\D")


def parse_price_digits(text: Optional[str]) -> Optional[int]:
    """Concatenate every digit of a price text into an integer.

    "$599.990" -> 599990, "$1,234" -> 1234, "Agotado" -> None

    Raises:
        ValueError: if the digits do not fit a price column, which happens
            when a selector matches a large container instead of the price
    """
    if not text:
        return None
    digits = _NON_DIGITS.sub("", text)
    if not digits:
        return None
    significant = digits.lstrip("0") or "0"
    if len(significant) > len(str(MAX_PRICE_VALUE)) or int(significant) > MAX_PRICE_VALUE:
        raise ValueError(f"Price out of range: {significant[:20]}...")
    return int(significant)


def find_blocking_indicator(content: str, indicators: Sequence[str] = BLOCKING_INDICATORS) -> Optional[str]:
    """Return the first blocking phrase present in content, case-insensitively."""
    lowered = (content or "").lower()
    for indicator in indicators:
        if indicator in lowered:
            return indicator
    return None


def excerpt(text: Optional[str], length: int = EXCERPT_LENGTH) -> Optional[str]:
    if text is None:
        return None
    return text[:length]


@dataclass
class ExtractionRule:
    """Everything the engine needs to know about where a task's data lives."""

    price_selector: str
    stock_selector: Optional[str] = None
    availability_strategy: AvailabilityStrategy = AvailabilityStrategy.PRICE_SELECTOR_ONLY
    out_of_stock_keywords: Union[None, str, List[str]] = None

    def __post_init__(self):
        self.availability_strategy = AvailabilityStrategy(self.availability_strategy)

    @classmethod
    def from_task(cls, task) -> "ExtractionRule":
        return cls(
            price_selector=task.price_selector,
            stock_selector=task.stock_selector,
            availability_strategy=task.availability_strategy,
            out_of_stock_keywords=task.out_of_stock_keywords,
        )


@dataclass
class ExtractionOutcome:
    """Result of one check attempt, shaped like a CheckResult row."""

    status: CheckStatus
    price_value: Optional[int] = None
    price_text: Optional[str] = None
    in_stock: Optional[bool] = None
    error_message: Optional[str] = None
    raw_excerpt: Optional[str] = None
    response_time_ms: int = 0
    # Where the price came from: "selector", "json-ld" or "state-blob"
    source: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        # A generic selector can match a whole container; keep the row storable
        if self.price_text is not None and len(self.price_text) > PRICE_TEXT_LENGTH:
            self.price_text = self.price_text[:PRICE_TEXT_LENGTH]

    @classmethod
    def blocked(cls, message: str) -> "ExtractionOutcome":
        return cls(status=CheckStatus.BLOCKED, error_message=message)

    @classmethod
    def failed(cls, message: str, raw_excerpt: Optional[str] = None) -> "ExtractionOutcome":
        return cls(status=CheckStatus.FAILED, error_message=message, raw_excerpt=raw_excerpt)

    @property
    def ok(self) -> bool:
        return self.status == CheckStatus.OK

    def as_record(self) -> Dict[str, Any]:
        """Columns for a CheckResult row."""
        record = asdict(self)
        record.pop("source")
        return record


async def read_selector_price(page: RenderedPage, selector: str, index: int = 0,
                              timeout: Optional[float] = None):
    """Read the index-th match of selector and parse its digits.

    Returns:
        (text, price or None)

    Raises:
        SelectorNotFoundError: if there is no such match within the wait
        ValueError: if the digits do not fit a price
    """
    text = await page.inner_text(selector, index=index, timeout=timeout)
    return text, parse_price_digits(text)


class PriceExtractor:
    """Applies the extraction cascade and availability policy to a rendered page."""

    def __init__(self, block_detection: Optional[bool] = None, selector_timeout: Optional[float] = None,
                 stock_timeout: Optional[float] = None):
        settings = get_settings()
        self.block_detection = settings.CONTENT_BLOCK_DETECTION if block_detection is None else block_detection
        self.selector_timeout = (
            settings.SELECTOR_TIMEOUT_MS / 1000 if selector_timeout is None else selector_timeout
        )
        stock_timeout = settings.STOCK_SELECTOR_TIMEOUT_MS / 1000 if stock_timeout is None else stock_timeout
        self.availability_checks = build_availability_checks(stock_timeout=stock_timeout)

    async def extract(self, page: RenderedPage, rule: ExtractionRule) -> ExtractionOutcome:
        if page.status_code in BLOCKING_STATUS_CODES:
            logger.warning("%s answered HTTP %s, treating as blocked", page.url, page.status_code)
            return ExtractionOutcome.blocked(f"HTTP Status {page.status_code}")

        await page.settle()
        content = await page.content()

        if self.block_detection:
            indicator = find_blocking_indicator(content)
            if indicator:
                logger.warning("Blocking indicator %r found on %s", indicator, page.url)
                return ExtractionOutcome.blocked("Detected blocking page content")

        try:
            price_text = await page.inner_text(rule.price_selector, timeout=self.selector_timeout)
        except SelectorNotFoundError:
            logger.info("Price selector %s not found on %s, trying structured data", rule.price_selector, page.url)
            return self._structured_fallback(content, "Price selector not found")

        try:
            price_value = parse_price_digits(price_text)
        except ValueError:
            logger.info("Price text on %s is out of range, trying structured data", page.url)
            return self._structured_fallback(
                content, "Price value out of range", raw_excerpt=excerpt(price_text)
            )

        if price_value is None:
            logger.info("Price text %r on %s has no digits, trying structured data", price_text, page.url)
            return self._structured_fallback(
                content, "Price text contains no digits", raw_excerpt=excerpt(price_text)
            )

        keywords = resolve_keywords(rule.out_of_stock_keywords)
        check = self.availability_checks[rule.availability_strategy]
        in_stock = await check.in_stock(page, rule.stock_selector, keywords)

        return ExtractionOutcome(
            status=CheckStatus.OK,
            price_value=price_value,
            price_text=price_text,
            in_stock=in_stock,
            raw_excerpt=excerpt(price_text),
            source="selector",
        )

    def _structured_fallback(self, content: str, failure_message: str,
                             raw_excerpt: Optional[str] = None) -> ExtractionOutcome:
        found = find_structured_price(content)
        if found is None:
            return ExtractionOutcome.failed(failure_message, raw_excerpt=raw_excerpt)
        return ExtractionOutcome(
            status=CheckStatus.OK,
            price_value=found.value,
            price_text=found.raw,
            in_stock=None,
            raw_excerpt=excerpt(found.raw),
            source=found.source,
        )

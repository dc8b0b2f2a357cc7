import logging
import math
import re
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import urlparse

from core.scrapers.base import BaseRenderer, RenderedPage
from core.scrapers.extraction import read_selector_price
from core.scrapers.structured_data import find_structured_price

logger = logging.getLogger("scraper.selector_detector")

# How many matches of one selector are inspected before moving on
MAX_CANDIDATES_PER_SELECTOR = 3

_LEADING_NUMBER = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class SelectorStrategy:
    name: str
    selector: str
    is_meta: bool = False


# Precedence list: specific storefront platforms first, generic selectors last.
# Reordering changes which selector gets suggested for existing stores.
DETECTION_STRATEGIES: List[SelectorStrategy] = [
    SelectorStrategy("VTEX Standard", ".vtex-product-price-1-x-sellingPriceValue"),
    SelectorStrategy("VTEX Container", ".vtex-product-price-1-x-sellingPrice"),
    SelectorStrategy("Electrolux Custom", ".electrolux-product-prices-4-x-sellingPriceValue"),
    SelectorStrategy("Electrolux Container", ".electrolux-product-prices-4-x-sellingPrice"),
    SelectorStrategy("MercadoLibre", ".ui-pdp-price__second-line .andes-money-amount__fraction"),
    SelectorStrategy("Ripley", ".product-price"),
    SelectorStrategy("Linio", ".price-main-md"),
    SelectorStrategy("Schema.org", '[itemprop="price"]'),
    SelectorStrategy("OpenGraph", 'meta[property="product:price:amount"]', is_meta=True),
    SelectorStrategy("Generic ID", "#price"),
    SelectorStrategy("Generic Class", ".price"),
    SelectorStrategy("Generic Product Price", ".product-price"),
]

# Known stores, matched on hostname suffix
STORE_PRESETS: Dict[str, Dict[str, str]] = {
    "falabella.com": {"selector": ".vtex-product-price-1-x-sellingPrice", "name": "Falabella (VTEX)"},
    "paris.cl": {"selector": ".vtex-product-price-1-x-sellingPrice", "name": "Paris (VTEX)"},
    "sodimac.cl": {"selector": ".vtex-product-price-1-x-sellingPrice", "name": "Sodimac (VTEX)"},
    "tottus.cl": {"selector": ".vtex-product-price-1-x-sellingPrice", "name": "Tottus (VTEX)"},
    "mercadolibre.cl": {
        "selector": ".ui-pdp-price__second-line .andes-money-amount__fraction",
        "name": "MercadoLibre",
    },
    "ripley.cl": {"selector": ".product-price", "name": "Ripley"},
    "linio.cl": {"selector": ".price-main-md", "name": "Linio"},
    "tiendamademsa.cl": {"selector": ".electrolux-product-prices-4-x-sellingPriceValue", "name": "Mademsa (Electrolux)"},
    "mademsa.cl": {"selector": ".electrolux-product-prices-4-x-sellingPriceValue", "name": "Mademsa"},
    "tiendafensa.cl": {"selector": ".vtex-product-price-1-x-sellingPriceValue", "name": "Fensa (VTEX Standard)"},
    "tienda.electrolux.cl": {"selector": ".electrolux-product-prices-4-x-sellingPriceValue", "name": "Electrolux"},
    "electrolux.cl": {"selector": ".electrolux-product-prices-4-x-sellingPriceValue", "name": "Electrolux"},
}


@dataclass
class DetectionResult:
    selector: Optional[str] = None
    price: Optional[float] = None
    strategy: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.price is not None


def preset_for_url(url: str) -> Optional[Dict[str, str]]:
    """Return the known selector for a store URL, longest hostname match wins."""
    hostname = (urlparse(str(url)).hostname or "").lower()
    if not hostname:
        return None
    matches = [
        domain for domain in STORE_PRESETS
        if hostname == domain or hostname.endswith("." + domain)
    ]
    if not matches:
        return None
    return dict(STORE_PRESETS[max(matches, key=len)])


def parse_meta_price(content: Optional[str]) -> Optional[float]:
    """Read the leading decimal number of a meta price ("19990 CLP" -> 19990.0).

    Only finite, strictly positive numbers count.
    """
    if not content:
        return None
    match = _LEADING_NUMBER.match(content)
    if match is None:
        return None
    value = float(match.group(0))
    return value if math.isfinite(value) and value > 0 else None


class SelectorDetector:
    """Suggests a price selector for a page nothing is known about.

    Runs the same price parsing as regular checks against a fixed list of
    storefront signatures and keeps the first one that yields a positive price.
    """

    def __init__(self, renderer: BaseRenderer, strategies: List[SelectorStrategy] = None,
                 attribute_timeout: float = 2.0):
        self.renderer = renderer
        self.strategies = strategies or DETECTION_STRATEGIES
        self.attribute_timeout = attribute_timeout

    async def detect(self, url: str) -> DetectionResult:
        """Render url and return the first strategy that finds a price.

        Never raises: a page that cannot be rendered yields an empty result.
        """
        try:
            async with self.renderer.render(url) as page:
                await page.settle()
                return await self.detect_on_page(page)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Detection failed for %s: %s", url, e)
            return DetectionResult()

    async def detect_on_page(self, page: RenderedPage) -> DetectionResult:
        for strategy in self.strategies:
            try:
                price = await self._try_strategy(page, strategy)
            except Exception as e:  # pylint: disable=broad-exception-caught
                # A broken candidate must not stop the rest of the list
                logger.debug("Strategy %s failed on %s: %s", strategy.name, page.url, e)
                continue
            if price is not None:
                logger.info("Detected %s price %s on %s with %s", strategy.name, price, page.url, strategy.selector)
                return DetectionResult(selector=strategy.selector, price=price, strategy=strategy.name)

        found = find_structured_price(await page.content())
        if found is not None:
            # Structured data has no element selector a check could reuse
            name = "JSON-LD" if found.source == "json-ld" else "Framework State"
            logger.info("Detected %s price %s on %s", name, found.value, page.url)
            return DetectionResult(selector=None, price=found.value, strategy=name)

        logger.info("No price detected on %s", page.url)
        return DetectionResult()

    async def _try_strategy(self, page: RenderedPage, strategy: SelectorStrategy) -> Optional[float]:
        if strategy.is_meta:
            content = await page.get_attribute(strategy.selector, "content", timeout=self.attribute_timeout)
            return parse_meta_price(content)

        matches = await page.count(strategy.selector)
        for index in range(min(matches, MAX_CANDIDATES_PER_SELECTOR)):
            try:
                _, price = await read_selector_price(page, strategy.selector, index=index)
            except ValueError:
                continue
            if price:
                return price
        return None

"""Price discovery in machine-readable page data.

Stores that hide their price behind client-side rendering usually still ship
it as JSON-LD (schema.org Product/Offer) or inside the state blob the
frontend framework hydrates from. Both are searched with the same matcher:

* objects are searched for ``price``, ``amount`` and ``value`` in that order,
  then descend into ``offers`` (first element when it is a list), then into
  every other nested object or array;
* string prices keep only their digits (``"19.990"`` -> 19990), numeric
  prices are rounded;
* only strictly positive prices that fit a price column count.
"""

import enum
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Tuple

from bs4 import BeautifulSoup

from core.database.models import MAX_PRICE_VALUE

logger = logging.getLogger("scraper.structured_data")

JSON_LD_SELECTOR = 'script[type="application/ld+json"]'
# Framework hydration payloads known to carry product data
STATE_BLOB_SELECTORS = ("script#__NEXT_DATA__",)

PRICE_FIELDS = ("price", "amount", "value")
OFFERS_FIELD = "offers"

# Deeper documents are treated as hostile rather than walked
MAX_DEPTH = 64

_NON_DIGITS = re.compile(r"\D")


class JsonShape(enum.Enum):
    OBJECT = "object"
    ARRAY = "array"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"


def json_shape(node: Any) -> JsonShape:
    """Classify a value produced by json.loads."""
    if node is None:
        return JsonShape.NULL
    # bool first: it is an int subclass
    if isinstance(node, bool):
        return JsonShape.BOOLEAN
    if isinstance(node, (int, float)):
        return JsonShape.NUMBER
    if isinstance(node, str):
        return JsonShape.STRING
    if isinstance(node, list):
        return JsonShape.ARRAY
    if isinstance(node, dict):
        return JsonShape.OBJECT
    raise TypeError(f"Not a JSON value: {type(node).__name__}")


@dataclass(frozen=True)
class StructuredPrice:
    value: int
    raw: str
    source: str
    selector: str


def coerce_price(node: Any) -> Optional[int]:
    """Turn a candidate price field into a positive integer, or None.

    Values that could not be stored as a price (non-finite, or beyond
    MAX_PRICE_VALUE) are rejected so the search moves on to later fields.
    """
    shape = json_shape(node)
    if shape is JsonShape.NUMBER:
        if isinstance(node, float) and not math.isfinite(node):
            return None
        value = round(node)
    elif shape is JsonShape.STRING:
        digits = _NON_DIGITS.sub("", node)
        # Bounded before int(): huge digit runs are rejected, not converted
        if not digits or len(digits.lstrip("0")) > len(str(MAX_PRICE_VALUE)):
            return None
        value = int(digits)
    else:
        return None
    return value if 0 < value <= MAX_PRICE_VALUE else None


def find_price(node: Any, depth: int = 0) -> Optional[Tuple[int, Any]]:
    """Depth-first search for the first usable price in a parsed JSON tree.

    Returns:
        (price, raw field value) or None
    """
    if depth > MAX_DEPTH:
        return None

    shape = json_shape(node)

    if shape is JsonShape.ARRAY:
        for item in node:
            found = find_price(item, depth + 1)
            if found:
                return found
        return None

    if shape is not JsonShape.OBJECT:
        return None

    for field in PRICE_FIELDS:
        if field in node:
            price = coerce_price(node[field])
            if price is not None:
                return price, node[field]

    offers = node.get(OFFERS_FIELD)
    if json_shape(offers) is JsonShape.ARRAY:
        offers = offers[0] if offers else None
    if offers is not None:
        found = find_price(offers, depth + 1)
        if found:
            return found

    for key, child in node.items():
        if key == OFFERS_FIELD:
            continue
        if json_shape(child) in (JsonShape.OBJECT, JsonShape.ARRAY):
            found = find_price(child, depth + 1)
            if found:
                return found
    return None


def iter_json_scripts(soup: BeautifulSoup, selector: str) -> Iterator[Any]:
    """Parse every script matching selector, skipping the ones that aren't JSON."""
    for script in soup.select(selector):
        payload = (script.string or script.get_text() or "").strip()
        # Some CMSs wrap JSON-LD in HTML comments or leave a trailing semicolon
        payload = payload.removeprefix("<!--").removesuffix("-->").strip().rstrip(";")
        if not payload:
            continue
        try:
            yield json.loads(payload)
        except (ValueError, RecursionError) as e:
            logger.debug("Skipping unparseable %s block: %s", selector, e)


def find_structured_price(html: str) -> Optional[StructuredPrice]:
    """Search JSON-LD blocks, then framework state blobs, for a price."""
    soup = BeautifulSoup(html or "", "lxml")

    sources = [("json-ld", JSON_LD_SELECTOR)]
    sources.extend(("state-blob", selector) for selector in STATE_BLOB_SELECTORS)

    for source, selector in sources:
        for document in iter_json_scripts(soup, selector):
            found = find_price(document)
            if found:
                value, raw = found
                logger.debug("Found price %s in %s (%s)", value, source, selector)
                return StructuredPrice(value=value, raw=str(raw), source=source, selector=selector)
    return None

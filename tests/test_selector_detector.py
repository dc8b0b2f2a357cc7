import json

import pytest

from conftest import FakeRenderer, product_page
from core.scrapers.errors import RenderError
from core.scrapers.http_renderer import SoupPage
from core.scrapers.selector_detector import (
    DETECTION_STRATEGIES,
    SelectorDetector,
    parse_meta_price,
    preset_for_url,
)


def _detector(*responses):
    return SelectorDetector(FakeRenderer(*responses), attribute_timeout=0)


class TestDetectionStrategies:

    def test_platform_selectors_come_first(self):
        names = [strategy.name for strategy in DETECTION_STRATEGIES]
        assert names[0] == "VTEX Standard"
        assert names.index("OpenGraph") < names.index("Generic ID") < names.index("Generic Class")

    def test_only_opengraph_reads_an_attribute(self):
        assert [s.name for s in DETECTION_STRATEGIES if s.is_meta] == ["OpenGraph"]


class TestSelectorDetector:

    @pytest.mark.asyncio
    async def test_first_matching_strategy_wins(self):
        html = product_page(
            price_html='<span class="price">$1.000</span>'
                       '<span class="vtex-product-price-1-x-sellingPriceValue">$2.000</span>'
        )
        result = await _detector().detect_on_page(SoupPage(html))

        assert result.strategy == "VTEX Standard"
        assert result.selector == ".vtex-product-price-1-x-sellingPriceValue"
        assert result.price == 2000

    @pytest.mark.asyncio
    async def test_looks_past_leading_matches_without_digits(self):
        html = product_page(
            price_html='<span class="price">Desde</span><span class="price">Oferta</span>'
                       '<span class="price">$9.990</span>'
        )
        result = await _detector().detect_on_page(SoupPage(html))

        assert result.strategy == "Generic Class"
        assert result.price == 9990

    @pytest.mark.asyncio
    async def test_only_three_candidates_per_selector(self):
        html = product_page(
            price_html='<span class="price">Desde</span><span class="price">Oferta</span>'
                       '<span class="price">Ahorra</span><span class="price">$9.990</span>'
        )
        result = await _detector().detect_on_page(SoupPage(html))

        assert not result.found

    @pytest.mark.asyncio
    async def test_opengraph_meta(self):
        html = (
            '<html><head><meta property="product:price:amount" content="24990"></head>'
            "<body><p>Sin precio visible</p></body></html>"
        )
        result = await _detector().detect_on_page(SoupPage(html))

        assert result.strategy == "OpenGraph"
        assert result.price == 24990.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["Infinity", "-Infinity", "NaN", "1e999", "0", "-5", "gratis"])
    async def test_unusable_opengraph_content_is_skipped(self, content):
        html = (
            f'<html><head><meta property="product:price:amount" content="{content}"></head>'
            "<body><p>Sin precio visible</p></body></html>"
        )
        result = await _detector().detect_on_page(SoupPage(html))

        assert not result.found

    @pytest.mark.asyncio
    async def test_opengraph_content_with_currency(self):
        html = (
            '<html><head><meta property="product:price:amount" content="19990 CLP"></head>'
            "<body><p>Sin precio visible</p></body></html>"
        )
        result = await _detector().detect_on_page(SoupPage(html))

        assert result.strategy == "OpenGraph"
        assert result.price == 19990.0

    @pytest.mark.asyncio
    async def test_oversized_candidate_is_skipped(self):
        html = product_page(
            price_html=f'<span class="price">{"9" * 40}</span><span class="price">$4.990</span>'
        )
        result = await _detector().detect_on_page(SoupPage(html))

        assert result.strategy == "Generic Class"
        assert result.price == 4990

    @pytest.mark.asyncio
    async def test_structured_data_fallback_has_no_selector(self):
        json_ld = json.dumps({"@type": "Product", "offers": {"price": "19.990"}})
        html = product_page(price_html="", body=f'<script type="application/ld+json">{json_ld}</script>')
        result = await _detector().detect_on_page(SoupPage(html))

        assert result.strategy == "JSON-LD"
        assert result.selector is None
        assert result.price == 19990

    @pytest.mark.asyncio
    async def test_state_blob_fallback(self):
        state = json.dumps({"props": {"product": {"price": 3490}}})
        html = product_page(price_html="", body=f'<script id="__NEXT_DATA__" type="application/json">{state}</script>')
        result = await _detector().detect_on_page(SoupPage(html))

        assert result.strategy == "Framework State"

    @pytest.mark.asyncio
    async def test_detect_renders_the_url(self):
        renderer = FakeRenderer(product_page(price_html='<div id="price">$15.990</div>'))
        detector = SelectorDetector(renderer, attribute_timeout=0)
        result = await detector.detect("https://shop.example.cl/p/1")

        assert renderer.rendered == ["https://shop.example.cl/p/1"]
        assert result.strategy == "Generic ID"
        assert result.found

    @pytest.mark.asyncio
    async def test_render_failure_gives_empty_result(self):
        detector = _detector(RenderError("net::ERR_NAME_NOT_RESOLVED", url="https://nope.invalid"))
        result = await detector.detect("https://nope.invalid")

        assert not result.found
        assert result.selector is None
        assert result.strategy is None


class TestParseMetaPrice:

    @pytest.mark.parametrize("content,expected", [
        ("24990", 24990.0),
        ("19990 CLP", 19990.0),
        (" 19.99", 19.99),
        ("1.5e3", 1500.0),
    ])
    def test_leading_number(self, content, expected):
        assert parse_meta_price(content) == expected

    @pytest.mark.parametrize("content", [None, "", "CLP 19990", "Infinity", "nan", "1e999", "0", "-10"])
    def test_unusable_content(self, content):
        assert parse_meta_price(content) is None


class TestStorePresets:

    @pytest.mark.parametrize("url,name", [
        ("https://www.falabella.com/falabella-cl/product/123", "Falabella (VTEX)"),
        ("https://articulo.mercadolibre.cl/MLC-123", "MercadoLibre"),
        ("https://www.tiendamademsa.cl/lavadora", "Mademsa (Electrolux)"),
        ("https://tienda.electrolux.cl/refrigerador", "Electrolux"),
        ("https://www.ripley.cl/producto", "Ripley"),
    ])
    def test_known_stores(self, url, name):
        assert preset_for_url(url)["name"] == name

    def test_unknown_store(self):
        assert preset_for_url("https://shop.example.cl/p/1") is None
        assert preset_for_url("not a url") is None

    def test_suffix_must_be_a_label_boundary(self):
        assert preset_for_url("https://notripley.cl/p") is None

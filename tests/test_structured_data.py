import json

import pytest

from core.database.models import MAX_PRICE_VALUE
from core.scrapers.structured_data import (
    MAX_DEPTH,
    JsonShape,
    coerce_price,
    find_price,
    find_structured_price,
    json_shape,
)


def _ld(document) -> str:
    return f'<script type="application/ld+json">{json.dumps(document)}</script>'


class TestJsonShape:

    @pytest.mark.parametrize("value,shape", [
        ({}, JsonShape.OBJECT),
        ([], JsonShape.ARRAY),
        ("x", JsonShape.STRING),
        (1, JsonShape.NUMBER),
        (1.5, JsonShape.NUMBER),
        (True, JsonShape.BOOLEAN),
        (None, JsonShape.NULL),
    ])
    def test_classifies_json_values(self, value, shape):
        assert json_shape(value) is shape

    def test_rejects_non_json(self):
        with pytest.raises(TypeError):
            json_shape(object())


class TestCoercePrice:

    def test_string_keeps_digits(self):
        assert coerce_price("19.990") == 19990
        assert coerce_price("US$ 1,299") == 1299

    def test_number_is_rounded(self):
        assert coerce_price(19.6) == 20
        assert coerce_price(45990) == 45990

    @pytest.mark.parametrize("value", [0, -5, "0", "gratis", True, None, {"value": 1}, float("nan")])
    def test_unusable_values(self, value):
        assert coerce_price(value) is None

    @pytest.mark.parametrize("value", [int("9" * 400), "9" * 400, float("inf"), 1e300, MAX_PRICE_VALUE + 1])
    def test_values_beyond_price_column_are_skipped(self, value):
        assert coerce_price(value) is None

    def test_largest_storable_price(self):
        assert coerce_price(MAX_PRICE_VALUE) == MAX_PRICE_VALUE
        assert coerce_price(str(MAX_PRICE_VALUE)) == MAX_PRICE_VALUE


class TestFindPrice:

    def test_field_order(self):
        assert find_price({"value": 3, "amount": 2, "price": 1}) == (1, 1)
        assert find_price({"value": 3, "amount": 2}) == (2, 2)

    def test_skips_unusable_field(self):
        assert find_price({"price": "consultar", "amount": "5.990"}) == (5990, "5.990")

    def test_first_offer_only(self):
        document = {"offers": [{"price": 100}, {"price": 50}]}
        assert find_price(document) == (100, 100)

    def test_offers_before_other_children(self):
        document = {"brand": {"value": 7}, "offers": {"price": 9990}}
        assert find_price(document) == (9990, 9990)

    def test_nested_arrays(self):
        document = {"@graph": [{"@type": "BreadcrumbList"}, {"@type": "Product", "offers": {"price": "2.490"}}]}
        assert find_price(document) == (2490, "2.490")

    def test_nothing_found(self):
        assert find_price({"name": "Cafetera", "sku": "A1"}) is None

    def test_depth_limit(self):
        shallow = {"price": 5}
        deep = {"price": 5}
        for _ in range(10):
            shallow = {"child": shallow}
        for _ in range(MAX_DEPTH + 5):
            deep = {"child": deep}

        assert find_price(shallow) == (5, 5)
        assert find_price(deep) is None


class TestFindStructuredPrice:

    def test_json_ld(self):
        found = find_structured_price(_ld({"@type": "Product", "offers": {"price": "19.990"}}))
        assert found.value == 19990
        assert found.raw == "19.990"
        assert found.source == "json-ld"

    def test_json_ld_before_state_blob(self):
        html = (
            '<script id="__NEXT_DATA__" type="application/json">{"props": {"price": 1}}</script>'
            + _ld({"offers": {"price": 2}})
        )
        assert find_structured_price(html).source == "json-ld"

    def test_state_blob(self):
        html = '<script id="__NEXT_DATA__" type="application/json">{"props": {"product": {"amount": 7990}}}</script>'
        found = find_structured_price(html)
        assert found.value == 7990
        assert found.source == "state-blob"

    def test_invalid_block_is_skipped(self):
        html = '<script type="application/ld+json">{not json</script>' + _ld({"price": 3990})
        assert find_structured_price(html).value == 3990

    def test_comment_wrapped_block(self):
        html = '<script type="application/ld+json"><!-- {"offers": {"price": 1490}}; --></script>'
        assert find_structured_price(html).value == 1490

    def test_oversized_identifier_does_not_stop_the_search(self):
        huge = "9" * 400
        html = (
            '<script type="application/ld+json">'
            '{"@graph": [{"identifier": {"value": ' + huge + '}}, {"offers": {"price": "19.990"}}]}'
            "</script>"
        )
        found = find_structured_price(html)
        assert found.value == 19990
        assert found.raw == "19.990"

    def test_nothing_found(self):
        assert find_structured_price("<html><body><p>Hola</p></body></html>") is None
        assert find_structured_price("") is None

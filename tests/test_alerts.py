from types import SimpleNamespace

from core.database.models import AlertType
from core.monitoring.alerts import evaluate_alerts


def _task(**overrides):
    fields = dict(alert_on_drop=True, alert_on_back_in_stock=True, target_price=None, currency="CLP")
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _result(price_value=None, in_stock=True):
    return SimpleNamespace(price_value=price_value, in_stock=in_stock)


def _types(alerts):
    return [alert.type for alert in alerts]


class TestPriceDrop:

    def test_lower_price_fires(self):
        alerts = evaluate_alerts(_task(), _result(549990), _result(599990))

        assert _types(alerts) == [AlertType.PRICE_DROP]
        assert alerts[0].message == "Price dropped from $599990 CLP to $549990 CLP"

    def test_same_or_higher_price_is_silent(self):
        assert evaluate_alerts(_task(), _result(599990), _result(599990)) == []
        assert evaluate_alerts(_task(), _result(609990), _result(599990)) == []

    def test_needs_a_previous_price(self):
        assert evaluate_alerts(_task(), _result(549990), None) == []
        assert evaluate_alerts(_task(), _result(549990), _result(None)) == []

    def test_can_be_turned_off(self):
        assert evaluate_alerts(_task(alert_on_drop=False), _result(1), _result(2)) == []


class TestTargetReached:

    def test_at_or_below_target(self):
        task = _task(target_price=500000)

        alerts = evaluate_alerts(task, _result(500000), _result(520000))
        assert _types(alerts) == [AlertType.PRICE_DROP, AlertType.TARGET_REACHED]
        assert alerts[1].message == "Price reached target: $500000 CLP (Target: $500000 CLP)"

    def test_fires_on_first_result(self):
        alerts = evaluate_alerts(_task(target_price=500000), _result(450000), None)
        assert _types(alerts) == [AlertType.TARGET_REACHED]

    def test_above_target(self):
        assert evaluate_alerts(_task(target_price=500000), _result(500001), None) == []


class TestBackInStock:

    def test_out_then_in(self):
        alerts = evaluate_alerts(_task(), _result(1000, True), _result(1000, False))

        assert _types(alerts) == [AlertType.BACK_IN_STOCK]
        assert alerts[0].message == "Item is back in stock!"

    def test_unknown_previous_stock_does_not_count(self):
        assert evaluate_alerts(_task(), _result(1000, True), _result(1000, None)) == []

    def test_still_out_of_stock(self):
        assert evaluate_alerts(_task(), _result(1000, False), _result(1000, False)) == []

    def test_can_be_turned_off(self):
        task = _task(alert_on_back_in_stock=False)
        assert evaluate_alerts(task, _result(1000, True), _result(1000, False)) == []

from types import SimpleNamespace

import requests

from core.database.models import AlertType
from core.notifications.sink import LogSink, WebhookSink, create_sink


class FakeSession:
    def __init__(self, error=None, status_code=200):
        self.error = error
        self.status_code = status_code
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        if self.error:
            raise self.error
        response = requests.Response()
        response.status_code = self.status_code
        response.url = url
        return response


TASK = SimpleNamespace(id="t-1", name="Cafetera", url="https://shop.example.cl/p/1")


class TestSinks:

    def test_log_sink_always_delivers(self):
        assert LogSink().send(TASK, AlertType.PRICE_DROP, "Price dropped") is True

    def test_webhook_payload(self):
        session = FakeSession()
        sink = WebhookSink("https://hooks.example.com/x", session=session)

        assert sink.send(TASK, AlertType.BACK_IN_STOCK, "Item is back in stock!") is True
        url, payload = session.posts[0]
        assert url == "https://hooks.example.com/x"
        assert payload["type"] == "BACK_IN_STOCK"
        assert payload["task_id"] == "t-1"
        assert payload["subject"] == "PriceWatch Alert: Cafetera"

    def test_webhook_connection_error(self):
        sink = WebhookSink("https://hooks.example.com/x", session=FakeSession(error=requests.ConnectionError("down")))
        assert sink.send(TASK, AlertType.PRICE_DROP, "Price dropped") is False

    def test_webhook_error_status(self):
        sink = WebhookSink("https://hooks.example.com/x", session=FakeSession(status_code=500))
        assert sink.send(TASK, AlertType.PRICE_DROP, "Price dropped") is False

    def test_create_sink(self):
        configured = SimpleNamespace(NOTIFY_WEBHOOK_URL="https://hooks.example.com/x", NOTIFY_CHANNEL="SLACK")
        sink = create_sink(configured)
        assert isinstance(sink, WebhookSink)
        assert sink.channel == "SLACK"

        assert isinstance(create_sink(SimpleNamespace(NOTIFY_WEBHOOK_URL=None)), LogSink)

# This file defines where alerts go once a check decides one should fire
# Sinks only deliver; recording the Notification row is the check runner's job

import abc
import logging
from typing import Optional

import requests

from config.settings import get_settings
from core.database.models import AlertType

logger = logging.getLogger("pricewatch.notifications")


class NotificationSink(abc.ABC):
    """Delivers a fully-formed alert message for a task."""

    channel = "LOG"

    @abc.abstractmethod
    def send(self, task, alert_type: AlertType, message: str) -> bool:
        """Deliver the message. Returns True if it was delivered."""
        raise NotImplementedError


class LogSink(NotificationSink):
    """Writes alerts to the application log; used when no webhook is configured."""

    channel = "LOG"

    def send(self, task, alert_type, message) -> bool:
        logger.info("[NOTIFICATION] %s for %s: %s", AlertType(alert_type).value, task.name, message)
        return True


class WebhookSink(NotificationSink):
    """POSTs alerts as JSON to a webhook (Slack/Discord relays, Zapier, ...)."""

    def __init__(self, url: str, channel: str = "WEBHOOK", timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.channel = channel
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, task, alert_type, message) -> bool:
        payload = {
            "task_id": task.id,
            "task_name": task.name,
            "url": task.url,
            "type": AlertType(alert_type).value,
            "message": message,
            "subject": f"PriceWatch Alert: {task.name}",
        }
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("Failed to deliver %s alert for %s: %s", payload["type"], task.name, e)
            return False
        return True


def create_sink(settings=None) -> NotificationSink:
    """Webhook sink when NOTIFY_WEBHOOK_URL is set, log sink otherwise."""
    settings = settings or get_settings()
    if settings.NOTIFY_WEBHOOK_URL:
        return WebhookSink(settings.NOTIFY_WEBHOOK_URL, channel=settings.NOTIFY_CHANNEL)
    return LogSink()

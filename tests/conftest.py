"""
Shared fixtures for the price watch tests.

Provides:
- An in-memory SQLite store, fresh per test, behind a session factory
- A FakeRenderer that serves canned HTML (or raises) instead of a browser
- A RecordingSink and a recording sleep for runner tests
- A controllable clock
"""

import os

# Settings are read at import time; point everything at throwaway state first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("NOTIFY_WEBHOOK_URL", None)

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import List

import pytest
from sqlalchemy.orm import sessionmaker

from core.database.operations import init_db, make_engine
from core.notifications.sink import NotificationSink
from core.scrapers.base import BaseRenderer
from core.scrapers.http_renderer import SoupPage


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def product_page(price_html: str = '<span class="product-price">$599.990</span>', body: str = "") -> str:
    """A minimal product page with the given price markup."""
    return f"<html><head><title>Producto</title></head><body><h1>Producto</h1>{price_html}{body}</body></html>"


class FakeRenderer(BaseRenderer):
    """Serves a script of responses, one per render, repeating the last one.

    Each entry is an HTML string, a ready RenderedPage or an exception to raise.
    """

    name = "fake"

    def __init__(self, *responses):
        self.responses = list(responses)
        self.rendered: List[str] = []

    @asynccontextmanager
    async def render(self, url):
        self.rendered.append(url)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            response = SoupPage(response, url=url)
        yield response


class RecordingSink(NotificationSink):
    channel = "TEST"

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.sent = []

    def send(self, task, alert_type, message) -> bool:
        self.sent.append((task.id, alert_type, message))
        return self.deliver


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class Clock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 12, 0, 0), step: timedelta = timedelta()):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def clock():
    return Clock()

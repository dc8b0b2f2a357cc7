# This file defines the abstract contracts between the extraction logic and whatever renders pages
# A renderer turns a URL into a RenderedPage; extraction only ever talks to RenderedPage

import abc
from typing import AsyncContextManager, Optional


class RenderedPage(abc.ABC):
    """The output of rendering one URL.

    Exposes the response status, the full page content and a small DOM query
    surface. Every query is async and bounded by its own timeout; a lookup
    that cannot be satisfied within its wait raises SelectorNotFoundError,
    and so does a selector the underlying engine rejects.
    """

    def __init__(self, url: str, status_code: Optional[int]):
        self.url = url
        # None when the renderer could not observe a response (e.g. cached navigation)
        self.status_code = status_code

    async def settle(self) -> None:
        """Give late scripts a chance to finish. Never raises on timeout."""

    @abc.abstractmethod
    async def content(self) -> str:
        """Full serialized page content (HTML)."""

    @abc.abstractmethod
    async def body_text(self) -> str:
        """Visible text of the document body."""

    @abc.abstractmethod
    async def count(self, selector: str) -> int:
        """Number of elements currently matching the selector, 0 for a selector that cannot be used."""

    @abc.abstractmethod
    async def inner_text(self, selector: str, index: int = 0, timeout: Optional[float] = None) -> str:
        """Inner text of the index-th match, waiting up to timeout seconds for it."""

    @abc.abstractmethod
    async def get_attribute(self, selector: str, name: str, timeout: Optional[float] = None) -> Optional[str]:
        """Attribute of the first match, None if the attribute is absent."""


class BaseRenderer(abc.ABC):
    """Base class for page renderers.

    Any way of producing a RenderedPage (a real browser, a plain HTTP fetch,
    canned HTML in tests) can back the checker by implementing render().
    """

    name = "base"

    @abc.abstractmethod
    def render(self, url: str) -> AsyncContextManager[RenderedPage]:
        """Render url and yield the page; resources are released on exit.

        Raises:
            RenderError: if the page cannot be loaded at all
        """
        raise NotImplementedError("Concrete renderers must implement render()")

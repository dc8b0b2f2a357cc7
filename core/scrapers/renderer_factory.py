from typing import Dict, Type

from config.settings import get_settings
from core.scrapers.base import BaseRenderer
from core.scrapers.browser import PlaywrightRenderer
from core.scrapers.http_renderer import HttpRenderer


class RendererFactory:
    """Factory for creating the page renderer named in the settings.

    The checker never needs to know how pages are rendered; switching from a
    real browser to plain HTTP fetching is a configuration change.
    """

    # Map of renderer names to renderer classes
    RENDERERS: Dict[str, Type[BaseRenderer]] = {
        "playwright": PlaywrightRenderer,
        "http": HttpRenderer,
    }

    @classmethod
    def create_renderer(cls, name: str = None, **kwargs) -> BaseRenderer:
        """Create and return the renderer registered under name.

        Args:
            name: Renderer name, defaults to the RENDERER setting
            **kwargs: Passed through to the renderer constructor

        Raises:
            ValueError: if no renderer is registered under name
        """
        name = (name or get_settings().RENDERER).lower()
        if name not in cls.RENDERERS:
            raise ValueError(f"Unknown renderer '{name}', expected one of {sorted(cls.RENDERERS)}")
        return cls.RENDERERS[name](**kwargs)

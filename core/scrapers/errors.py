class RenderError(Exception):
    """Raised when a page cannot be loaded at all (navigation, transport)."""

    def __init__(self, message: str, url: str = None):
        super().__init__(message)
        self.url = url


class SelectorNotFoundError(Exception):
    """Raised when a selector has no match within its bounded wait."""

    def __init__(self, selector: str, index: int = 0):
        super().__init__(f"Selector not found: {selector}")
        self.selector = selector
        self.index = index

"""Exceptions raised by the blog post extraction pipeline"""

from typing import Optional


class ScraperError(Exception):
    """Base class for all pipeline errors"""


class ConfigurationError(ScraperError):
    """A tier is missing a credential or has an invalid setting"""


class FetchError(ScraperError):
    """A network call failed; ``retryable`` marks transient failures"""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None,
                 retryable: bool = False):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class RateLimitError(FetchError):
    """The remote side answered 429"""

    def __init__(self, url: str, message: str = "Rate limited"):
        super().__init__(url, message, status_code=429, retryable=True)


class BrowserError(FetchError):
    """The headless browser could not load or drive a page"""


class DiscoveryError(ScraperError):
    """The seed URL is unusable or every discovery strategy failed outright"""

"""Error taxonomy for source scraping."""
from typing import Optional


class ScraperError(Exception):
    """Base exception for scraping failures."""

    def __init__(self, message: str, source: str = '', cause: Optional[Exception] = None):
        super().__init__(message)
        self.source = source
        self.cause = cause


class NetworkError(ScraperError):
    """Raised when a request fails at the transport level or with a 5xx."""
    pass


class ScraperTimeoutError(ScraperError):
    """Raised when a fetch, render or AI call exceeds its timeout."""
    pass


class InvalidResponseError(ScraperError):
    """Raised on a non-retryable 4xx or a malformed body."""
    pass


class RateLimitExceededError(ScraperError):
    """Raised when a source answers 429."""
    pass


class ParseError(ScraperError):
    """Raised when no extraction strategy understood the page."""
    pass


class AIExtractionError(ScraperError):
    """Raised when the AI extraction service fails or returns garbage."""
    pass


class ConfigurationError(ScraperError):
    """Raised when an optional capability or source is not configured."""
    pass

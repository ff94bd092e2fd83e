"""Exception types raised by the api_knowledge package."""
from __future__ import annotations

from typing import Optional


class ApiKnowledgeError(Exception):
    """Base class for all package errors."""


class ConfigError(ApiKnowledgeError):
    pass


class ScrapeError(ApiKnowledgeError):
    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class RateLimitError(ScrapeError):
    """The scraping API kept answering 429. Wait, or upgrade the plan."""

    def __init__(self, message: str, url: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, url=url, status_code=429)
        self.retry_after = retry_after


class ExtractionError(ApiKnowledgeError):
    pass


class StoreError(ApiKnowledgeError):
    pass

"""
Error taxonomy for the course scraper.

Structural failures (search form missing, unknown location id) propagate to
the caller and abort a crawl. Per-item, per-row and per-cookie failures are
caught close to where they happen and turned into warnings instead.
"""

from __future__ import annotations


class CourseScraperError(Exception):
    """Base exception for all scraper-related errors."""


class NotFoundError(CourseScraperError):
    """Raised when a required page element or a location id does not exist."""


class MissingActionError(CourseScraperError):
    """Raised when the search form has no submission target."""


class InvalidArgumentError(CourseScraperError, ValueError):
    """Raised for bad input before anything is sent over the network."""


class FetchError(CourseScraperError):
    """Generic network failure (connection refused, DNS, ...)."""


class RequestTimeoutError(FetchError):
    """Raised when a request exceeds its deadline."""

    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(f"Timeout after {timeout:g}s for {url}")


class HttpError(FetchError):
    """Raised when a request returns a non-2xx status code."""

    def __init__(self, status_code: int | None, url: str, snippet: str = ""):
        self.status_code = status_code
        self.url = url
        self.snippet = snippet
        message = f"HTTP {status_code} for {url}"
        if snippet:
            message = f"{message} - {snippet}"
        super().__init__(message)


class ParseError(CourseScraperError, ValueError):
    """Raised when normalizing scraped text fails."""


class UnparseableDateError(ParseError):
    pass


class UnparseableTimeRangeError(ParseError):
    pass


class CookieParseSkip(CourseScraperError):
    """A single Set-Cookie line could not be parsed; it is skipped, never fatal."""

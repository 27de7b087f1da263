"""
Collector Errors
================
Single exception hierarchy for everything the collector itself raises.

Transport failures are *not* wrapped: they surface as the
``requests.RequestException`` family raised by the HTTP backend.
"""

from __future__ import annotations

from http import HTTPStatus


class CollectorError(Exception):
    """Base class for all collector errors."""


# ---------------------------------------------------------------------------
# Admission errors (raised before any network call)
# ---------------------------------------------------------------------------

class MissingURLError(CollectorError):
    def __init__(self, message: str = "Missing URL"):
        super().__init__(message)


class InvalidURLError(CollectorError):
    """The URL cannot be parsed (e.g. an unbalanced IPv6 bracket)."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        super().__init__(f"Invalid URL {url!r}: {reason}" if reason else f"Invalid URL {url!r}")


class MaxDepthError(CollectorError):
    def __init__(self, message: str = "Max depth limit reached"):
        super().__init__(message)


class ForbiddenDomainError(CollectorError):
    def __init__(self, message: str = "Forbidden domain"):
        super().__init__(message)


class ForbiddenURLError(CollectorError):
    def __init__(self, message: str = "ForbiddenURL"):
        super().__init__(message)


class NoURLFiltersMatchError(CollectorError):
    def __init__(self, message: str = "No URLFilters match"):
        super().__init__(message)


class AlreadyVisitedError(CollectorError):
    def __init__(self, message: str = "URL already visited"):
        super().__init__(message)


class RobotsTxtBlockedError(CollectorError):
    def __init__(self, message: str = "URL blocked by robots.txt"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class NoCookieJarError(CollectorError):
    def __init__(self, message: str = "Cookie jar is not available"):
        super().__init__(message)


class NoPatternError(CollectorError):
    def __init__(self, message: str = "No pattern defined in LimitRule"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Fetch-time errors
# ---------------------------------------------------------------------------

class HTTPStatusError(CollectorError):
    """A response whose status code is treated as a failure.

    The message is the reason phrase of the status (``"Not Found"``),
    or the bare code when the status is unknown.
    """

    def __init__(self, status_code: int):
        self.status_code = status_code
        try:
            message = HTTPStatus(status_code).phrase
        except ValueError:
            message = str(status_code)
        super().__init__(message)


class RedirectRefusedError(CollectorError):
    """A redirect pointed at a host outside the allowed domains."""

    def __init__(self, host: str):
        self.host = host
        super().__init__(
            f"Not following redirect to {host} because its not in AllowedDomains"
        )


class CancelledError(CollectorError):
    """The cancellation token of the call was cancelled."""

    def __init__(self, message: str = "context canceled"):
        super().__init__(message)

"""
Collector Package
A hook-driven fetch-and-extract engine: visit URLs, react to requests,
responses and matched HTML/XML elements, and schedule follow-ups from
inside the hooks.

CLI Usage:
    python -m collector <url> [options]

    Options:
        --selector        CSS selector whose matches are printed (default: title)
        --follow          Follow <a href> links
        --max-depth       Maximum depth when following links (0 = unlimited)
        --allowed-domain  Restrict requests to this host (repeatable)
        --async           One thread per request
        --respect-robots  Skip URLs disallowed by robots.txt
        --output-json     Export matches to a JSON file
"""

from .collector import Collector
from .context import CancelToken, Context
from .elements import HTMLElement, XMLElement
from .errors import (
    AlreadyVisitedError,
    CancelledError,
    CollectorError,
    ForbiddenDomainError,
    ForbiddenURLError,
    HTTPStatusError,
    InvalidURLError,
    MaxDepthError,
    MissingURLError,
    NoCookieJarError,
    NoPatternError,
    NoURLFiltersMatchError,
    RedirectRefusedError,
    RobotsTxtBlockedError,
)
from .http_backend import HTTPBackend, LimitRule, round_robin_proxy_switcher
from .redirect import MAX_REDIRECTS, RedirectGovernor, no_redirects
from .request import Request
from .response import Response
from .robots import RobotsCache
from .run_config import CollectorConfig
from .scope_filter import ScopeFilter
from .storage import InMemoryStorage, Storage
from .utils import sanitize_file_name

__all__ = [
    'Collector',
    'CollectorConfig',
    'Request',
    'Response',
    'Context',
    'CancelToken',
    'HTMLElement',
    'XMLElement',
    # Storage & transport
    'Storage',
    'InMemoryStorage',
    'HTTPBackend',
    'LimitRule',
    'round_robin_proxy_switcher',
    # Policies
    'ScopeFilter',
    'RobotsCache',
    'RedirectGovernor',
    'MAX_REDIRECTS',
    'no_redirects',
    'sanitize_file_name',
    # Errors
    'CollectorError',
    'MissingURLError',
    'InvalidURLError',
    'MaxDepthError',
    'ForbiddenDomainError',
    'ForbiddenURLError',
    'NoURLFiltersMatchError',
    'AlreadyVisitedError',
    'RobotsTxtBlockedError',
    'NoCookieJarError',
    'NoPatternError',
    'HTTPStatusError',
    'RedirectRefusedError',
    'CancelledError',
]

__version__ = '1.0.0'

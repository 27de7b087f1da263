"""
Scope Filter
=============
Admission rules applied to every request before it is dispatched.

Checks run in a fixed order and the first failure wins:

1. URL present                        → ``MissingURLError``
2. depth within ``max_depth``         → ``MaxDepthError``
3. no disallowed-URL pattern matches  → ``ForbiddenURLError``
4. some allowed-URL pattern matches   → ``NoURLFiltersMatchError``
5. not visited before (GET only)      → ``AlreadyVisitedError``
6. host passes the domain lists       → ``ForbiddenDomainError``

Patterns are matched against the **raw** URL string, and the dedup
fingerprint is taken from the raw string too: no canonicalisation
happens here, so ``/a`` and ``/a/`` are different URLs.

Robots rules (step 7) live in ``robots.py``.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Pattern, Union

from .errors import (
    AlreadyVisitedError,
    ForbiddenDomainError,
    ForbiddenURLError,
    MaxDepthError,
    MissingURLError,
    NoURLFiltersMatchError,
)
from .storage import Storage
from .utils import url_fingerprint

logger = logging.getLogger(__name__)


def compile_filters(patterns: Iterable[Union[str, Pattern]]) -> List[Pattern]:
    """Compile a mix of regex strings and compiled patterns."""
    return [p if isinstance(p, re.Pattern) else re.compile(p) for p in patterns or []]


def is_matching_filter(filters: Iterable[Pattern], url: str) -> bool:
    return any(rx.search(url) for rx in filters)


class ScopeFilter:
    """
    Stateless view over a collector's scope settings.

    Holds a reference to the live ``CollectorConfig``, so changes made to
    the config after construction apply to the next request.
    """

    def __init__(self, config):
        self.config = config

    # ------------------------------------------------------------------
    # Primary API
    # ------------------------------------------------------------------

    def request_check(
        self,
        url: str,
        method: str,
        depth: int,
        check_revisit: bool,
        storage: Storage,
    ) -> None:
        """Run checks 1-5, raising the matching error on the first failure."""
        cfg = self.config
        if not url:
            raise MissingURLError()
        if cfg.max_depth > 0 and cfg.max_depth < depth:
            raise MaxDepthError()
        if cfg.disallowed_url_filters and is_matching_filter(cfg.disallowed_url_filters, url):
            raise ForbiddenURLError()
        if cfg.url_filters and not is_matching_filter(cfg.url_filters, url):
            raise NoURLFiltersMatchError()
        if check_revisit and not cfg.allow_url_revisit and method == "GET":
            if not storage.visit_once(url_fingerprint(url)):
                logger.debug(f"[SCOPE] Already visited: {url}")
                raise AlreadyVisitedError()

    def is_domain_allowed(self, host: str) -> bool:
        """Disallowed domains win; an empty allow list admits every other host."""
        host = (host or "").lower()
        if any(host == d.lower() for d in self.config.disallowed_domains):
            return False
        if not self.config.allowed_domains:
            return True
        return any(host == d.lower() for d in self.config.allowed_domains)

    def check_domain(self, host: str) -> None:
        """Check 6."""
        if not self.is_domain_allowed(host):
            logger.debug(f"[SCOPE] Forbidden domain: {host}")
            raise ForbiddenDomainError()

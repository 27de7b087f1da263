"""
Redirect Governor
=================
Decides, hop by hop, whether the HTTP backend follows a redirect.

The backend calls the governor with the request it is about to send and
the chain of requests already sent (oldest first). The governor returns
True to follow, False to stop (the redirect response itself becomes the
final response) or raises to fail the fetch.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from requests import PreparedRequest

from .errors import RedirectRefusedError
from .utils import host_of, hostname_of

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 10

_FRAMING_HEADERS = {"content-length", "transfer-encoding"}

RedirectHandler = Callable[[PreparedRequest, List[PreparedRequest]], bool]


def no_redirects(request: PreparedRequest, via: List[PreparedRequest]) -> bool:
    """Redirect handler that never follows."""
    return False


class RedirectGovernor:
    """
    Default redirect policy of a collector.

    - refuses hosts outside the collector's allowed domains
    - delegates to ``config.redirect_handler`` when one is set
    - otherwise caps the chain at ``MAX_REDIRECTS`` hops, copies the
      previous hop's headers and drops ``Authorization`` on host change
    """

    def __init__(self, config, scope):
        self.config = config
        self.scope = scope

    def __call__(self, request: PreparedRequest, via: List[PreparedRequest]) -> bool:
        hostname = hostname_of(request.url)
        if not self.scope.is_domain_allowed(hostname):
            raise RedirectRefusedError(hostname)

        handler: Optional[RedirectHandler] = self.config.redirect_handler
        if handler is not None:
            return handler(request, via)

        if len(via) >= MAX_REDIRECTS:
            logger.debug(f"[REDIRECT] Hop limit reached at {request.url}")
            return False

        last = via[-1]
        for name, value in last.headers.items():
            # body framing is computed per hop
            if name.lower() in _FRAMING_HEADERS:
                continue
            if name.lower() == "content-type" and request.body is None:
                continue
            request.headers[name] = value

        if host_of(request.url) != host_of(last.url):
            request.headers.pop("Authorization", None)

        logger.debug(f"[REDIRECT] {last.url} -> {request.url}")
        return True

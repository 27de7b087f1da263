"""
HTTP Backend
============
The fetch capability behind a collector, built on a ``requests.Session``.

Responsibilities:
    1. Pace requests per domain through ``LimitRule``s
    2. Serve / store GET responses from an on-disk cache
    3. Follow redirects hop by hop, asking the redirect governor each time
    4. Attach cookies from, and store cookies into, the storage cookie jar
    5. Bound response bodies to ``max_body_size`` bytes (truncating)

One backend is shared by a collector and all of its clones, so every
piece of mutable state here is guarded.
"""

from __future__ import annotations

import base64
import fnmatch
import hashlib
import json
import logging
import os
import random
import re
import threading
import time
from dataclasses import dataclass, field
from http.cookiejar import CookiePolicy
from itertools import cycle
from pathlib import Path
from typing import Callable, List, Optional, Pattern, Tuple
from urllib.parse import urljoin

import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from .cookies import StorageCookieJar
from .errors import NoPatternError
from .redirect import MAX_REDIRECTS
from .response import Response
from .utils import host_of

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
_READ_CHUNK = 64 * 1024

ProxyFunc = Callable[[requests.PreparedRequest], Optional[str]]
RedirectCheck = Callable[[requests.PreparedRequest, List[requests.PreparedRequest]], bool]


class _BlockAll(CookiePolicy):
    """Keeps the session's own jar empty; cookies live in the storage jar."""
    return_ok = set_ok = domain_return_ok = path_return_ok = lambda self, *args, **kwargs: False
    netscape = True
    rfc2965 = hide_cookie2 = False


# ---------------------------------------------------------------------------
# Limit rules
# ---------------------------------------------------------------------------

@dataclass
class LimitRule:
    """
    Pacing rule for the domains matching ``domain_regexp`` or ``domain_glob``.

    Attributes:
        domain_regexp: Regex matched against the request host
        domain_glob: Shell-style glob matched against the request host
        delay: Seconds to wait after each request before the slot is released
        random_delay: Upper bound of an extra random wait, in seconds
        parallelism: Maximum concurrent requests to matching domains
    """
    domain_regexp: str = ""
    domain_glob: str = ""
    delay: float = 0.0
    random_delay: float = 0.0
    parallelism: int = 1

    _compiled: Optional[Pattern] = field(init=False, repr=False, default=None)
    _slots: Optional[threading.BoundedSemaphore] = field(init=False, repr=False, default=None)

    def init(self) -> None:
        """Validate and compile the rule. Raises ``NoPatternError`` without a pattern."""
        if not self.domain_regexp and not self.domain_glob:
            raise NoPatternError()
        if self.domain_regexp:
            self._compiled = re.compile(self.domain_regexp)
        self._slots = threading.BoundedSemaphore(max(1, self.parallelism))

    def match(self, domain: str) -> bool:
        if self._compiled is not None:
            return self._compiled.search(domain) is not None
        if self.domain_glob:
            return fnmatch.fnmatchcase(domain, self.domain_glob)
        return False

    def acquire(self) -> None:
        self._slots.acquire()

    def release(self) -> None:
        """Release a slot after the configured delay."""
        pause = self.delay
        if self.random_delay > 0:
            pause += random.uniform(0, self.random_delay)
        if pause > 0:
            time.sleep(pause)
        self._slots.release()


# ---------------------------------------------------------------------------
# Proxy helpers
# ---------------------------------------------------------------------------

def round_robin_proxy_switcher(*proxy_urls: str) -> ProxyFunc:
    """Proxy function cycling through ``proxy_urls``, one per request."""
    if not proxy_urls:
        raise ValueError("at least one proxy URL is required")
    pool = cycle(proxy_urls)
    lock = threading.Lock()

    def _next_proxy(_request: requests.PreparedRequest) -> str:
        with lock:
            return next(pool)

    return _next_proxy


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class HTTPBackend:
    """
    requests-based transport with pacing, caching and redirect governance.
    """

    def __init__(self, jar: Optional[StorageCookieJar] = None, timeout: float = DEFAULT_TIMEOUT):
        self.session = self._create_session()
        self.jar = jar
        self.timeout = timeout
        self.proxy_func: Optional[ProxyFunc] = None
        self._rules: List[LimitRule] = []
        self._lock = threading.RLock()

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        # proxies come from proxy_func only
        session.trust_env = False
        session.cookies.set_policy(_BlockAll())
        return session

    def mount(self, adapter: BaseAdapter) -> None:
        """Route every http:// and https:// request through ``adapter``."""
        for prefix in ("http://", "https://"):
            self.session.mount(prefix, adapter)

    # ------------------------------------------------------------------
    # Limit rules
    # ------------------------------------------------------------------

    def limit(self, rule: LimitRule) -> None:
        rule.init()
        with self._lock:
            self._rules.append(rule)

    def limits(self, rules: List[LimitRule]) -> None:
        for rule in rules:
            self.limit(rule)

    def get_matching_rule(self, domain: str) -> Optional[LimitRule]:
        with self._lock:
            rules = list(self._rules)
        for rule in rules:
            if rule.match(domain):
                return rule
        return None

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def cache(
        self,
        request,
        max_body_size: int,
        cache_dir: str,
        check_redirect: Optional[RedirectCheck] = None,
    ) -> Response:
        """
        Fetch ``request`` through the on-disk cache.

        Only GET requests without ``Cache-Control: no-cache`` are cached;
        responses with a 5xx status are never stored.
        """
        if (
            not cache_dir
            or request.method != "GET"
            or request.headers.get("Cache-Control") == "no-cache"
        ):
            return self.do(request, max_body_size, check_redirect)

        digest = hashlib.sha1(request.url.encode("utf-8")).hexdigest()
        directory = Path(cache_dir) / digest[:2]
        filename = directory / digest

        if filename.exists():
            try:
                cached = json.loads(filename.read_text(encoding="utf-8"))
                logger.debug(f"[CACHE] Hit {request.url}")
                return Response(
                    status_code=cached["status_code"],
                    body=base64.b64decode(cached["body"]),
                    headers=cached["headers"],
                )
            except (OSError, ValueError, KeyError) as exc:
                logger.warning(f"[CACHE] Unreadable entry {filename}: {exc}")

        response = self.do(request, max_body_size, check_redirect)
        if response.status_code >= 500:
            return response

        directory.mkdir(parents=True, exist_ok=True)
        tmp = filename.with_name(filename.name + "~")
        tmp.write_text(json.dumps({
            "status_code": response.status_code,
            "headers": dict(response.headers),
            "body": base64.b64encode(response.body).decode("ascii"),
        }), encoding="utf-8")
        os.replace(tmp, filename)
        return response

    def do(
        self,
        request,
        max_body_size: int,
        check_redirect: Optional[RedirectCheck] = None,
    ) -> Response:
        """
        Send ``request`` (a ``collector.request.Request``), following
        redirects. After a followed redirect the request's ``url`` and
        ``headers`` are replaced by those of the final hop.

        Args:
            request: The request to send
            max_body_size: Body bytes kept; 0 keeps everything
            check_redirect: Called per hop with ``(next_request, via)``;
                without it at most ``MAX_REDIRECTS`` hops are followed
        """
        rule = self.get_matching_rule(host_of(request.url))
        if rule is not None:
            rule.acquire()
        try:
            return self._do(request, max_body_size, check_redirect)
        finally:
            if rule is not None:
                rule.release()

    def _do(self, request, max_body_size: int, check_redirect: Optional[RedirectCheck]) -> Response:
        prepared = self.session.prepare_request(requests.Request(
            method=request.method,
            url=request.url,
            headers=dict(request.headers),
            data=request.read_body(),
        ))

        proxy = self.proxy_func(prepared) if self.proxy_func else None
        if proxy:
            request.proxy_url = proxy
        proxies = {"http": proxy, "https": proxy} if proxy else None

        via: List[requests.PreparedRequest] = []
        while True:
            self._attach_cookies(prepared, first_hop=not via)
            resp = self.session.send(
                prepared,
                allow_redirects=False,
                stream=True,
                timeout=self.timeout,
                proxies=proxies,
            )
            self._store_cookies(prepared.url, resp)

            if not resp.is_redirect:
                break
            next_hop = self._next_hop(prepared, resp, request.get_body)
            if next_hop is None:
                break
            via.append(prepared)
            try:
                follow = self._should_follow(next_hop, via, check_redirect)
            except Exception:
                resp.close()
                raise
            if not follow:
                break
            resp.close()
            prepared = next_hop

        if via and prepared.url != request.url:
            request.url = prepared.url
            request.headers = CaseInsensitiveDict(prepared.headers)

        body = self._read_body(resp, max_body_size)
        return Response(
            status_code=resp.status_code,
            body=body,
            headers=dict(resp.headers),
        )

    @staticmethod
    def _should_follow(next_hop: requests.PreparedRequest, via: list, check_redirect: Optional[RedirectCheck]) -> bool:
        if check_redirect is not None:
            return check_redirect(next_hop, via)
        return len(via) < MAX_REDIRECTS

    def _next_hop(
        self,
        prepared: requests.PreparedRequest,
        resp: requests.Response,
        get_body: Optional[Callable[[], bytes]],
    ) -> Optional[requests.PreparedRequest]:
        """Build the request for the redirect target, or None when it cannot be sent."""
        target = urljoin(prepared.url, self.session.get_redirect_target(resp))
        method = prepared.method
        body = None
        status = resp.status_code

        if status == 303 and method != "HEAD":
            method = "GET"
        elif status in (301, 302) and method == "POST":
            method = "GET"
        elif status in (307, 308) and prepared.body is not None:
            if get_body is None:
                logger.debug(f"[REDIRECT] Body of {prepared.url} cannot be resent; stopping")
                return None
            body = get_body()

        headers = CaseInsensitiveDict(prepared.headers)
        for name in ("Content-Length", "Transfer-Encoding"):
            headers.pop(name, None)
        if body is None:
            headers.pop("Content-Type", None)
        if host_of(target) != host_of(prepared.url):
            headers.pop("Authorization", None)
            headers.pop("Cookie", None)

        return requests.Request(method=method, url=target, headers=dict(headers), data=body).prepare()

    def _attach_cookies(self, prepared: requests.PreparedRequest, first_hop: bool) -> None:
        if self.jar is None:
            return
        header = self.jar.cookie_header(prepared.url)
        existing = prepared.headers.get("Cookie")
        if first_hop and existing:
            header = f"{existing}; {header}" if header else existing
        if header:
            prepared.headers["Cookie"] = header
        else:
            prepared.headers.pop("Cookie", None)

    def _store_cookies(self, url: str, resp: requests.Response) -> None:
        if self.jar is None:
            return
        received = list(resp.cookies)
        if received:
            self.jar.set_cookies(url, received)

    @staticmethod
    def _read_body(resp: requests.Response, max_body_size: int) -> bytes:
        try:
            if max_body_size <= 0:
                return resp.content
            chunks = []
            remaining = max_body_size
            for chunk in resp.iter_content(chunk_size=_READ_CHUNK):
                if len(chunk) >= remaining:
                    chunks.append(chunk[:remaining])
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
            return b"".join(chunks)
        finally:
            resp.close()

    def fetch_robots(self, url: str, user_agent: str) -> Tuple[int, str]:
        """Plain GET used by the robots cache; bypasses hooks and scope checks."""
        resp = self.session.get(url, headers={"User-Agent": user_agent}, timeout=self.timeout)
        return resp.status_code, resp.text

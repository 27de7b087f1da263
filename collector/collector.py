"""
Collector
=========
The orchestrator: admits requests, fetches them and runs the hook
pipeline over the results.

Lifecycle of one request:

    admit (scope, dedup, domain, robots)
      → request hooks (may abort)
      → fetch (redirects governed hop by hop)
      → response hooks → HTML hooks → XML hooks → scraped hooks

A fetch failure, or a status code >= 203 while
``parse_http_error_response`` is off, runs the error hooks and ends the
request. HTML/XML stage failures run the error hooks too, but the
scraped hooks still run before the failure is raised.

Sync mode runs the whole pipeline on the caller's thread and raises the
terminal error. Async mode admits the request on the caller's thread and
then runs the fetch and hooks on a thread of its own; the entry point
returns ``None`` and failures are only visible to error hooks.

A clone shares the storage, HTTP backend, robots cache and lock of its
parent; it gets its own hooks, counters and wait group.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
from dataclasses import replace
from http.cookiejar import Cookie
from typing import Callable, Dict, List, Optional, Union
from urllib.parse import urlparse

import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from .context import CancelToken, Context
from .cookies import StorageCookieJar
from .errors import CollectorError, HTTPStatusError, InvalidURLError, NoCookieJarError
from .hooks import HookRegistry
from .http_backend import HTTPBackend, LimitRule, ProxyFunc, round_robin_proxy_switcher
from .redirect import RedirectGovernor, RedirectHandler
from .request import Body, Request
from .response import Response
from .robots import RobotsCache
from .run_config import CONFIG_FIELDS, CollectorConfig
from .scope_filter import ScopeFilter
from .storage import InMemoryStorage, Storage
from .utils import (
    AtomicCounter, RWLock, WaitGroup,
    create_form_body, create_multipart_body, hostname_of, url_fingerprint,
)

logger = logging.getLogger(__name__)

# Source of Collector.id; only the constructor and clone() draw from it
_collector_ids = AtomicCounter()

# Errors an entry point expects from the pipeline itself
_PIPELINE_ERRORS = (CollectorError, requests.RequestException)


class Collector:
    """
    Hook-driven fetch-and-extract engine.

    Args:
        config: Base configuration (default: ``CollectorConfig()``)
        storage: Visited-set and cookie storage (default: ``InMemoryStorage``)
        id: Collector id (default: next value of a process-wide counter)
        **options: Any ``CollectorConfig`` field, overriding ``config``

    ``COLLECTOR_*`` environment variables are applied last.

    Example::

        c = Collector(allowed_domains=["example.com"], max_depth=2)

        @c.on_html("a[href]")
        def follow(e):
            e.request.visit(e.attr("href"))

        c.visit("https://example.com/")
    """

    def __init__(
        self,
        config: Optional[CollectorConfig] = None,
        storage: Optional[Storage] = None,
        id: Optional[int] = None,
        **options,
    ):
        unknown = set(options) - CONFIG_FIELDS
        if unknown:
            raise TypeError(f"Unknown collector option(s): {', '.join(sorted(unknown))}")

        self.config = replace(config) if config is not None else CollectorConfig()
        for name, value in options.items():
            setattr(self.config, name, value)
        self.config.update_from_env()
        self.config.normalise()

        self.id = id if id is not None else _collector_ids.increment()
        self._lock = RWLock()
        self._hooks = HookRegistry(self._lock)
        self._robots = RobotsCache(self._lock)
        self._request_count = AtomicCounter()
        self._response_count = AtomicCounter()
        self._wg = WaitGroup()
        self.scope = ScopeFilter(self.config)
        self._governor = RedirectGovernor(self.config, self.scope)

        self.storage = storage or InMemoryStorage()
        self.storage.init()
        self.backend = HTTPBackend(timeout=self.config.timeout_seconds)
        if not self.config.disable_cookies:
            self.backend.jar = StorageCookieJar(self.storage)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def visit(self, url: str, token: Optional[CancelToken] = None) -> None:
        """GET ``url`` and run the pipeline over the response."""
        return self._scrape(url, "GET", 1, None, None, None, True, token)

    def post(self, url: str, data: Dict[str, str], token: Optional[CancelToken] = None) -> None:
        """POST ``data`` to ``url`` as a URL-encoded form."""
        return self._scrape(url, "POST", 1, create_form_body(data), None, None, True, token)

    def post_raw(self, url: str, data: bytes, token: Optional[CancelToken] = None) -> None:
        return self._scrape(url, "POST", 1, data, None, None, True, token)

    def post_multipart(self, url: str, parts: Dict[str, bytes], token: Optional[CancelToken] = None) -> None:
        """POST named binary ``parts`` to ``url`` as ``multipart/form-data``."""
        return self._post_multipart(url, parts, 1, None, token)

    def request(
        self,
        method: str,
        url: str,
        body: Body = None,
        ctx: Optional[Context] = None,
        headers: Optional[Dict[str, str]] = None,
        token: Optional[CancelToken] = None,
    ) -> None:
        """Generic entry point: any method, body, context bag and headers."""
        return self._scrape(url, method, 1, body, ctx, headers, True, token)

    def _post_multipart(
        self,
        url: str,
        parts: Dict[str, bytes],
        depth: int,
        ctx: Optional[Context],
        token: Optional[CancelToken],
    ) -> None:
        body, content_type = create_multipart_body(parts)
        headers = {
            "Content-Type": content_type,
            "User-Agent": self.config.user_agent,
        }
        return self._scrape(url, "POST", depth, body, ctx, headers, True, token)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _scrape(
        self,
        url: str,
        method: str,
        depth: int,
        body: Body,
        ctx: Optional[Context],
        headers: Optional[Dict[str, str]],
        check_revisit: bool,
        token: Optional[CancelToken],
    ) -> None:
        token = token or CancelToken()
        try:
            url = self._admit(url, method, depth, check_revisit)
        except _PIPELINE_ERRORS as err:
            if not self.config.is_async:
                raise
            logger.debug(f"[REQUEST] Not admitted {url}: {err}")
            return None

        hdrs = CaseInsensitiveDict(headers or {})
        if "User-Agent" not in hdrs:
            hdrs["User-Agent"] = self.config.user_agent

        self._wg.add(1)
        if self.config.is_async:
            threading.Thread(
                target=self._fetch_in_thread,
                args=(url, method, depth, body, ctx, hdrs, token),
                name=f"collector-{self.id}",
                daemon=True,
            ).start()
            return None
        return self._fetch(url, method, depth, body, ctx, hdrs, token)

    def _admit(self, url: str, method: str, depth: int, check_revisit: bool) -> str:
        """Run every admission check; return the URL to fetch."""
        try:
            scheme = urlparse(url).scheme
            hostname = hostname_of(url if scheme else f"http://{url}")
        except ValueError as err:
            raise InvalidURLError(url, str(err)) from err

        self.scope.request_check(url, method, depth, check_revisit, self.storage)
        if not scheme:
            url = f"http://{url}"
        self.scope.check_domain(hostname)

        if not self.config.ignore_robots_txt:
            self._robots.check(url, self.config.user_agent, self._fetch_robots)
        return url

    def _fetch_robots(self, robots_url: str):
        return self.backend.fetch_robots(robots_url, self.config.user_agent)

    def _fetch_in_thread(self, *args) -> None:
        try:
            self._fetch(*args)
        except _PIPELINE_ERRORS as err:
            logger.debug(f"[ERROR] Async request to {args[0]} failed: {err}")
        except Exception:
            logger.exception(f"[ERROR] Hook failure in async request to {args[0]}")

    def _fetch(
        self,
        url: str,
        method: str,
        depth: int,
        body: Body,
        ctx: Optional[Context],
        headers: CaseInsensitiveDict,
        token: CancelToken,
    ) -> None:
        try:
            ctx = ctx if ctx is not None else Context()
            request = Request(
                url,
                method=method,
                headers=headers,
                body=body,
                depth=depth,
                ctx=ctx,
                id=self._request_count.increment(),
                collector=self,
                token=token,
            )

            request._abortable = True
            try:
                self._hooks.handle_on_request(request)
            finally:
                request._abortable = False
            if request.aborted:
                logger.debug(f"[REQUEST] Aborted id={request.id} {request.url}")
                return None
            token.raise_if_cancelled()

            if method == "POST" and "Content-Type" not in request.headers:
                request.headers["Content-Type"] = "application/x-www-form-urlencoded"
            if "Accept" not in request.headers:
                request.headers["Accept"] = "*/*"

            try:
                response = self.backend.cache(
                    request, self.config.max_body_size, self.config.cache_dir, self._governor,
                )
            except (requests.RequestException, CollectorError, OSError) as err:
                self._hooks.handle_on_error(None, err, request, ctx)
                raise

            response.request = request
            response.ctx = ctx
            if response.status_code >= 203 and not self.config.parse_http_error_response:
                err = HTTPStatusError(response.status_code)
                self._hooks.handle_on_error(response, err, request, ctx)
                raise err

            self._response_count.increment()
            response.fix_charset(self.config.detect_charset, request.response_character_encoding)

            self._hooks.handle_on_response(response)
            token.raise_if_cancelled()

            stage_error = self._run_stage(self._hooks.handle_on_html, response)
            token.raise_if_cancelled()
            stage_error = self._run_stage(self._hooks.handle_on_xml, response) or stage_error
            token.raise_if_cancelled()

            self._hooks.handle_on_scraped(response)
            token.raise_if_cancelled()

            if stage_error is not None:
                raise stage_error
            return None
        finally:
            self._wg.done()

    def _run_stage(self, stage: Callable[[Response], None], response: Response) -> Optional[Exception]:
        """Run an element stage; a failure goes to the error hooks and is returned."""
        try:
            stage(response)
        except Exception as err:
            self._hooks.handle_on_error(response, err, response.request, response.ctx)
            return err
        return None

    # ------------------------------------------------------------------
    # Hook registration
    # ------------------------------------------------------------------

    def on_request(self, fn):
        """Register ``fn(request)``, called before every request is sent."""
        return self._hooks.on_request(fn)

    def on_response(self, fn):
        """Register ``fn(response)``, called after every response is received."""
        return self._hooks.on_response(fn)

    def on_html(self, selector: str, fn=None):
        """
        Register ``fn(element)`` for every HTML element matching the CSS
        ``selector``. Usable as a decorator: ``@c.on_html("a[href]")``.
        """
        return self._hooks.on_html(selector, fn)

    def off_html(self, selector: str) -> bool:
        return self._hooks.off_html(selector)

    def on_xml(self, query: str, fn=None):
        """Register ``fn(element)`` for every node selected by the XPath ``query``."""
        return self._hooks.on_xml(query, fn)

    def off_xml(self, query: str) -> bool:
        return self._hooks.off_xml(query)

    def on_error(self, fn):
        """Register ``fn(response, error)``, called when a request fails."""
        return self._hooks.on_error(fn)

    def on_scraped(self, fn):
        """Register ``fn(response)``, called after the HTML and XML hooks."""
        return self._hooks.on_scraped(fn)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def limit(self, rule: LimitRule) -> None:
        """Add a pacing rule. Raises ``NoPatternError`` for a rule without a pattern."""
        self.backend.limit(rule)

    def limits(self, rules: List[LimitRule]) -> None:
        self.backend.limits(rules)

    def set_proxy(self, proxy_url: str) -> None:
        """Send every request through ``proxy_url``."""
        self.backend.proxy_func = round_robin_proxy_switcher(proxy_url)

    def set_proxy_func(self, fn: ProxyFunc) -> None:
        """Pick a proxy per request: ``fn(prepared_request) -> proxy URL or None``."""
        self.backend.proxy_func = fn

    def with_transport(self, adapter: BaseAdapter) -> None:
        """
        Send every request through ``adapter`` (retries, connection pools,
        test doubles). The backend is shared, so clones use it too.
        """
        self.backend.mount(adapter)

    def set_redirect_handler(self, fn: Optional[RedirectHandler]) -> None:
        self.config.redirect_handler = fn

    def set_request_timeout(self, seconds: float) -> None:
        self.config.timeout_seconds = seconds
        self.backend.timeout = seconds

    def disable_cookies(self) -> None:
        """Stop sending and storing cookies (for this collector and its clones)."""
        self.config.disable_cookies = True
        self.backend.jar = None

    def set_storage(self, storage: Storage) -> None:
        """Replace the storage; cookies are re-bound to it."""
        storage.init()
        self.storage = storage
        self.backend.jar = StorageCookieJar(storage)

    # ------------------------------------------------------------------
    # Cookies & visits
    # ------------------------------------------------------------------

    def cookies(self, url: str) -> List[Cookie]:
        """Cookies that would be sent to ``url``; ``[]`` when cookies are disabled."""
        if self.backend.jar is None:
            return []
        return self.backend.jar.cookies(url)

    def set_cookies(self, url: str, cookies: List[Cookie]) -> None:
        if self.backend.jar is None:
            raise NoCookieJarError()
        self.backend.jar.set_cookies(url, cookies)

    def has_visited(self, url: str) -> bool:
        """True if a GET of exactly ``url`` was admitted before."""
        return self.storage.is_visited(url_fingerprint(url))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clone(self) -> "Collector":
        """
        New collector with the same configuration, storage, backend and
        robots cache, but no hooks and fresh counters.
        """
        c = Collector.__new__(Collector)
        c.config = replace(self.config)
        c.id = _collector_ids.increment()
        c._lock = self._lock
        c._hooks = HookRegistry(self._lock)
        c._robots = self._robots
        c._request_count = AtomicCounter()
        c._response_count = AtomicCounter()
        c._wg = WaitGroup()
        c.scope = ScopeFilter(c.config)
        c._governor = RedirectGovernor(c.config, c.scope)
        c.storage = self.storage
        c.backend = self.backend
        return c

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every request of this collector has finished."""
        return self._wg.wait(timeout)

    def unmarshal_request(self, data: Union[str, bytes]) -> Request:
        """Rebuild a request serialised by ``Request.marshal()``; it gets a fresh id."""
        payload = json.loads(data)
        headers = {
            name: ", ".join(values) if isinstance(values, list) else values
            for name, values in (payload.get("headers") or {}).items()
        }
        body = base64.b64decode(payload.get("body") or "")
        return Request(
            payload["url"],
            method=payload.get("method") or "GET",
            headers=headers,
            body=body or None,
            ctx=Context(payload.get("ctx") or {}),
            id=self._request_count.increment(),
            collector=self,
        )

    def close(self) -> None:
        """Close the HTTP session (shared with clones)."""
        self.backend.session.close()

    @property
    def request_count(self) -> int:
        return self._request_count.value

    @property
    def response_count(self) -> int:
        return self._response_count.value

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.wait()
        self.close()

    def __str__(self) -> str:
        hooks = self._hooks.counts()
        return (
            f"Requests made: {self.request_count} ({self.response_count} responses) | "
            f"Callbacks: OnRequest: {hooks['request']}, OnHTML: {hooks['html']}, "
            f"OnXML: {hooks['xml']}, OnResponse: {hooks['response']}, "
            f"OnError: {hooks['error']}, OnScraped: {hooks['scraped']}"
        )

    def __repr__(self) -> str:
        return f"<Collector id={self.id} async={self.config.is_async}>"

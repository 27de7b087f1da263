"""
Hook Registry & Dispatcher
==========================
Holds the six kinds of user hooks of one collector and runs them over a
request's pipeline stages.

Hook signatures:

    request   fn(request)
    response  fn(response)
    html      fn(element: HTMLElement)      keyed by CSS selector
    xml       fn(element: XMLElement)       keyed by XPath query
    error     fn(response, error)
    scraped   fn(response)

Registries are mutated under the collector group's shared write lock.
Dispatch copies the relevant list under the read lock and runs hooks
without holding it, so a hook may register further hooks or schedule
new requests on the same collector.

Every dispatcher polls the request's cancellation token before each
hook and stops the stage at the first cancelled poll.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Tuple

import lxml.html
from bs4 import BeautifulSoup
from lxml import etree

from .context import Context
from .elements import HTMLElement, XMLElement
from .response import Response
from .utils import RWLock

logger = logging.getLogger(__name__)

RequestHook = Callable[[Any], Any]
ResponseHook = Callable[[Response], Any]
HTMLHook = Callable[[HTMLElement], Any]
XMLHook = Callable[[XMLElement], Any]
ErrorHook = Callable[[Response, Exception], Any]
ScrapedHook = Callable[[Response], Any]


class HookRegistry:
    """Per-collector hook lists. Never shared between clones."""

    def __init__(self, lock: Optional[RWLock] = None):
        self._lock = lock or RWLock()
        self._request: List[RequestHook] = []
        self._response: List[ResponseHook] = []
        self._html: List[Tuple[str, HTMLHook]] = []
        self._xml: List[Tuple[str, XMLHook]] = []
        self._error: List[ErrorHook] = []
        self._scraped: List[ScrapedHook] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on_request(self, fn: RequestHook) -> RequestHook:
        with self._lock.write():
            self._request.append(fn)
        return fn

    def on_response(self, fn: ResponseHook) -> ResponseHook:
        with self._lock.write():
            self._response.append(fn)
        return fn

    def on_html(self, selector: str, fn: Optional[HTMLHook] = None):
        """
        Register ``fn`` for every element matching ``selector``.
        Without ``fn`` returns a decorator.
        """
        if fn is None:
            return lambda f: self.on_html(selector, f)
        with self._lock.write():
            self._html.append((selector, fn))
        return fn

    def off_html(self, selector: str) -> bool:
        """Remove the first hook registered for ``selector``. Returns True if one was removed."""
        with self._lock.write():
            for i, (registered, _) in enumerate(self._html):
                if registered == selector:
                    del self._html[i]
                    return True
        return False

    def on_xml(self, query: str, fn: Optional[XMLHook] = None):
        if fn is None:
            return lambda f: self.on_xml(query, f)
        with self._lock.write():
            self._xml.append((query, fn))
        return fn

    def off_xml(self, query: str) -> bool:
        with self._lock.write():
            for i, (registered, _) in enumerate(self._xml):
                if registered == query:
                    del self._xml[i]
                    return True
        return False

    def on_error(self, fn: ErrorHook) -> ErrorHook:
        with self._lock.write():
            self._error.append(fn)
        return fn

    def on_scraped(self, fn: ScrapedHook) -> ScrapedHook:
        with self._lock.write():
            self._scraped.append(fn)
        return fn

    def _snapshot(self, hooks: list) -> list:
        with self._lock.read():
            return list(hooks)

    def counts(self) -> dict:
        """Number of registered hooks per kind."""
        with self._lock.read():
            return {
                "request": len(self._request),
                "response": len(self._response),
                "html": len(self._html),
                "xml": len(self._xml),
                "error": len(self._error),
                "scraped": len(self._scraped),
            }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle_on_request(self, request) -> None:
        logger.debug(f"[REQUEST] {request.method} {request.url} (id={request.id}, depth={request.depth})")
        for fn in self._snapshot(self._request):
            if request.token.cancelled:
                return
            fn(request)

    def handle_on_response(self, response: Response) -> None:
        logger.debug(f"[RESPONSE] {response.status_code} {response.request.url}")
        for fn in self._snapshot(self._response):
            if response.request.token.cancelled:
                return
            fn(response)

    def handle_on_html(self, response: Response) -> None:
        """
        Run HTML hooks over the elements matched by their selectors.

        Selectors run in registration order, elements in document order.
        A cancellation ends the whole stage.
        """
        hooks = self._snapshot(self._html)
        if not hooks or "html" not in response.content_type.lower():
            return

        soup = BeautifulSoup(response.text, "lxml", multi_valued_attributes=None)
        base = soup.select_one("base[href]")
        if base is not None:
            response.request.base_url = base["href"]

        token = response.request.token
        for selector, fn in hooks:
            matches = soup.select(selector)
            logger.debug(f"[HTML] {len(matches)} element(s) for '{selector}' on {response.request.url}")
            for i, tag in enumerate(matches):
                if token.cancelled:
                    return
                fn(HTMLElement(response, tag, i))

    def handle_on_xml(self, response: Response) -> None:
        """
        Run XML hooks over the nodes selected by their XPath queries.

        HTML documents are parsed with ``lxml.html``, XML documents with a
        recovering ``lxml.etree`` parser. Queries that evaluate to a
        scalar (``count(...)``, ``boolean(...)``) select nothing.
        """
        hooks = self._snapshot(self._xml)
        if not hooks or not response.body:
            return

        content_type = response.content_type.lower()
        if "html" in content_type:
            is_html = True
            parser = lxml.html.HTMLParser(encoding=response.charset or None)
            try:
                doc = lxml.html.document_fromstring(response.body, parser=parser)
            except etree.ParserError:
                # whitespace or comment only
                logger.debug(f"[XML] Empty HTML document at {response.request.url}")
                return
            base = doc.xpath("//base/@href")
            if base:
                response.request.base_url = str(base[0])
        elif "xml" in content_type:
            is_html = False
            parser = etree.XMLParser(recover=True, encoding=response.charset or None)
            doc = etree.fromstring(response.body, parser=parser)
            if doc is None:
                logger.debug(f"[XML] Nothing parsable in {response.request.url}")
                return
        else:
            return

        token = response.request.token
        for query, fn in hooks:
            result = doc.xpath(query)
            if not isinstance(result, list):
                continue
            logger.debug(f"[XML] {len(result)} node(s) for '{query}' on {response.request.url}")
            for node in result:
                if token.cancelled:
                    return
                fn(XMLElement(response, node, is_html))

    def handle_on_error(
        self,
        response: Optional[Response],
        err: Exception,
        request,
        ctx: Optional[Context],
    ) -> None:
        """Run error hooks, synthesising a bare response when none was received."""
        if response is None:
            response = Response(request=request, ctx=ctx)
        if response.request is None:
            response.request = request
        if response.ctx is None:
            response.ctx = ctx
        logger.debug(f"[ERROR] {request.url}: {err}")
        for fn in self._snapshot(self._error):
            if request.token.cancelled:
                return
            fn(response, err)

    def handle_on_scraped(self, response: Response) -> None:
        logger.debug(f"[SCRAPED] {response.request.url}")
        for fn in self._snapshot(self._scraped):
            if response.request.token.cancelled:
                return
            fn(response)

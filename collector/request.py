"""
Request Model
=============
A request flowing through a collector's pipeline.

Requests are created by the collector at dispatch time; hooks receive
them, may tweak headers or abort them, and may schedule follow-up
requests through ``visit`` / ``post`` / ``request``. Follow-ups go through
the full admission pipeline again at ``depth + 1``.

The context bag is **not** inherited by follow-ups: pass ``ctx=`` to
carry state across a hop.

Follow-up helpers never raise pipeline errors (rejections, transport
failures, error statuses): they return the error, or None on success,
so a hook iterating over links keeps going past a duplicate. The
error has already been through the error hooks when it came from the
fetch.
"""

from __future__ import annotations

import base64
import io
import json
import logging
from typing import IO, TYPE_CHECKING, Callable, Dict, List, Optional, Union
from urllib.parse import urldefrag, urljoin

import requests
from requests.structures import CaseInsensitiveDict

from .context import CancelToken, Context
from .errors import CollectorError
from .utils import create_form_body

if TYPE_CHECKING:
    from .collector import Collector

logger = logging.getLogger(__name__)

Body = Union[bytes, str, IO[bytes], None]


def _body_factory(body: Body) -> Optional[Callable[[], bytes]]:
    """Return a callable that materialises ``body`` again, when it is backed by memory."""
    if body is None:
        return None
    if isinstance(body, str):
        data = body.encode("utf-8")
        return lambda: data
    if isinstance(body, (bytes, bytearray)):
        data = bytes(body)
        return lambda: data
    if isinstance(body, io.BytesIO):
        data = body.getvalue()[body.tell():]
        return lambda: data
    return None


class Request:
    """
    One HTTP request and its pipeline state.

    Attributes:
        url: Absolute URL (updated to the final URL after redirects)
        method: HTTP method
        headers: Case-insensitive header mapping
        depth: 1 for entry-point requests, parent depth + 1 for follow-ups
        ctx: Context bag, shared with the response
        id: Per-collector sequence number, starting at 1
        proxy_url: Proxy used for the request, if any
        base_url: ``<base href>`` of the response document, if any
        response_character_encoding: Forces the charset used to decode the body
        token: Cancellation token of the call that created the request
    """

    def __init__(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Body = None,
        depth: int = 1,
        ctx: Optional[Context] = None,
        id: int = 0,
        collector: Optional["Collector"] = None,
        token: Optional[CancelToken] = None,
    ):
        self.url = url
        self.method = method
        self.headers = CaseInsensitiveDict(headers or {})
        self.depth = depth
        self.ctx = ctx if ctx is not None else Context()
        self.id = id
        self.proxy_url = ""
        self.base_url: Optional[str] = None
        self.response_character_encoding = ""
        self.token = token or CancelToken()
        self.collector = collector

        self._body = body
        self.get_body = _body_factory(body)
        self._aborted = False
        self._abortable = False

    # ------------------------------------------------------------------
    # Body
    # ------------------------------------------------------------------

    @property
    def body(self) -> Body:
        return self._body

    def read_body(self) -> Body:
        """
        Body to hand to the transport: fresh bytes for memory-backed bodies,
        the original stream (readable once) otherwise.
        """
        if self.get_body is not None:
            return self.get_body()
        return self._body

    # ------------------------------------------------------------------
    # Abort
    # ------------------------------------------------------------------

    def abort(self) -> None:
        """Cancel the HTTP request. Only effective inside a request hook."""
        if not self._abortable:
            logger.warning(f"[REQUEST] abort() ignored outside a request hook (id={self.id})")
            return
        self._aborted = True

    @property
    def aborted(self) -> bool:
        return self._aborted

    # ------------------------------------------------------------------
    # Follow-ups
    # ------------------------------------------------------------------

    def absolute_url(self, url: str) -> str:
        """
        Resolve ``url`` against the document base (``<base href>`` when
        present, else the request URL). Fragments are dropped and
        fragment-only links resolve to ``""``.
        """
        if url.startswith("#"):
            return ""
        base = self.url
        if self.base_url:
            base = urljoin(self.url, self.base_url)
        try:
            absolute = urljoin(base, url.strip())
        except ValueError:
            return ""
        return urldefrag(absolute)[0]

    def _follow(self, submit: Callable[[], None]) -> Optional[Exception]:
        try:
            submit()
        except (CollectorError, requests.RequestException) as err:
            logger.debug(f"[REQUEST] Follow-up from id={self.id} failed: {err}")
            return err
        return None

    def visit(self, url: str, ctx: Optional[Context] = None) -> Optional[Exception]:
        """Schedule a GET of ``url`` (resolved against this request) one level deeper."""
        return self._follow(lambda: self.collector._scrape(
            self.absolute_url(url), "GET", self.depth + 1, None, ctx, None, True, self.token,
        ))

    def post(self, url: str, data: Dict[str, str], ctx: Optional[Context] = None) -> Optional[Exception]:
        return self._follow(lambda: self.collector._scrape(
            self.absolute_url(url), "POST", self.depth + 1, create_form_body(data), ctx, None, True, self.token,
        ))

    def post_raw(self, url: str, data: bytes, ctx: Optional[Context] = None) -> Optional[Exception]:
        return self._follow(lambda: self.collector._scrape(
            self.absolute_url(url), "POST", self.depth + 1, data, ctx, None, True, self.token,
        ))

    def post_multipart(self, url: str, parts: Dict[str, bytes], ctx: Optional[Context] = None) -> Optional[Exception]:
        return self._follow(lambda: self.collector._post_multipart(
            self.absolute_url(url), parts, self.depth + 1, ctx, self.token,
        ))

    def request(
        self,
        method: str,
        url: str,
        body: Body = None,
        ctx: Optional[Context] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[Exception]:
        return self._follow(lambda: self.collector._scrape(
            self.absolute_url(url), method, self.depth + 1, body, ctx, headers, True, self.token,
        ))

    def retry(self) -> Optional[Exception]:
        """Submit this request again, bypassing the revisit check."""
        return self._follow(lambda: self.collector._scrape(
            self.url, self.method, self.depth, self.read_body(), self.ctx,
            dict(self.headers), False, self.token,
        ))

    def do(self) -> Optional[Exception]:
        """Submit this request again through the full admission pipeline."""
        return self._follow(lambda: self.collector._scrape(
            self.url, self.method, self.depth, self.read_body(), self.ctx,
            dict(self.headers), not self.collector.config.allow_url_revisit, self.token,
        ))

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        """
        Cross-process representation. The body is read to bytes, so a
        stream-backed request cannot be sent afterwards.
        """
        body = self.read_body()
        if hasattr(body, "read"):
            body = body.read()
        if isinstance(body, str):
            body = body.encode("utf-8")
        headers: Dict[str, List[str]] = {k: [v] for k, v in self.headers.items()}
        ctx = {k: v for k, v in self.ctx.to_dict().items() if isinstance(v, str)}
        return {
            "method": self.method,
            "url": self.url,
            "body": base64.b64encode(body or b"").decode("ascii"),
            "headers": headers,
            "ctx": ctx,
        }

    def marshal(self) -> str:
        return json.dumps(self.to_dict())

    def __repr__(self) -> str:
        return f"<Request id={self.id} {self.method} {self.url} depth={self.depth}>"

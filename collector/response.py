"""
Response Model
==============
What the HTTP backend hands back to the collector, decorated with the
originating request and its context bag before hooks see it.
"""

from __future__ import annotations

import codecs
import logging
import re
from email.message import Message
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional
from urllib.parse import urlparse

from charset_normalizer import from_bytes
from requests.structures import CaseInsensitiveDict

from .utils import sanitize_file_name

if TYPE_CHECKING:
    from .context import Context
    from .request import Request

logger = logging.getLogger(__name__)

_CHARSET_RE = re.compile(r"charset=([^\s;]+)", re.I)

# Binary payloads are never transcoded
_BINARY_TYPES = ("image/", "video/", "audio/", "font/")


def _declared_charset(content_type: str) -> str:
    match = _CHARSET_RE.search(content_type or "")
    return match.group(1).strip(" \"'").lower() if match else ""


def _codec_name(charset: str) -> str:
    """Python codec name of ``charset``, ``""`` when unknown."""
    try:
        return codecs.lookup(charset).name if charset else ""
    except LookupError:
        return ""


class Response:
    """HTTP response of a collector request."""

    def __init__(
        self,
        status_code: int = 0,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        request: Optional["Request"] = None,
        ctx: Optional["Context"] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.headers = CaseInsensitiveDict(headers or {})
        self.request = request
        self.ctx = ctx
        # set once the body has been transcoded
        self.encoding = ""

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")

    @property
    def charset(self) -> str:
        """
        Charset of the body as it stands: ``"utf-8"`` once transcoded, else
        the declared one. Charsets Python does not know read as ``""``.
        """
        if self.encoding:
            return self.encoding
        declared = _declared_charset(self.content_type)
        return declared if _codec_name(declared) else ""

    @property
    def text(self) -> str:
        """Body decoded with the declared charset (UTF-8 when none is declared)."""
        return self.body.decode(self.charset or "utf-8", errors="replace")

    def save(self, file_name: str) -> Path:
        """Write the body to ``file_name``."""
        path = Path(file_name)
        path.write_bytes(self.body)
        return path

    def file_name(self) -> str:
        """
        Sanitised file name for the body: the ``Content-Disposition``
        filename when present, else derived from the request URL.
        """
        disposition = self.headers.get("Content-Disposition")
        if disposition:
            msg = Message()
            msg["content-disposition"] = disposition
            name = msg.get_param("filename", header="content-disposition")
            if name:
                return sanitize_file_name(str(name))

        parsed = urlparse(self.request.url)
        if parsed.query:
            return sanitize_file_name(f"{parsed.path}_{parsed.query}")
        return sanitize_file_name(parsed.path.lstrip("/"))

    def fix_charset(self, detect_charset: bool, default_encoding: str = "") -> None:
        """
        Transcode the body to UTF-8.

        Args:
            detect_charset: Guess the charset when the response declares none
            default_encoding: Charset forced by the request; wins over headers

        A charset unknown to Python's codec registry leaves the body as it
        is, with a warning.
        """
        if not self.body:
            return

        if default_encoding:
            self._transcode(default_encoding)
            return

        content_type = self.content_type.lower()
        if any(t in content_type for t in _BINARY_TYPES):
            return

        charset = _declared_charset(content_type)
        if not charset:
            if not detect_charset:
                return
            best = from_bytes(self.body).best()
            if best is None:
                return
            charset = best.encoding
            logger.debug(f"[RESPONSE] Detected charset {charset}")

        self._transcode(charset)

    def _transcode(self, charset: str) -> None:
        codec = _codec_name(charset)
        if not codec:
            logger.warning(f"[RESPONSE] Unknown charset '{charset}'; body left undecoded")
            return
        if codec != "utf-8":
            self.body = self.body.decode(codec, errors="replace").encode("utf-8")
        self.encoding = "utf-8"

    def __repr__(self) -> str:
        url = self.request.url if self.request is not None else "?"
        return f"<Response [{self.status_code}] {url}>"

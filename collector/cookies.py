"""
Storage Cookie Jar
==================
Adapts a ``Storage`` backend into the cookie jar used by the HTTP backend.

- ``set_cookies`` merges: incoming cookies win on name collision, stored
  cookies with other names are kept.
- ``cookies`` filters: expired cookies and (on non-https URLs) secure
  cookies are dropped.

Domain/path scoping is left to the storage's own keying (per host).
"""

from __future__ import annotations

import logging
import threading
import time
from http.cookiejar import Cookie
from typing import Iterable, List
from urllib.parse import urlparse

from .storage import Storage, contains_cookie, stringify_cookies, unstringify_cookies

logger = logging.getLogger(__name__)


class StorageCookieJar:
    """Cookie jar whose only state lives in a ``Storage``."""

    def __init__(self, storage: Storage):
        self.storage = storage
        self._lock = threading.RLock()

    def set_cookies(self, url: str, cookies: Iterable[Cookie]) -> None:
        merged = list(cookies)
        if not merged:
            return
        with self._lock:
            for existing in unstringify_cookies(self.storage.cookies(url)):
                if not contains_cookie(merged, existing.name):
                    merged.append(existing)
            self.storage.set_cookies(url, stringify_cookies(merged))
        logger.debug(f"[COOKIES] Stored {len(merged)} cookie(s) for {url}")

    def cookies(self, url: str) -> List[Cookie]:
        secure_scheme = urlparse(url).scheme == "https"
        now = time.time()
        kept = []
        for c in unstringify_cookies(self.storage.cookies(url)):
            if c.is_expired(now):
                continue
            if c.secure and not secure_scheme:
                continue
            kept.append(c)
        return kept

    def cookie_header(self, url: str) -> str:
        """Value for a ``Cookie`` request header, ``""`` when there is nothing to send."""
        return "; ".join(f"{c.name}={c.value}" for c in self.cookies(url))

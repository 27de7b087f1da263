"""
Storage
=======
Contract for the state a collector persists between requests:

    1. the visited-URL set (keyed by 64-bit URL fingerprints)
    2. per-host cookie blobs

One storage instance may be shared by many collectors (clones) running
on many threads, so every implementation must be thread-safe.

Cookie blobs are JSON arrays produced by ``stringify_cookies``; storage
implementations treat them as opaque strings.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from http.cookiejar import Cookie
from typing import Dict, Iterable, List, Set

from requests.cookies import create_cookie

from .utils import host_of

logger = logging.getLogger(__name__)


class Storage(ABC):
    """Abstract base for visited-set and cookie storage backends."""

    def init(self) -> None:
        """Prepare the backend. Called once when the storage is attached."""

    @abstractmethod
    def visited(self, fingerprint: int) -> None:
        """Mark ``fingerprint`` as visited."""

    @abstractmethod
    def is_visited(self, fingerprint: int) -> bool:
        """Return True if ``fingerprint`` was marked visited."""

    def visit_once(self, fingerprint: int) -> bool:
        """
        Mark ``fingerprint`` visited and report whether it was new.

        The base implementation is the non-atomic ``is_visited`` +
        ``visited`` pair: two threads may both see a URL as new.
        Backends that can test-and-set atomically should override it.
        """
        if self.is_visited(fingerprint):
            return False
        self.visited(fingerprint)
        return True

    @abstractmethod
    def cookies(self, url: str) -> str:
        """Return the stored cookie blob for the host of ``url`` (``""`` if none)."""

    @abstractmethod
    def set_cookies(self, url: str, blob: str) -> None:
        """Replace the cookie blob for the host of ``url``."""


class InMemoryStorage(Storage):
    """Default process-local storage. Lost when the process exits."""

    def __init__(self):
        self._lock = threading.RLock()
        self._visited: Set[int] = set()
        self._cookies: Dict[str, str] = {}

    def visited(self, fingerprint: int) -> None:
        with self._lock:
            self._visited.add(fingerprint)

    def is_visited(self, fingerprint: int) -> bool:
        with self._lock:
            return fingerprint in self._visited

    def visit_once(self, fingerprint: int) -> bool:
        with self._lock:
            if fingerprint in self._visited:
                return False
            self._visited.add(fingerprint)
            return True

    def cookies(self, url: str) -> str:
        with self._lock:
            return self._cookies.get(host_of(url), "")

    def set_cookies(self, url: str, blob: str) -> None:
        with self._lock:
            self._cookies[host_of(url)] = blob

    def clear(self) -> None:
        with self._lock:
            self._visited.clear()
            self._cookies.clear()


# ---------------------------------------------------------------------------
# Cookie blob codec
# ---------------------------------------------------------------------------

def stringify_cookies(cookies: Iterable[Cookie]) -> str:
    """Serialise cookies into a storage blob."""
    payload = []
    for c in cookies:
        payload.append({
            "name": c.name,
            "value": c.value,
            "domain": c.domain,
            "path": c.path,
            "expires": c.expires,
            "secure": bool(c.secure),
            "http_only": c.has_nonstandard_attr("HttpOnly"),
        })
    return json.dumps(payload)


def unstringify_cookies(blob: str) -> List[Cookie]:
    """Parse a storage blob back into cookies. Corrupt blobs yield ``[]``."""
    if not blob:
        return []
    try:
        payload = json.loads(blob)
    except json.JSONDecodeError as exc:
        logger.warning(f"[COOKIES] Corrupt cookie blob ignored: {exc}")
        return []

    cookies = []
    for item in payload:
        rest = {"HttpOnly": None} if item.get("http_only") else {}
        cookies.append(create_cookie(
            item["name"],
            item.get("value", ""),
            domain=item.get("domain", ""),
            path=item.get("path", "/"),
            expires=item.get("expires"),
            secure=item.get("secure", False),
            rest=rest,
        ))
    return cookies


def contains_cookie(cookies: Iterable[Cookie], name: str) -> bool:
    return any(c.name == name for c in cookies)

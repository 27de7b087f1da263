"""
Utility Functions
=================
Synchronisation primitives, URL fingerprinting, request-body encoders
and small string helpers shared across the collector.
"""

import logging
import os
import re
import threading
import unicodedata
from typing import Dict, Iterable, Optional, Tuple
from urllib.parse import urlencode, urlparse

from urllib3.filepost import encode_multipart_formdata

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Synchronisation
# ---------------------------------------------------------------------------

class RWLock:
    """
    Reader-writer lock.
    Any number of readers may hold the lock at once; a writer waits for
    active readers to drain and blocks new readers while it is waiting.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    def read(self) -> "_Guard":
        """Context manager holding the lock for reading."""
        return _Guard(self.acquire_read, self.release_read)

    def write(self) -> "_Guard":
        """Context manager holding the lock for writing."""
        return _Guard(self.acquire_write, self.release_write)


class _Guard:
    def __init__(self, acquire, release):
        self._acquire = acquire
        self._release = release

    def __enter__(self):
        self._acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._release()
        return False


class WaitGroup:
    """
    Counts outstanding units of work; ``wait()`` blocks until the count
    drops back to zero.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._count = 0

    def add(self, delta: int = 1) -> None:
        with self._cond:
            self._count += delta
            if self._count < 0:
                raise ValueError("WaitGroup counter went negative")
            if self._count == 0:
                self._cond.notify_all()

    def done(self) -> None:
        self.add(-1)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the counter reaches zero.

        Returns:
            False if ``timeout`` expired first, True otherwise
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)

    @property
    def count(self) -> int:
        with self._cond:
            return self._count


class AtomicCounter:
    """Thread-safe monotonically increasing counter."""

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = threading.Lock()

    def increment(self) -> int:
        """Increment and return the new value."""
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


# ---------------------------------------------------------------------------
# Fingerprinting
# ---------------------------------------------------------------------------

_FNV64_OFFSET = 0xcbf29ce484222325
_FNV64_PRIME = 0x100000001b3
_MASK64 = 0xffffffffffffffff


def fnv1a_64(data: bytes) -> int:
    """64-bit FNV-1a hash of ``data``."""
    h = _FNV64_OFFSET
    for byte in data:
        h ^= byte
        h = (h * _FNV64_PRIME) & _MASK64
    return h


def url_fingerprint(url: str) -> int:
    """Dedup fingerprint of a raw (un-normalised) URL string."""
    return fnv1a_64(url.encode("utf-8"))


# ---------------------------------------------------------------------------
# Request body encoders
# ---------------------------------------------------------------------------

def create_form_body(data: Dict[str, str]) -> bytes:
    """URL-encode a form field mapping into a request body."""
    return urlencode(data or {}).encode("utf-8")


def create_multipart_body(
    parts: Dict[str, bytes],
    boundary: Optional[str] = None,
) -> Tuple[bytes, str]:
    """
    Encode named binary parts as a ``multipart/form-data`` body.

    Args:
        parts: Mapping of part name to raw part content
        boundary: Boundary string (default: a random one)

    Returns:
        ``(body, content_type)``; the content type carries the boundary
    """
    return encode_multipart_formdata(list((parts or {}).items()), boundary=boundary)


# ---------------------------------------------------------------------------
# String helpers
# ---------------------------------------------------------------------------

_YES_STRINGS = {"1", "yes", "true", "y"}


def is_yes_string(value: str) -> bool:
    """Interpret an environment-style boolean."""
    return (value or "").strip().lower() in _YES_STRINGS


_SEPARATORS_RE = re.compile(r"[ &_=+:]")
_ILLEGAL_RE = re.compile(r"[^A-Za-z0-9\-.]")
_DASHES_RE = re.compile(r"-+")


def _base_name(value: str) -> str:
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = _SEPARATORS_RE.sub("-", value)
    value = _ILLEGAL_RE.sub("", value)
    return _DASHES_RE.sub("-", value)


def sanitize_file_name(file_name: str) -> str:
    """
    Replace dangerous characters so the result is usable as a file name.

    Examples:
        "2020-01-01 speech/part.json" -> "2020_01_01_speechpart.json"
        "no extension" -> "no_extension.unknown"
    """
    stem, ext = os.path.splitext(file_name)
    clean_ext = _base_name(ext)
    if not clean_ext:
        clean_ext = ".unknown"
    return f"{_base_name(stem)}.{clean_ext[1:]}".replace("-", "_")


def host_of(url: str) -> str:
    """Host (with port, without credentials) of ``url``, lower-cased."""
    netloc = urlparse(url).netloc
    return netloc.rpartition("@")[2].lower()


def hosts_in(values: Iterable[str]) -> list:
    """Normalise a domain list read from config or the environment."""
    return [v.strip().lower() for v in values if v and v.strip()]


def hostname_of(url: str) -> str:
    """Host name of ``url`` without port or credentials, lower-cased."""
    return urlparse(url).hostname or ""

"""
Request Context & Cancellation
==============================
Two small pieces of state that travel with a request:

- ``Context``      the explicit key/value bag a caller attaches to a
                     request. Responses share the *same* object; child
                     requests only get it when the caller passes it on.
- ``CancelToken``  a cooperative cancellation signal, polled by the
                     dispatcher between stages and before every hook.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Optional

from .errors import CancelledError


class Context:
    """Thread-safe key/value store shared by a request and its response."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = dict(data or {})

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: str) -> str:
        """Return the value as a string, or ``""`` when missing or not a string."""
        with self._lock:
            value = self._data.get(key)
        return value if isinstance(value, str) else ""

    def get_any(self, key: str) -> Any:
        with self._lock:
            return self._data.get(key)

    def for_each(self, fn: Callable[[str, Any], Any]) -> list:
        """Call ``fn(key, value)`` for every item, returning the results."""
        with self._lock:
            items = list(self._data.items())
        return [fn(k, v) for k, v in items]

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._data)

    def copy(self) -> "Context":
        return Context(self.to_dict())

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __repr__(self) -> str:
        return f"Context({self.to_dict()!r})"


class CancelToken:
    """
    Cooperative cancellation signal.

    Cancelling never interrupts a network fetch in progress; it only stops
    further hooks and stages from starting.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError()

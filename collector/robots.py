"""
Robots.txt Cache
=================
Fetches, parses and caches robots.txt policies per host.

A single cache is shared by a collector and all of its clones. Entries
never expire. Two threads hitting an uncached host at the same moment
may both fetch robots.txt; the second result simply overwrites the first.
"""

import logging
from typing import Callable, Dict, Tuple
from urllib.parse import urlparse, urlunparse
from urllib.robotparser import RobotFileParser

from .errors import RobotsTxtBlockedError
from .utils import RWLock

logger = logging.getLogger(__name__)

# (status_code, body_text) for a GET of the robots.txt URL
RobotsFetcher = Callable[[str], Tuple[int, str]]


class RobotsCache:
    """
    Host → parsed robots policy, guarded by a reader-writer lock.
    """

    def __init__(self, lock: RWLock = None):
        self._lock = lock or RWLock()
        self._policies: Dict[str, RobotFileParser] = {}

    def _get_robots_url(self, url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}/robots.txt"

    def _fetch_policy(self, url: str, fetch: RobotsFetcher) -> RobotFileParser:
        robots_url = self._get_robots_url(url)
        logger.info(f"[ROBOTS] Fetching {robots_url}")
        status, text = fetch(robots_url)

        rp = RobotFileParser()
        rp.set_url(robots_url)
        if 200 <= status < 300:
            rp.parse(text.splitlines())
        elif status >= 500:
            logger.warning(f"[ROBOTS] Status {status} for {robots_url}; disallowing host")
            rp.disallow_all = True
        else:
            logger.info(f"[ROBOTS] No usable robots.txt at {robots_url} (status: {status})")
            rp.allow_all = True
        return rp

    def policy(self, url: str, fetch: RobotsFetcher) -> RobotFileParser:
        """Return the cached policy for the host of ``url``, fetching it on first use."""
        host = urlparse(url).netloc
        with self._lock.read():
            rp = self._policies.get(host)
        if rp is not None:
            return rp

        rp = self._fetch_policy(url, fetch)
        with self._lock.write():
            self._policies[host] = rp
        return rp

    def is_allowed(self, url: str, user_agent: str, fetch: RobotsFetcher) -> bool:
        """
        Check the path of ``url`` against the group matching ``user_agent``.
        Hosts whose robots.txt has no matching group allow everything.
        """
        rp = self.policy(url, fetch)
        parsed = urlparse(url)
        path_only = urlunparse((parsed.scheme, parsed.netloc, parsed.path or "/", "", "", ""))
        return rp.can_fetch(user_agent, path_only)

    def check(self, url: str, user_agent: str, fetch: RobotsFetcher) -> None:
        if not self.is_allowed(url, user_agent, fetch):
            logger.debug(f"[ROBOTS] Blocked: {url}")
            raise RobotsTxtBlockedError()

    def __contains__(self, host: str) -> bool:
        with self._lock.read():
            return host in self._policies

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._policies)

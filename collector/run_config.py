"""
Unified Run Configuration
=========================
Single source of truth for ALL collector defaults.

A ``Collector`` owns one ``CollectorConfig``. Keyword options passed to
the collector populate it; ``COLLECTOR_*`` environment variables are
applied on top afterwards, so the environment can retune a deployed
collector without code changes.

Recognised environment variables (prefix ``COLLECTOR_``):

    ALLOWED_DOMAINS              comma-separated host list
    CACHE_DIR                    on-disk cache directory
    DETECT_CHARSET               yes-string
    DISABLE_COOKIES              yes-string
    DISALLOWED_DOMAINS           comma-separated host list
    IGNORE_ROBOTSTXT             yes-string
    FOLLOW_REDIRECTS             yes-string; "no" stops at the first redirect
    MAX_BODY_SIZE                integer, bytes
    MAX_DEPTH                    integer
    PARSE_HTTP_ERROR_RESPONSE    yes-string
    USER_AGENT                   string

Yes-strings are ``1``, ``yes``, ``true`` and ``y`` (any case). Unknown
suffixes are logged and ignored.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Callable, Dict, List, Mapping, Optional, Pattern

from dotenv import dotenv_values

from .redirect import RedirectHandler, no_redirects
from .scope_filter import compile_filters
from .utils import hosts_in, is_yes_string

logger = logging.getLogger(__name__)

ENV_PREFIX = "COLLECTOR_"


# ---------------------------------------------------------------------------
# Canonical defaults: the only place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "user_agent": "collector/1.0 (+https://pypi.org/project/collector/)",
    "max_depth": 0,                       # 0 = unlimited
    "max_body_size": 10 * 1024 * 1024,    # bytes; 0 = unlimited
    "cache_dir": "",                      # "" = no disk cache
    "ignore_robots_txt": True,
    "is_async": False,
    "allow_url_revisit": False,
    "parse_http_error_response": False,
    "detect_charset": False,
    "disable_cookies": False,
    "timeout_seconds": 10.0,
}


@dataclass
class CollectorConfig:
    """
    Everything that shapes what a collector fetches and how.

    Populate via:
      - ``CollectorConfig()``                    → all defaults
      - ``CollectorConfig(max_depth=2)``         → override one value
      - ``CollectorConfig.from_env(env_file=…)`` → defaults + environment
    """

    # ---- Identity ----
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Scope ----
    max_depth: int = _DEFAULTS["max_depth"]
    allowed_domains: List[str] = field(default_factory=list)
    disallowed_domains: List[str] = field(default_factory=list)
    url_filters: List[Pattern] = field(default_factory=list)
    disallowed_url_filters: List[Pattern] = field(default_factory=list)
    allow_url_revisit: bool = _DEFAULTS["allow_url_revisit"]
    ignore_robots_txt: bool = _DEFAULTS["ignore_robots_txt"]

    # ---- Fetching ----
    max_body_size: int = _DEFAULTS["max_body_size"]
    cache_dir: str = _DEFAULTS["cache_dir"]
    is_async: bool = _DEFAULTS["is_async"]
    parse_http_error_response: bool = _DEFAULTS["parse_http_error_response"]
    detect_charset: bool = _DEFAULTS["detect_charset"]
    disable_cookies: bool = _DEFAULTS["disable_cookies"]
    timeout_seconds: float = _DEFAULTS["timeout_seconds"]
    redirect_handler: Optional[RedirectHandler] = None

    def __post_init__(self):
        self.normalise()

    def normalise(self) -> None:
        """Lower-case domain lists and compile URL filters (idempotent)."""
        self.allowed_domains = hosts_in(self.allowed_domains)
        self.disallowed_domains = hosts_in(self.disallowed_domains)
        self.url_filters = compile_filters(self.url_filters)
        self.disallowed_url_filters = compile_filters(self.disallowed_url_filters)

    # -----------------------------------------------------------------------
    # Environment binding
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[str] = None,
    ) -> "CollectorConfig":
        """
        Build a config from the defaults plus ``COLLECTOR_*`` variables.

        Args:
            environ: Variables to read (default: ``os.environ``)
            env_file: Optional ``.env`` file; its values lose to ``environ``
        """
        cfg = cls()
        values: Dict[str, str] = {}
        if env_file:
            values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        values.update(os.environ if environ is None else environ)
        cfg.update_from_env(values)
        return cfg

    def update_from_env(self, environ: Optional[Mapping[str, str]] = None) -> List[str]:
        """
        Apply ``COLLECTOR_*`` variables onto this config.

        Returns:
            The suffixes that were applied
        """
        environ = os.environ if environ is None else environ
        applied = []
        for key, value in environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            suffix = key[len(ENV_PREFIX):]
            setter = _ENV_SETTERS.get(suffix)
            if setter is None:
                logger.warning(f"[CONFIG] Unknown environment variable: {key}")
                continue
            setter(self, value)
            applied.append(suffix)
        if applied:
            logger.debug(f"[CONFIG] Applied from environment: {', '.join(sorted(applied))}")
        return applied

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("COLLECTOR CONFIG")
        logger.info("=" * 60)
        logger.info(f"  User Agent:       {self.user_agent}")
        logger.info(f"  Max Depth:        {self.max_depth or 'unlimited'}")
        logger.info(f"  Async:            {self.is_async}")
        logger.info(f"  Robots.txt:       {'ignored' if self.ignore_robots_txt else 'respected'}")
        if self.allowed_domains:
            logger.info(f"  Allowed Domains:  {', '.join(self.allowed_domains)}")
        if self.disallowed_domains:
            logger.info(f"  Denied Domains:   {', '.join(self.disallowed_domains)}")
        if self.url_filters or self.disallowed_url_filters:
            logger.info(
                f"  URL Filters:      {len(self.url_filters)} allow / "
                f"{len(self.disallowed_url_filters)} deny"
            )
        if self.cache_dir:
            logger.info(f"  Cache Dir:        {self.cache_dir}")
        logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Environment setters
# ---------------------------------------------------------------------------

def _set_int(name: str) -> Callable[[CollectorConfig, str], None]:
    def _setter(cfg: CollectorConfig, value: str) -> None:
        try:
            setattr(cfg, name, int(value))
        except ValueError:
            logger.warning(f"[CONFIG] Ignoring non-integer {ENV_PREFIX}{name.upper()}={value!r}")
    return _setter


def _set_flag(name: str) -> Callable[[CollectorConfig, str], None]:
    return lambda cfg, value: setattr(cfg, name, is_yes_string(value))


def _set_follow_redirects(cfg: CollectorConfig, value: str) -> None:
    if not is_yes_string(value):
        cfg.redirect_handler = no_redirects


_ENV_SETTERS: Dict[str, Callable[[CollectorConfig, str], None]] = {
    "ALLOWED_DOMAINS": lambda cfg, v: setattr(cfg, "allowed_domains", hosts_in(v.split(","))),
    "CACHE_DIR": lambda cfg, v: setattr(cfg, "cache_dir", v),
    "DETECT_CHARSET": _set_flag("detect_charset"),
    "DISABLE_COOKIES": _set_flag("disable_cookies"),
    "DISALLOWED_DOMAINS": lambda cfg, v: setattr(cfg, "disallowed_domains", hosts_in(v.split(","))),
    "IGNORE_ROBOTSTXT": _set_flag("ignore_robots_txt"),
    "FOLLOW_REDIRECTS": _set_follow_redirects,
    "MAX_BODY_SIZE": _set_int("max_body_size"),
    "MAX_DEPTH": _set_int("max_depth"),
    "PARSE_HTTP_ERROR_RESPONSE": _set_flag("parse_http_error_response"),
    "USER_AGENT": lambda cfg, v: setattr(cfg, "user_agent", v),
}

CONFIG_FIELDS = frozenset(f.name for f in fields(CollectorConfig))

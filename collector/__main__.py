#!/usr/bin/env python3
"""
Command-line Collector
======================
Fetch one or more URLs, print the elements matching a CSS selector and,
optionally, follow links.

All configuration flows through ``CollectorConfig``: flags populate it,
then ``COLLECTOR_*`` variables (from the environment or a ``.env`` file)
are applied on top.

Run with: python -m collector https://example.com --selector "h1"
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import List

import requests
from dotenv import load_dotenv

from .collector import Collector
from .errors import CollectorError
from .run_config import _DEFAULTS, CollectorConfig
from .utils import hostname_of

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m collector",
        description="Fetch pages and print the elements matching a CSS selector.",
    )
    parser.add_argument("urls", nargs="+", metavar="URL", help="Seed URL(s)")
    parser.add_argument(
        "--selector", default="title",
        help="CSS selector whose matches are printed (default: title)",
    )
    parser.add_argument(
        "--attr", default=None,
        help="Print this attribute of each match instead of its text",
    )
    parser.add_argument(
        "--follow", action="store_true",
        help="Follow <a href> links (stays inside --allowed-domain when given)",
    )
    parser.add_argument(
        "--max-depth", type=int, default=_DEFAULTS["max_depth"],
        help="Maximum depth when following links (0 = unlimited)",
    )
    parser.add_argument(
        "--allowed-domain", action="append", default=[],
        help="Restrict requests to this host (repeatable)",
    )
    parser.add_argument(
        "--async", dest="is_async", action="store_true",
        help="Fetch concurrently, one thread per request",
    )
    robots = parser.add_mutually_exclusive_group()
    robots.add_argument(
        "--ignore-robots", dest="ignore_robots_txt", action="store_true",
        default=_DEFAULTS["ignore_robots_txt"], help="Do not consult robots.txt (default)",
    )
    robots.add_argument(
        "--respect-robots", dest="ignore_robots_txt", action="store_false",
        help="Skip URLs disallowed by robots.txt",
    )
    parser.add_argument("--cache-dir", default=_DEFAULTS["cache_dir"], help="On-disk response cache")
    parser.add_argument("--user-agent", default=_DEFAULTS["user_agent"], help="User-Agent header")
    parser.add_argument("--timeout", type=float, default=_DEFAULTS["timeout_seconds"], help="Request timeout (s)")
    parser.add_argument("--output-json", default=None, help="Also export matches to this JSON file")
    parser.add_argument("--env-file", default=None, help="Load COLLECTOR_* variables from this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def config_from_args(args: argparse.Namespace) -> CollectorConfig:
    """Build config from an argparse Namespace."""
    allowed = list(args.allowed_domain)
    if args.follow and not allowed:
        # following links never leaves the seed hosts unless told to
        allowed = [hostname_of(u if "://" in u else f"http://{u}") for u in args.urls]
    return CollectorConfig(
        user_agent=args.user_agent,
        max_depth=args.max_depth if args.follow else 1,
        allowed_domains=allowed,
        ignore_robots_txt=args.ignore_robots_txt,
        is_async=args.is_async,
        cache_dir=args.cache_dir,
        timeout_seconds=args.timeout,
    )


def run(args: argparse.Namespace) -> List[dict]:
    """Run the collection described by ``args``; return the printed matches."""
    cfg = config_from_args(args)
    collector = Collector(cfg)
    collector.config.log_summary()

    matches: List[dict] = []
    failures: List[str] = []

    @collector.on_html(args.selector)
    def _print_match(e):
        value = e.attr(args.attr) if args.attr else " ".join(e.text.split())
        matches.append({"url": e.request.url, "value": value})
        print(f"{e.request.url}\t{value}")

    if args.follow:
        @collector.on_html("a[href]")
        def _follow(e):
            e.request.visit(e.attr("href"))

    @collector.on_error
    def _log_error(response, err):
        failures.append(response.request.url)
        logger.warning(f"[ERROR] {response.request.url}: {err}")

    start = time.time()
    with collector:
        for url in args.urls:
            try:
                collector.visit(url)
            except CollectorError as e:
                logger.warning(f"[REQUEST] Skipped {url}: {e}")
            except requests.RequestException as e:
                logger.error(f"[REQUEST] Failed {url}: {e}")

    print_summary(collector, len(matches), len(failures), time.time() - start)

    if args.output_json:
        path = Path(args.output_json)
        path.write_text(json.dumps(matches, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info(f"Exported JSON to {path.absolute()}")
    return matches


def print_summary(collector: Collector, match_count: int, error_count: int, elapsed: float) -> None:
    print("\n" + "=" * 60)
    print("COLLECTION SUMMARY")
    print("=" * 60)
    print(f"  Requests:   {collector.request_count}")
    print(f"  Responses:  {collector.response_count}")
    print(f"  Matches:    {match_count}")
    print(f"  Errors:     {error_count}")
    print(f"  Time:       {elapsed:.1f}s")
    print("=" * 60)


def main(argv: List[str] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )

    # .env values never override variables already set in the environment
    if args.env_file:
        load_dotenv(args.env_file)
    else:
        load_dotenv()

    try:
        run(args)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    return 0


if __name__ == '__main__':
    sys.exit(main())

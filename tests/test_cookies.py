"""
Tests for storage.py and cookies.py: the visited set, the cookie blob
codec and the storage-backed cookie jar.
"""

import json
import logging
import time

import pytest
from requests.cookies import create_cookie

from collector import Collector
from collector.cookies import StorageCookieJar
from collector.errors import NoCookieJarError
from collector.storage import (
    InMemoryStorage,
    Storage,
    contains_cookie,
    stringify_cookies,
    unstringify_cookies,
)


def _as_dict(cookies):
    return {c.name: c.value for c in cookies}


# ====================================================================
# Storage
# ====================================================================

class TestInMemoryStorage:

    def test_visit_once(self):
        s = InMemoryStorage()
        assert s.visit_once(42)
        assert not s.visit_once(42)
        assert s.is_visited(42)

    def test_cookies_keyed_by_host(self):
        s = InMemoryStorage()
        s.set_cookies("http://a.com/x", "blob")
        assert s.cookies("http://a.com/other") == "blob"
        assert s.cookies("http://b.com/") == ""

    def test_clear(self):
        s = InMemoryStorage()
        s.visited(1)
        s.set_cookies("http://a.com/", "blob")
        s.clear()
        assert not s.is_visited(1)
        assert s.cookies("http://a.com/") == ""


class _DictStorage(Storage):
    """Minimal backend relying on the base-class visit_once."""

    def __init__(self):
        self.seen = set()
        self.blobs = {}

    def visited(self, fingerprint):
        self.seen.add(fingerprint)

    def is_visited(self, fingerprint):
        return fingerprint in self.seen

    def cookies(self, url):
        return self.blobs.get(url, "")

    def set_cookies(self, url, blob):
        self.blobs[url] = blob


class TestStorageContract:

    def test_abstract(self):
        with pytest.raises(TypeError):
            Storage()

    def test_base_visit_once(self):
        s = _DictStorage()
        assert s.visit_once(7)
        assert not s.visit_once(7)

    def test_custom_storage_in_collector(self, site):
        s = _DictStorage()
        c = Collector(storage=s)
        c.visit(site.url("/"))
        assert c.has_visited(site.url("/"))
        assert len(s.seen) == 1


# ====================================================================
# Blob codec
# ====================================================================

class TestCookieCodec:

    def test_round_trip(self):
        blob = stringify_cookies([
            create_cookie("a", "1", domain="a.com", path="/"),
            create_cookie("b", "2", secure=True, expires=int(time.time()) + 60),
        ])
        cookies = unstringify_cookies(blob)
        assert _as_dict(cookies) == {"a": "1", "b": "2"}
        assert cookies[1].secure

    def test_blob_is_json(self):
        blob = stringify_cookies([create_cookie("a", "1")])
        assert json.loads(blob)[0]["name"] == "a"

    def test_corrupt_blob(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert unstringify_cookies("{not json") == []
        assert "Corrupt cookie blob" in caplog.text

    def test_empty_blob(self):
        assert unstringify_cookies("") == []

    def test_contains_cookie(self):
        cookies = [create_cookie("a", "1")]
        assert contains_cookie(cookies, "a")
        assert not contains_cookie(cookies, "b")


# ====================================================================
# Cookie jar
# ====================================================================

class TestStorageCookieJar:

    def test_merge_new_values_win(self):
        """{a=1} then {a=2, b=3} reads back as {a=2, b=3}."""
        jar = StorageCookieJar(InMemoryStorage())
        url = "http://a.com/"
        jar.set_cookies(url, [create_cookie("a", "1")])
        jar.set_cookies(url, [create_cookie("a", "2"), create_cookie("b", "3")])
        assert _as_dict(jar.cookies(url)) == {"a": "2", "b": "3"}

    def test_merge_keeps_other_names(self):
        jar = StorageCookieJar(InMemoryStorage())
        url = "http://a.com/"
        jar.set_cookies(url, [create_cookie("keep", "1")])
        jar.set_cookies(url, [create_cookie("new", "2")])
        assert _as_dict(jar.cookies(url)) == {"keep": "1", "new": "2"}

    def test_secure_cookie_hidden_from_http(self):
        jar = StorageCookieJar(InMemoryStorage())
        jar.set_cookies("https://a.com/", [
            create_cookie("plain", "1"),
            create_cookie("secret", "2", secure=True),
        ])
        assert _as_dict(jar.cookies("http://a.com/")) == {"plain": "1"}
        assert _as_dict(jar.cookies("https://a.com/")) == {"plain": "1", "secret": "2"}

    def test_expired_cookie_dropped(self):
        jar = StorageCookieJar(InMemoryStorage())
        jar.set_cookies("http://a.com/", [
            create_cookie("old", "1", expires=int(time.time()) - 10),
            create_cookie("fresh", "2", expires=int(time.time()) + 3600),
        ])
        assert _as_dict(jar.cookies("http://a.com/")) == {"fresh": "2"}

    def test_cookie_header(self):
        jar = StorageCookieJar(InMemoryStorage())
        jar.set_cookies("http://a.com/", [create_cookie("a", "1"), create_cookie("b", "2")])
        assert jar.cookie_header("http://a.com/") == "a=1; b=2"
        assert jar.cookie_header("http://b.com/") == ""


class TestCollectorCookies:

    def test_set_and_read(self):
        c = Collector()
        c.set_cookies("http://a.com/", [create_cookie("a", "1")])
        assert _as_dict(c.cookies("http://a.com/")) == {"a": "1"}

    def test_disabled(self):
        c = Collector()
        c.disable_cookies()
        assert c.cookies("http://a.com/") == []
        with pytest.raises(NoCookieJarError):
            c.set_cookies("http://a.com/", [create_cookie("a", "1")])

    def test_received_cookie_stored_and_sent(self, site):
        c = Collector()
        seen = {}

        @c.on_response
        def _capture(r):
            if r.request.url.endswith("/echo-headers"):
                seen.update({k.lower(): v for k, v in json.loads(r.body).items()})

        c.visit(site.url("/set-cookie"))
        assert _as_dict(c.cookies(site.url("/"))) == {"session": "abc"}

        c.visit(site.url("/echo-headers"))
        assert seen["cookie"] == "session=abc"

    def test_clone_shares_cookies(self, site):
        c = Collector()
        c.visit(site.url("/set-cookie"))
        assert _as_dict(c.clone().cookies(site.url("/"))) == {"session": "abc"}

    def test_disabled_cookies_not_stored(self, site):
        c = Collector(disable_cookies=True)
        c.visit(site.url("/set-cookie"))
        assert c.cookies(site.url("/")) == []
        assert c.storage.cookies(site.url("/")) == ""

    def test_set_storage_rebinds_jar(self, site):
        c = Collector()
        c.set_cookies("http://a.com/", [create_cookie("old", "1")])
        fresh = InMemoryStorage()
        c.set_storage(fresh)
        assert c.cookies("http://a.com/") == []
        c.visit(site.url("/set-cookie"))
        assert fresh.cookies(site.url("/")) != ""
        assert c.has_visited(site.url("/set-cookie"))
